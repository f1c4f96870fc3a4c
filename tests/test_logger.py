# tests/test_logger.py
"""
Tests for the context logger.
"""

from medcompanion.utils.logger import Logger


def test_levels_and_streams(monkeypatch, capsys):
    monkeypatch.setenv("LOG_LEVEL", "warning")
    logger = Logger("Agent")

    logger.info("hidden")
    logger.warning("geocode failed")
    logger.error("stream failed", ConnectionResetError("reset"))

    out, err = capsys.readouterr()
    assert "hidden" not in out
    assert "[WARN]" in out and "[Agent] geocode failed" in out
    assert "stream failed" in err
    assert '"error_type": "ConnectionResetError"' in err


def test_child_and_bind(monkeypatch, capsys):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    logger = Logger("Agent").bind(channel="D1").child("Turn").bind(message_id="1.2")

    logger.debug("round finished", {"tool_calls": 1})

    out, _ = capsys.readouterr()
    assert "[Agent:Turn] round finished" in out
    assert "channel=D1 message_id=1.2" in out
    assert '"tool_calls": 1' in out
