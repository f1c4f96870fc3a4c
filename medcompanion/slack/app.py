"""
Slack Bolt App
==============

Creates and configures the Slack Bolt application.

Slack Bolt is the official framework for building Slack apps. It provides:
- Socket Mode connection (no public URL needed)
- Event handling with decorators
- Built-in request verification

Socket Mode keeps a WebSocket open to Slack, so the companion runs behind
a firewall without exposing an endpoint.
"""

from typing import TYPE_CHECKING

from slack_bolt.async_app import AsyncApp
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler

from medcompanion.utils.config import get_config
from medcompanion.utils.logger import Logger

if TYPE_CHECKING:
    from medcompanion.utils.config import Config

logger = Logger("SlackApp")


def create_slack_app(config: "Config | None" = None) -> AsyncApp:
    """
    Create and configure the Slack Bolt app.

    Returns:
        Configured AsyncApp instance
    """
    config = config or get_config()

    app = AsyncApp(
        token=config.slack.bot_token,
        signing_secret=config.slack.signing_secret,
    )

    logger.info("Slack Bolt app created")

    return app


async def create_socket_handler(app: AsyncApp, config: "Config | None" = None) -> AsyncSocketModeHandler:
    """
    Create a Socket Mode handler for the app.

    Args:
        app: The Bolt app instance

    Returns:
        Configured socket handler
    """
    config = config or get_config()

    handler = AsyncSocketModeHandler(
        app=app,
        app_token=config.slack.app_token
    )

    logger.info("Socket Mode handler created")

    return handler
