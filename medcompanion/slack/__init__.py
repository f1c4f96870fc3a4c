"""
Slack Integration
=================

Handles all Slack-related functionality:
- Bolt app initialization
- Event handlers (DMs, mentions, the /medcompanion command)
- SlackTransport: the chat transport contract on top of the Web API
"""

from medcompanion.slack.app import create_slack_app, create_socket_handler
from medcompanion.slack.handlers import register_handlers
from medcompanion.slack.transport import SlackTransport

__all__ = ["create_slack_app", "create_socket_handler", "register_handlers", "SlackTransport"]
