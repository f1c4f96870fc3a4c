"""
Medical Companion - Main Entry Point
====================================

This is the main entry point for the companion. It:
1. Loads configuration
2. Builds the agent (knowledge retrieval, tools, completion client)
3. Sets up Slack handlers and per-channel sessions
4. Runs until SIGINT/SIGTERM, then disposes every session

Run with:
    python -m medcompanion.main

Or after installing:
    medcompanion
"""

import asyncio
import signal
import sys

from medcompanion.utils.config import get_config, is_alert_configured, is_search_configured
from medcompanion.utils.logger import Logger

main_logger = Logger("Main")


async def main():
    """
    Main async entry point.

    Initializes all components and runs the companion.
    """
    main_logger.info("Starting Medical Companion...")

    try:
        # 1. Load configuration
        # This validates that all required env vars are set
        main_logger.info("Loading configuration...")
        config = get_config()

        if not is_search_configured(config):
            main_logger.warning("TAVILY_API_KEY not set; tool_search will report errors")
        if not is_alert_configured(config):
            main_logger.warning("Twilio not configured; tool_alert cannot deliver alerts")

        # 2. Create Slack app
        main_logger.info("Creating Slack app...")
        from medcompanion.slack.app import create_slack_app, create_socket_handler
        app = create_slack_app(config)

        # 3. Create the agent and sessions
        main_logger.info("Creating agent...")
        from medcompanion.agent import Agent, SessionManager
        agent = Agent.from_config(config)
        sessions = SessionManager(agent)

        # 4. Register event handlers
        main_logger.info("Registering event handlers...")
        from medcompanion.slack.handlers import register_handlers
        register_handlers(app, sessions)

        # 5. Start the Socket Mode handler
        main_logger.info("Starting Socket Mode connection...")
        handler = await create_socket_handler(app, config)

        # Set up graceful shutdown
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(
                sig,
                lambda: asyncio.create_task(_shutdown(handler, sessions))
            )

        main_logger.info("Medical Companion is running! Press Ctrl+C to stop.")
        await handler.start_async()

    except KeyboardInterrupt:
        main_logger.info("Received interrupt signal")
    except Exception as e:
        main_logger.error("Failed to start companion", e)
        sys.exit(1)


async def _shutdown(handler, sessions):
    """
    Graceful shutdown handler.

    Args:
        handler: The Socket Mode handler
        sessions: The session manager
    """
    main_logger.info("Shutting down...")

    # Stop running and queued turns
    await sessions.dispose_all()

    # Close the socket connection
    await handler.close_async()

    main_logger.info("Shutdown complete")


def run():
    """
    Synchronous entry point.

    This is called when running with the `medcompanion` command.
    """
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
