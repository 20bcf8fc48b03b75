"""
Main entry point for the RabbitMQ operator.

This module initializes and starts the controller with the registered
reconciler plugins.
"""

import asyncio
import logging
import signal
from typing import Optional

from config import Config, get_config
from controller import Controller
from db import DatabaseManager
from events import EventBus
from plugins.registry import PluginRegistry, get_registry, register_builtin_plugins

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Main application that wires the store, registry and controller."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.db: Optional[DatabaseManager] = None
        self.registry: Optional[PluginRegistry] = None
        self.controller: Optional[Controller] = None
        self.event_bus: Optional[EventBus] = None
        self.running = False

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing RabbitMQ operator")

        # Register built-in reconcilers, honouring ENABLED_RECONCILERS
        self.registry = get_registry(enabled=self.config.plugins.enabled_reconcilers)
        register_builtin_plugins(self.registry)

        # Initialize database
        self.db = DatabaseManager.from_config(self.config.database)
        await self.db.connect()
        await self.db.initialize_schema()
        logger.info("Database initialized")

        self.event_bus = EventBus()

        self.controller = Controller(
            db_manager=self.db,
            registry=self.registry,
            config=self.config.controller,
            event_bus=self.event_bus,
        )

        logger.info(
            f"Reconcilers enabled: {', '.join(self.registry.list_reconciler_plugins())}"
        )

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info("Starting RabbitMQ operator")

        try:
            await self.controller.start()
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running:
            return
        logger.info("Stopping RabbitMQ operator")
        self.running = False

        if self.controller:
            await self.controller.stop()

        if self.db:
            await self.db.close()

        logger.info("RabbitMQ operator stopped")


async def main():
    """Main entry point."""
    config = get_config()
    configure_logging(config.logging.level)
    app = Application(config)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
