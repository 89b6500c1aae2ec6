"""
Inventory Server - Main entry point.

This module starts the inventory server with all components:
- SQLite inventory store (optionally seeded from a JSON file)
- Watch manager (journal -> subscriptions)
- HTTP server (REST lists, trees and WebSocket watches)

Usage:
    python -m provider.inventory_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store is initialized and seeded before the watch manager starts
    - The watch manager starts before the HTTP site accepts requests
    - Shutdown closes every watch with GOING_AWAY before the store closes

How to change safely:
    - Keep the start order; watches rely on the store revision at start
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter
from aiohttp import web

from .api import InventoryService, create_http_app
from .config import ServerConfig
from .store import InventoryStore, load_seed
from .watch import WatchManager

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    if level > logging.DEBUG:
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """Inventory server orchestrator.

    Attributes:
        config: Server configuration
        store: Inventory store
        manager: Watch manager
        service: REST service

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: InventoryStore | None = None
        self.manager: WatchManager | None = None
        self.service: InventoryService | None = None
        self.runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start the server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting inventory server")
        self.config.log_config()

        try:
            data_dir = Path(self.config.storage.data_dir)
            data_dir.mkdir(parents=True, exist_ok=True)

            self.store = InventoryStore(
                data_dir=str(data_dir),
                db_name=self.config.storage.db_name,
                wal_mode=self.config.storage.wal_mode,
                busy_timeout_ms=self.config.storage.busy_timeout_ms,
                journal_retention=self.config.watch.journal_retention,
            )
            await self.store.initialize()

            if self.config.storage.seed_file:
                await load_seed(self.store, self.config.storage.seed_file)

            self.manager = WatchManager(
                self.store,
                kinds=self.config.watch.resolved_kinds(),
                queue_size=self.config.watch.queue_size,
            )
            await self.manager.start()

            self.service = InventoryService(
                self.store,
                self.manager,
                link_prefix=self.config.http.link_prefix,
            )
            app = create_http_app(self.service, self.config.http, self.config.watch)
            self.runner = web.AppRunner(app)
            await self.runner.setup()
            site = web.TCPSite(self.runner, self.config.http.host, self.config.http.port)
            await site.start()
            logger.info(
                f"HTTP server running on http://{self.config.http.host}:{self.config.http.port}"
            )

            self._running = True
            logger.info("Inventory server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            self._running = True
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping inventory server")

        if self.manager:
            await self.manager.stop()

        if self.runner:
            await self.runner.cleanup()

        if self.store:
            await self.store.close()

        self._running = False
        logger.info("Inventory server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # Create server
    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
