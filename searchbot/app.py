"""
Application entry point: crawl the seed URLs and serve search queries.
"""

import asyncio
import argparse
import dataclasses
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .crawler.coordinator import CrawlCoordinator
from .crawler.fetcher import BaseFetcher, FetchError, create_fetcher
from .search.engine import SearchEngine
from .search.server import create_app, start_server
from .storage.database import DatabaseManager, StorageError
from .utils.config import Config, load_config, validate_config
from .utils.logger import log_system_info, setup_logging
from .utils.monitoring import initialize_monitoring


class SearchBotApp:
    """Owns the storage, fetcher, coordinator and query server for one run."""

    def __init__(self):
        self.database: Optional[DatabaseManager] = None
        self.fetcher: Optional[BaseFetcher] = None
        self.coordinator: Optional[CrawlCoordinator] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event: Optional[asyncio.Event] = None

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            self._shutdown_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                # Not available on Windows event loops; Ctrl+C still raises KeyboardInterrupt.
                pass

    async def run(self, config: Config, dry_run: bool = False) -> int:
        """Run the crawler and the query server until shutdown."""
        self._shutdown_event = asyncio.Event()
        setup_logging(config.logging)
        log_system_info()
        self.setup_signal_handlers()

        self.logger.info("=== SEARCH BOT STARTING ===")
        self.logger.info(f"Seed URLs: {config.crawler.seed_urls}")
        self.logger.info(f"Target indexed pages: {config.crawler.target_pages}")
        self.logger.info(f"Workers: {config.crawler.workers}")
        self.logger.info(f"Renderer: {config.crawler.renderer}")

        monitor = initialize_monitoring(
            config.monitoring.metrics_enabled, config.monitoring.prometheus_port
        )

        self.database = DatabaseManager(config.database)
        try:
            await self.database.initialize()
        except StorageError as e:
            self.logger.critical(f"Cannot connect to storage, exiting: {e}")
            return 1

        runner = None
        try:
            self.fetcher = create_fetcher(config.crawler)
            await self.fetcher.start()

            if dry_run:
                await self._dry_run(config)
                return 0

            monitor.metrics.start_prometheus_server()

            self.coordinator = CrawlCoordinator(
                config.crawler,
                self.database,
                self.fetcher,
                monitor=monitor,
                phrase_timeout=config.server.phrase_timeout,
            )
            await self.coordinator.seed(config.crawler.seed_urls)

            engine = SearchEngine(self.database, self.coordinator)
            app = create_app(engine, config.server.allowed_origin, monitor)
            runner = await start_server(app, config.server.host, config.server.port)

            crawl_task = asyncio.create_task(
                self.coordinator.run(config.crawler.max_duration)
            )
            crawl_task.add_done_callback(self._crawl_done)
            await self._shutdown_event.wait()

            self.logger.info("Shutdown requested, stopping crawler...")
            if not crawl_task.done():
                self.coordinator.halt("shutdown")
                crawl_task.cancel()
            await asyncio.gather(crawl_task, return_exceptions=True)

        except StorageError as e:
            self.logger.error(f"Fatal storage error: {e}", exc_info=True)
            return 1

        finally:
            if runner:
                await runner.cleanup()
            if self.fetcher:
                await self.fetcher.close()
            if self.database:
                await self.database.close()
            self.logger.info("=== SEARCH BOT FINISHED ===")

        return 0

    def _crawl_done(self, task: asyncio.Task):
        if not task.cancelled() and task.exception() is not None:
            self.logger.error("Crawl stopped with an error", exc_info=task.exception())

    async def _dry_run(self, config: Config):
        """Check storage and fetch one seed page, then exit."""
        self.logger.info("DRY RUN MODE: no crawl, no query server")
        self.logger.info(f"✓ Database initialized: {await self.database.get_stats()}")

        test_url = config.crawler.seed_urls[0]
        try:
            html = await self.fetcher.fetch(test_url)
            self.logger.info(f"✓ Test fetch successful: {test_url} ({len(html)} chars)")
        except FetchError as e:
            self.logger.warning(f"✗ Test fetch failed: {e}")

        self.logger.info("Dry run completed")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Crawling keyword and phrase search engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  searchbot                            # Run with default config.yaml
  searchbot --config my_config.yaml    # Run with custom config
  searchbot --target-pages 100         # Open search after 100 indexed pages
  searchbot --max-duration 3600        # Stop crawling after 1 hour
  searchbot --dry-run                  # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--target-pages',
        type=int,
        help='Number of indexed pages required before search opens'
    )

    parser.add_argument(
        '--workers',
        type=int,
        help='Number of concurrent crawl workers'
    )

    parser.add_argument(
        '--max-duration',
        type=int,
        help='Maximum crawl duration in seconds'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without actually crawling'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'searchbot {__version__}'
    )

    args = parser.parse_args()

    # Check if config file exists
    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    try:
        config = load_config(args.config)
        overrides = {
            'target_pages': args.target_pages,
            'workers': args.workers,
            'max_duration': args.max_duration,
        }
        overrides = {key: value for key, value in overrides.items() if value is not None}
        if overrides:
            config.crawler = dataclasses.replace(config.crawler, **overrides)
            validate_config(config)
    except ValueError as e:
        print(f"Error: Invalid configuration: {e}")
        return 1

    app = SearchBotApp()
    try:
        return asyncio.run(app.run(config, dry_run=args.dry_run))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
