#!/usr/bin/env python3
"""
Main entry point for the crawl frontier.
"""

import asyncio
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from crawlfrontier import __version__
from crawlfrontier.exceptions import ConfigurationError
from crawlfrontier.utils.config import load_config, Config, validate_config
from crawlfrontier.utils.logger import setup_logging, log_system_info
from crawlfrontier.utils.monitoring import initialize_monitoring
from crawlfrontier.crawler.scheduler import CrawlerScheduler


class CrawlerApp:
    """Main application class for the crawl frontier."""

    def __init__(self):
        self.scheduler: Optional[CrawlerScheduler] = None
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
                # Windows event loops
                signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(signal_handler, s))

    async def run(self, config: Config, max_pages: Optional[int] = None,
                  max_duration: Optional[int] = None, dry_run: bool = False) -> int:
        """Run the crawl frontier."""
        self._shutdown_event = asyncio.Event()
        try:
            self.setup_signal_handlers()
            log_system_info()

            self.logger.info("=== CRAWL FRONTIER STARTING ===")
            self.logger.info(f"Seed URLs: {config.frontier.seed_urls}")
            self.logger.info(f"Max depth: {config.frontier.max_depth}")
            self.logger.info(f"Global concurrency cap: {config.frontier.global_concurrency_cap}")
            self.logger.info(f"Per-host concurrency cap: {config.frontier.per_host_concurrency_cap}")
            self.logger.info(f"Default crawl delay: {config.frontier.default_crawl_delay}s")
            self.logger.info(f"Storage type: {config.storage.type}")

            if dry_run:
                self.logger.info("DRY RUN MODE: No actual crawling will be performed")
                await self._dry_run(config)
                return 0

            monitor = initialize_monitoring(
                config.monitoring.metrics_enabled, config.monitoring.prometheus_port
            )

            self.scheduler = CrawlerScheduler(config, monitor=monitor)
            await self.scheduler.initialize()

            # Start crawling with shutdown monitoring
            crawl_task = asyncio.create_task(
                self.scheduler.start_crawling(max_pages, max_duration)
            )
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            done, _ = await asyncio.wait(
                [crawl_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )

            if shutdown_task in done:
                self.logger.info("Shutdown requested, stopping crawler...")
                await self.scheduler.stop_crawling()
                await crawl_task
            else:
                shutdown_task.cancel()
                await asyncio.gather(shutdown_task, return_exceptions=True)
                crawl_task.result()

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            if self.scheduler:
                await self.scheduler.close()
            self.logger.info("=== CRAWL FRONTIER FINISHED ===")

        return 0

    async def _dry_run(self, config: Config):
        """Check configuration and connections without crawling."""
        if config.redis.enabled:
            self.logger.info("Testing Redis connection...")
            try:
                import redis.asyncio as redis
                redis_client = redis.Redis(
                    host=config.redis.host,
                    port=config.redis.port,
                    db=config.redis.db,
                    password=config.redis.password
                )
                await redis_client.ping()
                await redis_client.aclose()
                self.logger.info("Redis connection successful")
            except Exception as e:
                self.logger.error(f"Redis connection failed: {e}")

        self.logger.info("Testing seed URL normalization...")
        from crawlfrontier.crawler.normalizer import URLNormalizer
        from crawlfrontier.exceptions import MalformedURL
        normalizer = URLNormalizer(config.frontier.query_mode, config.frontier.tracking_params)
        for url in config.frontier.seed_urls:
            try:
                self.logger.info(f"  {url} -> {normalizer.normalize(url)}")
            except MalformedURL as e:
                self.logger.error(f"  {e}")

        self.logger.info("Testing fetcher configuration...")
        try:
            from crawlfrontier.crawler.fetcher import WebFetcher
            async with WebFetcher.from_config(config) as fetcher:
                if config.frontier.seed_urls:
                    test_url = normalizer.normalize(config.frontier.seed_urls[0])
                    outcome = await fetcher.fetch(test_url)
                    if outcome.is_success:
                        self.logger.info(f"Test fetch successful: {outcome.status_code}")
                    else:
                        self.logger.warning(f"Test fetch failed: {outcome.error}")
        except Exception as e:
            self.logger.error(f"Fetcher test failed: {e}")

        self.logger.info("Dry run completed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crawl Frontier",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                               # Run with default config.yaml
  python main.py --config my_config.yaml       # Run with custom config
  python main.py --seed https://example.com/   # Crawl from an extra seed
  python main.py --max-pages 1000              # Stop after 1000 fetches
  python main.py --max-duration 3600           # Run for 1 hour max
  python main.py --dry-run                     # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--seed',
        action='append',
        default=[],
        metavar='URL',
        help='Seed URL to crawl; may be repeated and is added to the configured seeds'
    )

    parser.add_argument(
        '--max-pages',
        type=int,
        help='Maximum number of fetches to dispatch'
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
        '--json-logs',
        action='store_true',
        help='Emit logs as JSON lines'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Crawl Frontier {__version__}'
    )

    return parser


def prepare_config(config_path: str, seeds: List[str]) -> Config:
    """Load the configuration file and merge command-line seeds into it."""
    config = load_config(config_path)
    for seed in seeds:
        if seed not in config.frontier.seed_urls:
            config.frontier.seed_urls.append(seed)
    validate_config(config)
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    try:
        config = prepare_config(args.config, args.seed)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 2

    setup_logging(config.logging, enable_json=True if args.json_logs else None)

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(
            config,
            max_pages=args.max_pages,
            max_duration=args.max_duration,
            dry_run=args.dry_run
        ))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
