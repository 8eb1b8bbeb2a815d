#!/usr/bin/env python3
"""
Main entry point for the crawl-and-index service.
"""

import asyncio
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from crawlindex import __version__
from crawlindex.utils.config import load_config, Config
from crawlindex.utils.logger import setup_logging
from crawlindex.utils.monitoring import initialize_monitoring
from crawlindex.service import SearcherService, SearcherClient, ResponseStatus, run_server


class ServiceApp:
    """Main application class for the searcher service."""

    def __init__(self):
        self.service: Optional[SearcherService] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event = asyncio.Event()

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
                signal.signal(signum, lambda s, frame: signal_handler(s))

    async def serve(self, config: Config) -> int:
        """Run the service until a shutdown signal arrives."""
        setup_logging(config.logging)
        self.setup_signal_handlers()

        self.logger.info("=== CRAWLINDEX SERVICE STARTING ===")
        self.logger.info(f"Index path: {config.index.path}")
        self.logger.info(f"Workers per crawl: {config.crawler.max_workers}")
        self.logger.info(f"Respect robots.txt: {config.crawler.respect_robots_txt}")

        try:
            self.service = await SearcherService.create(
                config, initialize_monitoring(config.monitoring.metrics_enabled)
            )

            server_task = asyncio.create_task(
                run_server(self.service, config.service.host, config.service.port)
            )
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            done, pending = await asyncio.wait(
                [server_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            if server_task in done:
                server_task.result()

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            self.logger.info("=== CRAWLINDEX SERVICE STOPPED ===")

        return 0


async def run_index(base_url: str, origin: str, k: int) -> int:
    async with SearcherClient(base_url) as client:
        response = await client.index(origin, k)
    if response.status is ResponseStatus.OK:
        print(f"Successfully indexed {origin}")
        if response.message:
            print(response.message)
        return 0
    print(f"Failed to index {origin}. Error: {response.message}")
    return 1


async def run_search(base_url: str, query: str) -> int:
    async with SearcherClient(base_url) as client:
        response = await client.search(query)
    if response.status is not ResponseStatus.OK:
        print(f"Query {query} failed. Error: {response.message}")
        return 1
    print(f"Query {query} returned {len(response.results)} result(s):")
    for result in response.results:
        print(f"relevant URL: {result.relevant_url}, origin URL: {result.origin_url}, depth: {result.depth}")
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Crawl-and-index service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve                              # Run the service with config.yaml
  python main.py --config my_config.yaml serve      # Run with a custom config
  python main.py index https://www.example.com 2    # Crawl and index two hops deep
  python main.py search "example domain"            # Query the index
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--server',
        help='Base URL of a running service (default: derived from the config)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'crawlindex {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)
    subparsers.add_parser('serve', help='Run the searcher service')

    index_parser = subparsers.add_parser('index', help='Crawl and index an origin URL')
    index_parser.add_argument('origin', help='URL to start crawling from')
    index_parser.add_argument('k', type=int, help='Number of link hops to follow')

    search_parser = subparsers.add_parser('search', help='Search the index')
    search_parser.add_argument('query', help='Free-text query')

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    try:
        config = load_config(args.config)
    except (ValueError, OSError) as e:
        print(f"Invalid configuration: {e}")
        return 1

    base_url = args.server or f"http://{config.service.host}:{config.service.port}"

    try:
        if args.command == 'serve':
            return asyncio.run(ServiceApp().serve(config))
        if args.command == 'index':
            return asyncio.run(run_index(base_url, args.origin, args.k))
        return asyncio.run(run_search(base_url, args.query))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1
    except Exception as e:
        print(f"Fatal error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
