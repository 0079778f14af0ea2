#!/usr/bin/env python3
"""
Main entry point for the search engine: crawl, search, or write a config template.
"""

import asyncio
import argparse
import logging
import signal
import sys
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from searchengine import __version__
from searchengine.crawler.supervisor import CrawlSupervisor, parse_command
from searchengine.exceptions import ConfigurationError, InvalidQueryError, SearchEngineError
from searchengine.search.query_engine import RESULTS_PER_PAGE, QueryEngine
from searchengine.storage.database import DatabaseManager
from searchengine.utils.config import Config, load_config, write_default_config
from searchengine.utils.logger import setup_logging


class CrawlerApp:
    """Runs the crawl supervisor with an operator console on stdin."""

    def __init__(self):
        self.supervisor: Optional[CrawlSupervisor] = None
        self.logger = logging.getLogger(__name__)
        # Created in run(), on the loop asyncio.run() starts
        self._shutdown_event: Optional[asyncio.Event] = None
        self._lines: Optional[asyncio.Queue] = None

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
                # Windows event loops; Ctrl+C still raises KeyboardInterrupt
                pass

    def _start_stdin_reader(self):
        loop = asyncio.get_running_loop()

        def read_lines():
            for line in sys.stdin:
                loop.call_soon_threadsafe(self._lines.put_nowait, line)
            loop.call_soon_threadsafe(self._lines.put_nowait, None)

        # Daemon thread: a pending readline must not keep the process alive
        threading.Thread(target=read_lines, name='operator-console', daemon=True).start()

    async def _console(self):
        """Apply operator commands until `exit`."""
        self.logger.info("Commands: start N | stop N | stop all | exit")
        while True:
            line = await self._lines.get()
            if line is None:
                self.logger.info("Standard input closed, crawling until interrupted")
                await self._shutdown_event.wait()
                return
            if not line.strip():
                continue

            try:
                command = parse_command(line)
            except ValueError as e:
                self.logger.warning(str(e))
                continue

            try:
                if not await self.supervisor.execute(command):
                    return
            except ValueError as e:
                self.logger.warning(str(e))

    async def run(self, config: Config, crawlers: Optional[int] = None) -> int:
        """Run the crawlers until `exit` or a signal."""
        self._shutdown_event = asyncio.Event()
        self._lines = asyncio.Queue()
        self.setup_signal_handlers()

        try:
            self.logger.info("=== SEARCH ENGINE CRAWLER STARTING ===")
            self.logger.info(f"Bootstrap URL: {config.crawler.bootstrap_url}")
            self.logger.info(f"Database: {config.database.url}")

            self.supervisor = CrawlSupervisor(config)
            await self.supervisor.initialize()
            await self.supervisor.start_crawlers(crawlers or config.crawler.number_of_crawlers)

            self._start_stdin_reader()
            waiters = [
                asyncio.create_task(self._console()),
                asyncio.create_task(self._shutdown_event.wait()),
            ]
            if self.supervisor.restart_required:
                waiters.append(asyncio.create_task(self.supervisor.wait()))

            done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            for task in done:
                task.result()

            if self.supervisor.restart_required:
                self.logger.warning("Bootstrap crawl done. Restart the program to crawl with every crawler.")

        except SearchEngineError as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            if self.supervisor:
                await self.supervisor.close()
            self.logger.info("=== SEARCH ENGINE CRAWLER FINISHED ===")

        return 0


async def run_search(config: Config, phrase: str, page: int) -> int:
    """Print one page of results for ``phrase``."""
    database = DatabaseManager(config.database)
    await database.initialize()
    try:
        results = await QueryEngine(database).search(phrase, page)
    except InvalidQueryError as e:
        print(f"Invalid query: {e}")
        return 2
    finally:
        await database.close()

    print(f"About {results.total_results} results ({results.elapsed_time:.2f} seconds), "
          f"page {results.page} of {max(results.total_pages, 1)}")
    print()
    for position, result in enumerate(results.results, start=(page - 1) * RESULTS_PER_PAGE + 1):
        print(f"{position}. {result.title or result.url}")
        print(f"   {result.url}")
        if result.description:
            print(f"   {result.description}")
        print(f"   score: {result.score:g}")
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Keyword-indexing web crawler and search engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-config                  # Write config.yaml to fill in
  python main.py crawl                        # Crawl with config.yaml
  python main.py crawl --crawlers 8           # Override number_of_crawlers
  python main.py search "python tutorials"    # First page of results
  python main.py search "python" --page 2     # Second page
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Search Engine {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    crawl_parser = subparsers.add_parser('crawl', help='Run the crawlers with an operator console')
    crawl_parser.add_argument(
        '--crawlers',
        type=int,
        help='Number of crawlers to start (default: crawler.number_of_crawlers)'
    )

    search_parser = subparsers.add_parser('search', help='Query the index')
    search_parser.add_argument('phrase', help='Search phrase')
    search_parser.add_argument('--page', type=int, default=1, help='Results page (default: 1)')

    subparsers.add_parser('init-config', help='Write a configuration template')

    args = parser.parse_args()

    if args.command == 'init-config':
        try:
            path = write_default_config(args.config)
        except ConfigurationError as e:
            print(f"Error: {e}")
            return 1
        print(f"Created config at `{path}`. Please fill it in and start the crawler.")
        return 0

    if args.command == 'crawl' and not Path(args.config).exists():
        path = write_default_config(args.config)
        print(f"Created config at `{path}`. Please fill it in and restart the program.")
        return 1

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 1

    try:
        if args.command == 'search':
            logging.basicConfig(level=logging.WARNING)
            return asyncio.run(run_search(config, args.phrase, args.page))

        setup_logging(asdict(config.logging))
        return asyncio.run(CrawlerApp().run(config, args.crawlers))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1
    except SearchEngineError as e:
        print(f"Fatal error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
