"""
Crawl supervisor that owns the shared components and starts or stops crawl
workers on request.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..indexing.linker import KeywordLinker
from ..indexing.normalizer import TermNormalizer
from ..storage.database import DatabaseManager
from ..storage.index_store import IndexStore
from ..utils.config import Config
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor
from .fetcher import WebFetcher
from .parser import ContentParser
from .url_frontier import URLFrontier
from .worker import CrawlWorker, WorkerState


@dataclass
class Command:
    """One operator console command."""
    action: str
    count: Optional[int] = None


def parse_command(line: str) -> Command:
    """
    Parse ``start N``, ``stop N``, ``stop all`` or ``exit``.

    Raises:
        ValueError: For anything else
    """
    parts = line.strip().lower().split()
    if parts == ['exit']:
        return Command('exit')

    if len(parts) != 2 or parts[0] not in ('start', 'stop'):
        raise ValueError(f"Unknown command: {line.strip()!r}")

    action, amount = parts
    if action == 'stop' and amount == 'all':
        return Command('stop')
    if not amount.isdigit() or int(amount) < 1:
        raise ValueError(f"Expected a positive number of crawlers, got {amount!r}")
    return Command(action, int(amount))


class CrawlSupervisor:
    """
    Creates crawl workers over one frontier, one index store and one fetcher.

    On the very first run the frontier only holds the bootstrap URL, so a
    single worker indexes that page and the supervisor asks for a restart
    once it is done.
    """

    def __init__(self, config: Config, database: Optional[DatabaseManager] = None,
                 fetcher: Optional[WebFetcher] = None, monitor: Optional[CrawlerMonitor] = None,
                 rng: Optional[random.Random] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.database = database or DatabaseManager(config.database)
        self.fetcher = fetcher or WebFetcher(
            user_agent=config.crawler.user_agent,
            request_timeout=config.crawler.request_timeout,
            max_content_size=config.crawler.max_content_size,
        )
        self.monitor = monitor or CrawlerMonitor()
        self.frontier = URLFrontier(self.database, rng)
        self.index_store = IndexStore(self.database)
        self.linker = KeywordLinker(self.index_store, TermNormalizer())
        self.parser = ContentParser()

        self.workers: List[CrawlWorker] = []
        self.first_run = False
        self.restart_required = False
        self._next_id = 1

    async def initialize(self):
        """Create the schema, seed the frontier and open the HTTP session."""
        await self.database.initialize()
        self.first_run = await self.frontier.seed_if_empty(self.config.crawler.bootstrap_url)
        await self.fetcher.start()

        if self.config.monitoring.metrics_enabled:
            self.monitor.start_server(self.config.monitoring.prometheus_port)

        self.logger.info("Crawl supervisor initialized")

    async def start_crawlers(self, count: int) -> List[CrawlWorker]:
        """
        Start ``count`` new workers.

        Returns:
            The workers that were started
        """
        if count < 1:
            raise ValueError("Number of crawlers must be positive")

        if self.restart_required:
            self.logger.warning("The bootstrap crawl already ran. Restart the program to crawl further.")
            return []

        max_pages = None
        bounded_linking = True
        if self.first_run:
            count, max_pages, bounded_linking = 1, 1, False
            self.restart_required = True
            self.logger.warning(
                "First run: a single crawler will index the bootstrap page. "
                "Restart the program after the crawler finishes."
            )

        started = []
        for _ in range(count):
            worker = self._create_worker(max_pages, bounded_linking)
            await worker.start()
            started.append(worker)

        self.workers.extend(started)
        self.logger.info(f"Started {len(started)} crawlers ({len(self.running_workers)} running)")
        return started

    def _create_worker(self, max_pages: Optional[int], bounded_linking: bool = True) -> CrawlWorker:
        worker_id = self._next_id
        self._next_id += 1
        return CrawlWorker(
            worker_id=worker_id,
            config=self.config.crawler,
            frontier=self.frontier,
            index_store=self.index_store,
            linker=self.linker,
            fetcher=self.fetcher,
            parser=self.parser,
            database=self.database,
            monitor=self.monitor,
            log=get_crawler_logger('searchengine.crawler', crawler_id=worker_id),
            max_pages=max_pages,
            bounded_linking=bounded_linking,
        )

    @property
    def running_workers(self) -> List[CrawlWorker]:
        return [worker for worker in self.workers if worker.state is WorkerState.RUNNING]

    async def stop_crawlers(self, count: Optional[int] = None) -> int:
        """
        Stop ``count`` running workers, or all of them when ``count`` is None,
        and wait for them to drain.

        Returns:
            Number of workers stopped
        """
        running = self.running_workers
        if count is not None:
            running = running[:count]
        if not running:
            return 0

        await asyncio.gather(*(worker.stop() for worker in running))
        self._forget_stopped()
        self.logger.info(f"Stopped {len(running)} crawlers ({len(self.running_workers)} running)")
        return len(running)

    def _forget_stopped(self):
        self.workers = [worker for worker in self.workers if worker.state is not WorkerState.STOPPED]

    async def wait(self):
        """Wait until every worker has stopped on its own or been stopped."""
        if self.workers:
            await asyncio.gather(*(worker.wait() for worker in self.workers))
        self._forget_stopped()

    async def execute(self, command: Command) -> bool:
        """
        Run an operator command.

        Returns:
            False once the operator asked to exit
        """
        if command.action == 'start':
            await self.start_crawlers(command.count)
        elif command.action == 'stop':
            stopped = await self.stop_crawlers(command.count)
            if not stopped:
                self.logger.info("No running crawlers to stop")
        elif command.action == 'exit':
            return False
        return True

    async def close(self):
        """Stop every worker and release the HTTP session and the database."""
        try:
            await self.stop_crawlers()
            await self.wait()
        finally:
            await self.fetcher.close()
            await self.database.close()
            self.logger.info("Crawl supervisor closed")

    async def get_stats(self) -> Dict:
        """Get current crawl statistics."""
        workers = [worker.get_stats() for worker in self.workers]
        return {
            'running_crawlers': len(self.running_workers),
            'first_run': self.first_run,
            'restart_required': self.restart_required,
            'pages_indexed': sum(stats['pages_indexed'] for stats in workers),
            'urls_dropped': sum(stats['urls_dropped'] for stats in workers),
            'workers': workers,
            'frontier': await self.frontier.get_stats(),
            'fetcher': self.fetcher.get_stats(),
        }
