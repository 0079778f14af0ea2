"""
Crawl worker: pops URLs, indexes pages and links their keywords in the
background, with a bound on how many linking tasks may be in flight.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Set

from ..exceptions import HTTPStatusError, ParseError, TransportError
from ..indexing.linker import KeywordLinker, LinkingReport
from ..storage.database import DatabaseManager
from ..storage.index_store import IndexStore
from ..storage.models import UrlRecord
from ..utils.config import CrawlerConfig
from ..utils.logger import CrawlerLogAdapter, get_crawler_logger
from ..utils.monitoring import CrawlerMonitor
from .fetcher import WebFetcher
from .parser import ContentParser, normalize_url, url_host
from .url_frontier import URLFrontier


class WorkerState(Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    DRAINING = 'draining'
    STOPPED = 'stopped'


@dataclass
class CrawlStats:
    """Statistics for crawl operations."""
    start_time: float = field(default_factory=time.time)
    urls_crawled: int = 0
    pages_indexed: int = 0
    urls_dropped: int = 0
    links_discovered: int = 0
    linking_failures: int = 0
    associations_written: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.pages_indexed / elapsed_minutes if elapsed_minutes > 0 else 0


class CrawlWorker:
    """
    One independent crawler.

    Workers share nothing in memory; the frontier and the index store are
    the only meeting points between them.
    """

    def __init__(self, worker_id: int, config: CrawlerConfig,
                 frontier: URLFrontier, index_store: IndexStore, linker: KeywordLinker,
                 fetcher: WebFetcher, parser: Optional[ContentParser] = None,
                 database: Optional[DatabaseManager] = None,
                 monitor: Optional[CrawlerMonitor] = None,
                 log: Optional[CrawlerLogAdapter] = None,
                 max_pages: Optional[int] = None, bounded_linking: bool = True):
        self.worker_id = worker_id
        self.config = config
        self.frontier = frontier
        self.index_store = index_store
        self.linker = linker
        self.fetcher = fetcher
        self.parser = parser or ContentParser()
        self.database = database
        self.monitor = monitor
        self.log = log or get_crawler_logger(__name__, crawler_id=worker_id)
        self.max_pages = max_pages
        # Unbounded linking lets a huge seed page be linked in full
        self.bounded_linking = bounded_linking

        self.state = WorkerState.IDLE
        self.stats = CrawlStats()
        self._in_flight: Set[asyncio.Task] = set()
        self._stop_requested = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def start(self):
        """Idle -> Running: begin the crawl loop."""
        if self.state is not WorkerState.IDLE:
            self.log.emit(logging.WARNING, f"Cannot start a {self.state.value} crawler")
            return

        self.log.emit(logging.INFO, "Starting the crawler...")
        self.state = WorkerState.RUNNING
        self.stats = CrawlStats()
        self._task = asyncio.create_task(self._run(), name=f"crawler-{self.worker_id}")

    async def stop(self):
        """Running -> Draining, then wait until the worker has stopped."""
        if self.state is WorkerState.RUNNING:
            self.log.emit(logging.INFO, "Stopping the crawler...")
            self.state = WorkerState.DRAINING
            self._stop_requested.set()
        await self.wait()

    async def wait(self):
        if self._task is not None:
            await asyncio.shield(self._task)

    async def _run(self):
        try:
            while self.state is WorkerState.RUNNING:
                try:
                    await self._step()
                except Exception as e:
                    self.log.emit(logging.ERROR, f"Unexpected error in crawl loop: {e}")
        finally:
            await self._drain()

    async def _step(self):
        if len(self._in_flight) >= self.config.max_in_flight_linking:
            await asyncio.wait(self._in_flight, return_when=asyncio.FIRST_COMPLETED)
            return

        record = await self.frontier.pop_next()
        if record is None:
            await self._idle()
            return

        await self.process(record)

        if self.max_pages is not None and self.stats.pages_indexed >= self.max_pages:
            self.log.emit(logging.INFO, f"Indexed {self.stats.pages_indexed} pages, the crawler is finishing")
            self.state = WorkerState.DRAINING

    async def _idle(self):
        """Wait for the frontier to refill, returning early on stop()."""
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=self.config.empty_frontier_delay)
        except asyncio.TimeoutError:
            pass

    async def process(self, record: UrlRecord) -> bool:
        """
        Crawl one popped URL. The record is already out of the frontier, so
        a URL that fails here is dropped for good.

        Returns:
            True if the page was indexed
        """
        result = await self.fetcher.fetch(record.url)
        self.stats.urls_crawled += 1
        if self.monitor:
            self.monitor.record_fetch(self.worker_id, result.fetch_time)

        try:
            result.raise_for_error()
        except TransportError as e:
            return self._drop('transport', str(e))
        except HTTPStatusError as e:
            return self._drop('http_status', str(e))

        url = normalize_url(result.final_url or record.url)
        if url is None:
            return self._drop('invalid_url', f"Final URL `{result.final_url}` is not crawlable")

        if await self.index_store.exists_in_index(url):
            self.log.emit(logging.DEBUG, f"`{url}` is already indexed")
            return self._drop('already_indexed')

        try:
            page = self.parser.parse(url, result.content)
        except ParseError as e:
            return self._drop('parse', f"Crawling `{url}` didn't finish successfully: {e}")

        webpage = await self.index_store.create_webpage(url, page.metadata, url_host(url))
        if webpage is None:
            return self._drop('already_indexed')
        self.stats.pages_indexed += 1
        if self.monitor:
            self.monitor.record_page_indexed(self.worker_id)

        added = await self.frontier.enqueue_discovered(page.links, url)
        self.stats.links_discovered += added
        if self.monitor:
            self.monitor.record_discovered(added)

        self._launch_linking(page.soup, webpage)
        self.log.emit(logging.INFO, f"Indexed `{url}` ({added} new links)")
        return True

    def _drop(self, reason: str, message: Optional[str] = None) -> bool:
        self.stats.urls_dropped += 1
        if self.monitor:
            self.monitor.record_dropped(reason)
        if message:
            self.log.emit(logging.WARNING, message)
        return False

    def _launch_linking(self, soup, webpage):
        timeout = self.config.linking_timeout if self.bounded_linking else None
        task = asyncio.create_task(
            asyncio.wait_for(self.linker.link(soup, webpage), timeout=timeout),
            name=f"link-{webpage.id}"
        )
        self._in_flight.add(task)
        if self.monitor:
            self.monitor.linking_in_flight.inc()
        task.add_done_callback(lambda done: self._linking_done(done, webpage.url))

    def _linking_done(self, task: asyncio.Task, url: str):
        self._in_flight.discard(task)
        if self.monitor:
            self.monitor.linking_in_flight.dec()

        if task.cancelled():
            self.stats.linking_failures += 1
            self.log.emit(logging.WARNING, f"Keyword linking of `{url}` was cancelled")
            return

        error = task.exception()
        if error is not None:
            self.stats.linking_failures += 1
            reason = 'timed out' if isinstance(error, asyncio.TimeoutError) else str(error)
            self.log.emit(logging.WARNING, f"Keyword linking of `{url}` didn't finish: {reason}")
            return

        report: LinkingReport = task.result()
        self.stats.associations_written += report.associations_written
        if self.monitor:
            self.monitor.record_associations(report.associations_written)

    async def _drain(self):
        """Draining -> Stopped: let in-flight linking finish, then flush."""
        if self.state is WorkerState.RUNNING:
            self.state = WorkerState.DRAINING

        if self._in_flight:
            self.log.emit(logging.INFO, f"Waiting for {len(self._in_flight)} keyword linking tasks...")
            await asyncio.gather(*self._in_flight, return_exceptions=True)

        if self.database is not None:
            try:
                await self.database.flush()
            except Exception as e:
                self.log.emit(logging.ERROR, f"Flushing the store failed: {e}")

        self.state = WorkerState.STOPPED
        self.log.emit(logging.INFO, "Finished crawling.")

    def get_stats(self) -> dict:
        return {
            'crawler_id': self.worker_id,
            'state': self.state.value,
            'urls_crawled': self.stats.urls_crawled,
            'pages_indexed': self.stats.pages_indexed,
            'urls_dropped': self.stats.urls_dropped,
            'links_discovered': self.stats.links_discovered,
            'associations_written': self.stats.associations_written,
            'linking_failures': self.stats.linking_failures,
            'linking_in_flight': len(self._in_flight),
            'pages_per_minute': self.stats.pages_per_minute,
        }
