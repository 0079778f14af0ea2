"""
URL Frontier: pending URLs grouped by domain, popped by weighted domain choice.
"""

import logging
import random
from typing import Dict, Iterable, Optional

from sqlalchemy import delete, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..storage.database import DatabaseManager
from ..storage.index_store import LOOKUP_CHUNK_SIZE, chunked, get_or_create_domain
from ..storage.models import DomainName, UrlRecord, Webpage
from .parser import normalize_url, url_host


BOOTSTRAP_PRIORITY = 1
# Chance of picking among priority-0 domains first
NORMAL_BUCKET_PROBABILITY = 0.5
MAX_POP_ATTEMPTS = 16


class URLFrontier:
    """
    Manages URLs waiting to be crawled.

    A pop first picks a domain: half of the time among the domains with
    priority 0, otherwise among prioritized ones, falling back to the other
    group when the chosen one has nothing pending. Any URL of that domain
    is then removed from the frontier and handed out.
    """

    def __init__(self, database: DatabaseManager, rng: Optional[random.Random] = None):
        self.database = database
        self.rng = rng or random.Random()
        self.logger = logging.getLogger(__name__)

    async def seed_if_empty(self, bootstrap_url: str) -> bool:
        """
        Queue the bootstrap URL when the frontier is empty.

        Returns:
            True if this is a first run (the frontier was seeded)
        """
        url = normalize_url(bootstrap_url)
        if url is None:
            raise ValueError(f"Not an http(s) URL: {bootstrap_url}")

        async def _seed(session: AsyncSession) -> bool:
            if await session.scalar(select(UrlRecord.id).limit(1)) is not None:
                return False
            if await session.scalar(select(Webpage.id).where(Webpage.url == url)) is not None:
                self.logger.warning(f"Frontier is empty and `{url}` is already indexed, nothing to seed")
                return False

            domain = await get_or_create_domain(session, url_host(url), priority=BOOTSTRAP_PRIORITY)
            session.add(UrlRecord(url=url, domain=domain))
            return True

        first_run = await self.database.transaction(_seed)
        if first_run:
            self.logger.info(f"No webpages found to crawl. Added the default one: {url}")
        return first_run

    async def pop_next(self) -> Optional[UrlRecord]:
        """
        Remove and return one pending URL, or None if the frontier is empty.
        """
        for _ in range(MAX_POP_ATTEMPTS):
            normal_first = self.rng.random() < NORMAL_BUCKET_PROBABILITY
            buckets = (False, True) if normal_first else (True, False)

            found_candidates = False
            for prioritized in buckets:
                domain_ids = await self._pending_domain_ids(prioritized)
                if not domain_ids:
                    continue
                found_candidates = True

                record = await self.database.transaction(self._claim, self.rng.choice(domain_ids))
                if record is not None:
                    self.logger.debug(f"Retrieved URL from frontier: {record.url}")
                    return record
                # Lost the race for that domain's last URL; pick again
                break

            if not found_candidates:
                return None

        return None

    async def _pending_domain_ids(self, prioritized: bool):
        condition = DomainName.priority != 0 if prioritized else DomainName.priority == 0
        async with self.database.session() as session:
            rows = await session.scalars(
                select(DomainName.id)
                .where(condition, exists().where(UrlRecord.domain_id == DomainName.id))
                .order_by(DomainName.id)
            )
            return list(rows)

    async def _claim(self, session: AsyncSession, domain_id: int) -> Optional[UrlRecord]:
        record = await session.scalar(
            select(UrlRecord)
            .options(selectinload(UrlRecord.domain))
            .where(UrlRecord.domain_id == domain_id)
            .limit(1)
        )
        if record is None:
            return None

        result = await session.execute(
            delete(UrlRecord)
            .where(UrlRecord.id == record.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return record

    async def enqueue_discovered(self, urls: Iterable[str], origin_url: Optional[str] = None) -> int:
        """
        Add newly discovered URLs to the frontier.

        URLs already pending or already indexed are skipped, and each new
        host gets its DomainName on first sight.

        Returns:
            Count of URLs added
        """
        candidates = []
        seen = set()
        for url in urls:
            normalized = normalize_url(url)
            if normalized and normalized not in seen:
                seen.add(normalized)
                candidates.append(normalized)

        if not candidates:
            return 0

        async def _enqueue(session: AsyncSession) -> int:
            known = set()
            for chunk in chunked(candidates, LOOKUP_CHUNK_SIZE):
                known.update(await session.scalars(select(UrlRecord.url).where(UrlRecord.url.in_(chunk))))
                known.update(await session.scalars(select(Webpage.url).where(Webpage.url.in_(chunk))))

            domains: Dict[str, DomainName] = {}
            added = 0
            for url in candidates:
                if url in known:
                    continue
                host = url_host(url)
                if host not in domains:
                    domains[host] = await get_or_create_domain(session, host)
                session.add(UrlRecord(url=url, domain=domains[host]))
                added += 1
            return added

        added = await self.database.transaction(_enqueue)
        if added:
            self.logger.debug(f"Queued {added} new URLs from {origin_url}")
        return added

    async def set_domain_priority(self, host: str, priority: int) -> DomainName:
        if priority < 0:
            raise ValueError("Domain priority must be non-negative")
        return await self.database.transaction(get_or_create_domain, host.lower(), priority)

    async def pending_count(self) -> int:
        async with self.database.session() as session:
            return await session.scalar(select(func.count()).select_from(UrlRecord))

    async def is_empty(self) -> bool:
        return await self.pending_count() == 0

    async def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        async with self.database.session() as session:
            total_queued = await session.scalar(select(func.count()).select_from(UrlRecord))
            domains_with_urls = await session.scalar(
                select(func.count(func.distinct(UrlRecord.domain_id)))
            )
            total_domains = await session.scalar(select(func.count()).select_from(DomainName))
        return {
            'total_queued': total_queued,
            'domains_with_urls': domains_with_urls,
            'total_domains': total_domains,
        }
