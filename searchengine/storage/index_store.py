"""
Index store: webpages, keywords and their scored associations.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .database import DatabaseManager
from .models import DomainName, Keyword, KeywordWebpageRecord, Metadata, UrlRecord, Webpage


# Keeps IN (...) lists below SQLite's bound-parameter limit
LOOKUP_CHUNK_SIZE = 500


async def get_or_create_domain(session: AsyncSession, host: str,
                               priority: Optional[int] = None) -> DomainName:
    """Find a domain by host or add it; ``priority`` is applied when given."""
    domain = await session.scalar(select(DomainName).where(DomainName.domain == host))
    if domain is None:
        domain = DomainName(domain=host, priority=priority or 0)
        session.add(domain)
        await session.flush()
    elif priority is not None and domain.priority != priority:
        domain.priority = priority
    return domain


async def get_or_create_keyword(session: AsyncSession, root_form: str) -> Keyword:
    keyword = await session.scalar(select(Keyword).where(Keyword.root_keyword_form == root_form))
    if keyword is None:
        keyword = Keyword(root_keyword_form=root_form)
        session.add(keyword)
        await session.flush()
    return keyword


async def upsert_association(session: AsyncSession, keyword_id: int, webpage_id: int, delta: int):
    """Add ``delta`` to an existing score, or create the association with it."""
    result = await session.execute(
        update(KeywordWebpageRecord)
        .where(
            KeywordWebpageRecord.keyword_id == keyword_id,
            KeywordWebpageRecord.webpage_id == webpage_id,
        )
        .values(score=KeywordWebpageRecord.score + delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.add(KeywordWebpageRecord(keyword_id=keyword_id, webpage_id=webpage_id, score=delta))
        await session.flush()


def chunked(items: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class IndexStore:
    """Atomic index operations on top of ``DatabaseManager``."""

    def __init__(self, database: DatabaseManager):
        self.database = database
        self.logger = logging.getLogger(__name__)

    async def exists_in_index(self, url: str) -> bool:
        async with self.database.session() as session:
            found = await session.scalar(select(Webpage.id).where(Webpage.url == url))
        return found is not None

    async def create_webpage(self, url: str, metadata: Optional[Metadata], domain: str) -> Optional[Webpage]:
        """
        Add a webpage to the index.

        Returns None when the URL was indexed by someone else in the
        meantime. A pending frontier entry for the same URL is removed in
        the same transaction.
        """
        title = metadata.title if metadata is not None else None
        description = metadata.description if metadata is not None else None

        async def _create(session: AsyncSession) -> Optional[Webpage]:
            if await session.scalar(select(Webpage.id).where(Webpage.url == url)) is not None:
                return None

            domain_name = await get_or_create_domain(session, domain)
            webpage = Webpage(url=url, domain=domain_name)
            # Always assigned, so it can be read after the session is gone
            webpage.page_metadata = (
                Metadata(title=title, description=description)
                if title is not None or description is not None else None
            )
            session.add(webpage)
            await session.execute(delete(UrlRecord).where(UrlRecord.url == url))
            await session.flush()
            return webpage

        webpage = await self.database.transaction(_create)
        if webpage is None:
            self.logger.debug(f"`{url}` was indexed concurrently, skipping")
        return webpage

    async def get_or_create_domain(self, host: str) -> DomainName:
        return await self.database.transaction(get_or_create_domain, host)

    async def get_or_create_keyword(self, root_form: str) -> Keyword:
        return await self.database.transaction(get_or_create_keyword, root_form)

    async def upsert_association(self, keyword: Union[Keyword, int], webpage: Union[Webpage, int], delta: int):
        if delta < 0:
            raise ValueError("Association scores never decrease")
        if delta == 0:
            return
        keyword_id = keyword.id if isinstance(keyword, Keyword) else keyword
        webpage_id = webpage.id if isinstance(webpage, Webpage) else webpage
        await self.database.transaction(upsert_association, keyword_id, webpage_id, delta)

    async def link_keywords(self, webpage_id: int, weights: Mapping[str, int]) -> int:
        """
        Upsert one association per term in a single transaction.

        Args:
            webpage_id: The webpage the terms were found on
            weights: Root form -> score increment

        Returns:
            Number of associations written
        """
        increments = {term: delta for term, delta in weights.items() if delta > 0}
        if not increments:
            return 0

        async def _link(session: AsyncSession) -> int:
            keyword_ids = await self._keyword_ids(session, list(increments))
            for term, delta in increments.items():
                await upsert_association(session, keyword_ids[term], webpage_id, delta)
            return len(increments)

        return await self.database.transaction(_link)

    async def _keyword_ids(self, session: AsyncSession, terms: List[str]) -> Dict[str, int]:
        ids: Dict[str, int] = {}
        for chunk in chunked(terms, LOOKUP_CHUNK_SIZE):
            rows = await session.execute(
                select(Keyword.root_keyword_form, Keyword.id).where(Keyword.root_keyword_form.in_(chunk))
            )
            ids.update({root: keyword_id for root, keyword_id in rows})

        missing = [term for term in terms if term not in ids]
        if missing:
            keywords = [Keyword(root_keyword_form=term) for term in missing]
            session.add_all(keywords)
            await session.flush()
            ids.update({keyword.root_keyword_form: keyword.id for keyword in keywords})
        return ids

    async def get_webpages(self, ids: Iterable[int]) -> Dict[int, Webpage]:
        """Webpages by id, with their metadata loaded."""
        ids = list(ids)
        if not ids:
            return {}
        async with self.database.session() as session:
            rows = await session.scalars(
                select(Webpage).options(selectinload(Webpage.page_metadata)).where(Webpage.id.in_(ids))
            )
            return {webpage.id: webpage for webpage in rows}

    async def get_association(self, root_form: str, webpage_id: int) -> Optional[KeywordWebpageRecord]:
        async with self.database.session() as session:
            return await session.scalar(
                select(KeywordWebpageRecord)
                .join(Keyword)
                .where(Keyword.root_keyword_form == root_form, KeywordWebpageRecord.webpage_id == webpage_id)
            )
