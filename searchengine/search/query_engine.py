"""
Query engine: ranks indexed webpages for a search phrase.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy import func, select

from ..exceptions import InvalidQueryError
from ..indexing.normalizer import TermNormalizer, tokenize_query
from ..storage.database import DatabaseManager
from ..storage.index_store import IndexStore
from ..storage.models import Keyword, KeywordWebpageRecord


RESULTS_PER_PAGE = 15
EXACT_MATCH_RATIO = 2.0


@dataclass
class SearchResult:
    url: str
    title: Optional[str]
    description: Optional[str]
    score: float


@dataclass
class SearchResults:
    """One page of ranked results."""
    total_results: int
    elapsed_time: float
    page: int
    results: List[SearchResult] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return (self.total_results + RESULTS_PER_PAGE - 1) // RESULTS_PER_PAGE


class QueryEngine:
    """
    Sums association scores per webpage for the normalized query terms.

    Exact matches on the root form count double; lowercased variants of
    terms that carry capitals count once.
    """

    def __init__(self, database: DatabaseManager, index_store: Optional[IndexStore] = None,
                 normalizer: Optional[TermNormalizer] = None):
        self.database = database
        self.index_store = index_store or IndexStore(database)
        self.normalizer = normalizer or TermNormalizer()
        self.logger = logging.getLogger(__name__)

    async def search(self, phrase: str, page: int = 1) -> SearchResults:
        """
        Search the index.

        Args:
            phrase: Raw query, split on whitespace
            page: 1-based page number

        Raises:
            InvalidQueryError: Empty phrase, no usable terms, or page < 1
        """
        if not phrase or not phrase.strip():
            raise InvalidQueryError("Query is empty")
        if page < 1:
            raise InvalidQueryError(f"Page must be 1 or greater, got {page}")

        start_time = time.perf_counter()

        terms = self.normalizer.normalize(tokenize_query(phrase))
        if not terms:
            raise InvalidQueryError(f"Query {phrase!r} has no searchable terms")
        lower_terms = list(dict.fromkeys(term.lower() for term in terms if term != term.lower()))

        scores: Dict[int, float] = {}
        for webpage_id, total in await self._score_by_webpage(terms):
            scores[webpage_id] = scores.get(webpage_id, 0.0) + total * EXACT_MATCH_RATIO
        if lower_terms:
            for webpage_id, total in await self._score_by_webpage(lower_terms):
                scores[webpage_id] = scores.get(webpage_id, 0.0) + float(total)

        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        offset = (page - 1) * RESULTS_PER_PAGE
        selected = ranked[offset:offset + RESULTS_PER_PAGE]

        webpages = await self.index_store.get_webpages(webpage_id for webpage_id, _ in selected)
        results = []
        for webpage_id, score in selected:
            webpage = webpages.get(webpage_id)
            if webpage is None:
                continue
            metadata = webpage.page_metadata
            results.append(SearchResult(
                url=webpage.url,
                title=metadata.title if metadata else None,
                description=metadata.description if metadata else None,
                score=score,
            ))

        elapsed = time.perf_counter() - start_time
        self.logger.debug(f"Query {terms} matched {len(ranked)} webpages in {elapsed:.3f}s")
        return SearchResults(total_results=len(ranked), elapsed_time=elapsed, page=page, results=results)

    async def _score_by_webpage(self, terms: List[str]):
        async with self.database.session() as session:
            rows = await session.execute(
                select(KeywordWebpageRecord.webpage_id, func.sum(KeywordWebpageRecord.score))
                .join(Keyword, Keyword.id == KeywordWebpageRecord.keyword_id)
                .where(Keyword.root_keyword_form.in_(terms))
                .group_by(KeywordWebpageRecord.webpage_id)
            )
            return rows.all()
