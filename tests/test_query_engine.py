"""Tests for searchengine.search.query_engine."""

import pytest

from searchengine.crawler.parser import ContentParser
from searchengine.exceptions import InvalidQueryError
from searchengine.indexing.linker import KeywordLinker
from searchengine.indexing.normalizer import TermNormalizer
from searchengine.search.query_engine import EXACT_MATCH_RATIO, RESULTS_PER_PAGE, QueryEngine
from searchengine.storage.models import Metadata


class CasePreservingNormalizer(TermNormalizer):
    """Leaves root forms untouched so capitalized terms reach the store."""

    def stem(self, word):
        return word


async def _page_with_score(index_store, n, root, score):
    webpage = await index_store.create_webpage(
        f"https://site{n}.example/", Metadata.create(f"Page {n}", None), f"site{n}.example"
    )
    await index_store.link_keywords(webpage.id, {root: score})
    return webpage


class TestValidation:
    @pytest.mark.parametrize("phrase", ["", "   ", None])
    async def test_empty_phrase(self, database, phrase):
        with pytest.raises(InvalidQueryError):
            await QueryEngine(database).search(phrase)

    async def test_page_below_one(self, database):
        with pytest.raises(InvalidQueryError):
            await QueryEngine(database).search("widget", page=0)

    async def test_no_terms_after_normalization(self, database):
        with pytest.raises(InvalidQueryError):
            await QueryEngine(database).search("'' '''")


class TestSearch:
    async def test_indexed_page_found_with_exact_match_ratio(self, database, index_store):
        url = "https://example.com/"
        page = ContentParser().parse(
            url, "<html><head><title>Widgets Widgets</title></head><body><h1>Widgets</h1></body></html>"
        )
        webpage = await index_store.create_webpage(url, page.metadata, "example.com")
        await KeywordLinker(index_store).link(page.soup, webpage)

        results = await QueryEngine(database, index_store).search("widget")

        assert results.total_results == 1
        assert results.page == 1
        assert results.elapsed_time >= 0
        [result] = results.results
        assert result.url == url
        assert result.title == "Widgets Widgets"
        assert result.score == 62 * EXACT_MATCH_RATIO

    async def test_query_terms_are_normalized(self, database, index_store):
        await _page_with_score(index_store, 1, "widget", 10)
        results = await QueryEngine(database, index_store).search("WIDGETS")
        assert [r.score for r in results.results] == [20.0]

    async def test_scores_sum_over_terms(self, database, index_store):
        webpage = await _page_with_score(index_store, 1, "widget", 10)
        await index_store.link_keywords(webpage.id, {"blue": 5})
        await _page_with_score(index_store, 2, "blue", 40)

        results = await QueryEngine(database, index_store).search("blue widgets")

        assert [r.url for r in results.results] == ["https://site2.example/", "https://site1.example/"]
        assert [r.score for r in results.results] == [80.0, 30.0]

    async def test_no_match(self, database, index_store):
        await _page_with_score(index_store, 1, "widget", 10)
        results = await QueryEngine(database, index_store).search("gadget")
        assert results.total_results == 0
        assert results.results == []

    async def test_pagination(self, database, index_store):
        for n in range(20):
            await _page_with_score(index_store, n, "widget", n + 1)
        engine = QueryEngine(database, index_store)

        first = await engine.search("widget", page=1)
        second = await engine.search("widget", page=2)
        third = await engine.search("widget", page=3)

        assert first.total_results == second.total_results == 20
        assert first.total_pages == 2
        assert len(first.results) == RESULTS_PER_PAGE
        assert len(second.results) == 5
        assert third.results == []

        scores = [r.score for r in first.results + second.results]
        assert scores == sorted(scores, reverse=True)
        assert scores[0] == 40.0
        assert scores[-1] == 2.0

    async def test_ties_ordered_by_webpage_id(self, database, index_store):
        pages = [await _page_with_score(index_store, n, "widget", 5) for n in range(3)]
        results = await QueryEngine(database, index_store).search("widget")
        assert [r.url for r in results.results] == [page.url for page in pages]

    async def test_lowercase_variant_counts_once(self, database, index_store):
        normalizer = CasePreservingNormalizer()
        upper = await _page_with_score(index_store, 1, "Apple", 5)
        lower = await _page_with_score(index_store, 2, "apple", 7)

        results = await QueryEngine(database, index_store, normalizer).search("Apple")

        scores = {r.url: r.score for r in results.results}
        assert scores == {upper.url: 10.0, lower.url: 7.0}
        assert results.total_results == 2
