"""Tests for searchengine.indexing.linker."""

from searchengine.crawler.parser import ContentParser, url_host
from searchengine.indexing.linker import (
    PLAIN_TEXT_ZONE,
    ZONE_WEIGHTS,
    KeywordLinker,
    domain_label,
    url_path_text,
)
from searchengine.storage.models import Metadata, Webpage

parser = ContentParser()

WIDGETS_HTML = """
<html>
  <head><title>Widgets Widgets</title></head>
  <body><h1>Widgets</h1></body>
</html>
"""


async def _index(index_store, url, html):
    page = parser.parse(url, html)
    webpage = await index_store.create_webpage(url, page.metadata, url_host(url))
    return page, webpage


class TestZoneHelpers:
    def test_domain_label_is_the_registrable_name(self):
        assert domain_label("https://docs.python.org/3/") == "python"
        assert domain_label("https://www.bbc.co.uk/news") == "bbc"

    def test_url_path_text_drops_extension(self):
        assert url_path_text("https://example.com/docs/intro.html") == "/docs/intro"
        assert url_path_text("https://example.com/docs/") == "/docs/"

    def test_weights(self):
        assert ZONE_WEIGHTS["domain"] == 48
        assert ZONE_WEIGHTS["title"] == 24
        assert ZONE_WEIGHTS["h1"] == 14
        assert ZONE_WEIGHTS[PLAIN_TEXT_ZONE] == 1
        assert len(ZONE_WEIGHTS) == 19


class TestExtractZones:
    def _zones(self, url, html, title=None, description=None):
        linker = KeywordLinker(index_store=None)
        webpage = Webpage(url=url)
        webpage.page_metadata = Metadata.create(title, description)
        soup = parser.parse_document(html)
        return {zone.zone: zone for zone in linker.extract_zones(soup, webpage)}

    def test_meta_zones(self):
        zones = self._zones(
            "https://shop.example.com/widgets/blue-widget.php",
            "<html><body></body></html>",
            title="Blue widgets",
            description="Buy widgets",
        )
        assert dict(zones["domain"].counts) == {"exampl": 1}
        assert dict(zones["url"].counts) == {"widget": 2, "blue": 1}
        assert dict(zones["title"].counts) == {"blue": 1, "widget": 1}
        assert dict(zones["description"].counts) == {"bui": 1, "widget": 1}

    def test_script_and_style_removed(self):
        zones = self._zones("https://example.com/", """
            <html><body>
              <div>alpha <script>var beta = 1;</script><style>.gamma {}</style></div>
            </body></html>
        """)
        assert dict(zones[PLAIN_TEXT_ZONE].counts) == {"alpha": 1}

    def test_plain_text_skips_weighted_tags(self):
        zones = self._zones("https://example.com/", """
            <html><body>
              <h2>Heading words</h2>
              <p>Paragraph <strong>bold</strong></p>
              <div>loose text</div>
            </body></html>
        """)
        assert dict(zones["h2"].counts) == {"head": 1, "word": 1}
        assert dict(zones["p"].counts) == {"paragraph": 1, "bold": 1}
        assert dict(zones["strong"].counts) == {"bold": 1}
        assert dict(zones[PLAIN_TEXT_ZONE].counts) == {"loos": 1, "text": 1}

    def test_zone_weights_multiply_counts(self):
        zones = self._zones("https://example.com/", "<html><body></body></html>", title="Widgets Widgets")
        assert zones["title"].weights() == {"widget": 48}


class TestLink:
    async def test_title_and_h1_accumulate_on_one_association(self, index_store):
        page, webpage = await _index(index_store, "https://example.com/", WIDGETS_HTML)

        report = await KeywordLinker(index_store).link(page.soup, webpage)

        record = await index_store.get_association("widget", webpage.id)
        assert record.score == 24 * 2 + 14 * 1
        assert report.webpage_id == webpage.id
        assert report.associations_written >= 2

    async def test_domain_keyword_linked(self, index_store):
        page, webpage = await _index(index_store, "https://example.com/", WIDGETS_HTML)
        await KeywordLinker(index_store).link(page.soup, webpage)

        record = await index_store.get_association("exampl", webpage.id)
        assert record.score == 48

    async def test_linking_twice_doubles_scores(self, index_store):
        page, webpage = await _index(index_store, "https://example.com/", WIDGETS_HTML)
        linker = KeywordLinker(index_store)
        await linker.link(page.soup, webpage)
        await linker.link(page.soup, webpage)

        record = await index_store.get_association("widget", webpage.id)
        assert record.score == 124
