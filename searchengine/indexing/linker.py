"""
Keyword linking: turns the zones of a parsed page into weighted keyword
associations.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlsplit

import tldextract
from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, ProcessingInstruction

from ..storage.index_store import IndexStore
from ..storage.models import Webpage
from .normalizer import TermNormalizer, tokenize_identifier, tokenize_text


META_ZONE_WEIGHTS = MappingProxyType({
    'domain': 48,
    'url': 20,
    'title': 24,
    'description': 8,
})

TAG_ZONE_WEIGHTS = MappingProxyType({
    'h1': 14, 'h2': 12, 'h3': 10, 'h4': 6, 'h5': 4, 'h6': 4,
    'p': 3, 'blockquote': 3, 'cite': 2,
    'strong': 4, 'mark': 4, 'u': 3, 'b': 3, 'span': 2,
})

PLAIN_TEXT_ZONE = 'plainText'

ZONE_WEIGHTS = MappingProxyType({**META_ZONE_WEIGHTS, **TAG_ZONE_WEIGHTS, PLAIN_TEXT_ZONE: 1})

_file_extension = re.compile(r'\.[^/]*$')
_non_text_strings = (Comment, Declaration, Doctype, ProcessingInstruction)
_tag_zone_names = list(TAG_ZONE_WEIGHTS)

# Offline: the bundled public suffix snapshot, no HTTP fetch and no disk cache
_extract_domain = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


@dataclass(frozen=True)
class ZoneTerms:
    """Normalized term counts of one zone, frozen once built."""
    zone: str
    weight: int
    counts: Mapping[str, int]

    def weights(self) -> Dict[str, int]:
        return {term: self.weight * count for term, count in self.counts.items()}


@dataclass
class LinkingReport:
    webpage_id: int
    zones_linked: int = 0
    associations_written: int = 0


def domain_label(url: str) -> str:
    """Registrable label of the host: ``docs.python.org`` -> ``python``."""
    host = urlsplit(url).hostname or ''
    extracted = _extract_domain(host)
    return extracted.domain or host


def url_path_text(url: str) -> str:
    """The path of a URL without a trailing file extension."""
    path = urlsplit(url).path
    return _file_extension.sub('', path)


class KeywordLinker:
    """
    Extracts every zone of a document and writes the weighted terms to the
    index store.
    """

    def __init__(self, index_store: IndexStore, normalizer: Optional[TermNormalizer] = None):
        self.index_store = index_store
        self.normalizer = normalizer or TermNormalizer()
        self.logger = logging.getLogger(__name__)

    async def link(self, soup: BeautifulSoup, webpage: Webpage) -> LinkingReport:
        """
        Link the keywords of ``soup`` to ``webpage``.

        Zone extraction runs in a worker thread; the per-zone writes then run
        concurrently against the store.
        """
        zones = await asyncio.to_thread(self.extract_zones, soup, webpage)
        report = LinkingReport(webpage_id=webpage.id)

        written = await asyncio.gather(*(
            self.index_store.link_keywords(webpage.id, zone.weights())
            for zone in zones if zone.counts
        ))
        report.zones_linked = len(written)
        report.associations_written = sum(written)
        self.logger.debug(
            f"Linked {report.associations_written} keywords in {report.zones_linked} zones to {webpage.url}"
        )
        return report

    def extract_zones(self, soup: BeautifulSoup, webpage: Webpage) -> List[ZoneTerms]:
        """
        Build the term counts of every zone.

        Removes ``<script>`` and ``<style>`` subtrees from ``soup``.
        """
        metadata = webpage.page_metadata
        zones = [
            self._zone('domain', tokenize_identifier(domain_label(webpage.url))),
            self._zone('url', tokenize_identifier(url_path_text(webpage.url))),
            self._zone('title', tokenize_text(metadata.title if metadata else None)),
            self._zone('description', tokenize_text(metadata.description if metadata else None)),
        ]

        for element in soup(['script', 'style']):
            element.decompose()

        for tag in TAG_ZONE_WEIGHTS:
            tokens = []
            for element in soup.find_all(tag):
                tokens.extend(tokenize_text(element.get_text()))
            zones.append(self._zone(tag, tokens))

        # Body text not already counted by one of the tag zones
        body = soup.body or soup
        tokens = []
        for string in body.find_all(string=True):
            if isinstance(string, _non_text_strings) or not string.strip():
                continue
            if string.find_parent(_tag_zone_names) is not None:
                continue
            tokens.extend(tokenize_text(string))
        zones.append(self._zone(PLAIN_TEXT_ZONE, tokens))

        return zones

    def _zone(self, zone: str, tokens: List[str]) -> ZoneTerms:
        counts = self.normalizer.count_terms(tokens)
        return ZoneTerms(zone=zone, weight=ZONE_WEIGHTS[zone], counts=MappingProxyType(counts))
