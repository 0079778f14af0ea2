"""
Web page parser for extracting metadata and links.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Set
from urllib.parse import unquote, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup, Comment

from ..exceptions import ParseError
from ..storage.models import URL_MAX_LENGTH, Metadata


DEFAULT_PORTS = {'http': 80, 'https': 443}
SKIPPED_EXTENSIONS = ('.js', '.css')
MIN_DESCRIPTION_PARAGRAPH_LENGTH = 16


def normalize_url(url: str) -> Optional[str]:
    """
    Reduce a URL to scheme, host, port, path and query, unescaped.

    Returns None for anything that is not an absolute http(s) URL.
    """
    try:
        parsed = urlsplit(url.strip())
        scheme = parsed.scheme.lower()
        host = parsed.hostname
        port = parsed.port
    except ValueError:
        return None

    if scheme not in DEFAULT_PORTS or not host:
        return None

    netloc = host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"

    path = unquote(parsed.path) or '/'
    query = unquote(parsed.query)
    return urlunsplit((scheme, netloc, path, query, ''))


def url_host(url: str) -> str:
    return (urlsplit(url).hostname or '').lower()


@dataclass
class ParsedPage:
    """A fetched page ready for indexing."""
    url: str
    soup: BeautifulSoup
    metadata: Metadata
    links: List[str]


class ContentParser:
    """
    Parses HTML content into a document tree, its metadata and its links.
    """

    def __init__(self, features: str = 'lxml'):
        self.features = features
        self.logger = logging.getLogger(__name__)

    def parse(self, url: str, html_content: Optional[str]) -> ParsedPage:
        """
        Parse HTML content and extract metadata and outgoing links.

        Args:
            url: The final (post-redirect) URL of the page
            html_content: Raw HTML content

        Returns:
            ParsedPage with the document tree, metadata and normalized links

        Raises:
            ParseError: the body is empty or not an HTML document
        """
        soup = self.parse_document(html_content)
        parsed = ParsedPage(
            url=url,
            soup=soup,
            metadata=self.extract_metadata(soup),
            links=self.extract_links(soup, url),
        )
        self.logger.debug(f"Parsed {url}: {len(parsed.links)} links")
        return parsed

    def parse_document(self, html_content: Optional[str]) -> BeautifulSoup:
        if not html_content or not html_content.strip():
            raise ParseError("Empty document")

        try:
            soup = BeautifulSoup(html_content, self.features)
        except Exception as e:
            raise ParseError(f"Malformed document: {e}") from e

        if soup.find(True) is None:
            raise ParseError("Document has no elements")

        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()
        return soup

    def extract_metadata(self, soup: BeautifulSoup) -> Metadata:
        """Title and description through their fallback chains."""
        title = None
        title_tag = soup.find('title')
        if title_tag:
            title = title_tag.get_text()
        if not title or not title.strip():
            title = self._meta_content(soup, name='title')
        if not title or not title.strip():
            title = self._meta_content(soup, property='og:site_name')

        description = self._meta_content(soup, name='description')
        if not description or not description.strip():
            description = self._meta_content(soup, property='og:description')
        if not description or not description.strip():
            description = next(
                (text for text in (p.get_text() for p in soup.find_all('p'))
                 if len(text) > MIN_DESCRIPTION_PARAGRAPH_LENGTH),
                None
            )

        return Metadata.create(title, description)

    def _meta_content(self, soup: BeautifulSoup, **attrs) -> Optional[str]:
        meta = soup.find('meta', attrs=attrs)
        if meta:
            return meta.get('content', '')
        return None

    def extract_links(self, soup: BeautifulSoup, base_url: str) -> List[str]:
        """Extract, resolve, filter and de-duplicate ``<a href>`` targets."""
        links: Set[str] = set()
        ordered: List[str] = []

        for link in soup.find_all('a', href=True):
            href = link['href'].strip()
            if not href or href.startswith('#'):
                continue

            normalized_url = normalize_url(urljoin(base_url, href))
            if not normalized_url or not self._is_valid_url(normalized_url):
                continue

            if normalized_url not in links:
                links.add(normalized_url)
                ordered.append(normalized_url)

        return ordered

    def _is_valid_url(self, url: str) -> bool:
        """Check if URL can be stored and is worth crawling."""
        if len(url) > URL_MAX_LENGTH:
            return False

        path = urlsplit(url).path.lower()
        return not path.endswith(SKIPPED_EXTENSIONS)
