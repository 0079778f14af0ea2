"""
Web page fetcher: one shared aiohttp session for all crawl workers.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

import aiohttp
from aiohttp import ClientError, ClientSession, ClientTimeout

from ..exceptions import HTTPStatusError, TransportError


MAX_REDIRECTS = 10

DEFAULT_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Encoding': 'gzip, deflate',
    'Accept-Language': 'en-US, en-UK',
    'Accept-Charset': 'utf-16, utf-8',
    'Cache-Control': 'no-cache',
}


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    final_url: Optional[str] = None
    content: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    error: Optional[str] = None
    fetch_time: float = 0.0
    content_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status_code < 300

    def raise_for_error(self):
        """Raise TransportError or HTTPStatusError for a failed fetch."""
        if self.error is not None:
            raise TransportError(self.url, self.error)
        if not 200 <= self.status_code < 300:
            raise HTTPStatusError(self.final_url or self.url, self.status_code)


class WebFetcher:
    """
    Fetches web pages following redirects, with a size limit and error handling.
    """

    def __init__(self, user_agent: str, request_timeout: int = 30,
                 max_content_size: int = 10 * 1024 * 1024, max_connections: int = 100):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_content_size = max_content_size
        self.max_connections = max_connections

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': f"Mozilla/5.0 (compatible; {self.user_agent})", **DEFAULT_HEADERS}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_connections,
                    limit_per_host=10,
                    ttl_dns_cache=300,
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str) -> FetchResult:
        """
        GET ``url``, following up to ``MAX_REDIRECTS`` redirects.

        Never raises for network or HTTP problems: a failed fetch comes back
        with ``error`` set (transport level) or a non-2xx ``status_code``.
        Call ``FetchResult.raise_for_error()`` to turn either into an exception.
        """
        if self.session is None:
            await self.start()

        started = time.time()
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url, allow_redirects=True, max_redirects=MAX_REDIRECTS) as response:
                result = FetchResult(
                    url=url,
                    status_code=response.status,
                    final_url=str(response.url),
                    headers=dict(response.headers),
                    content_type=response.headers.get('content-type', '').lower(),
                )

                if 200 <= response.status < 300:
                    if not self._is_html_content(result.content_type):
                        result.error = f"Non-HTML content type: {result.content_type}"
                    else:
                        result.content = await self._read_content_safely(response)
                        if result.content is None:
                            result.error = f"Content exceeds {self.max_content_size} bytes"

        except asyncio.TimeoutError:
            result = FetchResult(url=url, status_code=0, error="Request timeout")
        except aiohttp.TooManyRedirects:
            result = FetchResult(url=url, status_code=0, error=f"More than {MAX_REDIRECTS} redirects")
        except (ClientError, ValueError) as e:
            result = FetchResult(url=url, status_code=0, error=f"Client error: {e}")

        result.fetch_time = time.time() - started
        if result.ok:
            self.stats['successful_requests'] += 1
            self.stats['total_bytes_downloaded'] += len(result.content)
            self.logger.debug(f"Fetched {url}: {result.status_code} ({len(result.content)} chars)")
        else:
            self.stats['failed_requests'] += 1
        return result

    def _is_html_content(self, content_type: str) -> bool:
        # Servers that omit the header usually serve HTML
        if not content_type:
            return True
        return any(kind in content_type for kind in ('text/html', 'application/xhtml+xml', 'text/plain'))

    async def _read_content_safely(self, response) -> Optional[str]:
        """
        Read the body with a size limit.

        Returns:
            Decoded content, or None if it is larger than ``max_content_size``
        """
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_size:
            self.logger.debug(f"Content too large ({content_length} bytes): {response.url}")
            return None

        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(8192):
            size += len(chunk)
            if size > self.max_content_size:
                self.logger.debug(f"Content exceeded size limit during reading: {response.url}")
                return None
            chunks.append(chunk)
        content_bytes = b''.join(chunks)

        encoding = response.charset or 'utf-8'
        try:
            return content_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            for fallback_encoding in ('utf-8', 'cp1252'):
                try:
                    return content_bytes.decode(fallback_encoding)
                except UnicodeDecodeError:
                    continue
            return content_bytes.decode('utf-8', errors='ignore')

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
