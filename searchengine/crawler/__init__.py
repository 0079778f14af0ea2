"""
Web crawler core components.
"""

from .fetcher import WebFetcher, FetchResult
from .parser import ContentParser, ParsedPage, normalize_url
from .url_frontier import URLFrontier
from .worker import CrawlWorker, WorkerState
from .supervisor import CrawlSupervisor, parse_command

__all__ = [
    'WebFetcher', 'FetchResult',
    'ContentParser', 'ParsedPage', 'normalize_url',
    'URLFrontier',
    'CrawlWorker', 'WorkerState',
    'CrawlSupervisor', 'parse_command'
]
