"""
Exception hierarchy for the search engine.
"""


class SearchEngineError(Exception):
    """Base class for all search engine errors."""
    pass


class ConfigurationError(SearchEngineError):
    """Startup configuration is missing or invalid."""
    pass


class TransportError(SearchEngineError):
    """A fetch failed before an HTTP response was received."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Getting `{url}` didn't succeed: {reason}")
        self.url = url
        self.reason = reason


class HTTPStatusError(SearchEngineError):
    """The final response of a fetch had a non-success status code."""

    def __init__(self, url: str, status_code: int):
        super().__init__(f"Getting `{url}` didn't succeed. Status code: {status_code}")
        self.url = url
        self.status_code = status_code


class ParseError(SearchEngineError):
    """A response body could not be parsed as an HTML document."""
    pass


class DatabaseError(SearchEngineError):
    """Custom exception for database operations."""
    pass


class StoreContentionError(DatabaseError):
    """A write kept conflicting with concurrent writers until retries ran out."""
    pass


class InvalidQueryError(SearchEngineError):
    """The search phrase or page number cannot be searched."""
    pass
