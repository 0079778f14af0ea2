"""
Ranked search over the keyword index.
"""

from .query_engine import QueryEngine, SearchResult, SearchResults

__all__ = ['QueryEngine', 'SearchResult', 'SearchResults']
