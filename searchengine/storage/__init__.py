"""
Storage layer: the relational index and the frontier tables.
"""

from .database import DatabaseManager
from .index_store import IndexStore

__all__ = ['DatabaseManager', 'IndexStore']
