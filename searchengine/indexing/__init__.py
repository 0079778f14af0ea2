"""
Term normalization and keyword linking.
"""

from .normalizer import TermNormalizer, normalize
from .linker import KeywordLinker, ZONE_WEIGHTS

__all__ = ['TermNormalizer', 'normalize', 'KeywordLinker', 'ZONE_WEIGHTS']
