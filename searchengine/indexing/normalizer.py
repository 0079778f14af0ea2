"""
Term normalization shared by the indexer and the query engine.

Both sides must turn the same raw token into the same root forms, otherwise
a query can never meet the keywords the crawler stored. Everything that
decides the shape of a term lives here.
"""

import logging
import re
from typing import Dict, Iterable, List

from nltk.stem import PorterStemmer


# Keyword.root_keyword_form column width
MAX_TERM_LENGTH = 64

TEXT_TOKEN_PATTERN = re.compile(r"(?:[^\W\d_]|')+|\d+")
IDENTIFIER_TOKEN_PATTERN = re.compile(r"[^\W\d_]+|\d+")

IRREGULAR_CONTRACTIONS = frozenset({
    "i'm", "he's", "she's", "it's",
    "what's", "when's", "where's", "how's", "why's",
})
BE_FORMS = frozenset({"am", "is", "are", "will", "was", "were", "been", "wo"})

logger = logging.getLogger(__name__)


def tokenize_text(text: str) -> List[str]:
    """Split text into runs of letters/apostrophes or runs of digits."""
    if not text:
        return []
    return TEXT_TOKEN_PATTERN.findall(text)


def tokenize_identifier(text: str) -> List[str]:
    """Split a host label or URL path into runs of letters or digits."""
    if not text:
        return []
    return IDENTIFIER_TOKEN_PATTERN.findall(text)


def tokenize_query(phrase: str) -> List[str]:
    """Queries are split on whitespace only."""
    if not phrase:
        return []
    return phrase.split()


class TermNormalizer:
    """Contraction expansion followed by Porter stemming."""

    def __init__(self):
        # The published algorithm, without NLTK's irregular-word extensions
        self.stemmer = PorterStemmer(mode=PorterStemmer.ORIGINAL_ALGORITHM)

    def normalize_token(self, token: str) -> List[str]:
        """
        Normalize one raw token.

        Returns the synthetic term produced by a contraction (if any)
        followed by the root form of the token. Either may be missing.
        """
        w1 = token
        w2 = token.lower()
        terms = []

        if w2.endswith("n't"):
            w1, w2 = w1[:-3], w2[:-3]
            terms.append("not")
        elif w2.endswith("'ll") or w2.endswith("'re"):
            w1, w2 = w1[:-3], w2[:-3]
            terms.append("be")
        elif w2 in IRREGULAR_CONTRACTIONS:
            w1, w2 = w1[:-2], w2[:-2]
            terms.append("be")
        elif w2.endswith("'s") or w2.endswith("s'"):
            w1, w2 = w1[:-2], w2[:-2]

        if w2 in BE_FORMS:
            w1 = "be"

        root = self.stem(w1)
        if root:
            terms.append(root)
        return terms

    def stem(self, word: str) -> str:
        """Porter root of ``word``, or an empty string when it has none."""
        if not word.strip("'"):
            return ""
        try:
            root = self.stemmer.stem(word)
        except Exception as e:
            logger.debug(f"Stemming `{word}` failed: {e}")
            return ""
        if not root or not root.strip() or len(root) > MAX_TERM_LENGTH:
            return ""
        return root

    def normalize(self, tokens: Iterable[str]) -> List[str]:
        """Insertion-ordered, de-duplicated terms of a token stream."""
        terms: Dict[str, None] = {}
        for token in tokens:
            for term in self.normalize_token(token):
                terms.setdefault(term, None)
        return list(terms)

    def count_terms(self, tokens: Iterable[str]) -> Dict[str, int]:
        """
        Count raw tokens, then fold the counts onto their normalized terms.

        Several raw tokens may collapse onto one term; their counts add up.
        A synthetic term receives the count of the token that produced it.
        """
        raw_counts: Dict[str, int] = {}
        for token in tokens:
            raw_counts[token] = raw_counts.get(token, 0) + 1

        counts: Dict[str, int] = {}
        for token, count in raw_counts.items():
            for term in self.normalize_token(token):
                counts[term] = counts.get(term, 0) + count
        return counts


_default_normalizer = TermNormalizer()


def normalize(tokens: Iterable[str]) -> List[str]:
    """Normalize a token stream with the process-wide normalizer."""
    return _default_normalizer.normalize(tokens)
