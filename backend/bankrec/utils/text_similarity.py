"""
Text similarity engine for bank and ledger descriptions.

Descriptions are short, noisy and often truncated by the bank, so the
similarity is a token overlap coefficient where tokens may match fuzzily
(rapidfuzz) to absorb abbreviations and inflections.
"""

import re
import unicodedata
from typing import FrozenSet, Iterable, Optional

import structlog
from rapidfuzz import fuzz

logger = structlog.get_logger()

TOKEN_PATTERN = re.compile(r"[a-z0-9]+")
NON_ALNUM_PATTERN = re.compile(r"[^a-z0-9]")

# Connectives seen in Italian and English statement descriptions
STOP_WORDS: FrozenSet[str] = frozenset({
    "a", "ad", "al", "alla", "da", "dal", "de", "dei", "del", "della", "di",
    "e", "ed", "il", "in", "la", "le", "lo", "per", "su", "un", "una",
    "and", "for", "of", "the", "to",
})


def normalize_text(text: Optional[str]) -> str:
    """Lowercase and strip accents."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


class TextSimilarityEngine:
    """
    Engine for token-based similarity between descriptions.

    Args:
        fuzzy_ratio: Minimum rapidfuzz ratio (0-100) for two alphabetic
            tokens to count as the same word
        min_fuzzy_length: Tokens shorter than this only match exactly
    """

    def __init__(self, fuzzy_ratio: int = 85, min_fuzzy_length: int = 4):
        self.fuzzy_ratio = fuzzy_ratio
        self.min_fuzzy_length = min_fuzzy_length

    def tokenize(self, text: Optional[str]) -> FrozenSet[str]:
        """Split text into normalized tokens, dropping stop words and single letters."""
        tokens = TOKEN_PATTERN.findall(normalize_text(text))
        return frozenset(
            t for t in tokens
            if t not in STOP_WORDS and (len(t) > 1 or t.isdigit())
        )

    def _tokens_match(self, left: str, right: str) -> bool:
        if left == right:
            return True
        # Numbers (invoice numbers, dates) must match exactly
        if left.isdigit() or right.isdigit():
            return False
        if min(len(left), len(right)) < self.min_fuzzy_length:
            return False
        return fuzz.ratio(left, right) >= self.fuzzy_ratio

    def token_overlap(self, left: Iterable[str], right: Iterable[str]) -> float:
        """
        Overlap coefficient: matched tokens of the smaller set over its size.

        Returns:
            Value in [0, 1]
        """
        left_set = frozenset(left)
        right_set = frozenset(right)
        if not left_set or not right_set:
            return 0.0

        smaller, larger = sorted((left_set, right_set), key=len)
        matched = sum(
            1 for token in smaller
            if token in larger or any(self._tokens_match(token, other) for other in larger)
        )
        return matched / len(smaller)

    def similarity(self, text: Optional[str], other: Optional[str]) -> float:
        """Token overlap between two free-text strings."""
        return self.token_overlap(self.tokenize(text), self.tokenize(other))

    def reference_in_text(self, reference: Optional[str], text: Optional[str]) -> bool:
        """
        Check whether a document reference appears in a description.
        Punctuation is ignored on both sides ("FT-2024/123" matches "ft2024123").
        """
        ref = NON_ALNUM_PATTERN.sub("", normalize_text(reference))
        if len(ref) < 3:
            return False
        haystack = NON_ALNUM_PATTERN.sub("", normalize_text(text))
        return ref in haystack

    def description_similarity(
        self,
        description: Optional[str],
        entry_description: Optional[str],
        document_ref: Optional[str] = None,
    ) -> float:
        """
        Similarity between a bank description and a ledger entry.

        The entry side is its description or its document reference,
        whichever matches better. A document reference found verbatim in
        the bank description is a full match.
        """
        if document_ref and self.reference_in_text(document_ref, description):
            return 1.0

        score = self.similarity(description, entry_description)
        if document_ref:
            score = max(score, self.similarity(description, document_ref))
        return score
