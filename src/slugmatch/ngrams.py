from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from .config import NGRAM_MAX_INPUT, NGRAM_SIZES

log = logging.getLogger(__name__)


def kgrams(s: str, k: int) -> set[str]:
    """Return distinct k-grams of s."""
    if k <= 0 or len(s) < k:
        return set()
    return {s[i:i+k] for i in range(len(s) - k + 1)}


@dataclass(frozen=True)
class NGramSet:
    bigrams: frozenset[str] = frozenset()
    trigrams: frozenset[str] = frozenset()

    @classmethod
    def extract(cls, text: str, sizes: Sequence[int] = NGRAM_SIZES) -> "NGramSet":
        """
        Decompose text into its distinct bigrams and trigrams.
          * lowercased first
          * capped at NGRAM_MAX_INPUT characters (long URLs would otherwise
            produce thousands of grams)
          * strings shorter than the window contribute nothing
        """
        for n in sizes:
            if n not in (2, 3):
                raise ValueError(f"unsupported n-gram size: {n}")
        if not text:
            return cls()

        text = text.lower()
        if len(text) > NGRAM_MAX_INPUT:
            log.info("URL too long for n-gram extraction: %d chars, truncating to %d (%s...)",
                     len(text), NGRAM_MAX_INPUT, text[:100])
            text = text[:NGRAM_MAX_INPUT]

        bi = frozenset(kgrams(text, 2)) if 2 in sizes else frozenset()
        tri = frozenset(kgrams(text, 3)) if 3 in sizes else frozenset()
        return cls(bi, tri)

    @property
    def combined_count(self) -> int:
        return len(self.bigrams) + len(self.trigrams)

    def combined(self) -> frozenset[str]:
        # a bigram can never equal a trigram, so the union keeps every gram
        return self.bigrams | self.trigrams

    def dice(self, other: "NGramSet") -> float:
        return dice_coefficient(self, other)

    # /* ~~~ JSON shape used by the SQLite store ~~~ */
    def to_dict(self) -> dict[str, list[str]]:
        return {"bi": sorted(self.bigrams), "tri": sorted(self.trigrams)}

    @classmethod
    def from_dict(cls, data: dict) -> "NGramSet":
        if not isinstance(data, dict) or "bi" not in data or "tri" not in data:
            raise ValueError("n-gram payload must contain 'bi' and 'tri'")
        return cls(_strings(data["bi"]), _strings(data["tri"]))


def _strings(items: Iterable) -> frozenset[str]:
    return frozenset(str(x) for x in items)


def dice_coefficient(a: NGramSet, b: NGramSet) -> float:
    """2 * |A & B| / (|A| + |B|) over the combined bigram+trigram sets; 0.0 if either is empty."""
    set_a = a.combined()
    set_b = b.combined()
    if not set_a or not set_b:
        return 0.0
    return (2.0 * len(set_a & set_b)) / (len(set_a) + len(set_b))
