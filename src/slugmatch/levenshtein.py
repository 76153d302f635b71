from __future__ import annotations
from rapidfuzz.distance import Levenshtein

from .config import MAX_URL_LENGTH, FAST_LEVENSHTEIN_MAX_BYTES
from .errors import LengthExceededError


def distance(a: str, b: str) -> int:
    """
    Edit distance (insert/delete/substitute, all cost 1).
      * raises LengthExceededError past MAX_URL_LENGTH characters
      * short inputs go through rapidfuzz
      * long inputs use the two-row DP below
    """
    for s in (a, b):
        if len(s) > MAX_URL_LENGTH:
            raise LengthExceededError(len(s), MAX_URL_LENGTH)

    if (len(a.encode("utf-8")) <= FAST_LEVENSHTEIN_MAX_BYTES
            and len(b.encode("utf-8")) <= FAST_LEVENSHTEIN_MAX_BYTES):
        return Levenshtein.distance(a, b)
    return two_row_distance(a, b)


def two_row_distance(a: str, b: str) -> int:
    """O(|a|*|b|) time, two rows of len(a)+1 ints. Works on code points, so no byte limit."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    prev = list(range(len(a) + 1))
    cur = [0] * (len(a) + 1)
    for j, cb in enumerate(b, 1):
        cur[0] = j
        for i, ca in enumerate(a, 1):
            cost = 0 if ca == cb else 1
            cur[i] = min(prev[i] + 1,          # deletion
                         cur[i - 1] + 1,       # insertion
                         prev[i - 1] + cost)   # substitution
        prev, cur = cur, prev
    return prev[len(a)]
