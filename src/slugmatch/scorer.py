from __future__ import annotations
import heapq
import logging
from typing import Callable, Dict, Mapping, Optional

from . import config as CFG
from .corpus import Candidate, CorpusAdapter, length_bounds
from .errors import LengthExceededError
from .levenshtein import distance as levenshtein
from .models import ItemKey, PerformanceCounters
from .normalize import RequestedPath

log = logging.getLogger(__name__)


def to_score(dist: int, basis: int) -> float:
    """100 at distance 0; negative for very poor matches."""
    return 100 - (dist / basis) * 100


def score_candidates(
    query: RequestedPath,
    candidates: Mapping[int, Candidate],
    desired_count: int,
    adapter: CorpusAdapter,
    *,
    early_termination: bool = True,
    distance: Callable[[str, str], int] = levenshtein,
    counters: Optional[PerformanceCounters] = None,
    logger: Optional[logging.Logger] = None,
) -> Dict[ItemKey, float]:
    """
    Score candidates in the order given (best guesses first).

    A min-heap holds the best `desired_count` scores so far. Once it is full a
    candidate whose length-only lower bound already exceeds
        (100 - worst) * basis / 100
    cannot enter the top K and is skipped without a Levenshtein call.
    """
    lg = logger or log
    k = max(1, desired_count)
    top: list[float] = []
    out: Dict[ItemKey, float] = {}

    for item_id, cand in candidates.items():
        basis = adapter.score_basis(cand)
        if basis == 0:
            continue
        comps = adapter.comparisons(query, cand)

        if early_termination and len(top) >= k:
            max_allowed = (100 - top[0]) * basis / 100
            min_possible, _ = length_bounds(comps)
            if min_possible > max_allowed:
                continue

        try:
            dist = _best_distance(comps, basis, distance, counters)
        except LengthExceededError as e:
            lg.warning("Skipping %s %d: %s", adapter.label(), item_id, e)
            continue

        score = round(to_score(dist, basis), CFG.SCORE_DECIMALS)
        out[ItemKey(item_id, adapter.item_type)] = score

        heapq.heappush(top, score)
        if len(top) > k:
            heapq.heappop(top)

    return out


def _best_distance(comps, basis: int, distance, counters: Optional[PerformanceCounters]) -> int:
    def run(a: str, b: str) -> int:
        if counters is not None and counters.enabled:
            counters.levenshtein_calls += 1
        return distance(a, b)

    best = min(run(c.query, c.candidate) for c in comps if not c.lazy)
    lazy = [c for c in comps if c.lazy]
    if lazy and to_score(best, basis) < CFG.LAZY_SCORE_THRESHOLD:
        best = min([best] + [run(c.query, c.candidate) for c in lazy])
    return best
