from __future__ import annotations
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from . import config as CFG
from .corpus import Candidate, CorpusAdapter, PermalinkProvider, length_bounds
from .models import PerformanceCounters
from .normalize import RequestedPath

log = logging.getLogger(__name__)


def needed_count(suggest_max: int) -> int:
    # more than we show: the final score is not pure edit distance
    return min(CFG.NEEDED_PER_SUGGESTION * max(1, suggest_max), CFG.NEEDED_CAP)


def boundary(max_counts: Sequence[int], needed: int) -> int:
    """Smallest D whose cumulative bucket count reaches `needed`; MAX_DIST if never reached."""
    seen = 0
    for d, n in enumerate(max_counts):
        seen += n
        if seen >= needed:
            return d
    return CFG.MAX_DIST


@dataclass
class LikelyMatches:
    candidates: Dict[int, Candidate] = field(default_factory=dict)   # scoring order
    min_distance: Dict[int, int] = field(default_factory=dict)
    with_words: set = field(default_factory=set)
    boundary: int = CFG.MAX_DIST
    considered: int = 0
    wasnt_ready: int = 0


class LengthBucketDistanceFilter:
    """
    Drops candidates that cannot beat the best N using string lengths only.

      1) per candidate: min/max possible edit distance from lengths
      2) D = smallest max-distance bucket whose running total covers N
      3) anything whose min distance exceeds D can never beat those N

    Candidates sharing a word with the request are scored first but their
    bounds are left alone.

    Rows are pulled in batches; after each batch int(D * 1.1) is pushed down
    to the store as a slug-length window for the next one.
    """

    def __init__(
        self,
        provider: PermalinkProvider,
        *,
        batch_size: int = CFG.BATCH_SIZE,
        counters: Optional[PerformanceCounters] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._provider = provider
        self._batch_size = batch_size
        self._counters = counters
        self._log = logger or log

    def likely_matches(
        self,
        query: RequestedPath,
        adapter: CorpusAdapter,
        suggest_max: int,
        *,
        home_directory: str = "",
        only_ids: Optional[Iterable[int]] = None,
        needed: Optional[int] = None,
    ) -> LikelyMatches:
        needed = needed or needed_count(suggest_max)
        only = None if only_ids is None else list(only_ids)
        query_words = query.words
        query_lengths = tuple(len(s) for s in (query.cleaned, query.full) if s)

        max_counts: List[int] = [0] * (CFG.MAX_DIST + 1)
        min_buckets: Dict[int, List[int]] = defaultdict(list)
        out = LikelyMatches()

        after_id = 0
        pushdown: Optional[int] = None
        while True:
            batch = self._provider.get_batch(
                adapter.item_type, after_id, self._batch_size,
                query_lengths=query_lengths,
                max_distance=pushdown if adapter.length_pushdown else None,
                only_ids=only,
            )
            for row in batch:
                after_id = row.item_id
                out.considered += 1
                if self._counters is not None and self._counters.enabled:
                    self._counters.pages_considered += 1

                url = row.url
                if not url:
                    out.wasnt_ready += 1
                    url = self._provider.resolve(row.item_id, row.item_type)
                if not url:
                    continue
                cand = Candidate.from_url(row.item_id, url, home_directory)
                if not cand.path:
                    continue

                lo, hi = length_bounds(adapter.comparisons(query, cand))
                if query_words & set(cand.cleaned.split()):
                    out.with_words.add(cand.item_id)
                hi = min(hi, CFG.MAX_DIST)

                max_counts[hi] += 1
                min_buckets[lo].append(cand.item_id)
                out.min_distance[cand.item_id] = lo
                out.candidates[cand.item_id] = cand

            if len(batch) < self._batch_size:
                break
            pushdown = int(boundary(max_counts, needed) * CFG.PUSHDOWN_SLACK)

        if out.wasnt_ready:
            self._log.info("The permalink cache wasn't ready for %d %s.", out.wasnt_ready, adapter.label())

        d = boundary(max_counts, needed)
        kept = [i for lo in sorted(min_buckets) if lo <= d for i in min_buckets[lo]]
        words_first = [i for i in kept if i in out.with_words] + [i for i in kept if i not in out.with_words]

        pool = out.candidates
        out.candidates = {i: pool[i] for i in words_first}
        out.boundary = d
        self._log.debug("Length buckets (%s): %d considered, D=%d, %d kept",
                        adapter.label(), out.considered, d, len(out.candidates))
        return out
