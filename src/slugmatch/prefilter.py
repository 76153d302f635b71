from __future__ import annotations
import logging
import math
import time
from typing import Callable, Dict, Optional

from . import config as CFG
from .models import ItemType, UsageStats
from .ngrams import NGramSet

log = logging.getLogger(__name__)

_MONTH = CFG.USAGE_STATS_RESET_DAYS * 24 * 60 * 60


def gate_failure(cache) -> Optional[str]:
    """
    Why the n-gram prefilter must not be trusted right now, or None if it may be.
    Cheapest check first:
      A) enough entries to be worth it
      B) a full rebuild finished at least once
      C) coverage of the corpus is high enough (not stale)
    """
    count = cache.count()
    if count < CFG.NGRAM_MIN_CACHE_ENTRIES:
        return f"gate A: min entries, count={count} (need {CFG.NGRAM_MIN_CACHE_ENTRIES})"
    if not cache.is_initialized():
        return f"gate B: not initialized, count={count}"
    ratio = cache.coverage_ratio()
    if ratio < CFG.NGRAM_MIN_COVERAGE_RATIO:
        return f"gate C: low coverage, ratio={ratio:.2f} (need {CFG.NGRAM_MIN_COVERAGE_RATIO:.2f})"
    return None


class CandidatePrefilter:
    """Dice-similarity candidate reduction over the n-gram cache."""

    def __init__(
        self,
        cache,
        *,
        on_rebuild_needed: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._cache = cache
        self._on_rebuild_needed = on_rebuild_needed
        self._clock = clock
        self._log = logger or log
        self.usage = UsageStats(last_reset=clock())

    def find_similar_candidates(
        self,
        query_text: str,
        min_similarity: float = CFG.NGRAM_PREFILTER_THRESHOLD,
        max_candidates: int = CFG.NGRAM_PREFILTER_MAX_CANDIDATES,
        item_type: ItemType = ItemType.POST,
    ) -> Dict[int, float]:
        """item_id -> Dice similarity, best first, at most max_candidates."""
        started = time.perf_counter()

        query = NGramSet.extract(query_text.strip().lower())
        q = query.combined_count
        if q == 0:
            self._log.debug("Search term too short for n-gram filtering: %r", query_text)
            return {}

        total = self._cache.count()
        if total == 0:
            self._log.debug("N-gram cache is empty.")
            self._signal_rebuild()
            return {}

        # items whose gram count is far off cannot reach a useful Dice score
        min_count = max(1, int(q * CFG.RANGE_LOW_FACTOR))
        max_count = math.ceil(q * CFG.RANGE_HIGH_FACTOR)

        if total > CFG.CACHE_LOAD_LIMIT:
            self._log.debug("Using range query for %d entries", total)
            entries = self._cache.query_candidates_in_range(
                min_count, max_count, q, CFG.CACHE_LOAD_LIMIT, item_type)
        else:
            entries = self._cache.load_all(item_type)

        if not entries:
            self._log.debug("No matching candidates after filtering.")
            return {}

        sims: Dict[int, float] = {}
        for e in entries:
            c = e.ngram_count
            if max(q, c) == 0 or min(q, c) / max(q, c) < CFG.COUNT_RATIO_MIN:
                continue
            s = query.dice(e.ngrams)
            if s >= min_similarity:
                sims[e.item_id] = s

        ranked = sorted(sims.items(), key=lambda kv: kv[1], reverse=True)[:max_candidates]

        duration_ms = (time.perf_counter() - started) * 1000
        self._log.debug("N-gram filtering: %d total, %d examined -> %d candidates (>=%.2f similarity) in %.2fms",
                        total, len(entries), len(ranked), min_similarity, duration_ms)
        self._track(total, len(entries), len(ranked), duration_ms)
        return dict(ranked)

    def _signal_rebuild(self) -> None:
        if self._cache.is_initialized():
            self._log.debug("N-gram cache rebuild already initialized or scheduled.")
            return
        if self._on_rebuild_needed is None:
            return
        try:
            self._on_rebuild_needed()
            self._log.info("Empty n-gram cache detected during a request. Requested a background rebuild.")
        except Exception:
            self._log.exception("Failed to request an n-gram cache rebuild")

    def _track(self, total: int, examined: int, candidates: int, duration_ms: float) -> None:
        now = self._clock()
        if self.usage.last_reset < now - _MONTH:
            self.usage = UsageStats(last_reset=now)
        self.usage.record(total, examined, candidates, duration_ms)
