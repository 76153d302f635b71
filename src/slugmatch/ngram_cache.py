from __future__ import annotations
import json
import logging
import math
import os
import time
from typing import Callable, Iterable, List, Optional, Sequence

from . import config as CFG
from .DB.api import NGramStore
from .errors import ValidationError
from .models import (
    CacheHealth, CoverageState, ItemKey, ItemType, NGramCacheEntry, PermalinkRow, RebuildStats,
)
from .ngrams import NGramSet
from .normalize import ngram_source

log = logging.getLogger(__name__)

# images are matched by file name only and never prefiltered
INDEXED_TYPES: tuple[ItemType, ...] = (ItemType.POST, ItemType.TAG, ItemType.CATEGORY)

_VERSION_KEY = "ngram_coverage_version"
_RATIO_KEY = "ngram_coverage_ratio"
_INITIALIZED_KEY = "ngram_cache_initialized"


def merge_by_proximity(below: Sequence, above: Sequence, target: int, limit: int) -> list:
    """
    Interleave two streams that are each already sorted closest-first:
      below: ngram_count <= target, descending
      above: ngram_count >  target, ascending
    Ties go to `below` (that side holds the exact matches).
    """
    out: list = []
    i = j = 0
    while len(out) < limit and (i < len(below) or j < len(above)):
        d_below = abs(below[i].ngram_count - target) if i < len(below) else math.inf
        d_above = abs(above[j].ngram_count - target) if j < len(above) else math.inf
        if d_below <= d_above:
            out.append(below[i]); i += 1
        else:
            out.append(above[j]); j += 1
    return out


class NGramCache:
    """
    Persistent item -> NGramSet map on top of an NGramStore.

    Freshness is tracked by a coverage ratio (cache entries / corpus rows).
    Writes bump a version stamp; the ratio is recomputed only when the stamp
    moved, the corpus size changed or the cached value's TTL ran out, and is
    memoized per request.

    `corpus` is anything with page/count/get/url_for (see corpus.PermalinkProvider).
    """

    def __init__(
        self,
        store: NGramStore,
        corpus,
        *,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._corpus = corpus
        self._clock = clock
        self._log = logger or log
        self._count_memo: Optional[int] = None
        self._coverage_memo: Optional[CoverageState] = None

    # ------------- request scope -------------

    def begin_request(self) -> None:
        self._count_memo = None
        self._coverage_memo = None

    # ------------- writes -------------

    def store(
        self,
        item_id: int,
        item_type: ItemType,
        original_url: str,
        normalized_url: str,
        ngrams: NGramSet,
        *,
        skip_invalidation: bool = False,
    ) -> bool:
        if isinstance(item_id, bool) or not isinstance(item_id, int) or item_id <= 0:
            raise ValidationError(f"invalid item id for n-gram storage: {item_id!r}")
        if not isinstance(item_type, ItemType):
            raise ValidationError(f"invalid item type for item {item_id}: {item_type!r}")
        if not isinstance(original_url, str) or not isinstance(normalized_url, str):
            raise ValidationError(f"invalid URL type for n-gram storage (item {item_id})")
        if not isinstance(ngrams, NGramSet):
            raise ValidationError(f"invalid n-gram structure for item {item_id}")

        self._store.upsert(NGramCacheEntry(
            item_id=item_id,
            item_type=item_type,
            original_url=original_url,
            normalized_url=normalized_url,
            ngrams=ngrams,
            ngram_count=ngrams.combined_count,
            last_updated=self._clock(),
        ))
        if not skip_invalidation:
            self.invalidate()
        return True

    def delete(self, item_id: int, item_type: ItemType) -> bool:
        removed = self._store.delete(item_id, item_type)
        self.invalidate()
        return removed

    def invalidate(self) -> None:
        """Bump the coverage version and drop every cached count."""
        now = self._clock()
        self._set_transient(_VERSION_KEY, now, CFG.COVERAGE_VERSION_TTL)
        self._store.delete_meta(_RATIO_KEY)
        self.begin_request()

    # ------------- reads -------------

    def get(self, item_id: int, item_type: ItemType) -> Optional[NGramCacheEntry]:
        return self._store.get(item_id, item_type)

    def load_all(self, item_type: Optional[ItemType] = None) -> List[NGramCacheEntry]:
        return self._store.read_all(item_type)

    def count(self) -> int:
        if self._count_memo is not None:
            return self._count_memo
        if self._coverage_memo is not None:
            self._count_memo = self._coverage_memo.ngram_count
            return self._count_memo
        self._count_memo = self._store.count()
        return self._count_memo

    def coverage_ratio(self) -> float:
        return self.coverage().ratio

    def coverage(self) -> CoverageState:
        if self._coverage_memo is not None:
            return self._coverage_memo

        version = float(self._get_transient(_VERSION_KEY) or 0.0)
        # corpus writes bypass invalidate(); a size change forces a recompute
        corpus_count = self._corpus.count(INDEXED_TYPES)
        cached = self._get_transient(_RATIO_KEY)
        if cached is not None:
            try:
                state = CoverageState.from_dict(cached)
            except (KeyError, TypeError, ValueError):
                state = None
            if state is not None and state.version == version and state.corpus_count == corpus_count:
                self._coverage_memo = state
                self._count_memo = state.ngram_count
                return state

        ngram_count = self._store.count()
        if corpus_count == 0:
            # n-grams without a corpus means a rebuild is mid-flight
            ratio = 1.0 if ngram_count == 0 else 0.0
        else:
            ratio = ngram_count / corpus_count

        state = CoverageState(ngram_count, corpus_count, ratio, version)
        self._coverage_memo = state
        self._count_memo = ngram_count
        self._set_transient(_RATIO_KEY, state.to_dict(), CFG.COVERAGE_RATIO_TTL)
        return state

    def query_candidates_in_range(
        self,
        min_count: int,
        max_count: int,
        target_count: int,
        limit: int = CFG.CACHE_LOAD_LIMIT,
        item_type: Optional[ItemType] = None,
    ) -> List[NGramCacheEntry]:
        """
        Up to `limit` entries with min_count <= ngram_count <= max_count, closest
        to target_count first. Two index-friendly range reads instead of a sort
        over the whole table.
        """
        target = max(min_count, min(max_count, int(target_count)))
        half = math.ceil(limit / 2)
        read = self._store.read_count_range

        below = read(min_count, target, descending=True, limit=half, item_type=item_type)
        above_limit = limit - len(below)
        above = read(target + 1, max_count, descending=False, limit=above_limit, item_type=item_type)

        # whichever side filled its quota may have more rows
        total = len(below) + len(above)
        if total < limit and len(below) == half:
            below = below + read(min_count, target, descending=True, limit=limit - total,
                                 offset=len(below), item_type=item_type)
            total = len(below) + len(above)
        if total < limit and len(above) == above_limit:
            above = above + read(target + 1, max_count, descending=False, limit=limit - total,
                                 offset=len(above), item_type=item_type)

        return merge_by_proximity(below, above, target, limit)

    # ------------- rebuild -------------

    def is_initialized(self) -> bool:
        return self._store.get_meta(_INITIALIZED_KEY) == "1"

    def mark_initialized(self, value: bool = True) -> None:
        if value:
            self._store.set_meta(_INITIALIZED_KEY, "1")
        else:
            self._store.delete_meta(_INITIALIZED_KEY)

    def begin_rebuild(self) -> None:
        self._store.truncate()
        self.mark_initialized(False)
        self.invalidate()
        self._log.info("N-gram cache truncated for rebuild")

    def rebuild_batch(self, batch_size: int = CFG.REBUILD_BATCH_SIZE, offset: int = 0) -> RebuildStats:
        """
        Index one page of the corpus. Resumable: feed next_offset back in until done.
        Coverage is invalidated once per batch, not once per item.
        """
        rows = self._corpus.page(offset, batch_size, INDEXED_TYPES)
        stats = RebuildStats(offset=offset)
        for row in rows:
            stats.processed += 1
            if self._index_row(row):
                stats.success += 1
            else:
                stats.failed += 1

        if stats.success > 0:
            self.invalidate()

        stats.next_offset = offset + stats.processed
        stats.done = len(rows) < batch_size
        if stats.done:
            self.mark_initialized()

        if offset % 1000 == 0 or stats.done:
            self._log.debug("N-gram cache rebuild batch (offset %d): %d processed, %d success, %d failed",
                            offset, stats.processed, stats.success, stats.failed)
        return stats

    def rebuild_all(self, batch_size: int = CFG.REBUILD_BATCH_SIZE, owner: Optional[str] = None) -> Optional[RebuildStats]:
        """Full rebuild under the store's advisory lock. None if someone else holds it."""
        owner = owner or f"pid-{os.getpid()}"
        if not self._store.acquire_lock(CFG.REBUILD_LOCK_NAME, owner, CFG.REBUILD_LOCK_LEASE, self._clock()):
            self._log.info("N-gram rebuild already running elsewhere; skipping")
            return None
        try:
            self.begin_rebuild()
            total = RebuildStats()
            offset = 0
            while True:
                batch = self.rebuild_batch(batch_size, offset)
                total.absorb(batch)
                offset = batch.next_offset
                if batch.done:
                    break
            self._log.info("N-gram cache rebuilt: %d processed, %d success, %d failed",
                           total.processed, total.success, total.failed)
            return total
        finally:
            self._store.release_lock(CFG.REBUILD_LOCK_NAME, owner)

    def update_items(self, keys: Iterable[ItemKey]) -> RebuildStats:
        """Recompute specific items; drop the ones that left the corpus."""
        stats = RebuildStats()
        changed = False
        for key in keys:
            if key.item_type not in INDEXED_TYPES:
                continue
            stats.processed += 1
            row = self._corpus.get(key.item_id, key.item_type)
            if row is None:
                changed = self._store.delete(key.item_id, key.item_type) or changed
                stats.success += 1
                continue
            if self._index_row(row):
                stats.success += 1
                changed = True
            else:
                stats.failed += 1
        if changed:
            self.invalidate()
        stats.next_offset = stats.processed
        stats.done = True
        self._log.debug("Incremental n-gram update: %d items, %d success, %d failed",
                        stats.processed, stats.success, stats.failed)
        return stats

    def _index_row(self, row: PermalinkRow) -> bool:
        url = self._corpus.url_for(row)
        if not url:
            self._log.debug("No permalink for %s; not indexed", row.key)
            return False
        normalized = ngram_source(url)
        try:
            return self.store(row.item_id, row.item_type, url, normalized,
                              NGramSet.extract(normalized), skip_invalidation=True)
        except ValidationError as e:
            self._log.warning("Skipping %s: %s", row.key, e)
            return False

    # ------------- health -------------

    def health(self) -> CacheHealth:
        return CacheHealth(self.is_initialized(), self.coverage_ratio(), self.count())

    def stats(self) -> dict:
        return {
            "total_entries": self._store.count(),
            "posts_entries": self._store.count(ItemType.POST),
            "category_entries": self._store.count(ItemType.CATEGORY),
            "tag_entries": self._store.count(ItemType.TAG),
            "last_updated": self._store.last_updated(),
        }

    # ------------- internals -------------

    def _get_transient(self, key: str):
        raw = self._store.get_meta(key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            if data["expires"] <= self._clock():
                return None
            return data["value"]
        except (ValueError, KeyError, TypeError):
            self._log.debug("Dropping unreadable meta value %s", key)
            return None

    def _set_transient(self, key: str, value, ttl: float) -> None:
        self._store.set_meta(key, json.dumps({"value": value, "expires": self._clock() + ttl}))
