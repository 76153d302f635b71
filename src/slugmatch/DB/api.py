# slugmatch/DB/api.py
from __future__ import annotations
import os
import time
from typing import Callable, Iterable, List, NamedTuple, Optional, Protocol, Sequence

from ..models import ItemType, NGramCacheEntry, PermalinkRow, MatchResult


class CorpusStore(Protocol):
    """Read-mostly permalink table: one row per post/tag/category/image."""
    # Create / Update
    def upsert(self, row: PermalinkRow) -> None: ...
    def bulk_upsert(self, rows: Iterable[PermalinkRow]) -> int: ...
    # Read
    def get(self, item_id: int, item_type: ItemType) -> Optional[PermalinkRow]: ...
    def get_batch(
        self,
        item_type: ItemType,
        after_id: int,
        batch_size: int,
        *,
        query_lengths: Sequence[int] = (),
        max_distance: Optional[int] = None,
        only_ids: Optional[Iterable[int]] = None,
    ) -> List[PermalinkRow]: ...
    def page(self, offset: int, limit: int, item_types: Optional[Sequence[ItemType]] = None) -> List[PermalinkRow]: ...
    def count(self, item_types: Optional[Sequence[ItemType]] = None) -> int: ...
    # Delete
    def delete(self, item_id: int, item_type: ItemType) -> bool: ...
    # lifecycle
    def close(self) -> None: ...


class NGramStore(Protocol):
    """Key -> NGramSet cache with range reads on ngram_count, plus small meta/lock tables."""
    def upsert(self, entry: NGramCacheEntry) -> None: ...
    def delete(self, item_id: int, item_type: ItemType) -> bool: ...
    def get(self, item_id: int, item_type: ItemType) -> Optional[NGramCacheEntry]: ...
    def count(self, item_type: Optional[ItemType] = None) -> int: ...
    def read_count_range(
        self,
        low: int,
        high: int,
        *,
        descending: bool,
        limit: int,
        offset: int = 0,
        item_type: Optional[ItemType] = None,
    ) -> List[NGramCacheEntry]: ...
    def read_all(self, item_type: Optional[ItemType] = None) -> List[NGramCacheEntry]: ...
    def last_updated(self) -> Optional[float]: ...
    def truncate(self) -> None: ...
    # meta (string values, callers encode)
    def get_meta(self, key: str) -> Optional[str]: ...
    def set_meta(self, key: str, value: str) -> None: ...
    def delete_meta(self, key: str) -> None: ...
    # advisory lock for rebuilds
    def acquire_lock(self, name: str, owner: str, lease: float, now: float) -> bool: ...
    def release_lock(self, name: str, owner: str) -> None: ...
    def close(self) -> None: ...


class SuggestionCache(Protocol):
    def get(self, path: str) -> Optional[MatchResult]: ...
    def put(self, path: str, result: MatchResult) -> None: ...
    def clear(self) -> None: ...
    def close(self) -> None: ...


def length_window(length: int, query_lengths: Sequence[int], max_distance: Optional[int]) -> bool:
    """True when a slug of `length` is within max_distance of any query length."""
    if max_distance is None or not query_lengths:
        return True
    return any(abs(length - q) <= max_distance for q in query_lengths)


class Storage(NamedTuple):
    corpus: CorpusStore
    ngrams: NGramStore
    suggestions: SuggestionCache

    def close(self) -> None:
        try:
            self.suggestions.close()
            self.ngrams.close()
        finally:
            self.corpus.close()


def make_store(dsn: str, *, clock: Callable[[], float] = time.time) -> Storage:
    """
    Factory:
      - sqlite:///path -> SQLite tables in one file (created on first use)
      - memory://      -> dict-backed stores (tests, one-off runs)
    """
    if dsn.startswith("sqlite:///"):
        path = dsn.removeprefix("sqlite:///")
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

        # Lazy import to avoid a circular import
        from .sqlite_store import open_sqlite
        return open_sqlite(path, clock=clock)

    if dsn.startswith("memory://"):
        from .memory_store import MemoryCorpusStore, MemoryNGramStore, MemorySuggestionCache
        return Storage(MemoryCorpusStore(), MemoryNGramStore(), MemorySuggestionCache(clock=clock))

    raise ValueError(f"Unsupported store DSN: {dsn}")
