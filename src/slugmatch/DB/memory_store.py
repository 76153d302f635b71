# slugmatch/DB/memory_store.py
from __future__ import annotations
import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .api import CorpusStore, NGramStore, SuggestionCache, length_window
from ..config import SUGGESTION_TTL
from ..models import ItemType, NGramCacheEntry, PermalinkRow, MatchResult
from ..normalize import cleaned_slug

_Key = Tuple[int, int]


def _with_length(row: PermalinkRow) -> PermalinkRow:
    length = len(cleaned_slug(row.url)) if row.url else 0
    return PermalinkRow(int(row.item_id), ItemType(row.item_type), row.url, length)


class MemoryCorpusStore(CorpusStore):
    """Simple in-memory permalink table (useful for tests or ephemeral runs)."""
    def __init__(self, rows: Optional[Iterable[PermalinkRow]] = None) -> None:
        self._rows: Dict[_Key, PermalinkRow] = {}
        if rows:
            self.bulk_upsert(rows)

    # C / U
    def upsert(self, row: PermalinkRow) -> None:
        row = _with_length(row)
        self._rows[(row.item_id, int(row.item_type))] = row

    def bulk_upsert(self, rows: Iterable[PermalinkRow]) -> int:
        n = 0
        for row in rows:
            self.upsert(row); n += 1
        return n

    # R
    def get(self, item_id: int, item_type: ItemType) -> Optional[PermalinkRow]:
        return self._rows.get((int(item_id), int(item_type)))

    def get_batch(
        self,
        item_type: ItemType,
        after_id: int,
        batch_size: int,
        *,
        query_lengths: Sequence[int] = (),
        max_distance: Optional[int] = None,
        only_ids: Optional[Iterable[int]] = None,
    ) -> List[PermalinkRow]:
        wanted = None if only_ids is None else {int(i) for i in only_ids}
        out: List[PermalinkRow] = []
        for (item_id, t), row in sorted(self._rows.items()):
            if t != int(item_type) or item_id <= after_id:
                continue
            if wanted is not None and item_id not in wanted:
                continue
            if not length_window(row.slug_length, query_lengths, max_distance):
                continue
            out.append(row)
            if len(out) >= batch_size:
                break
        return out

    def page(self, offset: int, limit: int, item_types: Optional[Sequence[ItemType]] = None) -> List[PermalinkRow]:
        rows = [r for _, r in sorted(self._rows.items(), key=lambda kv: (kv[0][1], kv[0][0]))
                if item_types is None or r.item_type in item_types]
        return rows[offset:offset + limit]

    def count(self, item_types: Optional[Sequence[ItemType]] = None) -> int:
        if item_types is None:
            return len(self._rows)
        return sum(1 for r in self._rows.values() if r.item_type in item_types)

    # D
    def delete(self, item_id: int, item_type: ItemType) -> bool:
        return self._rows.pop((int(item_id), int(item_type)), None) is not None

    def close(self) -> None:
        self._rows.clear()


class MemoryNGramStore(NGramStore):
    def __init__(self) -> None:
        self._entries: Dict[_Key, NGramCacheEntry] = {}
        self._meta: Dict[str, str] = {}
        self._locks: Dict[str, Tuple[str, float]] = {}

    def upsert(self, entry: NGramCacheEntry) -> None:
        self._entries[(entry.item_id, int(entry.item_type))] = entry

    def delete(self, item_id: int, item_type: ItemType) -> bool:
        return self._entries.pop((int(item_id), int(item_type)), None) is not None

    def get(self, item_id: int, item_type: ItemType) -> Optional[NGramCacheEntry]:
        return self._entries.get((int(item_id), int(item_type)))

    def count(self, item_type: Optional[ItemType] = None) -> int:
        if item_type is None:
            return len(self._entries)
        return sum(1 for e in self._entries.values() if e.item_type == item_type)

    def read_count_range(
        self,
        low: int,
        high: int,
        *,
        descending: bool,
        limit: int,
        offset: int = 0,
        item_type: Optional[ItemType] = None,
    ) -> List[NGramCacheEntry]:
        rows = [e for e in self._entries.values()
                if low <= e.ngram_count <= high and (item_type is None or e.item_type == item_type)]
        # secondary key keeps paging deterministic, same as the SQL version
        rows.sort(key=lambda e: (-e.ngram_count if descending else e.ngram_count, int(e.item_type), e.item_id))
        return rows[offset:offset + limit]

    def read_all(self, item_type: Optional[ItemType] = None) -> List[NGramCacheEntry]:
        return [e for _, e in sorted(self._entries.items())
                if item_type is None or e.item_type == item_type]

    def last_updated(self) -> Optional[float]:
        return max((e.last_updated for e in self._entries.values()), default=None)

    def truncate(self) -> None:
        self._entries.clear()

    # ---- meta ----
    def get_meta(self, key: str) -> Optional[str]:
        return self._meta.get(key)

    def set_meta(self, key: str, value: str) -> None:
        self._meta[key] = value

    def delete_meta(self, key: str) -> None:
        self._meta.pop(key, None)

    # ---- locks ----
    def acquire_lock(self, name: str, owner: str, lease: float, now: float) -> bool:
        held = self._locks.get(name)
        if held is not None and held[1] > now:
            return False
        self._locks[name] = (owner, now + lease)
        return True

    def release_lock(self, name: str, owner: str) -> None:
        held = self._locks.get(name)
        if held is not None and held[0] == owner:
            del self._locks[name]

    def close(self) -> None:
        self._entries.clear()
        self._meta.clear()
        self._locks.clear()


class MemorySuggestionCache(SuggestionCache):
    def __init__(self, *, clock: Callable[[], float] = time.time, ttl: float = SUGGESTION_TTL) -> None:
        self._clock = clock
        self._ttl = ttl
        self._rows: Dict[str, Tuple[MatchResult, float]] = {}

    def get(self, path: str) -> Optional[MatchResult]:
        hit = self._rows.get(path)
        if hit is None:
            return None
        result, expires = hit
        if expires <= self._clock():
            del self._rows[path]
            return None
        return result

    def put(self, path: str, result: MatchResult) -> None:
        self._rows[path] = (result, self._clock() + self._ttl)

    def clear(self) -> None:
        self._rows.clear()

    def close(self) -> None:
        self._rows.clear()
