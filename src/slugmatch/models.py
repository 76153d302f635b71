from __future__ import annotations
import json
from dataclasses import dataclass, field, asdict
from enum import IntEnum
from typing import Dict, List, NamedTuple, Optional

from .config import SUGGEST_MAX
from .ngrams import NGramSet


class ItemType(IntEnum):
    POST = 1
    TAG = 2
    CATEGORY = 3
    IMAGE = 4

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, raw: "str | int | ItemType") -> "ItemType":
        """Accept 1/'1'/'post'/'pages'/'tag'... as they appear in exports."""
        if isinstance(raw, ItemType):
            return raw
        text = str(raw).strip().lower()
        if text.isdigit():
            return cls(int(text))
        try:
            return _NAMES[text]
        except KeyError:
            raise ValueError(f"unknown item type: {raw!r}") from None


_LABELS = {
    ItemType.POST: "pages",
    ItemType.TAG: "tags",
    ItemType.CATEGORY: "categories",
    ItemType.IMAGE: "image",
}
_NAMES = {
    "post": ItemType.POST, "page": ItemType.POST, "pages": ItemType.POST,
    "tag": ItemType.TAG, "tags": ItemType.TAG,
    "category": ItemType.CATEGORY, "categories": ItemType.CATEGORY, "cat": ItemType.CATEGORY,
    "image": ItemType.IMAGE, "attachment": ItemType.IMAGE,
}


@dataclass(frozen=True, order=True)
class ItemKey:
    item_id: int
    item_type: ItemType

    def __str__(self) -> str:
        return f"{self.item_id}|{int(self.item_type)}"

    @classmethod
    def parse(cls, raw: str) -> "ItemKey":
        """'12|1' -> ItemKey(12, POST). Anything after a second '|' is ignored."""
        parts = str(raw).strip().split("|")
        if len(parts) < 2 or not parts[0].strip().isdigit():
            raise ValueError(f"not an item key: {raw!r}")
        return cls(int(parts[0]), ItemType.parse(parts[1]))


@dataclass(frozen=True)
class NGramCacheEntry:
    item_id: int
    item_type: ItemType
    original_url: str
    normalized_url: str
    ngrams: NGramSet
    ngram_count: int          # always ngrams.combined_count
    last_updated: float

    @property
    def key(self) -> ItemKey:
        return ItemKey(self.item_id, self.item_type)


@dataclass(frozen=True)
class PermalinkRow:
    item_id: int
    item_type: ItemType
    url: Optional[str]        # None -> not resolved yet
    slug_length: int = 0      # len of the cleaned last path segment

    @property
    def key(self) -> ItemKey:
        return ItemKey(self.item_id, self.item_type)


@dataclass
class CoverageState:
    ngram_count: int
    corpus_count: int
    ratio: float
    version: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CoverageState":
        return cls(int(data["ngram_count"]), int(data["corpus_count"]),
                   float(data["ratio"]), float(data["version"]))


@dataclass
class MatchOptions:
    suggest_max: int = SUGGEST_MAX
    exclude_pages: List[ItemKey] = field(default_factory=list)
    custom_404_page: Optional[ItemKey] = None
    regex_exclusions: List[str] = field(default_factory=list)
    home_directory: str = ""

    @property
    def excluded_count(self) -> int:
        return len(self.exclude_pages)

    @property
    def max_cache_count(self) -> int:
        # fetch a few extra so exclusions don't leave us short
        return self.suggest_max + self.excluded_count


class MatchResult(NamedTuple):
    scores: Dict[ItemKey, float]
    row_type: str

    def top(self, n: int) -> "MatchResult":
        return MatchResult(dict(list(self.scores.items())[:n]), self.row_type)

    def to_json(self) -> str:
        return json.dumps({
            "row_type": self.row_type,
            "scores": [[str(k), v] for k, v in self.scores.items()],
        })

    @classmethod
    def from_json(cls, payload: str) -> "MatchResult":
        data = json.loads(payload)
        scores = {ItemKey.parse(k): float(v) for k, v in data["scores"]}
        return cls(scores, data["row_type"])


class CacheHealth(NamedTuple):
    initialized: bool
    coverage_ratio: float
    total_entries: int


@dataclass
class RebuildStats:
    processed: int = 0
    success: int = 0
    failed: int = 0
    offset: int = 0
    next_offset: int = 0
    done: bool = False

    def absorb(self, other: "RebuildStats") -> None:
        self.processed += other.processed
        self.success += other.success
        self.failed += other.failed
        self.next_offset = other.next_offset
        self.done = other.done


@dataclass
class PerformanceCounters:
    enabled: bool = True
    levenshtein_calls: int = 0
    pages_considered: int = 0

    def reset(self) -> None:
        self.levenshtein_calls = 0
        self.pages_considered = 0

    @property
    def efficiency_percent(self) -> float:
        """Share of considered pages that never needed a Levenshtein call."""
        if self.pages_considered == 0:
            return 0.0
        return round((1 - self.levenshtein_calls / self.pages_considered) * 100, 2)


@dataclass
class UsageStats:
    total_queries: int = 0
    total_entries_examined: int = 0
    total_candidates_returned: int = 0
    total_duration_ms: float = 0.0
    avg_reduction_percent: float = 0.0
    last_reset: float = 0.0

    def record(self, total_in_cache: int, examined: int, candidates: int, duration_ms: float) -> None:
        self.total_queries += 1
        self.total_entries_examined += examined
        self.total_candidates_returned += candidates
        self.total_duration_ms += duration_ms
        if total_in_cache > 0:
            reduction = (total_in_cache - examined) / total_in_cache * 100
            n = self.total_queries
            self.avg_reduction_percent = (self.avg_reduction_percent * (n - 1) + reduction) / n

    def averages(self) -> dict:
        n = self.total_queries
        return {
            "avg_examined_per_query": round(self.total_entries_examined / n, 1) if n else 0,
            "avg_candidates_per_query": round(self.total_candidates_returned / n, 1) if n else 0,
            "avg_duration_ms": round(self.total_duration_ms / n, 2) if n else 0,
        }
