from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, NamedTuple, Optional, Sequence

from .config import POSTS_SCORE_MULTIPLIER
from .DB.api import CorpusStore
from .models import ItemType, PermalinkRow
from .normalize import (
    RequestedPath, last_url_part, remove_home_directory, replace_separators, url_path,
)

log = logging.getLogger(__name__)

Resolver = Callable[[int, ItemType], Optional[str]]


class PermalinkProvider:
    """
    Corpus access for the matchers. Rows whose URL was never resolved are
    looked up through `resolver` (a CMS call, a slow path) on demand.
    """

    def __init__(self, store: CorpusStore, resolver: Optional[Resolver] = None) -> None:
        self.store = store
        self._resolver = resolver

    def get_batch(self, item_type: ItemType, after_id: int, batch_size: int, **kw) -> List[PermalinkRow]:
        return self.store.get_batch(item_type, after_id, batch_size, **kw)

    def page(self, offset: int, limit: int, item_types: Optional[Sequence[ItemType]] = None) -> List[PermalinkRow]:
        return self.store.page(offset, limit, item_types)

    def count(self, item_types: Optional[Sequence[ItemType]] = None) -> int:
        return self.store.count(item_types)

    def get(self, item_id: int, item_type: ItemType) -> Optional[PermalinkRow]:
        return self.store.get(item_id, item_type)

    def resolve(self, item_id: int, item_type: ItemType) -> Optional[str]:
        if self._resolver is None:
            return None
        return self._resolver(item_id, item_type)

    def url_for(self, row: PermalinkRow) -> Optional[str]:
        return row.url or self.resolve(row.item_id, row.item_type)

    def permalink(self, item_id: int, item_type: ItemType) -> Optional[str]:
        row = self.store.get(item_id, item_type)
        if row is not None and row.url:
            return row.url
        return self.resolve(item_id, item_type)


@dataclass(frozen=True)
class Candidate:
    item_id: int
    url: str
    path: str        # URL path with the home directory removed
    cleaned: str     # last segment of `path`, separators as spaces

    @classmethod
    def from_url(cls, item_id: int, url: str, home_directory: str = "") -> "Candidate":
        path = remove_home_directory(url_path(url), home_directory)
        return cls(item_id, url, path, last_url_part(replace_separators(path)))


class Comparison(NamedTuple):
    query: str
    candidate: str
    lazy: bool = False    # only evaluated when the eager result scores below the lazy threshold


class CorpusAdapter:
    """
    Per-corpus knobs for the shared bucket -> score pipeline.

    Posts compare slugs (last path segment) and weight the basis by 3.
    Tags and categories compare the whole path, slashes kept, with no multiplier.
    """
    item_type: ItemType = ItemType.POST
    multiplier: int = 1
    length_pushdown: bool = False

    def basis_text(self, cand: Candidate) -> str:
        return cand.cleaned

    def score_basis(self, cand: Candidate) -> int:
        return len(self.basis_text(cand)) * self.multiplier

    def comparisons(self, query: RequestedPath, cand: Candidate) -> List[Comparison]:
        raise NotImplementedError

    def label(self) -> str:
        return self.item_type.label


class PostAdapter(CorpusAdapter):
    item_type = ItemType.POST
    multiplier = POSTS_SCORE_MULTIPLIER
    # every comparison targets the slug, which the store keeps as slug_length
    length_pushdown = True

    def comparisons(self, query: RequestedPath, cand: Candidate) -> List[Comparison]:
        out = [Comparison(query.cleaned, cand.cleaned)]
        if query.full:
            out.append(Comparison(query.full, cand.cleaned, lazy=True))
        return out


class ImageAdapter(PostAdapter):
    item_type = ItemType.IMAGE
    length_pushdown = False

    def comparisons(self, query: RequestedPath, cand: Candidate) -> List[Comparison]:
        out = super().comparisons(query, cand)
        if query.stripped_image:
            out.append(Comparison(query.stripped_image, cand.path))
            out.append(Comparison(last_url_part(query.stripped_image), cand.cleaned))
        return out


class TagAdapter(CorpusAdapter):
    item_type = ItemType.TAG
    multiplier = 1

    def basis_text(self, cand: Candidate) -> str:
        # the path as served, slashes included
        return cand.path

    def comparisons(self, query: RequestedPath, cand: Candidate) -> List[Comparison]:
        out = [Comparison(query.cleaned, self.basis_text(cand))]
        if query.full:
            spaced = replace_separators(cand.path).replace("/", " ").strip()
            out.append(Comparison(query.full, spaced, lazy=True))
        return out


class CategoryAdapter(TagAdapter):
    item_type = ItemType.CATEGORY

    def comparisons(self, query: RequestedPath, cand: Candidate) -> List[Comparison]:
        out = super().comparisons(query, cand)
        whole = self.basis_text(cand)
        last = last_url_part(whole)
        if last and last != whole:
            out.append(Comparison(query.cleaned, last))
        return out


_ADAPTERS = {
    ItemType.POST: PostAdapter(),
    ItemType.TAG: TagAdapter(),
    ItemType.CATEGORY: CategoryAdapter(),
    ItemType.IMAGE: ImageAdapter(),
}


def adapter_for(item_type: ItemType) -> CorpusAdapter:
    return _ADAPTERS[ItemType(item_type)]


def length_bounds(comparisons: Iterable[Comparison]) -> tuple[int, int]:
    """
    (min_possible, max_possible) edit distance from lengths alone.
      min: smallest length gap over every comparison (the score takes the min distance)
      max: smallest longer-length over eager comparisons (lazy ones may never run)
    """
    comps = list(comparisons)
    lo = min(abs(len(c.query) - len(c.candidate)) for c in comps)
    eager = [max(len(c.query), len(c.candidate)) for c in comps if not c.lazy]
    hi = min(eager) if eager else max(max(len(c.query), len(c.candidate)) for c in comps)
    return lo, hi
