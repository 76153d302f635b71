from pathlib import Path
import pytest

from slugmatch.DB.api import length_window, make_store
from slugmatch.errors import CacheUnavailableError
from slugmatch.models import ItemKey, ItemType, MatchResult, PermalinkRow


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path: Path):
    dsn = "memory://" if request.param == "memory" else f"sqlite:///{tmp_path / 'db' / 'stores.sqlite'}"
    s = make_store(dsn, clock=lambda: 1_000.0)
    yield s
    s.close()


def _rows():
    slugs = ["a", "abcde", "abcdefghij", "abcdefghijklmnopqrst", "abcdefg"]
    rows = [PermalinkRow(i, ItemType.POST, f"https://example.test/{s}/") for i, s in enumerate(slugs, 1)]
    rows.append(PermalinkRow(9, ItemType.TAG, "https://example.test/tag/abcde/"))
    rows.append(PermalinkRow(10, ItemType.POST, None))
    return rows


def test_unknown_dsn():
    with pytest.raises(ValueError):
        make_store("postgres://nope")


def test_length_window():
    assert length_window(50, (5,), None)
    assert length_window(7, (5, 30), 2)
    assert not length_window(10, (5,), 4)


def test_slug_length_is_stored(storage):
    storage.corpus.bulk_upsert(_rows())
    assert storage.corpus.get(3, ItemType.POST).slug_length == 10
    assert storage.corpus.get(10, ItemType.POST).slug_length == 0
    assert storage.corpus.get(3, ItemType.TAG) is None


def test_get_batch_pages_by_id(storage):
    storage.corpus.bulk_upsert(_rows())
    first = storage.corpus.get_batch(ItemType.POST, 0, 4)
    assert [r.item_id for r in first] == [1, 2, 3, 4]
    rest = storage.corpus.get_batch(ItemType.POST, first[-1].item_id, 4)
    assert [r.item_id for r in rest] == [5, 10]


def test_get_batch_length_pushdown(storage):
    storage.corpus.bulk_upsert(_rows())
    rows = storage.corpus.get_batch(ItemType.POST, 0, 100, query_lengths=(6,), max_distance=1)
    assert [r.item_id for r in rows] == [2, 5]
    # several query forms: any of them may be close
    rows = storage.corpus.get_batch(ItemType.POST, 0, 100, query_lengths=(6, 20), max_distance=0)
    assert [r.item_id for r in rows] == [4]


def test_get_batch_only_ids(storage):
    storage.corpus.bulk_upsert(_rows())
    rows = storage.corpus.get_batch(ItemType.POST, 0, 100, only_ids=[5, 2, 9])
    assert [r.item_id for r in rows] == [2, 5]
    assert storage.corpus.get_batch(ItemType.POST, 5, 100, only_ids=[2, 5]) == []


def test_page_and_count_by_type(storage):
    storage.corpus.bulk_upsert(_rows())
    assert storage.corpus.count() == 7
    assert storage.corpus.count((ItemType.TAG,)) == 1
    page = storage.corpus.page(0, 100, (ItemType.POST, ItemType.TAG))
    assert [(r.item_type, r.item_id) for r in page][-1] == (ItemType.TAG, 9)
    assert storage.corpus.delete(9, ItemType.TAG)
    assert not storage.corpus.delete(9, ItemType.TAG)


def test_locks(storage):
    ngrams = storage.ngrams
    assert ngrams.acquire_lock("rebuild", "a", 60, now=100.0)
    assert not ngrams.acquire_lock("rebuild", "b", 60, now=120.0)
    ngrams.release_lock("rebuild", "b")            # not the holder
    assert not ngrams.acquire_lock("rebuild", "b", 60, now=130.0)
    assert ngrams.acquire_lock("rebuild", "b", 60, now=161.0)   # lease expired
    ngrams.release_lock("rebuild", "b")
    assert ngrams.acquire_lock("rebuild", "c", 60, now=162.0)


def test_meta(storage):
    ngrams = storage.ngrams
    assert ngrams.get_meta("k") is None
    ngrams.set_meta("k", "v1")
    ngrams.set_meta("k", "v2")
    assert ngrams.get_meta("k") == "v2"
    ngrams.delete_meta("k")
    assert ngrams.get_meta("k") is None


def test_suggestion_cache_expires(tmp_path: Path):
    now = [1_000.0]
    s = make_store(f"sqlite:///{tmp_path / 's.sqlite'}", clock=lambda: now[0])
    try:
        result = MatchResult({ItemKey(3, ItemType.POST): 91.6667, ItemKey(9, ItemType.TAG): 75.0}, "pages")
        s.suggestions.put("/prodcuts", result)
        assert s.suggestions.get("/prodcuts") == result
        now[0] += 3601
        assert s.suggestions.get("/prodcuts") is None
    finally:
        s.close()


def test_closed_sqlite_raises_cache_unavailable(tmp_path: Path):
    s = make_store(f"sqlite:///{tmp_path / 'closed.sqlite'}")
    s.close()
    with pytest.raises(CacheUnavailableError):
        s.corpus.count()
    with pytest.raises(CacheUnavailableError):
        s.ngrams.count()
