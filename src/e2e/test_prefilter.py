import pytest

from slugmatch import config as CFG
from slugmatch.corpus import PermalinkProvider
from slugmatch.DB.memory_store import MemoryCorpusStore, MemoryNGramStore
from slugmatch.engine import MatchEngine
from slugmatch.models import ItemKey, ItemType, PermalinkRow
from slugmatch.ngram_cache import NGramCache
from slugmatch.ngrams import NGramSet
from slugmatch.prefilter import CandidatePrefilter, gate_failure

_SLUGS = ["about-us", "contact", "products", "product-news", "summer-sale", "winter-sale"]


class FakeCache:
    """Just enough of NGramCache for gate checks."""
    def __init__(self, count=10, initialized=True, coverage=1.0):
        self._count = count
        self._initialized = initialized
        self._coverage = coverage

    def begin_request(self):
        pass

    def count(self):
        return self._count

    def is_initialized(self):
        return self._initialized

    def coverage_ratio(self):
        return self._coverage


class FakePrefilter:
    def __init__(self, result=None, explode=False):
        self.calls = []
        self._result = result or {}
        self._explode = explode

    def find_similar_candidates(self, query_text, min_similarity, max_candidates, item_type=ItemType.POST):
        if self._explode:
            raise AssertionError("prefilter must not be called")
        self.calls.append((query_text, item_type))
        return dict(self._result)


def _provider():
    rows = [PermalinkRow(i, ItemType.POST, f"https://example.test/{s}/") for i, s in enumerate(_SLUGS, 1)]
    return PermalinkProvider(MemoryCorpusStore(rows))


def _real_cache(slugs=_SLUGS, item_type=ItemType.POST):
    cache = NGramCache(MemoryNGramStore(), PermalinkProvider(MemoryCorpusStore()))
    for i, s in enumerate(slugs, 1):
        norm = f"/{s}/"
        cache.store(i, item_type, f"https://example.test{norm}", norm, NGramSet.extract(norm))
    return cache


def test_gate_reasons():
    assert gate_failure(FakeCache(count=10)).startswith("gate A")
    assert gate_failure(FakeCache(count=100, initialized=False)).startswith("gate B")
    assert gate_failure(FakeCache(count=100, coverage=0.5)).startswith("gate C")
    assert gate_failure(FakeCache(count=100)) is None


def test_small_cache_never_calls_prefilter():
    eng = MatchEngine(FakeCache(count=10), _provider(), prefilter=FakePrefilter(explode=True))
    result = eng.find_matches("/abuot-us")
    assert result.scores
    assert next(iter(result.scores)) == ItemKey(1, ItemType.POST)


def test_zero_prefilter_results_fall_back_to_full_scan():
    pre = FakePrefilter(result={})
    eng = MatchEngine(FakeCache(count=100), _provider(), prefilter=pre)
    result = eng.find_matches("/summer-sael")
    assert pre.calls == [("/summer-sael", ItemType.POST)]
    assert next(iter(result.scores)) == ItemKey(5, ItemType.POST)


def test_prefilter_query_matches_the_indexed_form():
    pre = FakePrefilter(result={})
    eng = MatchEngine(FakeCache(count=100), _provider(), prefilter=pre)
    eng.find_matches("/Summer-Sael?utm_source=x")
    # lowercased path, slashes and hyphens kept, like ngram_source(url) on the cache side
    assert pre.calls == [("/summer-sael", ItemType.POST)]


def test_nonzero_prefilter_results_restrict_posts():
    pre = FakePrefilter(result={6: 0.9})
    eng = MatchEngine(FakeCache(count=100), _provider(), prefilter=pre)
    result = eng.find_matches("/summer-sael", include_tags=False, include_categories=False)
    assert list(result.scores) == [ItemKey(6, ItemType.POST)]


def test_find_similar_best_first():
    pre = CandidatePrefilter(_real_cache())
    sims = pre.find_similar_candidates("summer sale", 0.2, 10)
    ids = list(sims)
    # summer-sale shares 14 grams with the query, winter-sale 6, about-us none
    assert ids[:2] == [5, 6]
    assert sims[5] == pytest.approx(28 / 42)
    assert 1 not in ids
    assert all(a >= b for a, b in zip(sims.values(), list(sims.values())[1:]))
    assert all(v >= 0.2 for v in sims.values())


def test_find_similar_truncates_and_filters_type():
    cache = _real_cache()
    pre = CandidatePrefilter(cache)
    # every entry is within the gram-count ratio of this query
    assert len(pre.find_similar_candidates("product sale", 0.0, 2)) == 2
    assert pre.find_similar_candidates("summer sale", 0.3, 10, ItemType.TAG) == {}


def test_short_query_returns_nothing():
    pre = CandidatePrefilter(_real_cache())
    assert pre.find_similar_candidates("a") == {}
    assert pre.usage.total_queries == 0


def test_empty_cache_signals_rebuild_once_uninitialized():
    asked = []
    cache = NGramCache(MemoryNGramStore(), PermalinkProvider(MemoryCorpusStore()))
    pre = CandidatePrefilter(cache, on_rebuild_needed=lambda: asked.append(1))
    assert pre.find_similar_candidates("about us") == {}
    assert asked == [1]

    cache.mark_initialized()
    assert pre.find_similar_candidates("about us") == {}
    assert asked == [1]


def test_rebuild_callback_failure_is_contained():
    def boom():
        raise RuntimeError("scheduler down")
    cache = NGramCache(MemoryNGramStore(), PermalinkProvider(MemoryCorpusStore()))
    pre = CandidatePrefilter(cache, on_rebuild_needed=boom)
    assert pre.find_similar_candidates("about us") == {}


def test_large_cache_uses_range_query(monkeypatch):
    cache = _real_cache()
    seen = []
    real = cache.query_candidates_in_range

    def spy(min_count, max_count, target, limit, item_type=None):
        seen.append((min_count, max_count, target, limit, item_type))
        return real(min_count, max_count, target, limit, item_type)

    monkeypatch.setattr(cache, "query_candidates_in_range", spy)
    monkeypatch.setattr(CFG, "CACHE_LOAD_LIMIT", 5)
    pre = CandidatePrefilter(cache)
    sims = pre.find_similar_candidates("summer sale", 0.3, 10)

    q = NGramSet.extract("summer sale").combined_count
    assert seen == [(max(1, int(q * 0.4)), -(-q * 5 // 2), q, 5, ItemType.POST)]
    assert 5 in sims
    assert pre.usage.total_queries == 1


def test_usage_stats_reset_after_a_month():
    now = [1_000_000.0]
    pre = CandidatePrefilter(_real_cache(), clock=lambda: now[0])
    pre.find_similar_candidates("summer sale", 0.3, 10)
    pre.find_similar_candidates("winter sale", 0.3, 10)
    assert pre.usage.total_queries == 2
    now[0] += 31 * 24 * 3600
    pre.find_similar_candidates("contact", 0.3, 10)
    assert pre.usage.total_queries == 1
    assert pre.usage.averages()["avg_examined_per_query"] == len(_SLUGS)
