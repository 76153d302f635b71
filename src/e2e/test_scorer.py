import pytest

from slugmatch.corpus import Candidate, adapter_for
from slugmatch.levenshtein import distance
from slugmatch.models import ItemKey, ItemType, PerformanceCounters
from slugmatch.normalize import normalize_request
from slugmatch.scorer import score_candidates, to_score

_SITE = "https://example.test"


def _score(path, urls, item_type=ItemType.POST, k=5, **kw):
    cands = {i: Candidate.from_url(i, _SITE + u) for i, u in enumerate(urls, 1)}
    return score_candidates(normalize_request(path), cands, k, adapter_for(item_type), **kw)


class CountingDistance:
    def __init__(self):
        self.pairs = []

    def __call__(self, a, b):
        self.pairs.append((a, b))
        return distance(a, b)


def test_to_score():
    assert to_score(0, 10) == 100
    assert to_score(5, 10) == 50
    assert to_score(30, 10) == -200


def test_exact_slug_scores_100():
    scores = _score("/about-us", ["/about-us/"])
    assert scores == {ItemKey(1, ItemType.POST): 100.0}


def test_tag_and_post_weighting():
    # tags: basis is the path as served, no multiplier
    assert _score("/prodcuts", ["/products/"], ItemType.TAG) == {ItemKey(1, ItemType.TAG): 60.0}
    bare = {1: Candidate(1, _SITE + "/products", "products", "products")}
    assert score_candidates(normalize_request("/prodcuts"), bare, 5, adapter_for(ItemType.TAG)) == {
        ItemKey(1, ItemType.TAG): 75.0}
    # posts: basis is the slug length times three
    post = _score("/prodcuts", ["/products/"])
    assert post[ItemKey(1, ItemType.POST)] == pytest.approx(91.6667)


def test_tag_prefix_counts_against_the_score():
    # 6 edits for "/tag/" and the trailing slash, 2 for the swap
    scores = _score("/prodcuts", ["/tag/products/"], ItemType.TAG)
    assert scores[ItemKey(1, ItemType.TAG)] == pytest.approx(42.8571)


def test_category_last_part_comparison():
    scores = _score("/shoos", ["/category/clothing/shoes/"], ItemType.CATEGORY)
    # 1 edit against "shoes"; the basis is still the whole path
    basis = len("/category/clothing/shoes/")
    assert scores[ItemKey(1, ItemType.CATEGORY)] == pytest.approx(96.0)
    assert scores[ItemKey(1, ItemType.CATEGORY)] == pytest.approx(round(100 - 100 / basis, 4))


def test_scores_can_go_negative():
    scores = _score("/zzzzzzzzzz", ["/ab/"], ItemType.TAG)
    assert scores[ItemKey(1, ItemType.TAG)] == -150.0


def test_lazy_full_path_comparison():
    calls = CountingDistance()
    scores = _score("/shop/red-shoes", ["/shop-red-shoes/"], distance=calls)
    assert scores[ItemKey(1, ItemType.POST)] == 100.0
    assert ("shop red shoes", "shop red shoes") in calls.pairs


def test_lazy_comparison_skipped_on_strong_match():
    calls = CountingDistance()
    scores = _score("/shop/about-us", ["/about-us/"], distance=calls)
    assert scores[ItemKey(1, ItemType.POST)] == 100.0
    assert calls.pairs == [("about us", "about us")]


def test_resized_image_matches_original():
    scores = _score("/uploads/sunset-640x480.jpg", ["/uploads/sunset.jpg", "/uploads/sunrise.jpg"], ItemType.IMAGE)
    assert scores[ItemKey(1, ItemType.IMAGE)] == 100.0
    assert scores[ItemKey(2, ItemType.IMAGE)] < 100.0


def test_overlong_candidate_is_skipped():
    scores = _score("/abc", ["/" + "a" * 2100 + "/", "/abd/"])
    assert list(scores) == [ItemKey(2, ItemType.POST)]


def test_early_termination_keeps_the_top_k():
    urls = ["/contact/", "/contacts/", "/content/", "/contest/", "/context/", "/about/",
            "/internationalization/", "/privacy-policy/", "/terms-and-conditions/", "/c/",
            "/contact-us-today-for-a-free-quote/", "/cont/"]
    k = 3
    plain_counts, fast_counts = PerformanceCounters(), PerformanceCounters()
    plain = _score("/contact", urls, k=k, early_termination=False, counters=plain_counts)
    fast = _score("/contact", urls, k=k, counters=fast_counts)

    def top(scores):
        return sorted(scores.values(), reverse=True)[:k]

    assert top(fast) == top(plain)
    assert fast_counts.levenshtein_calls < plain_counts.levenshtein_calls
    assert plain_counts.levenshtein_calls == len(urls)


def test_empty_basis_is_ignored():
    cands = {1: Candidate(1, _SITE + "/", "/", "")}
    assert score_candidates(normalize_request("/x"), cands, 5, adapter_for(ItemType.POST)) == {}


def test_counters_report_efficiency():
    counts = PerformanceCounters()
    assert counts.efficiency_percent == 0.0
    counts.pages_considered, counts.levenshtein_calls = 8, 2
    assert counts.efficiency_percent == 75.0
    counts.reset()
    assert (counts.pages_considered, counts.levenshtein_calls) == (0, 0)
