import json
import pytest
from slugmatch.ngrams import NGramSet, dice_coefficient, kgrams

_WORDS = ["about-us", "about us", "products", "prodcuts", "contact", "x", "", "2024/05/summer-sale",
          "ÜBER-uns", "aaaa", "zzzz"]


def test_extract_bigrams_and_trigrams():
    s = NGramSet.extract("AbcD")
    assert s.bigrams == {"ab", "bc", "cd"}
    assert s.trigrams == {"abc", "bcd"}
    assert s.combined_count == 5


def test_extract_short_and_empty():
    assert NGramSet.extract("").combined_count == 0
    one = NGramSet.extract("a")
    assert one.bigrams == frozenset() and one.trigrams == frozenset()
    two = NGramSet.extract("ab")
    assert two.bigrams == {"ab"} and two.trigrams == frozenset()


def test_extract_truncates_long_input():
    long = "ab" * 400  # 800 chars
    s = NGramSet.extract(long)
    assert s == NGramSet.extract(long[:500])


def test_extract_rejects_unknown_sizes():
    with pytest.raises(ValueError):
        NGramSet.extract("hello", sizes=(4,))


def test_kgrams_edges():
    assert kgrams("abc", 0) == set()
    assert kgrams("ab", 3) == set()
    assert kgrams("aaaa", 2) == {"aa"}


@pytest.mark.parametrize("a", _WORDS)
@pytest.mark.parametrize("b", _WORDS)
def test_dice_symmetric_and_bounded(a, b):
    x, y = NGramSet.extract(a), NGramSet.extract(b)
    d = dice_coefficient(x, y)
    assert d == dice_coefficient(y, x)
    assert 0.0 <= d <= 1.0


def test_dice_identical_and_disjoint():
    assert NGramSet.extract("about-us").dice(NGramSet.extract("ABOUT-US")) == 1.0
    assert NGramSet.extract("aaaa").dice(NGramSet.extract("zzzz")) == 0.0
    assert NGramSet.extract("").dice(NGramSet.extract("abc")) == 0.0


def test_dice_known_value():
    # "abc": {ab, bc, abc}; "abd": {ab, bd, abd}; one shared gram
    assert NGramSet.extract("abc").dice(NGramSet.extract("abd")) == pytest.approx(2 / 6)


def test_json_shape_preserves_similarity():
    original = NGramSet.extract("/blog/summer-sale/")
    decoded = NGramSet.from_dict(json.loads(json.dumps(original.to_dict())))
    assert decoded == original
    probe = NGramSet.extract("summer sail")
    assert probe.dice(decoded) == probe.dice(original)


def test_from_dict_requires_both_keys():
    with pytest.raises(ValueError):
        NGramSet.from_dict({"bi": ["ab"]})
