"""
slugmatch - suggestions for broken (404) URLs

Given a path that no longer exists, find the closest existing posts, tags and
categories without running Levenshtein over the whole site:

- an n-gram (bigram/trigram) cache and Dice prefilter shrink the candidate set
- length buckets drop anything that provably cannot make the top N
- an early-terminating Levenshtein pass scores what is left

Example Usage:
    from slugmatch import MatchEngine, PermalinkRow, ItemType

    eng = MatchEngine.from_dsn("memory://")
    eng.provider.store.bulk_upsert([
        PermalinkRow(1, ItemType.POST, "https://example.test/about-us/"),
    ])
    result = eng.find_matches("/abuot-us")
    for key, score in result.scores.items():
        print(key, score)
    eng.shutdown()
"""

from .engine import MatchEngine
from .errors import SlugmatchError, ValidationError, LengthExceededError, CacheUnavailableError
from .models import ItemKey, ItemType, MatchOptions, MatchResult, PermalinkRow, CacheHealth
from .ngrams import NGramSet, dice_coefficient

__version__ = "1.0.0"
__all__ = [
    "MatchEngine",
    "ItemKey", "ItemType", "MatchOptions", "MatchResult", "PermalinkRow", "CacheHealth",
    "NGramSet", "dice_coefficient",
    "SlugmatchError", "ValidationError", "LengthExceededError", "CacheUnavailableError",
]
