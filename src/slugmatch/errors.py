from __future__ import annotations


class SlugmatchError(Exception):
    """Base class for everything this package raises on purpose."""


class ValidationError(SlugmatchError, ValueError):
    """Malformed input to an n-gram cache write. Never retried."""


class LengthExceededError(SlugmatchError, ValueError):
    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"string of length {length} exceeds the supported maximum of {limit}")
        self.length = length
        self.limit = limit


class CacheUnavailableError(SlugmatchError, RuntimeError):
    """The backing store could not be reached or failed mid-query."""
