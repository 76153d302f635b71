from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import urlsplit

from .config import SEPARATORS, IMAGE_SEPARATORS, IMAGE_EXTENSIONS

# /* ~~~ "-640x480" right before the extension (WordPress resized copies) ~~~ */
_IMAGE_SIZE = re.compile(r"(.+)(-\d{1,5}x\d{1,5})(\..+)")


def replace_separators(text: str, separators: Iterable[str] = SEPARATORS) -> str:
    """Turn slug separators into spaces: 'about-us.html' -> 'about us html'."""
    for sep in separators:
        text = text.replace(sep, " ")
    return text


def last_url_part(url: str) -> str:
    """Turns '/abc/defg/' into 'defg'. Returns the input when every segment is blank."""
    for part in reversed(url.split("/")):
        if part.strip():
            return part
    return url


def url_path(url: str) -> str:
    """Path component of an absolute or relative URL."""
    return urlsplit(url.strip()).path


def remove_home_directory(path: str, home: str) -> str:
    """Strip the site's sub-directory prefix ('/blog') from a path."""
    home = home.rstrip("/")
    if home and (path == home or path.startswith(home + "/")):
        return path[len(home):]
    return path


def cleaned_slug(url: str) -> str:
    """Last path segment with separators as spaces; what the length buckets are built from."""
    return last_url_part(replace_separators(url_path(url)))


def ngram_source(url: str) -> str:
    """Lowercased, trimmed path that n-grams are extracted from, for cache entries and queries alike."""
    path = url_path(url)
    return (path or url).strip().lower()


def is_image_request(url: str) -> bool:
    lowered = url.lower()
    return any(lowered.endswith(ext) for ext in IMAGE_EXTENSIONS)


def strip_image_size(raw: str) -> str:
    """'photo-640x480.jpg' -> 'photo.jpg'; unchanged when there is no size suffix."""
    return _IMAGE_SIZE.sub(r"\1\3", raw)


@dataclass(frozen=True)
class RequestedPath:
    """Every form of the 404 path the matchers compare against."""
    raw: str
    spaces: str               # separators replaced by spaces
    cleaned: str              # last segment of `spaces`
    full: str                 # all segments space-joined; "" for a single segment
    is_image: bool = False
    stripped_image: str = ""  # image name without -WxH, image separators as spaces

    @property
    def words(self) -> set[str]:
        return set((self.full or self.cleaned).split())


def normalize_request(raw: str) -> RequestedPath:
    spaces = replace_separators(raw)
    cleaned = last_url_part(spaces)
    segments = [p for p in spaces.split("/") if p.strip()]
    full = " ".join(segments) if len(segments) > 1 else ""

    image = is_image_request(raw)
    stripped = ""
    if image:
        without_size = strip_image_size(raw)
        if without_size != raw:
            stripped = replace_separators(without_size, IMAGE_SEPARATORS)
    return RequestedPath(raw, spaces, cleaned, full, image, stripped)
