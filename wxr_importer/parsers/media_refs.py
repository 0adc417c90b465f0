"""
Media reference discovery and URL rewriting.

WordPress content points at uploads from many places: ``img[src]``, every
candidate of ``img[srcset]``, ``video``/``audio``/``source`` sources, video
posters, the ``data-src``/``data-poster`` of converted ``[audio]`` and
``[video]`` shortcodes and plain links to documents.
:func:`discover_media_urls` collects them; :func:`canonical_media_url`
collapses resized variants (``photo-501x1024.png``) onto their original so
that one asset is fetched per original file; :func:`rewrite_media_urls`
swaps every relocated reference for its new URL.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup, Tag

MEDIA_EXTENSIONS = {
    # images
    "jpg", "jpeg", "png", "gif", "webp", "svg", "bmp", "tif", "tiff", "avif", "ico",
    # video / audio
    "mp4", "m4v", "mov", "webm", "ogv", "mp3", "m4a", "ogg", "oga", "wav", "flac",
    # documents
    "pdf", "zip", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "odt", "ods", "csv", "txt", "epub",
}

# Attributes holding a single media URL, in discovery order
URL_ATTRIBUTES = {
    "img": ("src",),
    "video": ("src", "poster"),
    "audio": ("src",),
    "source": ("src",),
    "div": ("data-src", "data-poster"),
}
SRCSET_TAGS = ("img", "source")
AV_PLACEHOLDER_CLASSES = ("wp-audio", "wp-video")

_DIMENSION_RE = re.compile(r"-\d+x\d+(?=\.[A-Za-z0-9]+$)")
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*:", re.I)


def _extension(url: str) -> str:
    path = urlsplit(url).path
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def absolutize(url: str, base_url: Optional[str] = None) -> str:
    """Resolve ``url`` against the site root; scheme-relative URLs get ``https:``."""
    url = (url or "").strip()
    if not url:
        return url
    if url.startswith("//"):
        scheme = urlsplit(base_url).scheme if base_url else ""
        return f"{scheme or 'https'}:{url}"
    if _SCHEME_RE.match(url):
        return url
    if not base_url:
        return url
    return urljoin(base_url.rstrip("/") + "/", url)


def canonical_media_url(url: str, base_url: Optional[str] = None) -> str:
    """Key a media URL by its original asset.

    The query string and fragment are dropped, scheme and host are
    lower-cased and a trailing ``-{width}x{height}`` before the extension is
    removed.
    """
    parts = urlsplit(absolutize(url, base_url))
    path = _DIMENSION_RE.sub("", parts.path)
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))


def _srcset_candidates(value: str) -> List[str]:
    urls = []
    for candidate in (value or "").split(","):
        candidate = candidate.strip()
        if candidate:
            urls.append(candidate.split()[0])
    return urls


def _is_fetchable(url: str) -> bool:
    url = (url or "").strip()
    if not url or url.startswith("#"):
        return False
    scheme = urlsplit(url).scheme.lower()
    return scheme in ("", "http", "https")


def _url_attributes(tag: Tag) -> Tuple[str, ...]:
    if tag.name == "div":
        classes = tag.get("class") or []
        if not any(c in AV_PLACEHOLDER_CLASSES for c in classes):
            return ()
    return URL_ATTRIBUTES.get(tag.name, ())


def discover_media_urls(html: str) -> List[str]:
    """Return every media URL literal referenced by ``html``, in document order, without duplicates."""
    if not html or not html.strip():
        return []
    soup = BeautifulSoup(html, "html.parser")
    found: List[str] = []
    seen = set()

    def add(url: Optional[str]) -> None:
        url = (url or "").strip()
        if _is_fetchable(url) and url not in seen:
            seen.add(url)
            found.append(url)

    for tag in soup.find_all(["img", "video", "audio", "source", "a", "div"]):
        if tag.name == "a":
            href = tag.get("href")
            if href and _extension(href) in MEDIA_EXTENSIONS:
                add(href)
            continue
        for attr in _url_attributes(tag):
            add(tag.get(attr))
            if attr == "src" and tag.name in SRCSET_TAGS:
                for candidate in _srcset_candidates(tag.get("srcset", "")):
                    add(candidate)
    return found


def build_rewrite_table(
    references: Iterable[str],
    media_urls: Dict[str, str],
    base_url: Optional[str] = None,
) -> Dict[str, str]:
    """Map each literal reference whose canonical URL was relocated to its new URL."""
    table: Dict[str, str] = {}
    for literal in references:
        new_url = media_urls.get(canonical_media_url(literal, base_url))
        if new_url:
            table[literal] = new_url
    return table


def _rewrite_srcset(value: str, table: Dict[str, str]) -> str:
    candidates = []
    for candidate in (value or "").split(","):
        parts = candidate.strip().split(None, 1)
        if not parts:
            continue
        parts[0] = table.get(parts[0], parts[0])
        candidates.append(" ".join(parts))
    return ", ".join(candidates)


def rewrite_media_urls(html: str, table: Dict[str, str]) -> str:
    """Replace every relocated reference in ``html`` with its new URL.

    Attribute values are compared after entity decoding, so ``&amp;`` and
    ``&#038;`` spellings of a query string match the discovered literal.
    Only whole values (or whole ``srcset`` candidates) are replaced.  The
    input is returned untouched when nothing matches.
    """
    if not html or not table:
        return html
    soup = BeautifulSoup(html, "html.parser")
    changed = False
    for tag in soup.find_all(True):
        attrs = ("href",) if tag.name == "a" else _url_attributes(tag)
        for attr in attrs:
            value = (tag.get(attr) or "").strip()
            if value in table:
                tag[attr] = table[value]
                changed = True
        if tag.name in SRCSET_TAGS and tag.get("srcset"):
            srcset = _rewrite_srcset(tag["srcset"], table)
            if srcset != tag["srcset"]:
                tag["srcset"] = srcset
                changed = True
    return str(soup) if changed else html
