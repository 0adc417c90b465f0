"""
Allow-list HTML sanitizer.

``sanitize_html`` is deterministic: the same input always yields the same
output.  Tags outside :data:`ALLOWED_TAGS` are unwrapped (their text is
kept), dangerous containers are dropped together with their content,
attributes are filtered per tag and URL attributes may only use safe
schemes.  Links opening a new tab always get ``rel="noopener noreferrer"``.
"""

from __future__ import annotations

import re
from typing import Dict, FrozenSet
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Comment, Declaration, Doctype, ProcessingInstruction

YOUTUBE_HOSTS = frozenset({
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "youtube-nocookie.com",
    "www.youtube-nocookie.com",
    "youtu.be",
})

ALLOWED_TAGS = frozenset({
    "p", "a", "strong", "b", "em", "i", "u", "s", "del", "sub", "sup", "code", "pre",
    "ul", "ol", "li", "blockquote", "img", "br", "hr", "span",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "figure", "figcaption", "video", "audio", "source", "iframe", "div",
    "table", "thead", "tbody", "tfoot", "tr", "th", "td", "caption",
})

# ``<div>`` only survives as one of these placeholders; any other div is unwrapped
PLACEHOLDER_DIV_CLASSES = frozenset({"wp-audio", "wp-video", "wp-playlist", "wp-gallery-placeholder"})

# Removed together with everything inside them
DROPPED_TAGS = frozenset({
    "script", "style", "object", "embed", "applet", "form", "input", "button",
    "select", "textarea", "noscript", "template", "head", "title", "meta", "link", "base", "svg", "math",
})

GLOBAL_ATTRS = frozenset({"title", "class"})

TAG_ATTRS: Dict[str, FrozenSet[str]] = {
    "a": frozenset({"href", "target", "rel", "data-embed", "data-wp-post-id", "data-wp-attachment-id"}),
    "img": frozenset({"src", "srcset", "sizes", "alt", "width", "height", "loading"}),
    "video": frozenset({"src", "poster", "controls", "muted", "loop", "playsinline", "preload", "width", "height"}),
    "audio": frozenset({"src", "controls", "muted", "loop", "preload"}),
    "source": frozenset({"src", "srcset", "type"}),
    "iframe": frozenset({"src", "width", "height", "allow", "allowfullscreen", "frameborder"}),
    "pre": frozenset({"data-language", "data-lang"}),
    "code": frozenset({"data-lang"}),
    "hr": frozenset({"data-wp-nextpage"}),
    "figure": frozenset({"data-id", "data-size"}),
    "div": frozenset({
        "data-src", "data-poster", "data-width", "data-height", "data-preload", "data-loop", "data-autoplay",
        "data-ids", "data-type", "data-wp-gallery-ids", "data-wp-gallery-columns",
    }),
    "th": frozenset({"colspan", "rowspan", "scope"}),
    "td": frozenset({"colspan", "rowspan"}),
}

URL_ATTRS = frozenset({"href", "src", "poster", "data-src", "data-poster"})
SAFE_SCHEMES = frozenset({"http", "https", "mailto", "tel"})

_CODE_CLASS_RE = re.compile(r"^(prism|language|lang|hljs|undefined|numbers|line)[\w-]*$")
_SCHEME_RE = re.compile(r"^([a-z][a-z0-9+.-]*):", re.I)
_CONTROL_RE = re.compile(r"[\x00-\x20\x7f]+")


def _safe_url(value: str) -> bool:
    compact = _CONTROL_RE.sub("", value or "")
    m = _SCHEME_RE.match(compact)
    return m is None or m.group(1).lower() in SAFE_SCHEMES


def _youtube_src(value: str) -> bool:
    value = (value or "").strip()
    if value.startswith("//"):
        value = "https:" + value
    parts = urlsplit(value)
    return parts.scheme in ("http", "https") and (parts.hostname or "").lower() in YOUTUBE_HOSTS


def _is_placeholder_div(tag) -> bool:
    return any(c in PLACEHOLDER_DIV_CLASSES for c in tag.get("class") or [])


def _filter_classes(tag_name: str, value) -> str:
    classes = value if isinstance(value, list) else str(value).split()
    if tag_name in ("pre", "code"):
        classes = [c for c in classes if _CODE_CLASS_RE.match(c)]
    elif tag_name == "div":
        classes = [c for c in classes if c in PLACEHOLDER_DIV_CLASSES]
    return " ".join(classes)


def sanitize_html(html: str) -> str:
    """Return ``html`` restricted to the allowed tags and attributes."""
    if not html or not html.strip():
        return ""
    soup = BeautifulSoup(html, "html.parser")

    for node in soup.find_all(string=lambda s: isinstance(s, (Comment, Declaration, Doctype, ProcessingInstruction))):
        node.extract()

    for tag in soup.find_all(True):
        if tag.decomposed:
            continue
        if tag.name in DROPPED_TAGS or (tag.name == "iframe" and not _youtube_src(tag.get("src", ""))):
            tag.decompose()

    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS or (tag.name == "div" and not _is_placeholder_div(tag)):
            tag.unwrap()
            continue
        allowed = GLOBAL_ATTRS | TAG_ATTRS.get(tag.name, frozenset())
        for attr in list(tag.attrs):
            name = attr.lower()
            if name not in allowed or name.startswith("on"):
                del tag[attr]
            elif name in URL_ATTRS and not _safe_url(tag[attr]):
                del tag[attr]
            elif name == "class":
                classes = _filter_classes(tag.name, tag[attr])
                if classes:
                    tag[attr] = classes
                else:
                    del tag[attr]
        if tag.name == "a" and tag.get("target") == "_blank":
            tag["rel"] = "noopener noreferrer"

    return str(soup).strip()
