"""
HTML normalization stages for WordPress post content.

Each stage is a plain ``str -> str`` function so that it can be tested on
its own.  :func:`normalize_post_html` runs the stages that do not depend on
media relocation (audio/video shortcodes, core blocks, block comments,
quicktags, lists, code blocks, embeds, internal link annotation);
:func:`finalize_post_html` runs the rest once the media URL map is known
(iframe policy, URL rewriting, video policy, sanitization).
:func:`resolve_internal_links` runs after every post has been saved.
"""

from __future__ import annotations

import html as html_lib
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Container, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from bs4 import BeautifulSoup, NavigableString, Tag

from .media_refs import rewrite_media_urls
from .sanitizer import YOUTUBE_HOSTS, sanitize_html

PLACEHOLDER_SRC = "/images/video-cannot-be-imported.svg"
PAGE_BREAK_HTML = '<hr data-wp-nextpage="true" />'

# Source attributes WordPress accepts in place of ``src``
AUDIO_FORMATS = ("mp3", "m4a", "ogg", "oga", "wav", "flac")
VIDEO_FORMATS = ("mp4", "m4v", "webm", "ogv", "wmv", "flv")

_GUTENBERG_RE = re.compile(r"<!--\s*/?wp:[\s\S]*?-->\s*")
_CORE_BLOCK_RE = re.compile(
    r"<!--\s*wp:(image|embed|gallery|core-embed/[a-z0-9-]+)(?:\s+(\{[\s\S]*?\}))?\s*-->"
    r"([\s\S]*?)<!--\s*/wp:\1\s*-->",
    re.I,
)
_NESTED_IMAGE_RE = re.compile(r"<!--\s*wp:image\s+(\{[\s\S]*?\})\s*-->", re.I)
_INNER_URL_RE = re.compile(r"https?://[^\s<>\"']+")
_AV_SHORTCODE_RE = re.compile(r"\[(audio|video|playlist)(?=[\s\]])([^\]]*)\](?:\s*\[/\1\])?", re.I)
_SHORTCODE_ATTR_RE = re.compile(r"([\w-]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\s\"'\]]+))")
_SHORTCODE_FLAG_RE = re.compile(r"(?:^|\s)([a-z]+)(?=\s|$)", re.I)
_MORE_RE = re.compile(r"<!--more(?:\s[^>]*?)?-->")
_NEXTPAGE_RE = re.compile(r"<!--nextpage-->")
_NOTEASER_RE = re.compile(r"<!--noteaser-->")
_HCB_RE = re.compile(
    r'<div\s+class="hcb_wrap"[^>]*>\s*<pre\s+class="[^"]*"\s+data-lang="([^"]*)"[^>]*>\s*'
    r"<code>([\s\S]*?)</code>\s*</pre>\s*</div>",
    re.I,
)
_PRE_SPLIT_RE = re.compile(r"(<pre\b[\s\S]*?</pre>)", re.I)
_EMBED_SHORTCODE_RE = re.compile(r"\[embed[^\]]*\]\s*(\S+?)\s*\[/embed\]", re.I)
_STANDALONE_LINE_RE = re.compile(r"^([ \t]*)(https?://[^\s<>\"']+)[ \t]*$", re.M)
_STANDALONE_PARA_RE = re.compile(r"<p>\s*(https?://[^\s<>\"']+)\s*</p>", re.I)

EMBED_PROVIDERS = (
    ("youtube", re.compile(r"^(https?://)?(www\.|m\.)?(youtube\.com|youtu\.be)/", re.I)),
    ("vimeo", re.compile(r"^(https?://)?(player\.)?vimeo\.com/", re.I)),
    ("soundcloud", re.compile(r"^(https?://)?(www\.|w\.)?soundcloud\.com/", re.I)),
)

def _attr_value(value: str) -> str:
    return html_lib.escape(html_lib.unescape(value or ""), quote=True)


def _shortcode_attrs(text: str) -> Tuple[Dict[str, str], set]:
    values: Dict[str, str] = {}
    for m in _SHORTCODE_ATTR_RE.finditer(text or ""):
        values[m.group(1).lower()] = next(g for g in m.group(2, 3, 4) if g is not None)
    bare = _SHORTCODE_ATTR_RE.sub(" ", text or "")
    flags = {name.lower() for name in _SHORTCODE_FLAG_RE.findall(bare)}
    return values, flags


def _is_on(name: str, values: Dict[str, str], flags: set) -> bool:
    if name in flags:
        return True
    return (values.get(name) or "").strip().lower() in ("1", "on", "true", "yes", name)


def _av_div(css_class: str, meta: List[Tuple[str, str]]) -> str:
    attrs = "".join(f' {name}="{value}"' for name, value in meta if value)
    return f'<div class="{css_class}"{attrs}></div>'


def _av_source(values: Dict[str, str], formats: Tuple[str, ...]) -> str:
    src = values.get("src")
    if src:
        return src
    for fmt in formats:
        if values.get(fmt):
            return values[fmt]
    return ""


def _av_shortcode(m: re.Match) -> str:
    kind = m.group(1).lower()
    values, flags = _shortcode_attrs(m.group(2))
    preload = (values.get("preload") or "").lower()
    common = [
        ("data-preload", preload if preload in ("auto", "metadata", "none") else ""),
        ("data-loop", "true" if _is_on("loop", values, flags) else ""),
        ("data-autoplay", "true" if _is_on("autoplay", values, flags) else ""),
    ]
    if kind == "audio":
        return _av_div("wp-audio", [("data-src", _attr_value(_av_source(values, AUDIO_FORMATS)))] + common)
    if kind == "video":
        width = values.get("width", "")
        height = values.get("height", "")
        return _av_div("wp-video", [
            ("data-src", _attr_value(_av_source(values, VIDEO_FORMATS))),
            ("data-poster", _attr_value(values.get("poster", ""))),
            ("data-width", width if width.isdigit() else ""),
            ("data-height", height if height.isdigit() else ""),
        ] + common)
    ids = [i.strip() for i in (values.get("ids") or "").split(",") if i.strip().isdigit()]
    playlist_type = (values.get("type") or "audio").lower()
    return _av_div("wp-playlist", [
        ("data-ids", ",".join(ids)),
        ("data-type", playlist_type if playlist_type in ("audio", "video") else "audio"),
    ])


def transform_av_shortcodes(html: str) -> str:
    """Turn ``[audio]``, ``[video]`` and ``[playlist]`` shortcodes into placeholder ``<div>`` elements.

    ``[audio src=...]`` becomes ``<div class="wp-audio" data-src=...>``,
    ``[video]`` becomes ``wp-video`` (with poster and size) and
    ``[playlist ids=...]`` becomes ``wp-playlist``.  Shortcodes inside
    ``<pre>`` are left alone.
    """
    if not html or "[" not in html:
        return html or ""
    parts = _PRE_SPLIT_RE.split(html)
    return "".join(part if i % 2 else _AV_SHORTCODE_RE.sub(_av_shortcode, part) for i, part in enumerate(parts))


def _block_attrs(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _embed_block(attrs: Dict[str, Any], inner: str) -> str:
    url = str(attrs.get("url") or "").strip()
    if not url:
        m = _INNER_URL_RE.search(inner)
        url = html_lib.unescape(m.group(0)) if m else ""
    if not url:
        return inner
    provider = embed_provider(url)
    escaped = html_lib.escape(url, quote=True)
    if provider:
        return _embed_anchor(provider, escaped)
    return f'<p><a class="wp-embed" href="{escaped}">{escaped}</a></p>'


def _core_block(m: re.Match) -> str:
    block_type = m.group(1).lower()
    attrs = _block_attrs(m.group(2))
    inner = m.group(3)
    if block_type == "image":
        image_id = attrs.get("id", attrs.get("attachmentId"))
        size = attrs.get("sizeSlug") or attrs.get("size")
        meta = ""
        if image_id not in (None, ""):
            meta += f' data-id="{html_lib.escape(str(image_id), quote=True)}"'
        if size:
            meta += f' data-size="{html_lib.escape(str(size), quote=True)}"'
        return f'<figure class="wp-image"{meta}>{inner}</figure>'
    if block_type == "gallery":
        ids = attrs.get("ids")
        if not isinstance(ids, list) or not ids:
            # newer galleries nest one image block per picture
            ids = [_block_attrs(raw).get("id") for raw in _NESTED_IMAGE_RE.findall(inner)]
        ids = [str(i) for i in ids if str(i).isdigit()]
        columns = attrs.get("columns")
        meta = ""
        if ids:
            meta += f' data-wp-gallery-ids="{",".join(ids)}"'
        if str(columns or "").isdigit():
            meta += f' data-wp-gallery-columns="{columns}"'
        return f'<div class="wp-gallery-placeholder"{meta}></div>'
    return _embed_block(attrs, inner)


def transform_core_blocks(html: str) -> str:
    """Convert ``wp:image``, ``wp:embed`` and ``wp:gallery`` blocks using their JSON attributes.

    Image blocks become ``<figure class="wp-image">`` carrying the
    attachment id and size, embed blocks become embed anchors built from the
    block's ``url`` and galleries become a placeholder listing the gallery's
    attachment ids and column count.  Every other block is left for
    :func:`strip_gutenberg_comments`.
    """
    if not html or "wp:" not in html:
        return html or ""
    return _CORE_BLOCK_RE.sub(_core_block, html)


def strip_gutenberg_comments(html: str) -> str:
    """Remove ``<!-- wp:... -->`` block delimiters, keeping the inner markup."""
    return _GUTENBERG_RE.sub("", html or "")


def apply_quicktags(html: str, excerpt: Optional[str] = None) -> Tuple[str, Optional[str], int]:
    """Expand ``<!--more-->`` and ``<!--nextpage-->``.

    Only the first ``<!--more-->`` is special.  Without an explicit excerpt
    the text before it becomes the excerpt and the body keeps what follows;
    with one, the marker is just dropped.  Returns ``(html, excerpt, page_breaks)``.
    """
    html = html or ""
    match = _MORE_RE.search(html)
    if match:
        before, after = html[: match.start()], html[match.end():]
        if excerpt and excerpt.strip():
            html = before + after
        else:
            excerpt = before.strip() or None
            html = after.lstrip()
    html = _NOTEASER_RE.sub("", html)
    html, page_breaks = _NEXTPAGE_RE.subn(PAGE_BREAK_HTML, html)
    return html, excerpt, page_breaks


def _significant_children(tag: Tag):
    return [c for c in tag.children if not (isinstance(c, NavigableString) and not c.strip())]


def repair_lists(html: str) -> str:
    """Unwrap ``<p>`` around whole lists and ``<p>`` that is the sole child of ``<li>``.

    Works at any nesting depth and inside blockquotes.  The input is
    returned untouched when nothing needs repair.
    """
    if not html or ("<ul" not in html and "<ol" not in html):
        return html
    soup = BeautifulSoup(html, "html.parser")
    changed = False
    for p in soup.find_all("p"):
        kids = _significant_children(p)
        if len(kids) == 1 and isinstance(kids[0], Tag) and kids[0].name in ("ul", "ol"):
            p.unwrap()
            changed = True
    for li in soup.find_all("li"):
        kids = _significant_children(li)
        if len(kids) == 1 and isinstance(kids[0], Tag) and kids[0].name == "p":
            kids[0].unwrap()
            changed = True
    return str(soup) if changed else html


def canonicalize_code_blocks(html: str) -> str:
    """Rewrite highlighting-plugin wrappers to ``<pre data-language="x"><code>``."""

    def _replace(m: re.Match) -> str:
        lang = m.group(1).strip().lower()
        return f'<pre data-language="{lang}"><code>{m.group(2)}</code></pre>'

    return _HCB_RE.sub(_replace, html or "")


def embed_provider(url: str) -> Optional[str]:
    for name, pattern in EMBED_PROVIDERS:
        if pattern.match(url or ""):
            return name
    return None


def _embed_anchor(provider: str, url: str) -> str:
    return f'<p><a class="wp-embed" data-embed="{provider}" href="{url}">{url}</a></p>'


def _embed_segment(text: str) -> str:
    def shortcode(m: re.Match) -> str:
        url = m.group(1)
        provider = embed_provider(url)
        return _embed_anchor(provider, url) if provider else url

    def standalone(m: re.Match) -> str:
        url = m.group(m.lastindex)
        provider = embed_provider(url)
        return _embed_anchor(provider, url) if provider else m.group(0)

    text = _EMBED_SHORTCODE_RE.sub(shortcode, text)
    text = _STANDALONE_PARA_RE.sub(standalone, text)
    return _STANDALONE_LINE_RE.sub(standalone, text)


def transform_auto_embeds(html: str) -> str:
    """Turn ``[embed]`` shortcodes and bare provider URLs on their own line into embed anchors.

    Code inside ``<pre>`` is left alone.
    """
    if not html:
        return html or ""
    parts = _PRE_SPLIT_RE.split(html)
    return "".join(part if i % 2 else _embed_segment(part) for i, part in enumerate(parts))


def _placeholder(soup: BeautifulSoup) -> Tag:
    return soup.new_tag("img", attrs={"src": PLACEHOLDER_SRC, "alt": "Video cannot be imported"})


def _host(url: str) -> str:
    url = (url or "").strip()
    if url.startswith("//"):
        url = "https:" + url
    return (urlsplit(url).hostname or "").lower()


def _bare_host(url: str) -> str:
    host = _host(url)
    return host[4:] if host.startswith("www.") else host


def transform_iframes(html: str) -> str:
    """Keep YouTube iframes; replace every other iframe with the placeholder image."""
    if not html or "<iframe" not in html.lower():
        return html or ""
    soup = BeautifulSoup(html, "html.parser")
    for iframe in soup.find_all("iframe"):
        if _host(iframe.get("src", "")) not in YOUTUBE_HOSTS:
            iframe.replace_with(_placeholder(soup))
    return str(soup)


def replace_unrelocated_videos(html: str, is_relocated: Callable[[str], bool]) -> str:
    """Replace each ``<video>`` that references any unrelocated URL with the placeholder.

    A video survives only if its ``src``, its ``poster`` and every nested
    ``<source src>`` satisfy ``is_relocated``.  A ``[video]`` shortcode
    placeholder is held to the same rule for its ``data-src`` and ``data-poster``.
    """
    if not html or ("<video" not in html.lower() and "wp-video" not in html):
        return html or ""
    soup = BeautifulSoup(html, "html.parser")
    for video in soup.find_all("video") + soup.find_all("div", class_="wp-video"):
        if video.name == "div":
            urls = [video.get("data-src"), video.get("data-poster")]
        else:
            urls = [video.get("src"), video.get("poster")]
            urls.extend(source.get("src") for source in video.find_all("source"))
        urls = [u.strip() for u in urls if u and u.strip()]
        if not urls or not all(is_relocated(u) for u in urls):
            video.replace_with(_placeholder(soup))
    return str(soup)


def annotate_internal_links(html: str, base_url: Optional[str] = None) -> str:
    """Mark links to ``?p=N`` / ``?page_id=N`` and ``?attachment_id=N`` on the site itself.

    The ids are carried as ``data-wp-post-id`` and ``data-wp-attachment-id``
    so that :func:`resolve_internal_links` can point them at their new home
    once every post has been saved.
    """
    if not html or ("p=" not in html and "page_id=" not in html and "attachment_id=" not in html):
        return html or ""
    site_host = _bare_host(base_url or "")
    soup = BeautifulSoup(html, "html.parser")
    changed = False
    for a in soup.find_all("a", href=True):
        if a.get("data-wp-post-id") or a.get("data-wp-attachment-id"):
            continue
        parts = urlsplit(a["href"].strip())
        host = _bare_host(a["href"])
        if host and host != site_host:
            continue
        if parts.path not in ("", "/", "/index.php"):
            continue
        query = parse_qs(parts.query)
        attachment = (query.get("attachment_id") or [""])[0]
        post = (query.get("p") or query.get("page_id") or [""])[0]
        if attachment.isdigit():
            a["data-wp-attachment-id"] = attachment
            changed = True
        elif post.isdigit():
            a["data-wp-post-id"] = post
            changed = True
    return str(soup) if changed else html


def resolve_internal_links(
    html: Optional[str],
    post_slugs: Dict[str, str],
    attachment_urls: Dict[str, str],
) -> Optional[str]:
    """Point annotated links at the post's final ``/<slug>`` or the attachment's relocated URL.

    Links whose id is unknown keep their original ``href``.
    """
    if not html or "data-wp-" not in html:
        return html
    soup = BeautifulSoup(html, "html.parser")
    changed = False
    for a in soup.find_all("a"):
        slug = post_slugs.get(a.get("data-wp-post-id") or "")
        url = attachment_urls.get(a.get("data-wp-attachment-id") or "")
        target = f"/{slug}" if slug else url
        if target and a.get("href") != target:
            a["href"] = target
            changed = True
    return str(soup) if changed else html


@dataclass
class NormalizedHtml:
    html: str
    excerpt: Optional[str]
    page_breaks: int = 0


def normalize_post_html(html: str, excerpt: Optional[str] = None, base_url: Optional[str] = None) -> NormalizedHtml:
    """Run the stages that come before media discovery."""
    html = transform_av_shortcodes(html)
    html = transform_core_blocks(html)
    html = strip_gutenberg_comments(html)
    html, excerpt, page_breaks = apply_quicktags(html, excerpt)
    html = repair_lists(html)
    html = canonicalize_code_blocks(html)
    html = transform_auto_embeds(html)
    html = annotate_internal_links(html, base_url)
    if excerpt:
        excerpt = annotate_internal_links(repair_lists(strip_gutenberg_comments(excerpt)), base_url)
    return NormalizedHtml(html=html, excerpt=excerpt, page_breaks=page_breaks)


def finalize_post_html(
    html: str,
    rewrite_table: Dict[str, str],
    relocated_urls: Container[str],
) -> str:
    """Run the stages that need the media URL map; sanitization is always last."""
    html = transform_iframes(html)
    html = rewrite_media_urls(html, rewrite_table)
    html = replace_unrelocated_videos(html, lambda url: url in relocated_urls)
    return sanitize_html(html)


def first_image(html: str) -> Tuple[Optional[str], Optional[str]]:
    """``(src, alt)`` of the first ``<img>`` in ``html``, or ``(None, None)``."""
    if not html or "<img" not in html.lower():
        return None, None
    soup = BeautifulSoup(html, "html.parser")
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        if src and src != PLACEHOLDER_SRC:
            return src, (img.get("alt") or "").strip() or None
    return None, None


def plain_text_excerpt(html: str, limit: int = 300) -> Optional[str]:
    """First ``limit`` characters of the text of ``html``, cut at a word boundary."""
    if not html:
        return None
    text = " ".join(BeautifulSoup(html, "html.parser").get_text(" ").split())
    if not text:
        return None
    if len(text) <= limit:
        return text
    cut = text[:limit]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,.;:") + "…"
