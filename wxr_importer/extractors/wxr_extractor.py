import html
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import urljoin

from ..models.items import AttachmentItem, Author, Comment, ImportItem, PostItem, TermDefinition, TermRef
from ..models.job import ImportErrorRecord
from ..utils.comments import SKIPPED_TYPES, map_comment_status
from ..utils.errors import report_error
from ..utils.logs import log_message
from ..utils.taxonomy import normalize_label, term_ref, term_slug

KNOWN_WXR_VERSIONS = {"1.0", "1.1", "1.2"}

# Statuses whose post date is a real publication date
DATED_STATUSES = {"publish", "future", "private"}

_ZERO_DATE = "0000-00-00 00:00:00"

# Prefixes WordPress uses; an export that forgets to declare one still parses.
_KNOWN_NAMESPACES = {
    "wp": "http://wordpress.org/export/1.2/",
    "excerpt": "http://wordpress.org/export/1.2/excerpt/",
    "content": "http://purl.org/rss/1.0/modules/content/",
    "wfw": "http://wellformedweb.org/CommentAPI/",
    "dc": "http://purl.org/dc/elements/1.1/",
}

_PREFIX_USE_RE = re.compile(r"</?([A-Za-z_][\w.-]*):[A-Za-z_]")
_PREFIX_DECL_RE = re.compile(r"xmlns:([A-Za-z_][\w.-]*)\s*=")
_ENCODING_RE = re.compile(rb"""^\s*<\?xml[^>]*encoding=["']([A-Za-z0-9._-]+)["']""")


class WxrParseError(Exception):
    """The document cannot be parsed at all; the whole run fails."""

    def __init__(self, message: str, position: Optional[Tuple[int, int]] = None) -> None:
        if position:
            message = f"{message} (line {position[0]}, column {position[1]})"
        super().__init__(message)
        self.position = position


@dataclass
class WxrDocument:
    """Everything read from one WXR file, items in document order."""

    version: Optional[str] = None
    base_url: str = ""
    authors: List[Author] = field(default_factory=list)
    terms: List[TermDefinition] = field(default_factory=list)
    items: List[ImportItem] = field(default_factory=list)
    errors: List[ImportErrorRecord] = field(default_factory=list)
    total_items: int = 0
    skipped: int = 0


def _split_tag(tag: str) -> Tuple[str, str]:
    if tag.startswith("{"):
        ns, _, local = tag[1:].partition("}")
        return ns, local
    return "", tag


def _children(el: ET.Element, name: str, ns_hint: Optional[str] = None) -> Iterable[ET.Element]:
    for child in el:
        if not isinstance(child.tag, str):
            continue
        ns, local = _split_tag(child.tag)
        if local == name and (ns_hint is None or ns_hint in ns):
            yield child


def _text(el: ET.Element, name: str, ns_hint: Optional[str] = None) -> str:
    for child in _children(el, name, ns_hint):
        return (child.text or "").strip()
    return ""


def _raw_text(el: ET.Element, name: str, ns_hint: Optional[str] = None) -> str:
    for child in _children(el, name, ns_hint):
        return child.text or ""
    return ""


def _declare_missing_prefixes(text: str) -> str:
    used = set(_PREFIX_USE_RE.findall(text))
    declared = set(_PREFIX_DECL_RE.findall(text))
    missing = sorted(p for p in used - declared if p not in ("xml", "xmlns"))
    if not missing:
        return text
    decls = " ".join(
        f'xmlns:{p}="{_KNOWN_NAMESPACES.get(p, "urn:wxr-importer:" + p)}"' for p in missing
    )
    log_message(f"Declaring missing namespace prefixes: {', '.join(missing)}", level="DEBUG")
    return re.sub(r"<rss\b", f"<rss {decls}", text, count=1)


def _decode(data: Union[bytes, str]) -> str:
    if isinstance(data, str):
        return data
    match = _ENCODING_RE.match(data)
    encoding = match.group(1).decode("ascii") if match else "utf-8"
    try:
        return data.decode(encoding)
    except (LookupError, UnicodeDecodeError):
        return data.decode("utf-8", errors="replace")


def _parse_wp_date(value: str, *, utc: bool) -> Optional[datetime]:
    value = (value or "").strip()
    if not value or value == _ZERO_DATE:
        return None
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise ValueError(f"Invalid {'post_date_gmt' if utc else 'post_date'} value {value!r}")


def _parse_pub_date(value: str) -> Optional[datetime]:
    value = (value or "").strip()
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _postmeta(item: ET.Element) -> Dict[str, str]:
    meta: Dict[str, str] = {}
    for pm in _children(item, "postmeta"):
        key = _text(pm, "meta_key")
        if key and key not in meta:
            meta[key] = _raw_text(pm, "meta_value").strip()
    return meta


def _extract_comments(item: ET.Element, import_pingbacks: bool) -> List[Comment]:
    comments: List[Comment] = []
    for el in _children(item, "comment"):
        comment_id = _text(el, "comment_id")
        if not comment_id:
            continue
        ctype = _text(el, "comment_type") or "comment"
        if ctype in SKIPPED_TYPES and not import_pingbacks:
            continue
        status = map_comment_status(_text(el, "comment_approved"))
        if status is None:
            continue
        date = None
        try:
            date = _parse_wp_date(_text(el, "comment_date_gmt"), utc=True) or _parse_wp_date(
                _text(el, "comment_date"), utc=False
            )
        except ValueError:
            log_message(f"Comment {comment_id} has an unreadable date; importing it undated.", level="WARNING")
        comments.append(
            Comment(
                id=comment_id,
                author=_text(el, "comment_author") or None,
                author_email=_text(el, "comment_author_email") or None,
                author_url=_text(el, "comment_author_url") or None,
                content=_raw_text(el, "comment_content"),
                date=date,
                approved=status,
                parent_id=_text(el, "comment_parent") or None,
                type=ctype,
            )
        )
    return comments


def _extract_terms(item: ET.Element) -> List[TermRef]:
    terms: List[TermRef] = []
    seen = set()
    for cat in _children(item, "category"):
        if _split_tag(cat.tag)[0]:
            continue  # only the plain RSS <category>
        ref = term_ref(cat.get("domain"), cat.text or "", cat.get("nicename"))
        if ref is None or (ref.taxonomy, ref.slug) in seen:
            continue
        seen.add((ref.taxonomy, ref.slug))
        terms.append(ref)
    return terms


def _published_at(item: ET.Element, status: str) -> Optional[datetime]:
    gmt = _parse_wp_date(_text(item, "post_date_gmt"), utc=True)
    local = _parse_wp_date(_text(item, "post_date"), utc=False)
    if status not in DATED_STATUSES:
        return None
    return gmt or local or _parse_pub_date(_text(item, "pubDate"))


def _build_post(item: ET.Element, guid: str, status: str, import_pingbacks: bool) -> PostItem:
    meta = _postmeta(item)
    terms = _extract_terms(item)
    excerpt = _raw_text(item, "encoded", ns_hint="excerpt").strip() or None
    return PostItem(
        external_id=guid,
        wp_id=_text(item, "post_id") or None,
        title=html.unescape(_text(item, "title")),
        slug=_text(item, "post_name"),
        html=_raw_text(item, "encoded", ns_hint="purl.org/rss/1.0/modules/content"),
        excerpt=excerpt,
        author=_text(item, "creator") or None,
        status=status,
        published_at=_published_at(item, status),
        original_url=_text(item, "link") or None,
        categories=[t for t in terms if t.taxonomy == "category"],
        tags=[t for t in terms if t.taxonomy == "post_tag"],
        terms=[t for t in terms if t.taxonomy not in ("category", "post_tag")],
        featured_image_id=meta.get("_thumbnail_id") or None,
        comments=_extract_comments(item, import_pingbacks),
    )


def _build_attachment(item: ET.Element, guid: str, base_url: str) -> AttachmentItem:
    meta = _postmeta(item)
    url = _text(item, "attachment_url") or guid
    if url and base_url and not re.match(r"^[a-z][a-z0-9+.-]*://", url, re.I) and not url.startswith("//"):
        url = urljoin(base_url.rstrip("/") + "/", url.lstrip("/"))
    parent = _text(item, "post_parent")
    return AttachmentItem(
        external_id=guid,
        wp_id=_text(item, "post_id") or None,
        title=html.unescape(_text(item, "title")),
        attachment_url=url,
        alt=meta.get("_wp_attachment_image_alt") or None,
        parent_id=parent if parent and parent != "0" else None,
    )


def _extract_channel_terms(channel: ET.Element) -> List[TermDefinition]:
    terms: List[TermDefinition] = []
    for el in _children(channel, "category", ns_hint="wordpress.org/export"):
        slug = term_slug(_text(el, "category_nicename"))
        if slug:
            terms.append(TermDefinition(
                taxonomy="category",
                slug=slug,
                name=normalize_label(_text(el, "cat_name")) or slug,
                parent_slug=term_slug(_text(el, "category_parent")) or None,
            ))
    for el in _children(channel, "tag", ns_hint="wordpress.org/export"):
        slug = term_slug(_text(el, "tag_slug"))
        if slug:
            terms.append(TermDefinition(
                taxonomy="post_tag", slug=slug, name=normalize_label(_text(el, "tag_name")) or slug
            ))
    for el in _children(channel, "term", ns_hint="wordpress.org/export"):
        slug = term_slug(_text(el, "term_slug"))
        taxonomy = _text(el, "term_taxonomy")
        if slug and taxonomy:
            terms.append(TermDefinition(
                taxonomy=taxonomy,
                slug=slug,
                name=normalize_label(_text(el, "term_name")) or slug,
                parent_slug=term_slug(_text(el, "term_parent")) or None,
            ))
    return terms


def _extract_authors(channel: ET.Element) -> List[Author]:
    authors: List[Author] = []
    for el in _children(channel, "author", ns_hint="wordpress.org/export"):
        login = _text(el, "author_login")
        if login:
            authors.append(Author(
                login=login,
                email=_text(el, "author_email") or None,
                display_name=_text(el, "author_display_name") or None,
            ))
    return authors


def extract_items_from_wxr(
    data: Union[bytes, str],
    *,
    allowed_statuses: Iterable[str] = ("publish",),
    import_pingbacks: bool = False,
) -> WxrDocument:
    """Parse a WXR document and classify its items.

    Args:
        data: The raw XML (bytes or text).
        allowed_statuses: Post statuses to keep; other posts are skipped.
            Attachments are kept whatever their status.
        import_pingbacks: Keep pingback/trackback comments.

    Returns:
        WxrDocument: authors, channel terms and the typed items in document
        order, with skip counts and per-item extraction errors.

    Raises:
        WxrParseError: If the document is empty, not well-formed or has no channel.
    """
    text = _decode(data)
    if not text.strip():
        raise WxrParseError("WXR document is empty")
    text = _declare_missing_prefixes(text)
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        error = WxrParseError(f"Malformed WXR document: {e}")
        error.position = getattr(e, "position", None)
        raise error from e

    channel = root if _split_tag(root.tag)[1] == "channel" else next(iter(_children(root, "channel")), None)
    if channel is None:
        raise WxrParseError("WXR document has no <channel> element")

    doc = WxrDocument()
    doc.version = _text(channel, "wxr_version") or None
    if doc.version and doc.version not in KNOWN_WXR_VERSIONS:
        log_message(f"Unknown WXR version {doc.version!r}; continuing.", level="WARNING")
    doc.base_url = _text(channel, "base_site_url") or _text(channel, "base_blog_url") or _text(channel, "link")
    doc.authors = _extract_authors(channel)
    doc.terms = _extract_channel_terms(channel)

    statuses = {s.lower() for s in allowed_statuses}
    seen_guids = set()
    for item in _children(channel, "item"):
        doc.total_items += 1
        title = _text(item, "title")
        guid = _text(item, "guid")
        post_type = (_text(item, "post_type") or "post").lower()
        status = (_text(item, "status") or "publish").lower()
        if not guid:
            log_message(f"Skipping item without GUID: {title or '(untitled)'}", level="WARNING")
            doc.skipped += 1
            continue
        if post_type not in ("post", "attachment"):
            log_message(f"Skipping {post_type} item {guid}", level="DEBUG")
            doc.skipped += 1
            continue
        if post_type == "post" and status not in statuses:
            log_message(f"Skipping post {guid} with status {status}", level="DEBUG")
            doc.skipped += 1
            continue
        if guid in seen_guids:
            log_message(f"Skipping duplicate GUID {guid}", level="WARNING")
            doc.skipped += 1
            continue
        seen_guids.add(guid)
        try:
            if post_type == "post":
                doc.items.append(_build_post(item, guid, status, import_pingbacks))
            else:
                doc.items.append(_build_attachment(item, guid, doc.base_url))
        except Exception as e:
            doc.errors.append(
                report_error("item_parse", {"externalId": guid, "title": title}, e, item_data={"postType": post_type})
            )
    return doc


def extract_items_from_file(file_path: str, **kwargs) -> WxrDocument:
    """Read ``file_path`` and hand it to :func:`extract_items_from_wxr`."""
    try:
        with open(file_path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise WxrParseError(f"Cannot read WXR file {file_path}: {e}") from e
    return extract_items_from_wxr(data, **kwargs)
