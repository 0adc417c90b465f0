from __future__ import annotations

from html import unescape
import re
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import unquote

from ..models.items import TermDefinition, TermRef
from .slugs import slugify

TermKey = Tuple[str, str]

# WXR domain attribute -> taxonomy name
_TAXONOMY_ALIASES: Dict[str, str] = {
    "category": "category",
    "post_tag": "post_tag",
    "tag": "post_tag",
}


def normalize_label(value: str) -> str:
    """Unescape HTML entities and collapse inner whitespace.

    Preserves original casing but trims leading/trailing spaces
    and converts sequences of whitespace to a single space.
    """
    if not value:
        return ""
    text = unescape(value).strip()
    return re.sub(r"\s+", " ", text)


def normalize_taxonomy(domain: Optional[str]) -> str:
    domain = (domain or "category").strip().lower()
    return _TAXONOMY_ALIASES.get(domain, domain)


def term_slug(value: Optional[str]) -> str:
    """Slug of a term nicename; WordPress percent-encodes non-ASCII nicenames."""
    return slugify(unquote(unescape(value or "")))


def term_ref(domain: Optional[str], name: str, nicename: Optional[str] = None) -> Optional[TermRef]:
    """Build a :class:`TermRef` from an item's ``<category>`` element values."""
    label = normalize_label(name)
    slug = term_slug(nicename) if nicename else slugify(label)
    if not slug:
        return None
    return TermRef(taxonomy=normalize_taxonomy(domain), slug=slug, name=label or slug)


class TermRegistry:
    """
    Collects taxonomy terms for one run.

    Terms are keyed by ``(taxonomy, slug)``: a category ``news`` and a tag
    ``news`` are two records.  The first definition of a key wins its name;
    a later definition may still supply a parent the first one lacked.
    """

    def __init__(self) -> None:
        self._terms: Dict[TermKey, TermDefinition] = {}

    def __len__(self) -> int:
        return len(self._terms)

    def __contains__(self, key: TermKey) -> bool:
        return key in self._terms

    def add(self, term: TermDefinition | TermRef) -> TermKey:
        taxonomy = normalize_taxonomy(term.taxonomy)
        key = (taxonomy, term.slug)
        parent = getattr(term, "parent_slug", None) or None
        existing = self._terms.get(key)
        if existing is None:
            self._terms[key] = TermDefinition(
                taxonomy=taxonomy, slug=term.slug, name=term.name or term.slug, parent_slug=parent
            )
        elif parent and not existing.parent_slug:
            existing.parent_slug = parent
        return key

    def extend(self, terms: Iterable[TermDefinition | TermRef]) -> None:
        for term in terms:
            self.add(term)

    def get(self, key: TermKey) -> Optional[TermDefinition]:
        return self._terms.get(key)

    def parent_of(self, key: TermKey) -> Optional[TermKey]:
        """Return the parent key, or ``None`` for roots and unresolvable parents."""
        term = self._terms.get(key)
        if term is None or not term.parent_slug:
            return None
        parent_key = (key[0], term.parent_slug)
        if parent_key == key or parent_key not in self._terms:
            return None
        return parent_key

    def ordered(self) -> List[TermDefinition]:
        """Terms sorted so every parent precedes its children.

        A parent cycle is broken by treating the term that closes it as a root.
        """
        result: List[TermDefinition] = []
        state: Dict[TermKey, int] = {}  # 1 = visiting, 2 = done

        def visit(key: TermKey) -> None:
            if state.get(key) == 2:
                return
            state[key] = 1
            parent = self.parent_of(key)
            if parent is not None and state.get(parent) != 1:
                visit(parent)
            state[key] = 2
            result.append(self._terms[key])

        for key in self._terms:
            visit(key)
        return result
