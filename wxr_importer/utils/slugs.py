from __future__ import annotations

import unicodedata
from typing import Dict, Mapping, Optional, Set


def slugify(value: str, max_length: int = 200) -> str:
    """Lower-case ``value`` and collapse every run of non-alphanumerics to ``-``.

    Letters and digits from any script are kept, so ``"Café Ünïcode"`` becomes
    ``"café-ünïcode"``.
    """
    text = unicodedata.normalize("NFC", value or "").strip().lower()
    out = []
    prev_dash = False
    for ch in text:
        if ch.isalnum():
            out.append(ch)
            prev_dash = False
        else:
            if not prev_dash:
                out.append("-")
            prev_dash = True
    slug = "".join(out).strip("-")
    return slug[:max_length].strip("-")


class SlugAllocator:
    """
    Hands out unique post slugs in document order.

    The first item asking for a slug keeps it; later collisions receive
    ``-1``, ``-2`` and so on.  ``persisted`` maps slugs already present in the
    target store to the external id that owns them: a slug owned by the same
    external id is free for that item, every other persisted slug is taken.
    """

    def __init__(self, persisted: Optional[Mapping[str, Optional[str]]] = None) -> None:
        self._persisted: Dict[str, Optional[str]] = dict(persisted or {})
        self._owner_slug: Dict[str, str] = {
            owner: slug for slug, owner in self._persisted.items() if owner
        }
        self._claimed: Set[str] = set()

    def _free(self, slug: str, external_id: Optional[str]) -> bool:
        if slug in self._claimed:
            return False
        if slug in self._persisted:
            return external_id is not None and self._persisted[slug] == external_id
        return True

    def allocate(self, source: str, external_id: Optional[str] = None, fallback: str = "post") -> str:
        # A post that was imported before keeps the slug it was stored under
        if external_id and external_id in self._owner_slug:
            kept = self._owner_slug[external_id]
            if kept not in self._claimed:
                self._claimed.add(kept)
                return kept
        base = slugify(source) or fallback
        candidate = base
        n = 0
        while not self._free(candidate, external_id):
            n += 1
            candidate = f"{base}-{n}"
        self._claimed.add(candidate)
        return candidate
