"""
Comment threading.

WXR comments carry a source-local id and the source-local id of their
parent.  Before writing, the tree is rebuilt from those pointers alone:
each comment gets a materialized ``path`` (ancestor ids joined by ``/``,
ending with its own id) and a ``depth`` (0 for roots).  A comment whose
declared parent is missing from the export, or whose parent chain loops,
is treated as a root.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ..models.items import Comment

# WordPress comment_approved value -> stored comment status
_STATUS_MAP = {
    "1": "approved",
    "approve": "approved",
    "approved": "approved",
    "0": "pending",
    "hold": "pending",
    "pending": "pending",
    "spam": "spam",
}

SKIPPED_TYPES = frozenset({"pingback", "trackback"})


def map_comment_status(raw: Optional[str]) -> Optional[str]:
    """Map a WXR ``comment_approved`` value; ``None`` means the comment is dropped (trash)."""
    value = (raw or "0").strip().lower()
    if value in ("trash", "post-trashed"):
        return None
    return _STATUS_MAP.get(value, "pending")


@dataclass
class ThreadedComment:
    comment: Comment
    parent_id: Optional[str]
    path: str
    depth: int


def thread_comments(comments: Iterable[Comment]) -> List[ThreadedComment]:
    """Compute path/depth for every comment; parents come before their children.

    Comments with equal depth keep their document order.  Duplicate ids keep
    the first occurrence.
    """
    by_id: Dict[str, Comment] = {}
    for c in comments:
        by_id.setdefault(c.id, c)

    paths: Dict[str, List[str]] = {}

    def chain(comment_id: str) -> List[str]:
        if comment_id in paths:
            return paths[comment_id]
        ancestors: List[str] = []
        visited = set()
        current: Optional[str] = comment_id
        path: Optional[List[str]] = None
        while current is not None and current in by_id and current not in visited:
            if current in paths:
                path = paths[current] + list(reversed(ancestors))
                break
            visited.add(current)
            ancestors.append(current)
            current = by_id[current].parent_id
        if path is None:
            # ran off the top: a missing parent or a loop makes the last visited comment a root
            path = list(reversed(ancestors))
        for i, node in enumerate(path):
            paths.setdefault(node, path[: i + 1])
        return paths[comment_id]

    result: List[ThreadedComment] = []
    for c in by_id.values():
        path = chain(c.id)
        parent = path[-2] if len(path) > 1 else None
        result.append(ThreadedComment(comment=c, parent_id=parent, path="/".join(path), depth=len(path) - 1))

    indexed = list(enumerate(result))
    indexed.sort(key=lambda pair: (pair[1].depth, pair[0]))
    return [t for _, t in indexed]
