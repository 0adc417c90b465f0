"""
Legacy URL redirects.

:func:`derive_redirect` turns a post's original WordPress permalink and its
new slug into a 301 redirect, or ``None`` when the redirect would point at
itself.  :func:`generate_redirects_csv` writes the mapping of old paths to
new paths to a CSV file so that it can be reviewed or loaded into a web
server configuration.
"""

from __future__ import annotations

import csv
import os
from typing import Dict, Iterable, Optional
from urllib.parse import unquote, urlparse

from pydantic import BaseModel, ConfigDict, Field


class Redirect(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_path: str = Field(..., alias="fromPath")
    to_path: str = Field(..., alias="toPath")
    status: int = 301


def normalize_path(path: str) -> str:
    """Decode, ensure a leading slash and drop a trailing one (except for ``/``)."""
    path = unquote(path or "").strip()
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


def derive_redirect(original_url: Optional[str], slug: str, *, status: int = 301) -> Optional[Redirect]:
    """Build the redirect for a post, or ``None`` if there is nothing to redirect.

    ``fromPath`` is the path component of the original permalink; ``toPath``
    is ``/<slug>``.  Permalinks without a path (``/?p=123``) and paths that
    already equal the new one produce no redirect.
    """
    if not original_url or not slug:
        return None
    from_path = normalize_path(urlparse(original_url.strip()).path)
    to_path = normalize_path(slug)
    if from_path == "/" or from_path == to_path:
        return None
    return Redirect(from_path=from_path, to_path=to_path, status=status)


def generate_redirects_csv(redirects: Iterable[Dict[str, object]], *, out_path: str = "reports/redirect_map.csv") -> str:
    """Write ``OldPath,NewPath,Status`` rows for ``redirects``.

    Parameters
    ----------
    redirects:
        Iterable of dictionaries (or :class:`Redirect` dumps) with
        ``from_path``/``fromPath``, ``to_path``/``toPath`` and optional
        ``status`` keys.
    out_path:
        Location of the CSV file to be written.  The parent directory is
        created automatically.

    Returns
    -------
    str
        The path of the generated CSV file.
    """
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    with open(out_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["OldPath", "NewPath", "Status"])
        for row in redirects:
            old_path = row.get("from_path") or row.get("fromPath") or ""
            new_path = row.get("to_path") or row.get("toPath") or ""
            writer.writerow([old_path, new_path, row.get("status") or 301])
    return out_path
