"""
Structured reporting of per-item failures and successes.

The :mod:`wxr_importer.utils.errors` module centralizes the construction of
:class:`~wxr_importer.models.job.ImportErrorRecord` entries.  Each entry is
also appended to a JSON Lines file under the report directory so that the
information can be reviewed or parsed after a run.

Two public functions are provided:

``report_error``
    Record an error for an item (a post, an attachment or the whole
    document).  An optional exception can be supplied and its text becomes
    the record's message.

``report_ok``
    Record a successful step for an item.  Additional key/value information
    can be attached to the entry via the ``extra`` parameter.

The ``ERRORS`` dictionary maps error or event codes to human readable
messages.  Codes not present in the dictionary fall back to the code itself.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional

from ..models.job import ImportErrorRecord
from .logs import log_message, report_dir

# Mapping of event codes used throughout the import to descriptive messages.
ERRORS: Dict[str, str] = {
    "parse": "WXR document could not be parsed",
    "item_parse": "Item could not be read from the WXR document",
    "post_import": "Failed to import post",
    "attachment_import": "Failed to process attachment",
    "redirect_creation": "Failed to create redirect",
    "user_import": "Failed to import author",
    "term_import": "Failed to import taxonomy term",
    "link_resolution": "Failed to resolve internal links",
    "import_failed": "Import aborted by an unexpected error",
    "ATTACHMENT_PROCESSED": "Attachment processed",
    "POST_IMPORTED": "Post imported successfully",
    "POST_PREVIEWED": "Post processed (dry run, not written)",
}

FATAL_IDENTIFIER = "FATAL"


def _write_jsonl(name: str, data: Dict[str, Any]) -> None:
    """Append ``data`` as a JSON object followed by a newline to ``name``."""
    directory = report_dir()
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, name), "a", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, default=str)
        f.write("\n")


def _describe(item: Any) -> Dict[str, Optional[str]]:
    if item is None:
        return {"identifier": FATAL_IDENTIFIER, "title": None}
    if isinstance(item, dict):
        return {
            "identifier": item.get("externalId") or item.get("identifier") or item.get("title") or "unknown",
            "title": item.get("title"),
        }
    identifier = getattr(item, "identifier", None) or getattr(item, "title", None) or "unknown"
    return {"identifier": str(identifier), "title": getattr(item, "title", None)}


def report_error(
    code: str,
    item: Any,
    exc: Optional[BaseException] = None,
    *,
    item_data: Optional[Dict[str, Any]] = None,
) -> ImportErrorRecord:
    """Log an error event for ``item`` and return it as a record.

    Parameters
    ----------
    code:
        The error type.  If ``code`` is present in :data:`ERRORS` its value
        is used as the message prefix.
    item:
        The post/attachment (model or dict) the error belongs to, or ``None``
        for a document-level failure.
    exc:
        Optional exception that triggered the error.
    item_data:
        Optional raw payload kept with the record for debugging.
    """
    described = _describe(item)
    message = ERRORS.get(code, code)
    if exc is not None:
        message = f"{message}: {exc}"
    record = ImportErrorRecord(
        item_identifier=described["identifier"],
        error_type=code,
        message=message,
        item_data=item_data,
    )
    entry = record.model_dump(by_alias=True)
    entry["title"] = described["title"]
    log_message(f"{message} - {described['identifier']}", level="ERROR")
    _write_jsonl("errors.jsonl", entry)
    return record


def report_ok(code: str, item: Any, extra: Optional[Dict[str, Any]] = None) -> None:
    """Log a successful event for ``item``."""
    described = _describe(item)
    message = ERRORS.get(code, code)
    entry: Dict[str, Any] = {
        "code": code,
        "message": message,
        "itemIdentifier": described["identifier"],
        "title": described["title"],
    }
    if extra:
        entry.update(extra)
    log_message(f"{message} - {described['identifier']}", level="DEBUG")
    _write_jsonl("success.jsonl", entry)
