"""
Pydantic models shared by every layer of the importer.

* :mod:`wxr_importer.models.items` – the parsed WXR items (a tagged union
  of posts and attachments) plus authors, terms and comments
* :mod:`wxr_importer.models.options` – caller-supplied run options
* :mod:`wxr_importer.models.job` – job record, error records and the run result
"""

from .items import (
    AttachmentItem,
    Author,
    Comment,
    ImportItem,
    PostItem,
    TermDefinition,
    TermRef,
)
from .job import ImportErrorRecord, ImportJob, ImportResult, ImportSummary, TERMINAL_STATUSES
from .options import ImportOptions, normalize_host

__all__ = [
    "AttachmentItem",
    "Author",
    "Comment",
    "ImportItem",
    "PostItem",
    "TermDefinition",
    "TermRef",
    "ImportErrorRecord",
    "ImportJob",
    "ImportResult",
    "ImportSummary",
    "TERMINAL_STATUSES",
    "ImportOptions",
    "normalize_host",
]
