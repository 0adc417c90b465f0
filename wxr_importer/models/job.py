from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

JobStatus = Literal["queued", "running", "cancelling", "cancelled", "failed", "completed"]

# Statuses after which a job no longer changes.
TERMINAL_STATUSES = frozenset({"cancelled", "failed", "completed"})


class ImportSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_items: int = Field(0, alias="totalItems")
    posts_imported: int = Field(0, alias="postsImported")
    attachments_processed: int = Field(0, alias="attachmentsProcessed")
    redirects_created: int = Field(0, alias="redirectsCreated")
    skipped: int = 0


class ImportJob(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    file_name: str = Field("", alias="fileName")
    file_path: str = Field("", alias="filePath")
    options: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = "queued"
    total_items: int = Field(0, alias="totalItems")
    posts_imported: int = Field(0, alias="postsImported")
    attachments_processed: int = Field(0, alias="attachmentsProcessed")
    redirects_created: int = Field(0, alias="redirectsCreated")
    skipped: int = 0
    started_at: Optional[datetime] = Field(None, alias="startedAt")
    finished_at: Optional[datetime] = Field(None, alias="finishedAt")


class ImportErrorRecord(BaseModel):
    """A non-fatal (or the single fatal) error collected during a run."""

    model_config = ConfigDict(populate_by_name=True)

    item_identifier: str = Field(..., alias="itemIdentifier")
    error_type: str = Field(..., alias="errorType")
    message: str
    item_data: Optional[dict[str, Any]] = Field(None, alias="itemData")


class ImportResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: Optional[str] = Field(None, alias="jobId")
    status: JobStatus = "completed"
    summary: ImportSummary = Field(default_factory=ImportSummary)
    errors: list[ImportErrorRecord] = Field(default_factory=list)
    media_urls: dict[str, str] = Field(default_factory=dict, alias="mediaUrls")
    dry_run: bool = Field(False, alias="dryRun")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
