from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalize_host(value: str) -> str:
    """Reduce a bare domain or a full URL to a lower-case hostname."""
    text = (value or "").strip().lower()
    if not text:
        return ""
    if "://" not in text:
        text = "//" + text
    host = urlparse(text).hostname or ""
    return host.rstrip(".")


class ImportOptions(BaseModel):
    """Caller-supplied options for one import run."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    file_path: str = Field("", alias="filePath")
    dry_run: bool = Field(False, alias="dryRun")
    skip_media: bool = Field(False, alias="skipMedia")
    allowed_statuses: list[str] = Field(default_factory=lambda: ["publish"], alias="allowedStatuses")
    allowed_hosts: list[str] = Field(default_factory=list, alias="allowedHosts")
    concurrency: int = Field(4, ge=1, le=64)
    uploads_dir: Optional[str] = Field(None, alias="uploads")
    root_pattern: Optional[str] = Field(None, alias="root")
    rebuild_excerpts: bool = Field(False, alias="rebuildExcerpts")
    overwrite_markdown: bool = Field(False, alias="overwriteMarkdown")
    purge_before_import: bool = Field(False, alias="purgeBeforeImport")
    import_pingbacks: bool = Field(False, alias="importPingbacks")
    fetch_timeout: float = Field(15.0, gt=0, alias="fetchTimeout")
    fetch_attempts: int = Field(2, ge=1, alias="fetchAttempts")
    requests_per_minute: Optional[int] = Field(None, ge=1, alias="requestsPerMinute")
    media_prefix: str = Field("imported-media", alias="mediaPrefix")
    job_id: Optional[str] = Field(None, alias="jobId")

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def _normalize_hosts(cls, v):
        if not v:
            return []
        if isinstance(v, str):
            v = [v]
        seen = set()
        hosts = []
        for item in v:
            host = normalize_host(str(item))
            if host and host not in seen:
                seen.add(host)
                hosts.append(host)
        return hosts

    @field_validator("allowed_statuses", mode="before")
    @classmethod
    def _normalize_statuses(cls, v):
        if not v:
            return ["publish"]
        if isinstance(v, str):
            v = [v]
        return [str(s).strip().lower() for s in v if str(s).strip()]

    @property
    def local_copy_mode(self) -> bool:
        return bool(self.uploads_dir and self.root_pattern)
