"""
High-level orchestration of a WordPress WXR import.

This module defines a :class:`WordPressImportTool` class that ties
together the extractor, the HTML pipeline, the media resolver and the
DuckDB store into a complete, re-runnable import.  One call to
:meth:`WordPressImportTool.run_import` parses an export, relocates its
media, writes posts, terms, comments and redirects (one transaction per
post) and records the run as an import job.

Configuration is supplied via a JSON file path or directly as a
dictionary.  Sections: ``database``, ``storage``, ``import`` (defaults for
:class:`~wxr_importer.models.options.ImportOptions`) and ``reports``.
"""

from __future__ import annotations

import json
import os
import threading
from typing import Any, Dict, List, Optional, Tuple, Union

import duckdb

from .extractors.wxr_extractor import WxrDocument, WxrParseError, extract_items_from_file
from .migrators.media_resolver import MediaResolver
from .migrators.storage import storage_from_config
from .migrators.store import ImportStore, utc_now
from .models.items import AttachmentItem, PostItem
from .models.job import ImportErrorRecord, ImportResult
from .models.options import ImportOptions
from .parsers.html_pipeline import (
    NormalizedHtml,
    finalize_post_html,
    first_image,
    normalize_post_html,
    plain_text_excerpt,
    resolve_internal_links,
)
from .parsers.media_refs import build_rewrite_table, canonical_media_url, discover_media_urls
from .parsers.sanitizer import sanitize_html
from .utils.comments import thread_comments
from .utils.errors import report_error, report_ok
from .utils.logs import log_message
from .utils.pre_flight_checks import PreFlightCheckError, run_pre_flight_checks
from .utils.redirects import derive_redirect
from .utils.slugs import SlugAllocator
from .utils.taxonomy import TermRegistry

DEFAULT_CONFIG_FILE = os.path.join("config", "import_config.json")

# Attempts per post when a concurrent writer trips a unique constraint
POST_WRITE_ATTEMPTS = 2


class WordPressImportTool:
    """
    Encapsulates the state needed to import WXR exports into the content
    store.  The store, the media storage backend and the HTTP session are
    created from configuration on first use unless they are passed in.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        *,
        config_file: Optional[str] = None,
        store: Optional[ImportStore] = None,
        storage: Any = None,
        session: Any = None,
    ) -> None:
        if config_file and os.path.exists(config_file):
            with open(config_file, "r", encoding="utf-8") as f:
                config = json.load(f)
        elif config is None:
            # Default configuration
            config = {}

        # Ensure essential keys exist to prevent KeyErrors
        config.setdefault("database", {})
        config["database"].setdefault("path", os.getenv("WXR_DB_PATH", os.path.join("data", "import.duckdb")))

        config.setdefault("storage", {})
        config["storage"].setdefault("backend", os.getenv("WXR_STORAGE_BACKEND", "local"))
        config["storage"].setdefault("local_root", os.path.join("public", "uploads"))
        config["storage"].setdefault("public_base_url", "/uploads")
        config["storage"].setdefault("s3", {})
        config["storage"]["s3"].setdefault("bucket", os.getenv("S3_BUCKET", ""))
        config["storage"]["s3"].setdefault("endpoint_url", os.getenv("S3_ENDPOINT_URL", ""))
        config["storage"]["s3"].setdefault("region", os.getenv("S3_REGION", ""))
        config["storage"]["s3"].setdefault("access_key_id", os.getenv("S3_ACCESS_KEY_ID", ""))
        config["storage"]["s3"].setdefault("secret_access_key", os.getenv("S3_SECRET_ACCESS_KEY", ""))
        config["storage"]["s3"].setdefault("public_base_url", "")

        config.setdefault("import", {})
        config.setdefault("reports", {})
        if config["reports"].get("dir"):
            os.environ.setdefault("WXR_REPORT_DIR", config["reports"]["dir"])

        self.config = config
        self._store = store
        self._storage = storage
        self.session = session

    def log_message(self, message: str, level: str = "INFO") -> None:
        log_message(message, level=level)

    @property
    def store(self) -> ImportStore:
        if self._store is None:
            self._store = ImportStore(self.config["database"]["path"])
        return self._store

    @property
    def storage(self) -> Any:
        if self._storage is None:
            self._storage = storage_from_config(self.config["storage"])
        return self._storage

    def build_options(self, file_path: str, **overrides: Any) -> ImportOptions:
        """Merge the ``import`` config defaults with per-run overrides."""
        values = dict(self.config.get("import") or {})
        values.update({k: v for k, v in overrides.items() if v is not None})
        values["file_path"] = file_path
        return ImportOptions.model_validate(values)

    # ------------------------------------------------------------------
    # Job bookkeeping
    # ------------------------------------------------------------------

    def _open_job(self, options: ImportOptions) -> str:
        if options.job_id and self.store.get_job(options.job_id) is not None:
            return options.job_id
        return self.store.create_job(
            options.file_path, options.model_dump(mode="json", exclude={"job_id"}), options.job_id
        )

    def _record_error(self, result: ImportResult, record: ImportErrorRecord) -> None:
        result.errors.append(record)
        if result.job_id:
            self.store.add_job_error(result.job_id, record)

    def _save_progress(self, result: ImportResult, **extra: Any) -> None:
        if not result.job_id:
            return
        s = result.summary
        self.store.update_job(
            result.job_id,
            total_items=s.total_items,
            posts_imported=s.posts_imported,
            attachments_processed=s.attachments_processed,
            redirects_created=s.redirects_created,
            skipped=s.skipped,
            **extra,
        )

    def _fail(self, result: ImportResult, code: str, exc: BaseException) -> ImportResult:
        self._record_error(result, report_error(code, None, exc))
        result.status = "failed"
        self._save_progress(result, status="failed", finished_at=utc_now())
        self.log_message(f"Import failed: {exc}", level="ERROR")
        return result

    def _cancel_requested(self, job_id: Optional[str], cancel_event: Optional[threading.Event]) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return bool(job_id) and self.store.job_status(job_id) == "cancelling"

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _persist_authors_and_terms(self, doc: WxrDocument, result: ImportResult) -> Dict[tuple, str]:
        registry = TermRegistry()
        registry.extend(doc.terms)
        for item in doc.items:
            if isinstance(item, PostItem):
                registry.extend(item.categories + item.tags + item.terms)

        if result.dry_run:
            self.log_message(f"Dry-run: would write {len(doc.authors)} author(s) and {len(registry)} term(s)")
            return {}

        for author in doc.authors:
            try:
                self.store.upsert_user(author)
            except duckdb.Error as e:
                self._record_error(result, report_error("user_import", {"identifier": author.login}, e))

        term_ids: Dict[tuple, str] = {}
        for term in registry.ordered():
            key = (term.taxonomy, term.slug)
            parent_key = registry.parent_of(key)
            try:
                term_ids[key] = self.store.upsert_term(
                    term.taxonomy, term.slug, term.name, term_ids.get(parent_key) if parent_key else None
                )
            except duckdb.Error as e:
                self._record_error(
                    result, report_error("term_import", {"identifier": f"{term.taxonomy}:{term.slug}"}, e)
                )
        return term_ids

    def _discover_media(self, doc: WxrDocument, normalized: Dict[str, NormalizedHtml]) -> Dict[str, List[str]]:
        """Discover media per item; returns item external id -> literal references."""
        references: Dict[str, List[str]] = {}
        for item in doc.items:
            if isinstance(item, PostItem) and item.external_id in normalized:
                n = normalized[item.external_id]
                refs = discover_media_urls(n.html)
                refs.extend(u for u in discover_media_urls(n.excerpt or "") if u not in refs)
                references[item.external_id] = refs
            elif isinstance(item, AttachmentItem) and item.attachment_url:
                references[item.external_id] = [item.attachment_url]
        return references

    def _featured_image(
        self,
        post: PostItem,
        html: str,
        attachments: Dict[str, AttachmentItem],
        media_urls: Dict[str, str],
        base_url: str,
    ):
        attachment = attachments.get(post.featured_image_id or "")
        if attachment is not None and attachment.attachment_url:
            url = media_urls.get(canonical_media_url(attachment.attachment_url, base_url), attachment.attachment_url)
            return url, attachment.alt
        return first_image(html)

    def _write_post(
        self, record: Dict[str, Any], post: PostItem, term_ids: List[str], redirect, options: ImportOptions
    ) -> Tuple[str, bool]:
        """Write one post with its links, comments and redirect; returns ``(post_id, redirect_written)``."""
        store = self.store
        for attempt in range(1, POST_WRITE_ATTEMPTS + 1):
            try:
                with store.transaction():
                    post_id, _created = store.upsert_post(record, overwrite_markdown=options.overwrite_markdown)
                    store.replace_post_terms(post_id, term_ids)
                    for threaded in thread_comments(post.comments):
                        store.upsert_comment(
                            post_id, post.external_id, threaded, body_html=sanitize_html(threaded.comment.content)
                        )
                    if redirect is not None:
                        store.upsert_redirect(redirect)
                return post_id, redirect is not None
            except duckdb.ConstraintException:
                if attempt >= POST_WRITE_ATTEMPTS:
                    raise
                self.log_message(f"Constraint conflict writing {post.external_id}; retrying", level="WARNING")
        raise RuntimeError(f"Post {post.external_id} was not written")

    def _resolve_links(
        self,
        saved: List[Tuple[str, PostItem, str, Optional[str]]],
        post_slugs: Dict[str, str],
        attachment_urls: Dict[str, str],
        result: ImportResult,
    ) -> None:
        """Point annotated internal links of saved posts at their final targets."""
        for post_id, post, html, excerpt in saved:
            new_html = resolve_internal_links(html, post_slugs, attachment_urls)
            new_excerpt = resolve_internal_links(excerpt, post_slugs, attachment_urls)
            if new_html == html and new_excerpt == excerpt:
                continue
            try:
                self.store.update_post_content(post_id, new_html, new_excerpt)
            except duckdb.Error as e:
                self._record_error(result, report_error("link_resolution", post, e))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run_import(
        self,
        options: Union[ImportOptions, Dict[str, Any]],
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> ImportResult:
        """
        Run one import.  Never raises for document or item failures: a
        document that cannot be read yields a ``failed`` result with a
        single ``FATAL`` error, per-item failures are collected in
        ``errors`` and the run continues.

        :param options: Run options (model or dict with snake_case or camelCase keys).
        :param cancel_event: Optional in-process cancellation flag, checked between items.
        :return: The :class:`ImportResult` (summary, errors, media map, dry-run flag).
        """
        if not isinstance(options, ImportOptions):
            options = ImportOptions.model_validate(options)
        result = ImportResult(dry_run=options.dry_run, status="queued")
        result.job_id = self._open_job(options)
        self.log_message(f"Import job {result.job_id} queued for {options.file_path}")

        try:
            run_pre_flight_checks(options)
        except PreFlightCheckError as e:
            return self._fail(result, "parse", e)

        try:
            doc = extract_items_from_file(
                options.file_path,
                allowed_statuses=options.allowed_statuses,
                import_pingbacks=options.import_pingbacks,
            )
        except WxrParseError as e:
            return self._fail(result, "parse", e)

        try:
            return self._run_items(doc, options, result, cancel_event)
        except Exception as e:
            return self._fail(result, "import_failed", e)

    def _run_items(
        self,
        doc: WxrDocument,
        options: ImportOptions,
        result: ImportResult,
        cancel_event: Optional[threading.Event],
    ) -> ImportResult:
        summary = result.summary
        summary.total_items = doc.total_items
        summary.skipped = doc.skipped
        for record in doc.errors:
            self._record_error(result, record)
        result.status = "running"
        if self._cancel_requested(result.job_id, None):
            # cancelled while queued; the item loop stops before the first item
            self._save_progress(result, started_at=utc_now())
        else:
            self._save_progress(result, status="running", started_at=utc_now())
        self.log_message(
            f"Parsed {doc.total_items} item(s): {len(doc.items)} to import, {doc.skipped} skipped"
        )

        if options.purge_before_import:
            if options.dry_run:
                self.log_message("Dry-run: would purge previously imported content")
            else:
                self.store.purge_imported()
                self.storage.delete_prefix(options.media_prefix)

        normalized: Dict[str, NormalizedHtml] = {}
        failed: set = set()
        for item in doc.items:
            if not isinstance(item, PostItem):
                continue
            try:
                normalized[item.external_id] = normalize_post_html(item.html, item.excerpt, doc.base_url)
            except Exception as e:
                failed.add(item.external_id)
                self._record_error(result, report_error("post_import", item, e))

        references = self._discover_media(doc, normalized)
        media_urls: Dict[str, str] = {}
        if options.skip_media:
            self.log_message("Skipping media relocation")
        else:
            resolver = MediaResolver(self.storage, options, base_url=doc.base_url, session=self.session)
            all_refs: List[str] = []
            for refs in references.values():
                all_refs.extend(refs)
            media_urls = resolver.resolve_all(all_refs)
        result.media_urls = media_urls
        relocated = set(media_urls.values())

        term_ids = self._persist_authors_and_terms(doc, result)
        slugs = SlugAllocator(self.store.existing_slugs())
        attachments = {a.wp_id: a for a in doc.items if isinstance(a, AttachmentItem) and a.wp_id}
        post_slugs: Dict[str, str] = {}
        saved: List[Tuple[str, PostItem, str, Optional[str]]] = []

        cancelled = False
        for item in doc.items:
            if self._cancel_requested(result.job_id, cancel_event):
                cancelled = True
                self.log_message("Cancellation requested; stopping before the next item", level="WARNING")
                break

            if isinstance(item, AttachmentItem):
                summary.attachments_processed += 1
                relocated_url = media_urls.get(canonical_media_url(item.attachment_url, doc.base_url))
                report_ok("ATTACHMENT_PROCESSED", item, {"newUrl": relocated_url})
                self._save_progress(result)
                continue

            if item.external_id in failed:
                continue
            try:
                n = normalized[item.external_id]
                slug = slugs.allocate(item.slug or item.title, item.external_id)
                table = build_rewrite_table(references.get(item.external_id, []), media_urls, doc.base_url)
                html = finalize_post_html(n.html, table, relocated)
                excerpt = finalize_post_html(n.excerpt, table, relocated) if n.excerpt else None
                if not excerpt and options.rebuild_excerpts:
                    excerpt = plain_text_excerpt(html)
                image_url, image_alt = self._featured_image(item, html, attachments, media_urls, doc.base_url)
                redirect = derive_redirect(item.original_url, slug)

                if options.dry_run:
                    summary.posts_imported += 1
                    summary.redirects_created += 1 if redirect else 0
                    report_ok("POST_PREVIEWED", item, {"slug": slug})
                else:
                    record = {
                        "imported_system_id": item.external_id,
                        "slug": slug,
                        "title": item.title,
                        "html": html,
                        "excerpt": excerpt,
                        "status": item.status,
                        "original_url": item.original_url,
                        "author_id": self.store.user_id_by_login(item.author),
                        "featured_image_url": image_url,
                        "featured_image_alt": image_alt,
                        "page_breaks": n.page_breaks,
                        "published_at": item.published_at,
                    }
                    links = [
                        term_ids[(ref.taxonomy, ref.slug)]
                        for ref in item.categories + item.tags + item.terms
                        if (ref.taxonomy, ref.slug) in term_ids
                    ]
                    post_id, wrote_redirect = self._write_post(record, item, links, redirect, options)
                    if wrote_redirect:
                        summary.redirects_created += 1
                    summary.posts_imported += 1
                    if item.wp_id:
                        post_slugs[item.wp_id] = slug
                    if "data-wp-" in html or "data-wp-" in (excerpt or ""):
                        saved.append((post_id, item, html, excerpt))
                    report_ok("POST_IMPORTED", item, {"slug": slug})
            except Exception as e:
                self._record_error(result, report_error("post_import", item, e))
            self._save_progress(result)

        if saved:
            attachment_urls = {
                wp_id: media_urls[canonical_media_url(a.attachment_url, doc.base_url)]
                for wp_id, a in attachments.items()
                if canonical_media_url(a.attachment_url, doc.base_url) in media_urls
            }
            self._resolve_links(saved, post_slugs, attachment_urls, result)

        result.status = "cancelled" if cancelled else "completed"
        self._save_progress(result, status=result.status, finished_at=utc_now())
        self.log_message(
            f"Import {result.status}: {summary.posts_imported} post(s), "
            f"{summary.attachments_processed} attachment(s), {summary.redirects_created} redirect(s), "
            f"{summary.skipped} skipped, {len(result.errors)} error(s)"
        )
        return result
