"""
DuckDB persistence for imported content and import jobs.

:class:`ImportStore` owns one DuckDB connection.  Every write method is a
select-then-update-or-insert keyed by the entity's natural key (the WXR GUID
for posts, ``(taxonomy, slug)`` for terms, ``login`` for users,
``from_path`` for redirects), so running the same import twice leaves the
same rows behind.  Indexed columns are never updated in place.

The orchestrator wraps the writes for one post in :meth:`ImportStore.transaction`.
"""

from __future__ import annotations

import json
import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

import duckdb

from ..models.items import Author
from ..models.job import TERMINAL_STATUSES, ImportErrorRecord, ImportJob
from ..utils.comments import ThreadedComment
from ..utils.logs import log_message
from ..utils.redirects import Redirect

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id VARCHAR PRIMARY KEY,
        login VARCHAR UNIQUE NOT NULL,
        email VARCHAR,
        name VARCHAR,
        created_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS posts (
        id VARCHAR PRIMARY KEY,
        slug VARCHAR UNIQUE NOT NULL,
        title VARCHAR,
        html VARCHAR,
        body_md VARCHAR,
        excerpt VARCHAR,
        status VARCHAR,
        original_url VARCHAR,
        imported_system_id VARCHAR UNIQUE,
        author_id VARCHAR,
        featured_image_url VARCHAR,
        featured_image_alt VARCHAR,
        page_breaks INTEGER DEFAULT 0,
        published_at TIMESTAMP,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS terms (
        id VARCHAR PRIMARY KEY,
        taxonomy VARCHAR NOT NULL,
        slug VARCHAR NOT NULL,
        name VARCHAR,
        parent_id VARCHAR,
        UNIQUE (taxonomy, slug)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS post_terms (
        post_id VARCHAR NOT NULL,
        term_id VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS comments (
        id VARCHAR PRIMARY KEY,
        post_id VARCHAR NOT NULL,
        source_id VARCHAR NOT NULL,
        parent_id VARCHAR,
        path VARCHAR,
        depth INTEGER,
        author_name VARCHAR,
        author_email VARCHAR,
        author_url VARCHAR,
        body_html VARCHAR,
        status VARCHAR,
        created_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS redirects (
        id VARCHAR PRIMARY KEY,
        from_path VARCHAR UNIQUE NOT NULL,
        to_path VARCHAR NOT NULL,
        status INTEGER DEFAULT 301
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS import_jobs (
        id VARCHAR PRIMARY KEY,
        file_name VARCHAR,
        file_path VARCHAR,
        options VARCHAR,
        status VARCHAR,
        total_items INTEGER DEFAULT 0,
        posts_imported INTEGER DEFAULT 0,
        attachments_processed INTEGER DEFAULT 0,
        redirects_created INTEGER DEFAULT 0,
        skipped INTEGER DEFAULT 0,
        started_at TIMESTAMP,
        finished_at TIMESTAMP,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS import_job_errors (
        id VARCHAR PRIMARY KEY,
        job_id VARCHAR NOT NULL,
        seq INTEGER,
        item_identifier VARCHAR,
        error_type VARCHAR,
        error_message VARCHAR,
        item_data VARCHAR,
        created_at TIMESTAMP
    )
    """,
]

# Columns of import_jobs that update_job may touch
JOB_FIELDS = (
    "status",
    "total_items",
    "posts_imported",
    "attachments_processed",
    "redirects_created",
    "skipped",
    "started_at",
    "finished_at",
)

_POST_CONTENT_FIELDS = (
    "title",
    "html",
    "excerpt",
    "status",
    "original_url",
    "author_id",
    "featured_image_url",
    "featured_image_alt",
    "page_breaks",
    "published_at",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def comment_row_id(post_external_id: str, source_id: str) -> str:
    """Stable id of an imported comment, so re-imports address the same row."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{post_external_id}#comment-{source_id}"))


class ImportStore:
    """Target content store backed by DuckDB."""

    def __init__(self, path: str = ":memory:", *, connection: Optional[duckdb.DuckDBPyConnection] = None) -> None:
        if connection is None:
            if path != ":memory:":
                os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            connection = duckdb.connect(database=path, read_only=False)
        self.path = path
        self.con = connection
        self.ensure_schema()

    def ensure_schema(self) -> None:
        for statement in SCHEMA:
            self.con.execute(statement)

    def close(self) -> None:
        self.con.close()

    @contextmanager
    def transaction(self) -> Iterator["ImportStore"]:
        self.con.execute("BEGIN TRANSACTION")
        try:
            yield self
        except BaseException:
            self.con.execute("ROLLBACK")
            raise
        else:
            self.con.execute("COMMIT")

    def _one(self, sql: str, params: Optional[list] = None) -> Optional[tuple]:
        return self.con.execute(sql, params or []).fetchone()

    def count(self, table: str) -> int:
        return self._one(f"SELECT COUNT(*) FROM {table}")[0]

    # -- users -----------------------------------------------------------------

    def upsert_user(self, author: Author) -> str:
        row = self._one("SELECT id FROM users WHERE login = ?", [author.login])
        if row:
            self.con.execute(
                "UPDATE users SET email = COALESCE(?, email), name = COALESCE(?, name) WHERE id = ?",
                [author.email, author.display_name, row[0]],
            )
            return row[0]
        user_id = str(uuid.uuid4())
        self.con.execute(
            "INSERT INTO users (id, login, email, name, created_at) VALUES (?, ?, ?, ?, ?)",
            [user_id, author.login, author.email, author.display_name or author.login, utc_now()],
        )
        return user_id

    def user_id_by_login(self, login: Optional[str]) -> Optional[str]:
        if not login:
            return None
        row = self._one("SELECT id FROM users WHERE login = ?", [login])
        return row[0] if row else None

    # -- terms -----------------------------------------------------------------

    def upsert_term(self, taxonomy: str, slug: str, name: str, parent_id: Optional[str] = None) -> str:
        row = self._one("SELECT id FROM terms WHERE taxonomy = ? AND slug = ?", [taxonomy, slug])
        if row:
            self.con.execute("UPDATE terms SET name = ?, parent_id = ? WHERE id = ?", [name, parent_id, row[0]])
            return row[0]
        term_id = str(uuid.uuid4())
        self.con.execute(
            "INSERT INTO terms (id, taxonomy, slug, name, parent_id) VALUES (?, ?, ?, ?, ?)",
            [term_id, taxonomy, slug, name, parent_id],
        )
        return term_id

    def term_id(self, taxonomy: str, slug: str) -> Optional[str]:
        row = self._one("SELECT id FROM terms WHERE taxonomy = ? AND slug = ?", [taxonomy, slug])
        return row[0] if row else None

    def replace_post_terms(self, post_id: str, term_ids: List[str]) -> None:
        self.con.execute("DELETE FROM post_terms WHERE post_id = ?", [post_id])
        for term_id in dict.fromkeys(term_ids):
            self.con.execute("INSERT INTO post_terms (post_id, term_id) VALUES (?, ?)", [post_id, term_id])

    # -- posts -----------------------------------------------------------------

    def existing_slugs(self) -> Dict[str, Optional[str]]:
        """Persisted slug -> the GUID that owns it (``None`` for posts not created by an import)."""
        return {slug: ext for slug, ext in self.con.execute("SELECT slug, imported_system_id FROM posts").fetchall()}

    def find_post(self, *, external_id: Optional[str] = None, slug: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if external_id:
            row = self._one("SELECT id, slug, imported_system_id FROM posts WHERE imported_system_id = ?", [external_id])
        elif slug:
            row = self._one("SELECT id, slug, imported_system_id FROM posts WHERE slug = ?", [slug])
        else:
            row = None
        if not row:
            return None
        return {"id": row[0], "slug": row[1], "imported_system_id": row[2]}

    def upsert_post(self, record: Dict[str, Any], *, overwrite_markdown: bool = False) -> Tuple[str, bool]:
        """Insert or update a post; returns ``(post_id, created)``.

        ``record`` carries ``imported_system_id`` and ``slug`` plus the content
        columns.  An existing post keeps its slug; ``body_md`` is only reset
        (to ``NULL``) when ``overwrite_markdown`` is set.
        """
        existing = self.find_post(external_id=record.get("imported_system_id"))
        if existing is None and not record.get("imported_system_id"):
            existing = self.find_post(slug=record["slug"])
        now = utc_now()
        if existing:
            assignments = [f"{field} = ?" for field in _POST_CONTENT_FIELDS]
            params = [record.get(field) for field in _POST_CONTENT_FIELDS]
            if overwrite_markdown:
                assignments.append("body_md = NULL")
            assignments.append("updated_at = ?")
            params.extend([now, existing["id"]])
            self.con.execute(f"UPDATE posts SET {', '.join(assignments)} WHERE id = ?", params)
            return existing["id"], False

        post_id = str(uuid.uuid4())
        columns = ["id", "slug", "imported_system_id", *_POST_CONTENT_FIELDS, "created_at", "updated_at"]
        params = [post_id, record["slug"], record.get("imported_system_id")]
        params.extend(record.get(field) for field in _POST_CONTENT_FIELDS)
        params.extend([now, now])
        placeholders = ", ".join("?" for _ in columns)
        self.con.execute(f"INSERT INTO posts ({', '.join(columns)}) VALUES ({placeholders})", params)
        return post_id, True

    def update_post_content(self, post_id: str, html: str, excerpt: Optional[str]) -> None:
        self.con.execute(
            "UPDATE posts SET html = ?, excerpt = ?, updated_at = ? WHERE id = ?", [html, excerpt, utc_now(), post_id]
        )

    def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        cursor = self.con.execute("SELECT * FROM posts WHERE id = ?", [post_id])
        row = cursor.fetchone()
        if not row:
            return None
        return dict(zip([d[0] for d in cursor.description], row))

    # -- comments --------------------------------------------------------------

    def upsert_comment(
        self,
        post_id: str,
        post_external_id: str,
        threaded: ThreadedComment,
        body_html: Optional[str] = None,
    ) -> str:
        comment = threaded.comment
        row_id = comment_row_id(post_external_id, comment.id)
        parent_row = comment_row_id(post_external_id, threaded.parent_id) if threaded.parent_id else None
        values = [
            post_id,
            comment.id,
            parent_row,
            threaded.path,
            threaded.depth,
            comment.author,
            comment.author_email,
            comment.author_url,
            comment.content if body_html is None else body_html,
            comment.approved,
            comment.date,
        ]
        if self._one("SELECT id FROM comments WHERE id = ?", [row_id]):
            self.con.execute(
                """
                UPDATE comments SET post_id = ?, source_id = ?, parent_id = ?, path = ?, depth = ?,
                    author_name = ?, author_email = ?, author_url = ?, body_html = ?, status = ?, created_at = ?
                WHERE id = ?
                """,
                values + [row_id],
            )
        else:
            self.con.execute(
                """
                INSERT INTO comments (post_id, source_id, parent_id, path, depth, author_name,
                    author_email, author_url, body_html, status, created_at, id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                values + [row_id],
            )
        return row_id

    # -- redirects -------------------------------------------------------------

    def upsert_redirect(self, redirect: Redirect) -> bool:
        """Returns True when a new redirect row was created."""
        row = self._one("SELECT id FROM redirects WHERE from_path = ?", [redirect.from_path])
        if row:
            self.con.execute(
                "UPDATE redirects SET to_path = ?, status = ? WHERE id = ?",
                [redirect.to_path, redirect.status, row[0]],
            )
            return False
        self.con.execute(
            "INSERT INTO redirects (id, from_path, to_path, status) VALUES (?, ?, ?, ?)",
            [str(uuid.uuid4()), redirect.from_path, redirect.to_path, redirect.status],
        )
        return True

    def list_redirects(self) -> List[Dict[str, Any]]:
        rows = self.con.execute("SELECT from_path, to_path, status FROM redirects ORDER BY from_path").fetchall()
        return [{"from_path": f, "to_path": t, "status": s} for f, t, s in rows]

    # -- purge -----------------------------------------------------------------

    def purge_imported(self) -> Dict[str, int]:
        """Delete every imported post with its links, comments and redirects."""
        counts: Dict[str, int] = {}
        with self.transaction():
            imported = "SELECT id FROM posts WHERE imported_system_id IS NOT NULL"
            redirect_targets = "SELECT '/' || slug FROM posts WHERE imported_system_id IS NOT NULL"
            for table, sql in (
                ("comments", f"DELETE FROM comments WHERE post_id IN ({imported})"),
                ("post_terms", f"DELETE FROM post_terms WHERE post_id IN ({imported})"),
                ("redirects", f"DELETE FROM redirects WHERE to_path IN ({redirect_targets})"),
                ("posts", "DELETE FROM posts WHERE imported_system_id IS NOT NULL"),
            ):
                before = self.count(table)
                self.con.execute(sql)
                counts[table] = before - self.count(table)
        log_message(f"Purged previously imported content: {counts}")
        return counts

    # -- jobs ------------------------------------------------------------------

    def create_job(self, file_path: str, options: Dict[str, Any], job_id: Optional[str] = None) -> str:
        job_id = job_id or str(uuid.uuid4())
        now = utc_now()
        self.con.execute(
            """
            INSERT INTO import_jobs (id, file_name, file_path, options, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, 'queued', ?, ?)
            """,
            [job_id, os.path.basename(file_path or ""), file_path, json.dumps(options, default=str), now, now],
        )
        return job_id

    def get_job(self, job_id: str) -> Optional[ImportJob]:
        cursor = self.con.execute(
            """
            SELECT id, file_name, file_path, options, status, total_items, posts_imported,
                   attachments_processed, redirects_created, skipped, started_at, finished_at
            FROM import_jobs WHERE id = ?
            """,
            [job_id],
        )
        row = cursor.fetchone()
        if not row:
            return None
        data = dict(zip([d[0] for d in cursor.description], row))
        data["options"] = json.loads(data["options"]) if data["options"] else {}
        data["file_name"] = data["file_name"] or ""
        data["file_path"] = data["file_path"] or ""
        return ImportJob(**data)

    def update_job(self, job_id: str, **fields: Any) -> None:
        unknown = set(fields) - set(JOB_FIELDS)
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")
        if not fields:
            return
        assignments = [f"{name} = ?" for name in fields]
        params = list(fields.values()) + [utc_now(), job_id]
        self.con.execute(f"UPDATE import_jobs SET {', '.join(assignments)}, updated_at = ? WHERE id = ?", params)

    def job_status(self, job_id: str) -> Optional[str]:
        row = self._one("SELECT status FROM import_jobs WHERE id = ?", [job_id])
        return row[0] if row else None

    def request_cancel(self, job_id: str) -> bool:
        """Flip a queued or running job to ``cancelling``; returns False if it is unknown or finished."""
        status = self.job_status(job_id)
        if status is None or status in TERMINAL_STATUSES:
            return False
        if status == "cancelling":
            return True
        self.update_job(job_id, status="cancelling")
        log_message(f"Cancellation requested for job {job_id}")
        return True

    def add_job_error(self, job_id: str, record: ImportErrorRecord) -> None:
        self.con.execute(
            """
            INSERT INTO import_job_errors (id, job_id, seq, item_identifier, error_type, error_message, item_data, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                str(uuid.uuid4()),
                job_id,
                self._one("SELECT COUNT(*) FROM import_job_errors WHERE job_id = ?", [job_id])[0],
                record.item_identifier,
                record.error_type,
                record.message,
                json.dumps(record.item_data, default=str) if record.item_data is not None else None,
                utc_now(),
            ],
        )

    def job_errors(self, job_id: str) -> List[ImportErrorRecord]:
        rows = self.con.execute(
            """
            SELECT item_identifier, error_type, error_message, item_data
            FROM import_job_errors WHERE job_id = ? ORDER BY seq
            """,
            [job_id],
        ).fetchall()
        return [
            ImportErrorRecord(
                item_identifier=ident,
                error_type=etype,
                message=message,
                item_data=json.loads(data) if data else None,
            )
            for ident, etype, message, data in rows
        ]
