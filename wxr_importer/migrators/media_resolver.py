"""
Media relocation.

The resolver receives every media URL referenced by the export (post
content plus attachment items), groups them by canonical URL and relocates
each original once: it reads the file from a local uploads mirror or
downloads it from an allow-listed host, hashes the bytes and stores them
under a content-addressed key.  The result is a map of canonical URL to new
public URL; anything that could not be relocated is simply absent from it.

Downloads run on a bounded thread pool.  :class:`MediaCache` makes sure
that a given canonical URL is fetched once and a given content hash is
stored once, even when several workers ask for it at the same time.
"""

from __future__ import annotations

import concurrent.futures
import hashlib
import mimetypes
import os
import re
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import unquote, urlsplit

import requests

from ..models.options import ImportOptions, normalize_host
from ..parsers.media_refs import absolutize, canonical_media_url
from ..utils.logs import log_message
from .storage import StorageError

USER_AGENT = "wxr-importer/1.0 (+media relocation)"


###############################################################################
# Rate limiting and retry utilities
###############################################################################

class RateLimiter:
    """
    Simple time-based rate limiter.  Ensures that no more than ``rpm``
    requests are dispatched per minute across all worker threads.
    """

    def __init__(self, rpm: int = 200) -> None:
        self.rpm = max(1, rpm)
        self.interval = 60.0 / float(self.rpm)
        self._last = 0.0
        self._lock = threading.Lock()

    def wait(self, time_fn: Callable[[], float] = time.time, sleep_fn: Callable[[float], None] = time.sleep) -> None:
        with self._lock:
            now = time_fn()
            dt = now - self._last
            if dt < self.interval:
                sleep_fn(self.interval - dt)
            self._last = time_fn()


def with_retries(
    fn: Callable[[], requests.Response],
    *,
    max_attempts: int = 5,
    base_delay: float = 0.7,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> requests.Response:
    """
    Execute a function returning a ``requests.Response``, retrying on
    transient HTTP errors.  Retries are attempted on status codes 429
    (too many requests) and 5xx server errors, and on connection errors
    and timeouts.  Backoff is exponential.

    :param fn: A zero-argument callable that performs the HTTP request.
    :param max_attempts: Maximum number of attempts before giving up.
    :param base_delay: Base delay in seconds for exponential backoff.
    :param sleep_fn: Called with the delay between attempts.
    :return: The successful ``requests.Response``.
    :raises requests.RequestException: if all attempts fail.
    """
    attempt = 0
    while True:
        try:
            resp = fn()
            resp.raise_for_status()
            return resp
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status not in (429, 500, 502, 503, 504) or attempt >= max_attempts - 1:
                raise
            # Use Retry-After header if provided, otherwise exponential backoff
            retry_after = e.response.headers.get("Retry-After")
            try:
                wait = float(retry_after) if retry_after else base_delay * (2 ** attempt)
            except ValueError:
                wait = base_delay * (2 ** attempt)
            sleep_fn(wait)
            attempt += 1
        except requests.RequestException:
            if attempt >= max_attempts - 1:
                raise
            sleep_fn(base_delay * (2 ** attempt))
            attempt += 1


###############################################################################
# In-flight de-duplication
###############################################################################

class MediaCache:
    """Thread-safe map of keys to futures.

    The first caller to :meth:`claim` a key owns the work and must resolve
    the returned future; later callers get the same future and wait on it.
    URL keys and content-hash keys live in separate namespaces.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_url: Dict[str, concurrent.futures.Future] = {}
        self._by_key: Dict[str, concurrent.futures.Future] = {}

    def _claim(self, table: Dict[str, concurrent.futures.Future], key: str) -> Tuple[concurrent.futures.Future, bool]:
        with self._lock:
            future = table.get(key)
            if future is not None:
                return future, False
            future = concurrent.futures.Future()
            table[key] = future
            return future, True

    def claim_url(self, canonical_url: str) -> Tuple[concurrent.futures.Future, bool]:
        return self._claim(self._by_url, canonical_url)

    def claim_key(self, storage_key: str) -> Tuple[concurrent.futures.Future, bool]:
        return self._claim(self._by_key, storage_key)

    def resolved(self) -> Dict[str, str]:
        """Canonical URL -> new URL for every finished, successful relocation."""
        with self._lock:
            items = list(self._by_url.items())
        return {
            url: f.result()
            for url, f in items
            if f.done() and f.exception() is None and f.result()
        }


###############################################################################
# Resolver
###############################################################################

def host_allowed(url: str, allowed_hosts: Iterable[str]) -> bool:
    """True if the URL's host equals, or is a subdomain of, an allowed host."""
    host = normalize_host(url)
    if not host:
        return False
    for allowed in allowed_hosts:
        if host == allowed or host.endswith("." + allowed):
            return True
    return False


class MediaResolver:
    """Relocates media referenced by an import into a storage backend."""

    def __init__(
        self,
        storage: Any,
        options: ImportOptions,
        *,
        base_url: str = "",
        session: Optional[Any] = None,
        cache: Optional[MediaCache] = None,
        limiter: Optional[RateLimiter] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.storage = storage
        self.options = options
        self.base_url = base_url
        self.session = session if session is not None else requests.Session()
        self.cache = cache or MediaCache()
        if limiter is None and options.requests_per_minute:
            limiter = RateLimiter(options.requests_per_minute)
        self.limiter = limiter
        self.sleep_fn = sleep_fn
        self._root_re = re.compile(options.root_pattern) if options.local_copy_mode else None

    # -- loading -------------------------------------------------------------

    def _local_path(self, url: str) -> Optional[str]:
        match = self._root_re.match(url) if self._root_re else None
        if not match:
            return None
        rest = unquote(urlsplit(url[match.end():]).path).lstrip("/")
        if rest.startswith("wp-content/uploads/"):
            rest = rest[len("wp-content/uploads/"):]
        root = os.path.realpath(self.options.uploads_dir)
        path = os.path.realpath(os.path.join(root, rest))
        if not path.startswith(root + os.sep):
            return ""
        return path

    def _read_local(self, path: str, url: str) -> Optional[Tuple[bytes, Optional[str]]]:
        if not path or not os.path.isfile(path):
            log_message(f"Source file not found, skipping. {url}", level="WARNING")
            return None
        with open(path, "rb") as f:
            data = f.read()
        return data, mimetypes.guess_type(path)[0]

    def _fetch(self, url: str) -> Optional[Tuple[bytes, Optional[str]]]:
        if not host_allowed(url, self.options.allowed_hosts):
            log_message(f"Host not allowed, leaving media unresolved: {url}", level="DEBUG")
            return None
        if self.limiter is not None:
            self.limiter.wait()

        def do_request() -> requests.Response:
            return self.session.get(url, timeout=self.options.fetch_timeout, stream=False, headers={"User-Agent": USER_AGENT})

        try:
            resp = with_retries(do_request, max_attempts=self.options.fetch_attempts, sleep_fn=self.sleep_fn)
        except requests.RequestException as e:
            log_message(f"Media fetch failed for {url}: {e}", level="WARNING")
            return None
        content_type = resp.headers.get("Content-Type")
        return resp.content, content_type.split(";")[0].strip() if content_type else None

    def _load(self, url: str) -> Optional[Tuple[bytes, Optional[str]]]:
        local_path = self._local_path(url)
        if local_path is not None:
            return self._read_local(local_path, url)
        return self._fetch(url)

    # -- storing -------------------------------------------------------------

    def _storage_key(self, url: str, data: bytes, content_type: Optional[str]) -> str:
        digest = hashlib.sha256(data).hexdigest()
        ext = os.path.splitext(urlsplit(url).path)[1].lower()
        if not re.fullmatch(r"\.[a-z0-9]{1,5}", ext):
            ext = (mimetypes.guess_extension(content_type) if content_type else None) or ""
        return f"{self.options.media_prefix.strip('/')}/{digest}{ext}"

    def _store(self, key: str, data: bytes, content_type: Optional[str]) -> Optional[str]:
        future, owner = self.cache.claim_key(key)
        if not owner:
            return future.result()
        url = None
        try:
            url = self.storage.put(key, data, content_type)
        except (StorageError, OSError) as e:
            log_message(f"Storing {key} failed: {e}", level="WARNING")
        finally:
            # waiters on this key must never be left blocked
            future.set_result(url)
        return url

    def _relocate(self, candidates: List[str]) -> Optional[str]:
        for candidate in candidates:
            loaded = self._load(candidate)
            if loaded is None:
                continue
            data, content_type = loaded
            key = self._storage_key(candidate, data, content_type)
            return self._store(key, data, content_type)
        return None

    def resolve(self, canonical: str, variants: Iterable[str] = ()) -> Optional[str]:
        """Relocate one original; ``variants`` are tried if the original itself cannot be loaded."""
        future, owner = self.cache.claim_url(canonical)
        if not owner:
            return future.result()
        candidates = [canonical]
        for variant in variants:
            absolute = absolutize(variant, self.base_url).split("#", 1)[0]
            if absolute not in candidates:
                candidates.append(absolute)
        try:
            result = self._relocate(candidates)
        except Exception as e:
            log_message(f"Media relocation failed for {canonical}: {e}", level="WARNING")
            result = None
        future.set_result(result)
        if result:
            log_message(f"Relocated {canonical} -> {result}", level="DEBUG")
        return result

    def resolve_all(self, urls: Iterable[str]) -> Dict[str, str]:
        """Relocate every URL in ``urls``; returns canonical URL -> new URL for those that succeeded."""
        groups: Dict[str, List[str]] = {}
        for url in urls:
            if not url:
                continue
            groups.setdefault(canonical_media_url(url, self.base_url), []).append(url)
        if not groups:
            return {}
        log_message(f"Relocating {len(groups)} media file(s) with {self.options.concurrency} worker(s)...")
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.options.concurrency) as executor:
            futures = {executor.submit(self.resolve, canonical, variants): canonical for canonical, variants in groups.items()}
            for future in concurrent.futures.as_completed(futures):
                future.result()
        resolved = self.cache.resolved()
        mapping = {canonical: resolved[canonical] for canonical in groups if canonical in resolved}
        log_message(f"Media relocated: {len(mapping)} of {len(groups)}")
        return mapping
