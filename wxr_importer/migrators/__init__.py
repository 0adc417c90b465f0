"""
Side-effecting parts of an import.

* :mod:`wxr_importer.migrators.media_resolver` – concurrent media relocation
* :mod:`wxr_importer.migrators.storage` – local, S3 and no-op media storage
* :mod:`wxr_importer.migrators.store` – DuckDB content and job persistence
"""

from .media_resolver import MediaCache, MediaResolver, RateLimiter, with_retries
from .storage import LocalStorage, NullStorage, S3Storage, StorageError, storage_from_config
from .store import ImportStore

__all__ = [
    "MediaCache",
    "MediaResolver",
    "RateLimiter",
    "with_retries",
    "LocalStorage",
    "NullStorage",
    "S3Storage",
    "StorageError",
    "storage_from_config",
    "ImportStore",
]
