"""
Run log helpers.

Every layer of the importer reports progress through :func:`log_message`,
which prints a ``[LEVEL] message`` line and appends ``LEVEL: message`` to
``import.log`` under the report directory.  The report directory defaults to
``reports/import`` and can be moved with the ``WXR_REPORT_DIR`` environment
variable (the tests point it at a temporary directory).
"""

from __future__ import annotations

import os
import threading

_DEFAULT_REPORT_DIR = os.path.join("reports", "import")
_write_lock = threading.Lock()
_verbose = False


def report_dir() -> str:
    return os.getenv("WXR_REPORT_DIR") or _DEFAULT_REPORT_DIR


def set_verbose(enabled: bool) -> None:
    """Turn DEBUG output on or off for the whole process."""
    global _verbose
    _verbose = bool(enabled)


def log_message(message: str, level: str = "INFO") -> None:
    level = level.upper()
    if level == "DEBUG" and not _verbose:
        return
    print(f"[{level}] {message}")
    directory = report_dir()
    # Media workers log from several threads at once
    with _write_lock:
        os.makedirs(directory, exist_ok=True)
        with open(os.path.join(directory, "import.log"), "a", encoding="utf-8") as f:
            f.write(f"{level}: {message}\n")
