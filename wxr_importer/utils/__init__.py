"""
Utility helpers used by the importer.

This subpackage exposes run logging, structured error reporting, slug and
taxonomy identity helpers, comment threading and redirect derivation.
"""

from .errors import ERRORS, FATAL_IDENTIFIER, report_error, report_ok
from .logs import log_message, set_verbose
from .redirects import Redirect, derive_redirect, generate_redirects_csv
from .slugs import SlugAllocator, slugify

__all__ = [
    "ERRORS",
    "FATAL_IDENTIFIER",
    "report_error",
    "report_ok",
    "log_message",
    "set_verbose",
    "Redirect",
    "derive_redirect",
    "generate_redirects_csv",
    "SlugAllocator",
    "slugify",
]
