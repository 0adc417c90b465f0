import os
import re

from ..models.options import ImportOptions
from .logs import log_message


class PreFlightCheckError(Exception):
    """Custom exception for pre-flight check failures."""
    pass


def run_pre_flight_checks(options: ImportOptions) -> None:
    """
    Verifies that the options of an import run can be honoured.

    Args:
        options: The validated run options.

    Raises:
        PreFlightCheckError: If any check fails.
    """
    log_message("Running pre-flight checks...", level="DEBUG")

    # Check 1: the export file
    if not options.file_path:
        raise PreFlightCheckError("No WXR file path was given.")
    if not os.path.isfile(options.file_path):
        raise PreFlightCheckError(f"WXR file not found: {options.file_path}")

    # Check 2: local-copy mode needs both halves
    if bool(options.uploads_dir) != bool(options.root_pattern):
        raise PreFlightCheckError(
            "Local media copy needs both an uploads directory and a source root pattern."
        )
    if options.uploads_dir and not os.path.isdir(options.uploads_dir):
        raise PreFlightCheckError(f"Uploads directory not found: {options.uploads_dir}")
    if options.root_pattern:
        try:
            re.compile(options.root_pattern)
        except re.error as e:
            raise PreFlightCheckError(f"Invalid source root pattern {options.root_pattern!r}: {e}")

    # Check 3: remote media without an allow-list fetches nothing
    if not options.skip_media and not options.allowed_hosts and not options.local_copy_mode:
        log_message(
            "No allowed media hosts configured; remote media will be left unresolved.",
            level="WARNING",
        )

    log_message("Pre-flight checks passed.", level="DEBUG")
