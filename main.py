"""
Entry point for the WordPress WXR import tool.
"""

import argparse
import json
import sys

from wxr_importer.import_tool import DEFAULT_CONFIG_FILE, WordPressImportTool
from wxr_importer.utils.logs import set_verbose


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import a WordPress WXR export into the content store.")
    parser.add_argument("file", help="Path to the WXR (.xml) export file")
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILE, help="JSON configuration file")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Process everything but write nothing to the database")
    parser.add_argument("--skip-media", action="store_true", default=None, help="Do not relocate media")
    parser.add_argument("--status", action="append", dest="allowed_statuses", help="Post status to import (repeatable; default publish)")
    parser.add_argument("--allowed-host", action="append", dest="allowed_hosts", help="Host media may be fetched from (repeatable)")
    parser.add_argument("--concurrency", type=int, help="Parallel media downloads")
    parser.add_argument("--uploads", dest="uploads_dir", help="Local copy of wp-content/uploads")
    parser.add_argument("--root", dest="root_pattern", help="Regex matching the start of media URLs served from --uploads")
    parser.add_argument("--rebuild-excerpts", action="store_true", default=None, help="Derive missing excerpts from the body")
    parser.add_argument("--overwrite-markdown", action="store_true", default=None, help="Reset hand-edited markdown on re-import")
    parser.add_argument("--purge", action="store_true", default=None, dest="purge_before_import", help="Delete previously imported content first")
    parser.add_argument("--import-pingbacks", action="store_true", default=None, help="Keep pingback and trackback comments")
    parser.add_argument("--job-id", help="Drive an existing import job record")
    parser.add_argument("--verbose", action="store_true", help="Print DEBUG messages")
    return parser


def main(argv=None) -> int:
    """
    Main function to run one WXR import from the command line.
    """
    args = build_parser().parse_args(argv)
    set_verbose(args.verbose)

    tool = WordPressImportTool(config_file=args.config)
    tool.log_message(f"Starting WordPress import of {args.file}.")

    overrides = {
        name: getattr(args, name)
        for name in (
            "dry_run",
            "skip_media",
            "allowed_statuses",
            "allowed_hosts",
            "concurrency",
            "uploads_dir",
            "root_pattern",
            "rebuild_excerpts",
            "overwrite_markdown",
            "purge_before_import",
            "import_pingbacks",
            "job_id",
        )
    }
    options = tool.build_options(args.file, **overrides)
    result = tool.run_import(options)

    print(json.dumps(result.to_payload(), indent=2, ensure_ascii=False))
    return 1 if result.status == "failed" else 0


if __name__ == "__main__":
    sys.exit(main())
