"""
Top-level package for the WordPress WXR import tool.

This package bundles everything needed to import a WordPress export
(WXR) into the content store: parsing the export, normalizing and
sanitizing post HTML, relocating media, resolving slugs and taxonomy
terms, and writing posts, comments and redirects idempotently.
Modules are split into subpackages:

* :mod:`wxr_importer.extractors` – WXR parsing and item classification
* :mod:`wxr_importer.parsers` – HTML normalization, media references, sanitizer
* :mod:`wxr_importer.migrators` – media relocation, storage backends, DuckDB store
* :mod:`wxr_importer.utils` – logging, error reports, slugs, terms, comments, redirects
* :mod:`wxr_importer.models` – pydantic models for items, options and jobs

Orchestration is handled in :mod:`wxr_importer.import_tool`.
"""

__version__ = "1.0.0"
