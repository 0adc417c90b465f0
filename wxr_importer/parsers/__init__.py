"""
HTML processing used by the import pipeline.

* :mod:`wxr_importer.parsers.html_pipeline` – ordered normalization stages
* :mod:`wxr_importer.parsers.media_refs` – media discovery and URL rewriting
* :mod:`wxr_importer.parsers.sanitizer` – the final allow-list sanitizer
"""

from .html_pipeline import PLACEHOLDER_SRC, finalize_post_html, first_image, normalize_post_html, plain_text_excerpt
from .media_refs import build_rewrite_table, canonical_media_url, discover_media_urls
from .sanitizer import sanitize_html

__all__ = [
    "PLACEHOLDER_SRC",
    "finalize_post_html",
    "first_image",
    "normalize_post_html",
    "plain_text_excerpt",
    "build_rewrite_table",
    "canonical_media_url",
    "discover_media_urls",
    "sanitize_html",
]
