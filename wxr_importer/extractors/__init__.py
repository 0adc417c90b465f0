"""
Readers for WordPress export files.

:func:`extract_items_from_wxr` parses a WXR document into typed post and
attachment items, in document order, together with the channel's authors
and taxonomy terms.  Anything that prevents the document from being read at
all raises :class:`WxrParseError`.
"""

from .wxr_extractor import WxrDocument, WxrParseError, extract_items_from_file, extract_items_from_wxr

__all__ = ["WxrDocument", "WxrParseError", "extract_items_from_file", "extract_items_from_wxr"]
