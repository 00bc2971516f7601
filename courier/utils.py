#!/usr/bin/env python3
"""
Utility functions for Report Courier
Suffix matching, markup checks, minification and formatting helpers
"""

import gzip
import re
import xml.etree.ElementTree as ET
from typing import List

# One alternative per token kind; text and a stray "<" cover every other byte
_TOKEN_RE = re.compile(
    rb"(?P<cdata><!\[CDATA\[.*?\]\]>)"
    rb"|(?P<comment><!--.*?-->)"
    rb"|(?P<pi><\?.*?\?>)"
    rb"|(?P<doctype><!DOCTYPE[^\[>]*(?:\[.*?\])?\s*>)"
    rb"|(?P<tag><(?:[^>\"']|\"[^\"]*\"|'[^']*')*>)"
    rb"|(?P<text>[^<]+)"
    rb"|(?P<other><)",
    re.DOTALL,
)


def split_patterns(patterns: str, separator: str = ",") -> List[str]:
    """Split a separator-joined suffix list, dropping blank pieces."""
    if not separator:
        pieces = [patterns]
    else:
        pieces = patterns.split(separator)
    return [p.strip() for p in pieces if p.strip()]


def matches_suffix(name: str, suffixes: List[str]) -> bool:
    """Return True if name ends with any of the given suffixes."""
    return any(name.endswith(suffix) for suffix in suffixes)


def is_well_formed_markup(data: bytes) -> bool:
    """
    Check that data parses as a well-formed XML document.

    Args:
        data: Raw document bytes (declared encoding is honoured)

    Returns:
        bool: True if the document parses, False otherwise
    """
    try:
        ET.fromstring(data)
    except ET.ParseError:
        return False
    return True


def minify_markup(data: bytes) -> bytes:
    """
    Strip comments and whitespace-only text between markup.

    The document is tokenized first, so CDATA sections, processing
    instructions and quoted attribute values pass through unchanged. Text
    content, the XML declaration and the document encoding are left
    untouched, so the result is byte-compatible with the input encoding.
    """
    parts = []
    for match in _TOKEN_RE.finditer(data):
        token = match.group()
        if match.lastgroup == "comment":
            continue
        if match.lastgroup == "text" and not token.strip():
            continue
        parts.append(token)
    return b"".join(parts).strip()


def gzip_bytes(data: bytes) -> bytes:
    """Gzip-compress data, refusing to produce an empty stream."""
    if not data:
        raise ValueError("Refusing to compress empty payload")
    return gzip.compress(data)


def format_bytes(bytes_value: int, precision: int = 1) -> str:
    """Format bytes as human-readable string (B/KB/MB/GB)."""
    if bytes_value < 1024:
        return f"{bytes_value} B"
    elif bytes_value < 1024**2:
        return f"{bytes_value / 1024:.{precision}f} KB"
    elif bytes_value < 1024**3:
        return f"{bytes_value / 1024**2:.{precision}f} MB"
    else:
        return f"{bytes_value / 1024**3:.{precision}f} GB"
