"""
Extractors for legal link scanning.

This package contains pure, unit-testable functions for normalizing URLs
and text, matching classification patterns and extracting legal links
from document snapshots.
"""

from .legal_links import (
    LinkExtractor,
    PatternMatcher,
    normalize_text,
    normalize_url,
    resolve_href,
    resolve_page_title
)

__all__ = [
    'LinkExtractor',
    'PatternMatcher',
    'normalize_text',
    'normalize_url',
    'resolve_href',
    'resolve_page_title'
]
