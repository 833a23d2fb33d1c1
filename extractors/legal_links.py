"""
Pure extraction functions for legal link scanning.

These functions are unit-testable and don't perform I/O.
They find privacy policy and terms links in a document snapshot, classify
them and drop links already reported during the session.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

from link_models import DEFAULT_PATTERNS, LinkPattern, LinkRecord, normalize_text
from page_document import Anchor, PageSnapshot
from scanner_config import FALLBACK_PAGE_TITLE, INTERNAL_URL_SCHEMES, MIN_HREF_LENGTH

logger = logging.getLogger(__name__)


def normalize_url(href: str, base_url: str = '') -> str:
    """
    Canonicalize a URL for identity comparison by:
    - Resolving it against the base URL
    - Removing the query string and fragment
    - Lower-casing the result

    Never raises: input that can't be parsed as a URL falls back to
    plain string cleanup.

    Args:
        href: URL or relative reference
        base_url: Base URL to resolve against

    Returns:
        Normalized URL string
    """
    try:
        absolute = urljoin(base_url, href) if base_url else href
        parsed = urlsplit(absolute)
        return urlunsplit((parsed.scheme, parsed.netloc, parsed.path, '', '')).lower()
    except ValueError:
        return href.split('#')[0].split('?')[0].lower()


def resolve_href(href: Optional[str], base_url: str) -> Optional[str]:
    """
    Resolve an href attribute to an absolute URL.

    Returns None when the anchor has no href or the result isn't a usable
    URL (no scheme, invalid host or port).
    """
    if href is None:
        return None

    try:
        absolute = urljoin(base_url, href.strip())
        parsed = urlsplit(absolute)
        parsed.port  # raises on a malformed port
    except ValueError:
        return None

    if not parsed.scheme:
        return None
    return absolute


class PatternMatcher:
    """
    Decides whether text satisfies a pattern.

    Results are memoized per (normalized text, pattern) for the lifetime of
    the matcher; the match is a pure function so entries never go stale.
    """

    def __init__(self):
        self._cache: Dict[Tuple[str, LinkPattern], bool] = {}
        self.hits = 0
        self.misses = 0

    def matches(self, subject: Optional[str], pattern: LinkPattern) -> bool:
        normalized = normalize_text(subject)
        key = (normalized, pattern)

        cached = self._cache.get(key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        if len(pattern.keywords) == 1:
            result = pattern.keywords[0] in normalized
        else:
            result = all(keyword in normalized for keyword in pattern.keywords)

        self._cache[key] = result
        return result

    def clear(self) -> None:
        self._cache.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._cache)


def resolve_page_title(anchor: Anchor, document_title: str,
                       fallback: str = FALLBACK_PAGE_TITLE) -> str:
    """
    Pick a human title for a link target.

    Priority: title attribute, aria-label, anchor text, document title,
    then the fallback string.
    """
    for candidate in (anchor.title, anchor.aria_label, anchor.text, document_title):
        if candidate and candidate.strip():
            return candidate.strip()
    return fallback


class LinkExtractor:
    """
    Finds and classifies legal links in document snapshots.

    Owns the session state: the pattern match cache and the set of
    normalized hrefs already reported. Calling extract() again on an
    unchanged document returns nothing new.
    """

    def __init__(self, patterns: Iterable[LinkPattern] = DEFAULT_PATTERNS,
                 matcher: Optional[PatternMatcher] = None,
                 fallback_title: str = FALLBACK_PAGE_TITLE,
                 excluded_schemes: Tuple[str, ...] = INTERNAL_URL_SCHEMES,
                 min_href_length: int = MIN_HREF_LENGTH):
        """
        Args:
            patterns: Ordered pattern table; the first match wins
            matcher: Pattern matcher (a fresh one is created if omitted)
            fallback_title: pageTitle when nothing better is available
            excluded_schemes: URL prefixes that are never reported
            min_href_length: Shortest normalized href that may be reported
        """
        self.patterns = tuple(patterns)
        self.matcher = matcher or PatternMatcher()
        self.fallback_title = fallback_title
        self.excluded_schemes = tuple(s.lower() for s in excluded_schemes)
        self.min_href_length = min_href_length
        self.seen: Set[str] = set()

    def reset(self) -> None:
        """Forget reported links and cached matches (new session)."""
        self.seen.clear()
        self.matcher.clear()

    def classify(self, href: str, text: str, aria_label: Optional[str]) -> Optional[LinkPattern]:
        """
        Return the first pattern matched by the href, the text or the
        aria-label, or None.
        """
        for pattern in self.patterns:
            if (self.matcher.matches(href, pattern)
                    or self.matcher.matches(text, pattern)
                    or self.matcher.matches(aria_label or '', pattern)):
                return pattern
        return None

    def extract(self, snapshot: PageSnapshot) -> List[LinkRecord]:
        """
        Extract new legal links from a document snapshot.

        Args:
            snapshot: Anchors, base URL and title of the document

        Returns:
            LinkRecords in document order, excluding hrefs already reported
        """
        records = []

        for index, anchor in enumerate(snapshot.anchors):
            try:
                record = self._extract_anchor(anchor, snapshot)
            except Exception as e:
                logger.warning(f"Error processing link #{index} ({anchor.href!r}): {e}")
                continue

            if record is not None:
                self.seen.add(record.href)
                records.append(record)

        return records

    def _extract_anchor(self, anchor: Anchor, snapshot: PageSnapshot) -> Optional[LinkRecord]:
        absolute = resolve_href(anchor.href, snapshot.base_url)
        if absolute is None:
            return None

        href = normalize_url(absolute)

        if href.startswith(self.excluded_schemes):
            return None

        if href in self.seen:
            return None

        if len(href.strip()) < self.min_href_length:
            return None

        text = (anchor.text or '').strip() or absolute

        pattern = self.classify(href, text, anchor.aria_label)
        if pattern is None:
            return None

        return LinkRecord(
            href=href,
            text=text,
            type=pattern.type,
            page_title=resolve_page_title(anchor, snapshot.title, self.fallback_title),
        )
