"""
Document access for link scanning.

A document hands out point-in-time snapshots of its anchors and notifies
observers when its content changes. HtmlDocument covers static HTML;
browser_document.PlaywrightDocument covers live rendered pages.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Protocol
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from curl_cffi import requests

logger = logging.getLogger(__name__)

MutationCallback = Callable[[], None]


class ObservationUnavailableError(RuntimeError):
    """The document cannot deliver mutation notifications."""


@dataclass
class Anchor:
    """Raw state of one <a> element."""
    href: Optional[str]  # attribute value as written, None when absent
    text: str = ""
    title: Optional[str] = None
    aria_label: Optional[str] = None


@dataclass
class PageSnapshot:
    base_url: str
    title: str = ""
    anchors: List[Anchor] = field(default_factory=list)


class Observation:
    """Handle for a mutation subscription. disconnect() is idempotent."""

    def __init__(self, on_disconnect: Optional[Callable[[], None]] = None):
        self._on_disconnect = on_disconnect
        self.connected = True

    def disconnect(self) -> None:
        if not self.connected:
            return
        self.connected = False
        if self._on_disconnect is not None:
            self._on_disconnect()


class PageDocument(Protocol):
    async def snapshot(self) -> PageSnapshot:
        """Return the current base URL, title and anchors in document order."""
        ...

    async def observe(self, callback: MutationCallback) -> Observation:
        """Call callback on every subtree mutation until disconnected."""
        ...


def parse_snapshot(html: str, base_url: str) -> PageSnapshot:
    """
    Read anchors from HTML content.

    Args:
        html: HTML content to parse
        base_url: URL the content was loaded from

    Returns:
        PageSnapshot with every <a> element in document order
    """
    soup = BeautifulSoup(html, 'lxml')

    # <base href> overrides the location for relative links
    base_tag = soup.find('base', href=True)
    if base_tag:
        base_url = urljoin(base_url, base_tag['href'].strip())

    title = ''
    if soup.title and soup.title.string:
        title = soup.title.string.strip()

    anchors = []
    for link in soup.find_all('a'):
        anchors.append(Anchor(
            href=link.get('href'),
            text=link.get_text(),
            title=link.get('title'),
            aria_label=link.get('aria-label'),
        ))

    return PageSnapshot(base_url=base_url, title=title, anchors=anchors)


class HtmlDocument:
    """
    Document backed by a static HTML string.

    set_html() replaces the content and notifies observers, the same way a
    live page reports DOM mutations.
    """

    def __init__(self, html: str, base_url: str, observable: bool = True):
        self.html = html
        self.base_url = base_url
        self.observable = observable
        self._observers: List[MutationCallback] = []

    async def snapshot(self) -> PageSnapshot:
        return parse_snapshot(self.html, self.base_url)

    async def observe(self, callback: MutationCallback) -> Observation:
        if not self.observable:
            raise ObservationUnavailableError("Document does not support mutation observation")

        self._observers.append(callback)

        def remove():
            if callback in self._observers:
                self._observers.remove(callback)

        return Observation(remove)

    def set_html(self, html: str) -> None:
        self.html = html
        for callback in list(self._observers):
            callback()

    async def close(self) -> None:
        self._observers.clear()


def load_html_source(source: str, base_url: Optional[str] = None,
                     impersonate: str = "chrome120") -> HtmlDocument:
    """
    Load a static document from a local file or an http(s) URL.

    Args:
        source: File path or URL
        base_url: Base URL for relative links (defaults to the URL fetched,
            or the file URI for local files)
        impersonate: Browser fingerprint used by curl_cffi when fetching

    Returns:
        Non-observable HtmlDocument
    """
    if source.startswith('http://') or source.startswith('https://'):
        response = requests.get(source, impersonate=impersonate, timeout=30)
        response.raise_for_status()
        logger.info(f"Fetched {source} ({len(response.text)} bytes)")
        return HtmlDocument(response.text, base_url or str(response.url), observable=False)

    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"HTML file not found: {source}")

    html = path.read_text(encoding='utf-8')
    return HtmlDocument(html, base_url or path.resolve().as_uri(), observable=False)
