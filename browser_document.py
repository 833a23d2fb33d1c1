"""
Live page documents backed by Playwright.

Reads anchors from a rendered page and bridges an in-page MutationObserver
to Python callbacks. Reuses the anti-detection browser settings of the
crawler tooling.
"""

import asyncio
import itertools
import json
import logging
import random
from pathlib import Path
from typing import Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Page, Playwright

from page_document import Anchor, MutationCallback, Observation, ObservationUnavailableError, PageSnapshot
from scanner_config import HEADLESS

logger = logging.getLogger(__name__)

DEFAULT_COOKIES = Path("output/browser_session/cookies.json")

BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--start-maximized",
]

ANTI_DETECT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
"""

SNAPSHOT_SCRIPT = """
() => ({
    baseUrl: document.baseURI,
    title: document.title,
    anchors: Array.from(document.querySelectorAll('a')).map(a => ({
        href: a.getAttribute('href'),
        text: a.textContent || '',
        title: a.getAttribute('title'),
        ariaLabel: a.getAttribute('aria-label'),
    })),
})
"""

# Returns false when the page can't observe mutations
OBSERVE_SCRIPT = """
(bindingName) => {
    if (typeof MutationObserver === 'undefined' || !document.body) {
        return false;
    }
    window.__legalLinkObservers = window.__legalLinkObservers || {};
    const observer = new MutationObserver(() => { window[bindingName](); });
    observer.observe(document.body, { childList: true, subtree: true });
    window.__legalLinkObservers[bindingName] = observer;
    return true;
}
"""

DISCONNECT_SCRIPT = """
(bindingName) => {
    const observers = window.__legalLinkObservers || {};
    if (observers[bindingName]) {
        observers[bindingName].disconnect();
        delete observers[bindingName];
    }
}
"""

_binding_ids = itertools.count(1)


class PlaywrightDocument:
    """Document view of a live Playwright page."""

    def __init__(self, page: Page, browser: Optional[Browser] = None,
                 playwright: Optional[Playwright] = None):
        self.page = page
        self._browser = browser
        self._playwright = playwright

    async def snapshot(self) -> PageSnapshot:
        data = await self.page.evaluate(SNAPSHOT_SCRIPT)
        anchors = [
            Anchor(
                href=a.get('href'),
                text=a.get('text') or '',
                title=a.get('title'),
                aria_label=a.get('ariaLabel'),
            )
            for a in data.get('anchors', [])
        ]
        return PageSnapshot(base_url=data.get('baseUrl') or self.page.url,
                            title=data.get('title') or '', anchors=anchors)

    async def observe(self, callback: MutationCallback) -> Observation:
        binding = f"__legalLinkMutation{next(_binding_ids)}"
        connected = {'value': True}

        def on_mutation():
            if connected['value']:
                callback()

        await self.page.expose_function(binding, on_mutation)
        supported = await self.page.evaluate(OBSERVE_SCRIPT, binding)
        if not supported:
            raise ObservationUnavailableError("MutationObserver is not available in this page")

        def disconnect():
            connected['value'] = False
            if self.page.is_closed():
                return
            task = asyncio.get_running_loop().create_task(self.page.evaluate(DISCONNECT_SCRIPT, binding))
            task.add_done_callback(_log_disconnect_failure)

        return Observation(disconnect)

    async def close(self) -> None:
        """Close the page and, when owned, the browser."""
        try:
            if not self.page.is_closed():
                await self.page.close()
        except Exception as e:
            logger.debug(f"Could not close page: {e}")

        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


def _log_disconnect_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Could not disconnect mutation observer: {error}")


async def create_context(browser: Browser, cookies_file: Optional[Path] = None) -> BrowserContext:
    """Create a browser context with anti-detection settings."""
    vw = 1920 + random.randint(-100, 100)
    vh = 1080 + random.randint(-100, 100)

    ctx = await browser.new_context(
        viewport={"width": vw, "height": vh},
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        locale="en-US",
        timezone_id="America/New_York",
    )

    if cookies_file and cookies_file.exists():
        try:
            await ctx.add_cookies(json.loads(cookies_file.read_text()))
            logger.info("Loaded saved session cookies")
        except Exception as e:
            logger.warning(f"Could not load cookies: {e}")

    return ctx


async def open_browser_document(url: str, headless: bool = HEADLESS,
                                cookies_file: Optional[Path] = DEFAULT_COOKIES) -> PlaywrightDocument:
    """
    Launch Chromium, open url and wrap the page as a document.

    The returned document owns the browser; close() shuts it down.
    """
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(headless=headless, args=BROWSER_ARGS)
        ctx = await create_context(browser, cookies_file)
        page = await ctx.new_page()
        await page.add_init_script(ANTI_DETECT_SCRIPT)
        await page.goto(url, wait_until="domcontentloaded", timeout=60000)
    except Exception as e:
        error_msg = str(e)
        if "playwright install" in error_msg.lower() or "executable doesn't exist" in error_msg.lower():
            logger.error("Playwright browsers not installed!")
            logger.error("Please run: playwright install")
        await playwright.stop()
        raise

    mode = "headless" if headless else "visible"
    logger.info(f"Opened {url} in Playwright browser ({mode} mode)")
    return PlaywrightDocument(page, browser=browser, playwright=playwright)
