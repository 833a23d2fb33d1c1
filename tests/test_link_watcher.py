"""
Unit tests for the mutation watcher.

Uses static HTML documents whose set_html() plays the role of DOM
mutations, with short debounce windows.
"""

import asyncio
import unittest

from delivery import DeliveryChannel, MemoryConsumer
from extractors.legal_links import LinkExtractor
from link_watcher import MutationWatcher, WatcherState, build_watcher
from page_document import HtmlDocument, ObservationUnavailableError
from profile_loader import ScanProfile

BASE_URL = "https://example.com/"

PAGE = """
<html><head><title>Shop</title></head><body>
  <a href="/about">About</a>
  <a href="/privacy-policy">Privacy</a>
</body></html>
"""

PAGE_WITH_TERMS = """
<html><head><title>Shop</title></head><body>
  <a href="/about">About</a>
  <a href="/privacy-policy">Privacy</a>
  <a href="/terms">Terms of Use</a>
</body></html>
"""


class CountingDocument(HtmlDocument):
    def __init__(self, html, base_url=BASE_URL, observable=True, fail_snapshots=0):
        super().__init__(html, base_url, observable=observable)
        self.snapshots = 0
        self.fail_snapshots = fail_snapshots

    async def snapshot(self):
        self.snapshots += 1
        if self.fail_snapshots:
            self.fail_snapshots -= 1
            raise RuntimeError("document detached")
        return await super().snapshot()


class GatedDocument(CountingDocument):
    """Every snapshot after the first waits until gate is set."""

    def __init__(self, html, base_url=BASE_URL):
        super().__init__(html, base_url)
        self.gate = asyncio.Event()

    async def snapshot(self):
        if self.snapshots:
            await self.gate.wait()
        return await super().snapshot()


class AlwaysFailingConsumer:
    def __init__(self):
        self.calls = 0

    async def send(self, message):
        self.calls += 1
        raise ConnectionError("consumer unreachable")


async def no_sleep(delay):
    return None


class TestMutationWatcher(unittest.IsolatedAsyncioTestCase):

    def make_watcher(self, document=None, consumer=None, window=0.05):
        self.document = document or CountingDocument(PAGE)
        self.consumer = consumer or MemoryConsumer()
        channel = DeliveryChannel(self.consumer, retry_delay=0, sleep=no_sleep)
        self.watcher = MutationWatcher(self.document, LinkExtractor(), channel,
                                       debounce_window=window)
        return self.watcher

    async def asyncTearDown(self):
        if hasattr(self, 'watcher'):
            self.watcher.stop()
            await self.watcher.drain()

    async def test_start_scans_and_delivers(self):
        watcher = self.make_watcher()
        await watcher.start()
        await watcher.drain()

        self.assertEqual(watcher.state, WatcherState.ACTIVE)
        self.assertEqual(self.document.snapshots, 1)
        self.assertEqual(len(self.consumer.batches), 1)
        self.assertEqual(self.consumer.batches[0][0].href, "https://example.com/privacy-policy")

    async def test_burst_collapses_into_one_scan(self):
        watcher = self.make_watcher()
        await watcher.start()

        self.document.set_html(PAGE)
        self.document.set_html(PAGE)
        self.document.set_html(PAGE_WITH_TERMS)
        self.assertTrue(watcher.has_pending_scan)

        await asyncio.sleep(0.2)
        await watcher.drain()

        self.assertEqual(self.document.snapshots, 2)
        self.assertFalse(watcher.has_pending_scan)
        # Only the newly added link is delivered
        self.assertEqual(len(self.consumer.batches), 2)
        self.assertEqual([l.href for l in self.consumer.batches[1]], ["https://example.com/terms"])

    async def test_mutation_resets_quiet_window(self):
        watcher = self.make_watcher(window=0.3)
        await watcher.start()

        self.document.set_html(PAGE)
        await asyncio.sleep(0.15)
        self.document.set_html(PAGE)
        await asyncio.sleep(0.15)
        # 0.3s after the first mutation but only 0.15s after the second
        self.assertEqual(self.document.snapshots, 1)

        await asyncio.sleep(0.35)
        self.assertEqual(self.document.snapshots, 2)

    async def test_unchanged_page_delivers_nothing_new(self):
        watcher = self.make_watcher()
        await watcher.start()

        self.document.set_html(PAGE)
        await asyncio.sleep(0.2)
        await watcher.drain()

        self.assertEqual(self.document.snapshots, 2)
        self.assertEqual(len(self.consumer.batches), 1)

    async def test_stop_cancels_pending_scan(self):
        watcher = self.make_watcher()
        await watcher.start()

        self.document.set_html(PAGE_WITH_TERMS)
        self.assertTrue(watcher.has_pending_scan)
        watcher.stop()

        await asyncio.sleep(0.2)
        self.assertEqual(self.document.snapshots, 1)
        self.assertFalse(watcher.has_pending_scan)
        self.assertEqual(watcher.state, WatcherState.IDLE)

    async def test_mutations_ignored_after_stop(self):
        watcher = self.make_watcher()
        await watcher.start()
        watcher.stop()

        self.document.set_html(PAGE_WITH_TERMS)
        self.assertFalse(watcher.has_pending_scan)

    async def test_stop_is_idempotent(self):
        watcher = self.make_watcher()
        watcher.stop()
        watcher.stop()
        self.assertEqual(watcher.state, WatcherState.IDLE)

        await watcher.start()
        watcher.stop()
        watcher.stop()
        self.assertEqual(watcher.state, WatcherState.IDLE)

    async def test_unobservable_document_fails_start(self):
        watcher = self.make_watcher(document=CountingDocument(PAGE, observable=False))

        with self.assertRaises(ObservationUnavailableError):
            await watcher.start()
        await watcher.drain()

        self.assertEqual(watcher.state, WatcherState.IDLE)
        self.assertEqual(self.document.snapshots, 0)
        self.assertEqual(self.consumer.batches, [])

    async def test_stop_cancels_every_running_scan(self):
        document = GatedDocument(PAGE)
        watcher = self.make_watcher(document=document)
        await watcher.start()
        await watcher.drain()

        # Two quiet periods elapse while the first re-scan is still waiting
        document.set_html(PAGE_WITH_TERMS)
        await asyncio.sleep(0.1)
        document.set_html(PAGE_WITH_TERMS)
        await asyncio.sleep(0.1)
        self.assertEqual(watcher.scans_in_progress, 2)

        watcher.stop()
        self.assertEqual(watcher.scans_in_progress, 0)

        document.gate.set()
        await asyncio.sleep(0.05)
        await watcher.drain()

        self.assertEqual(len(self.consumer.batches), 1)
        self.assertEqual(watcher.links_found, 1)

    async def test_document_without_observe_fails_before_scanning(self):
        class SnapshotOnly:
            snapshots = 0

            async def snapshot(self):
                self.snapshots += 1

        document = SnapshotOnly()
        watcher = self.make_watcher(document=document)

        with self.assertRaises(ObservationUnavailableError):
            await watcher.start()
        self.assertEqual(document.snapshots, 0)

    async def test_scan_failure_keeps_watching(self):
        watcher = self.make_watcher(document=CountingDocument(PAGE, fail_snapshots=1))

        with self.assertLogs('link_watcher', level='ERROR'):
            await watcher.start()
        self.assertEqual(watcher.state, WatcherState.ACTIVE)
        self.assertEqual(self.consumer.batches, [])

        self.document.set_html(PAGE)
        await asyncio.sleep(0.2)
        await watcher.drain()

        self.assertEqual(len(self.consumer.batches), 1)

    async def test_delivery_failure_keeps_watching(self):
        consumer = AlwaysFailingConsumer()
        watcher = self.make_watcher(consumer=consumer)

        await watcher.start()
        outcomes = await watcher.drain()

        self.assertEqual(consumer.calls, 4)
        self.assertFalse(outcomes[0].delivered)
        self.assertEqual(watcher.state, WatcherState.ACTIVE)

        self.document.set_html(PAGE_WITH_TERMS)
        await asyncio.sleep(0.2)
        await watcher.drain()
        self.assertEqual(self.document.snapshots, 2)

    async def test_restart_starts_new_session(self):
        watcher = self.make_watcher()
        await watcher.start()
        await watcher.drain()
        watcher.stop()

        await watcher.start()
        await watcher.drain()

        self.assertEqual(len(self.consumer.batches), 2)
        self.assertEqual(self.consumer.batches[0], self.consumer.batches[1])

    async def test_start_while_active_restarts(self):
        watcher = self.make_watcher()
        await watcher.start()
        await watcher.start()
        await watcher.drain()

        self.assertEqual(watcher.state, WatcherState.ACTIVE)
        self.assertEqual(len(self.consumer.batches), 2)
        # The first subscription was disconnected
        self.assertEqual(len(self.document._observers), 1)


class TestBuildWatcher(unittest.TestCase):

    def test_profile_settings_applied(self):
        profile = ScanProfile(max_retries=1, retry_delay=0.1, debounce_window=2.0,
                              fallback_title="No title")
        watcher = build_watcher(HtmlDocument(PAGE, BASE_URL), MemoryConsumer(), profile)

        self.assertEqual(watcher.debounce_window, 2.0)
        self.assertEqual(watcher.channel.max_retries, 1)
        self.assertEqual(watcher.channel.retry_delay, 0.1)
        self.assertEqual(watcher.extractor.fallback_title, "No title")

    def test_defaults(self):
        watcher = build_watcher(HtmlDocument(PAGE, BASE_URL), MemoryConsumer())

        self.assertEqual(watcher.debounce_window, 0.5)
        self.assertEqual(watcher.channel.max_retries, 3)
        self.assertEqual(watcher.state, WatcherState.IDLE)


if __name__ == '__main__':
    unittest.main()
