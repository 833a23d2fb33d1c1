"""
Link Watcher - incremental legal link scanning of a changing page.

This module implements the scanning session, which:
1. Subscribes to DOM mutations, then scans the document once
2. Waits for bursts of changes to settle
3. Re-extracts after each settled burst, reporting only new links
4. Hands every non-empty batch to the delivery channel without waiting for it
"""

import asyncio
import logging
from enum import Enum
from typing import List, Optional, Set

from delivery import DeliveryChannel, DeliveryOutcome, LinkConsumer
from extractors.legal_links import LinkExtractor
from page_document import Observation, ObservationUnavailableError, PageDocument
from scanner_config import DEBOUNCE_WINDOW

logger = logging.getLogger(__name__)


class WatcherState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"


class MutationWatcher:
    """
    Watches a document and reports new legal links as it changes.

    Mutations are debounced on the trailing edge: each notification
    (re)arms a single timer and the scan runs once the document has been
    quiet for debounce_window seconds.
    """

    def __init__(self, document: PageDocument, extractor: LinkExtractor,
                 channel: DeliveryChannel, debounce_window: float = DEBOUNCE_WINDOW):
        """
        Args:
            document: Document to scan and observe
            extractor: Extractor holding the session's seen links and match cache
            channel: Delivery channel for extracted batches
            debounce_window: Quiet period in seconds before a re-scan
        """
        self.document = document
        self.extractor = extractor
        self.channel = channel
        self.debounce_window = debounce_window

        self.state = WatcherState.IDLE
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observation: Optional[Observation] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._scans: Set[asyncio.Task] = set()
        self._deliveries: Set[asyncio.Task] = set()

        # Statistics
        self.scan_count = 0
        self.links_found = 0
        self.delivery_outcomes: List[DeliveryOutcome] = []

    @property
    def is_active(self) -> bool:
        return self.state is WatcherState.ACTIVE

    @property
    def has_pending_scan(self) -> bool:
        return self._timer is not None

    async def start(self) -> None:
        """
        Start a new session: subscribe to document mutations, then scan once.

        A mutation arriving during the initial scan only arms the debounce
        timer.

        Raises:
            ObservationUnavailableError: If the document can't report
                mutations; the watcher stays idle and nothing is scanned.
        """
        if self.is_active:
            logger.info("Watcher already active - restarting session")
            self.stop()

        if not callable(getattr(self.document, 'observe', None)):
            raise ObservationUnavailableError("Document does not support mutation observation")

        self._loop = asyncio.get_running_loop()
        self.extractor.reset()
        self.state = WatcherState.ACTIVE

        try:
            self._observation = await self.document.observe(self._on_mutation)
        except Exception:
            self.state = WatcherState.IDLE
            raise

        logger.info("Watching document for changes")
        await self._scan()

    def stop(self) -> None:
        """End the session. Safe to call repeatedly and from any state."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        for task in list(self._scans):
            task.cancel()
        self._scans.clear()

        if self._observation is not None:
            self._observation.disconnect()
            self._observation = None

        if self.is_active:
            logger.info(f"Watcher stopped after {self.scan_count} scans, {self.links_found} links")
        self.state = WatcherState.IDLE

    async def drain(self) -> List[DeliveryOutcome]:
        """Wait for deliveries still in flight."""
        if self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)
        return self.delivery_outcomes

    def _on_mutation(self) -> None:
        if not self.is_active or self._loop is None:
            return

        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self.debounce_window, self._on_quiet)

    def _on_quiet(self) -> None:
        self._timer = None
        if not self.is_active:
            return
        task = self._loop.create_task(self._scan())
        self._scans.add(task)
        task.add_done_callback(self._scans.discard)

    @property
    def scans_in_progress(self) -> int:
        return len(self._scans)

    async def _scan(self) -> None:
        """Extract new links and launch delivery. Never raises."""
        self.scan_count += 1
        try:
            snapshot = await self.document.snapshot()
            records = self.extractor.extract(snapshot)
        except Exception:
            logger.exception("Link scan failed")
            return

        if not records:
            logger.info("No matching links found")
            return

        self.links_found += len(records)
        logger.info(f"Found {len(records)} matching links")

        task = asyncio.get_running_loop().create_task(self._deliver(records))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, records) -> None:
        try:
            outcome = await self.channel.deliver(records)
        except Exception:
            logger.exception("Link delivery failed")
            return
        self.delivery_outcomes.append(outcome)


def build_watcher(document: PageDocument, consumer: LinkConsumer, profile=None) -> MutationWatcher:
    """
    Wire extractor, delivery channel and watcher for one document.

    Args:
        document: Document to watch
        consumer: Destination for link batches
        profile: Optional ScanProfile overriding the configured defaults
    """
    if profile is None:
        return MutationWatcher(document, LinkExtractor(), DeliveryChannel(consumer))

    extractor = LinkExtractor(patterns=profile.patterns, fallback_title=profile.fallback_title)
    channel = DeliveryChannel(consumer, max_retries=profile.max_retries,
                              retry_delay=profile.retry_delay)
    return MutationWatcher(document, extractor, channel, debounce_window=profile.debounce_window)
