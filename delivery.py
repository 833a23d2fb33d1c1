"""
Delivery of extracted links to the consumer.

The channel sends one batch with bounded retry. Consumers are anything with
an async send(message) returning the acknowledgement dict.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from curl_cffi.requests import AsyncSession

from link_models import DeliveryAck, LinkRecord, LinksMessage
from scanner_config import DELIVERY_TIMEOUT, MAX_RETRIES, RETRY_DELAY

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """The consumer could not be reached or rejected the batch."""


class LinkConsumer(Protocol):
    async def send(self, message: LinksMessage) -> Dict[str, Any]:
        ...


@dataclass
class DeliveryOutcome:
    delivered: bool
    attempts: int
    error: Optional[str] = None
    response: Optional[Dict[str, Any]] = None


class HttpConsumer:
    """POSTs link messages as JSON to an HTTP endpoint."""

    def __init__(self, endpoint: str, timeout: float = DELIVERY_TIMEOUT,
                 impersonate: str = "chrome120"):
        self.endpoint = endpoint
        self.timeout = timeout
        self.impersonate = impersonate

    async def send(self, message: LinksMessage) -> Dict[str, Any]:
        async with AsyncSession() as session:
            response = await session.post(
                self.endpoint,
                json=message.to_payload(),
                timeout=self.timeout,
                impersonate=self.impersonate,
            )

        if response.status_code >= 400:
            raise DeliveryError(f"Consumer returned HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError:
            return {"status": "received", "body": response.text}


class MemoryConsumer:
    """Keeps every received batch in memory and acknowledges it."""

    def __init__(self):
        self.batches: List[List[LinkRecord]] = []

    async def send(self, message: LinksMessage) -> Dict[str, Any]:
        self.batches.append(list(message.links))
        return DeliveryAck(received=len(message.links)).model_dump()

    @property
    def links(self) -> List[LinkRecord]:
        return [link for batch in self.batches for link in batch]


class DeliveryChannel:
    """
    Hands a batch of records to a consumer.

    A failed attempt is retried up to max_retries times with a fixed delay,
    always with the same payload. Once retries are exhausted the batch is
    dropped and the failure logged; deliver() never raises for a consumer
    failure.
    """

    def __init__(self, consumer: LinkConsumer, max_retries: int = MAX_RETRIES,
                 retry_delay: float = RETRY_DELAY,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.consumer = consumer
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    async def deliver(self, records: Sequence[LinkRecord]) -> DeliveryOutcome:
        message = LinksMessage(links=list(records))
        attempts = 0
        last_error = None

        while attempts <= self.max_retries:
            attempts += 1
            try:
                response = await self.consumer.send(message)
                if isinstance(response, dict) and response.get('status') == 'failure':
                    raise DeliveryError(response.get('error') or 'Consumer rejected links')
            except Exception as e:
                last_error = str(e) or type(e).__name__
                logger.error(f"Error sending links: {last_error}")

                if attempts > self.max_retries:
                    break

                logger.info(f"Retrying... Attempt {attempts} of {self.max_retries}")
                await self._sleep(self.retry_delay)
                continue

            logger.info(f"Links sent successfully: {response}")
            return DeliveryOutcome(delivered=True, attempts=attempts, response=response)

        logger.error(f"Max retries reached. Failed to send {len(message.links)} links.")
        return DeliveryOutcome(delivered=False, attempts=attempts, error=last_error)
