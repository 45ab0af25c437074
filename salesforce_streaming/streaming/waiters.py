"""
Delivery Waiters

Bridges callback delivery to awaitable results.

MessageFuture completes once with the first message it is handed; it is the
handler for "publish one thing, expect one thing" checks.

EventCollector gathers Change Data Capture events for a set of records
and waits for all of them. Delivery of change events is best effort, so a
timeout ends the wait in the SKIPPED state with a warning instead of failing.
"""

import asyncio
import warnings
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set

from salesforce_streaming.streaming.messages import StreamingMessage
from salesforce_streaming.utils.exceptions import (
    DeliveryTimeoutException,
    DeliveryTimeoutWarning,
    UnexpectedMessageException,
)
from salesforce_streaming.utils.logging_config import get_logger

logger = get_logger(__name__)

TIMEOUT_WARNING_MESSAGE = (
    "Warning: Timeout waiting for CDC replayed events. This may be due to high load "
    "on the platform. The test won't fail but it may be less reliable. If you are "
    "uncertain about the result, please run the test more times."
)


class MessageFuture:
    """Single-assignment result completed by the first delivered message"""

    def __init__(self):
        self._event = asyncio.Event()
        self._message: Optional[StreamingMessage] = None
        self.deliveries = 0

    def __call__(self, message: StreamingMessage) -> None:
        self.deliveries += 1
        if self._message is None:
            self._message = message
            self._event.set()

    @property
    def done(self) -> bool:
        return self._event.is_set()

    @property
    def message(self) -> Optional[StreamingMessage]:
        return self._message

    async def wait(self, timeout: Optional[float] = None) -> StreamingMessage:
        """
        Wait for the first message.

        Raises:
            DeliveryTimeoutException: If nothing arrives within timeout seconds
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            raise DeliveryTimeoutException(
                f"No message delivered within {timeout}s",
                timeout=timeout,
            ) from None
        return self._message


class CollectorState(Enum):
    WAITING = "waiting"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


def payload_name(message: StreamingMessage) -> Optional[str]:
    """The Name field of a change event payload"""
    return message.payload_field("Name")


class EventCollector:
    """
    Collects change events for expected records.

    Names are registered with expect() before the records are created, and
    bind() attaches the ids the creates returned. An event covers every
    record listed in its ChangeEventHeader.recordIds, so a coalesced event
    for several inserts completes the wait on its own; the Name field is
    used until the ids are known.

    In strict mode any message that is not a change event for an expected
    record fails the collector: the handler raises UnexpectedMessageException
    and wait() re-raises it.
    """

    def __init__(
        self,
        strict: bool = False,
        key: Callable[[StreamingMessage], Optional[str]] = payload_name,
        timeout_message: str = TIMEOUT_WARNING_MESSAGE,
    ):
        self.strict = strict
        self.key = key
        self.timeout_message = timeout_message
        self.expected: List[str] = []
        # expected name -> record id
        self.record_ids: Dict[str, str] = {}
        self.received: List[StreamingMessage] = []
        self.last_replay_id: Optional[int] = None
        self.state = CollectorState.WAITING
        self.error: Optional[UnexpectedMessageException] = None
        self._finished = asyncio.Event()

    def expect(self, name: str) -> None:
        self.expected.append(name)

    def bind(self, names: Sequence[str], record_ids: Sequence[str]) -> None:
        """Attach created record ids to their expected names, in order"""
        self.record_ids.update(zip(names, record_ids))
        if self.state is CollectorState.WAITING:
            self._check_complete()

    @property
    def seen(self) -> Set[str]:
        return {self.key(message) for message in self.received}

    @property
    def delivered_ids(self) -> Set[str]:
        return {record_id for message in self.received for record_id in message.record_ids}

    @property
    def covered(self) -> Set[str]:
        """Expected names accounted for by a received event's record ids or Name"""
        seen = self.seen
        delivered_ids = self.delivered_ids
        return {
            name for name in self.expected
            if name in seen or self.record_ids.get(name) in delivered_ids
        }

    @property
    def complete(self) -> bool:
        return bool(self.expected) and self.covered == set(self.expected)

    def _correlates(self, message: StreamingMessage) -> bool:
        if not message.is_change_event:
            return False
        if not set(message.record_ids).isdisjoint(self.record_ids.values()):
            return True
        return self.key(message) in self.expected

    def _check_complete(self) -> None:
        if self.complete:
            self.state = CollectorState.DONE
            self._finished.set()

    def __call__(self, message: StreamingMessage) -> None:
        if message.replay_id is not None:
            self.last_replay_id = message.replay_id

        if self.state is not CollectorState.WAITING:
            return

        if self._correlates(message):
            self.received.append(message)
            self._check_complete()
            return

        if self.strict:
            self.error = UnexpectedMessageException(
                "Received unexpected CDC event",
                details={
                    "replay_id": message.replay_id,
                    "name": self.key(message),
                    "record_ids": message.record_ids,
                },
            )
            self.state = CollectorState.FAILED
            self._finished.set()
            raise self.error

    async def wait(self, timeout: float) -> CollectorState:
        """
        Wait until every expected record was delivered.

        Returns:
            DONE, or SKIPPED when timeout elapsed first

        Raises:
            UnexpectedMessageException: In strict mode, on an uncorrelated message
        """
        try:
            await asyncio.wait_for(self._finished.wait(), timeout)
        except asyncio.TimeoutError:
            if self.state is CollectorState.WAITING:
                self.state = CollectorState.SKIPPED
                logger.warning(
                    self.timeout_message,
                    extra={"expected": self.expected, "received": len(self.received)},
                )
                warnings.warn(self.timeout_message, DeliveryTimeoutWarning, stacklevel=2)

        if self.state is CollectorState.FAILED:
            raise self.error

        return self.state

    def covers_expected(self) -> bool:
        """
        Whether the events received account for every expected record.

        Either one event per record, or a single coalesced event whose
        ChangeEventHeader lists every record id.
        """
        if not self.complete:
            return False
        if len(self.received) == len(self.expected):
            return True
        return len(self.received) == 1 and len(self.received[0].record_ids) == len(self.expected)
