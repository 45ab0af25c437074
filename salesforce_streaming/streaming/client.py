"""
Streaming API Facade

    subscription = conn.streaming.channel("/u/Notifications").subscribe(handler, REPLAY_NEW)
    await subscription.ready()
    result = await conn.streaming.channel("/u/Notifications").push({"payload": "hello"})
    subscription.cancel()

topic(name) addresses PushTopics (/topic/{name}); channel(name) takes the full
channel name, which covers generic channels (/u/...) and CDC (/data/...).
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from salesforce_streaming.services.salesforce_service import SalesforceService
from salesforce_streaming.services.sobject import SObject
from salesforce_streaming.streaming.bayeux import BayeuxClient
from salesforce_streaming.streaming.messages import PushEvent, PushResult, StreamingMessage
from salesforce_streaming.utils.exceptions import StreamingException
from salesforce_streaming.utils.logging_config import get_logger

logger = get_logger(__name__)

MessageHandler = Callable[[StreamingMessage], Any]


class Subscription:
    """
    A callback registered on a channel at a replay cursor.

    Created by Channel.subscribe(). The subscribe request runs in the
    background; ready() waits for the server's acknowledgement. cancel() and
    unsubscribe() are the same operation and may be called any number of times.
    """

    def __init__(
        self,
        bayeux: BayeuxClient,
        channel: str,
        handler: MessageHandler,
        replay_id: Optional[int] = None,
    ):
        self.channel = channel
        self.replay_id = replay_id
        self.errors: List[BaseException] = []
        self._bayeux = bayeux
        self._handler = handler
        self._cancelled = False

        self._task = asyncio.ensure_future(bayeux.subscribe(channel, replay_id, self._deliver))
        self._task.add_done_callback(self._on_subscribed)

    @property
    def active(self) -> bool:
        return not self._cancelled

    def _deliver(self, data: Dict[str, Any]) -> None:
        if self._cancelled:
            return

        try:
            message = StreamingMessage.model_validate(data)
        except ValidationError as e:
            self.errors.append(e)
            logger.error(f"Malformed message on {self.channel}: {e}", extra={"channel": self.channel})
            return

        try:
            self._handler(message)
        except Exception as e:
            self.errors.append(e)
            raise

    def _on_subscribed(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.errors.append(error)
            logger.error(f"Subscribe to {self.channel} failed: {error}", extra={"channel": self.channel})

    async def ready(self) -> "Subscription":
        """
        Wait for the subscribe acknowledgement.

        Raises:
            SubscriptionException: If the server rejected the subscription
        """
        await asyncio.shield(self._task)
        return self

    def cancel(self) -> None:
        """Stop delivering to the handler and release the server-side subscription"""
        if self._cancelled:
            return
        self._cancelled = True

        # Queued behind our own subscribe; unsubscribes only if no listener remains
        self._bayeux.schedule_unsubscribe(self.channel, self._deliver)

        logger.debug(f"Cancelled subscription to {self.channel}", extra={"channel": self.channel})

    def unsubscribe(self) -> None:
        self.cancel()


class Channel:
    """A subscribable streaming channel; generic channels can also be pushed to"""

    def __init__(self, streaming: "Streaming", name: str):
        self.streaming = streaming
        self.name = name
        self._channel_id: Optional[str] = None

    def subscribe(self, handler: MessageHandler, replay_id: Optional[int] = None) -> Subscription:
        """
        Register handler for messages on this channel.

        Must be called with a running event loop. The handler is called
        synchronously for each message with a StreamingMessage.
        """
        return Subscription(self.streaming.bayeux, self.name, handler, replay_id)

    async def _get_channel_id(self) -> str:
        if self._channel_id is None:
            record = await SObject(self.streaming.service, "StreamingChannel").find_one({"Name": self.name})
            if record is None:
                raise StreamingException(
                    f"Streaming channel {self.name} does not exist",
                    details={"channel": self.name},
                )
            self._channel_id = record["Id"]
        return self._channel_id

    async def push(
        self,
        events: Union[Dict[str, Any], PushEvent, List[Union[Dict[str, Any], PushEvent]]],
    ) -> Union[PushResult, List[PushResult]]:
        """
        Publish to this generic channel.

        Args:
            events: {"payload": str, "userIds": [...]} or a list of them

        Returns:
            A PushResult per event; a single result when a single event was given
        """
        single = not isinstance(events, list)
        items = [events] if single else events
        push_events = [PushEvent.model_validate(event).model_dump() for event in items]

        channel_id = await self._get_channel_id()
        response = await self.streaming.service.push_streaming_events(channel_id, push_events)
        results = [PushResult.model_validate(item) for item in response]

        return results[0] if single else results


class Streaming:
    """Entry point to the streaming API of one connection"""

    def __init__(self, service: SalesforceService, bayeux: BayeuxClient):
        self.service = service
        self.bayeux = bayeux
        self._channels: Dict[str, Channel] = {}

    def channel(self, name: str) -> Channel:
        if name not in self._channels:
            self._channels[name] = Channel(self, name)
        return self._channels[name]

    def topic(self, name: str) -> Channel:
        return self.channel(name if name.startswith("/") else f"/topic/{name}")

    def subscribe(
        self,
        name: str,
        handler: MessageHandler,
        replay_id: Optional[int] = None,
    ) -> Subscription:
        return self.channel(name).subscribe(handler, replay_id)

    async def close(self) -> None:
        await self.bayeux.disconnect()
