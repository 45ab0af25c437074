"""Streaming API client: Bayeux session, channel facade, message models and waiters"""

from salesforce_streaming.streaming.bayeux import BayeuxClient
from salesforce_streaming.streaming.client import Channel, Streaming, Subscription
from salesforce_streaming.streaming.messages import (
    REPLAY_ALL,
    REPLAY_NEW,
    ChangeEventHeader,
    PushEvent,
    PushResult,
    StreamingEvent,
    StreamingMessage,
)
from salesforce_streaming.streaming.waiters import (
    CollectorState,
    EventCollector,
    MessageFuture,
)

__all__ = [
    "BayeuxClient",
    "Channel",
    "ChangeEventHeader",
    "CollectorState",
    "EventCollector",
    "MessageFuture",
    "PushEvent",
    "PushResult",
    "REPLAY_ALL",
    "REPLAY_NEW",
    "StreamingEvent",
    "StreamingMessage",
    "Streaming",
    "Subscription",
]
