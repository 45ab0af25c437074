"""
Test Streaming Facade

Tests channels, topics, subscriptions and generic channel push.
"""

import pytest

from salesforce_streaming.streaming import REPLAY_NEW, MessageFuture, PushEvent, PushResult
from salesforce_streaming.utils.exceptions import StreamingException, SubscriptionException
from tests.fake_org import eventually


@pytest.mark.asyncio
async def test_topic_names_map_to_topic_channels(connection):
    streaming = connection.streaming

    assert streaming.topic("AccountUpdates").name == "/topic/AccountUpdates"
    assert streaming.topic("/topic/AccountUpdates") is streaming.topic("AccountUpdates")
    assert streaming.channel("/u/Notifications") is streaming.channel("/u/Notifications")


@pytest.mark.asyncio
async def test_subscription_delivers_parsed_messages(test_channel, connection):
    future = MessageFuture()
    subscription = test_channel.subscribe(future, REPLAY_NEW)
    await subscription.ready()

    await test_channel.push({"payload": "hello"})
    message = await future.wait(5)

    assert message.payload == "hello"
    assert isinstance(message.replay_id, int)
    assert subscription.active
    subscription.cancel()


@pytest.mark.asyncio
async def test_cancel_is_idempotent(test_channel, connection, fake_org):
    subscription = test_channel.subscribe(MessageFuture(), REPLAY_NEW)
    await subscription.ready()

    subscription.cancel()
    subscription.cancel()
    subscription.unsubscribe()

    assert not subscription.active
    await connection.close()

    unsubscribes = [m for m in fake_org.bayeux_log if m["channel"] == "/meta/unsubscribe"]
    assert len(unsubscribes) == 1


@pytest.mark.asyncio
async def test_cancelled_subscription_stops_delivery(test_channel, connection):
    received = []
    kept = MessageFuture()

    cancelled = test_channel.subscribe(received.append, REPLAY_NEW)
    kept_subscription = test_channel.subscribe(kept, REPLAY_NEW)
    await cancelled.ready()
    await kept_subscription.ready()

    cancelled.cancel()
    await test_channel.push({"payload": "after cancel"})

    message = await kept.wait(5)
    assert message.payload == "after cancel"
    assert received == []
    kept_subscription.cancel()


@pytest.mark.asyncio
async def test_shared_channel_stays_subscribed_until_last_cancel(test_channel, connection, fake_org):
    first = test_channel.subscribe(MessageFuture(), REPLAY_NEW)
    second = test_channel.subscribe(MessageFuture(), REPLAY_NEW)
    await first.ready()
    await second.ready()

    first.cancel()
    assert test_channel.name in connection.streaming.bayeux.subscriptions

    second.cancel()
    await eventually(lambda: test_channel.name not in connection.streaming.bayeux.subscriptions)

    subscribes = [m for m in fake_org.bayeux_log if m["channel"] == "/meta/subscribe"]
    assert len(subscribes) == 1


@pytest.mark.asyncio
async def test_resubscribe_ignores_messages_for_previous_cursor(test_channel, connection, fake_org):
    bayeux = connection.streaming.bayeux
    first = test_channel.subscribe(MessageFuture(), REPLAY_NEW)
    await first.ready()

    received = []
    first.cancel()
    second = test_channel.subscribe(received.append, REPLAY_NEW)
    # Still addressed to the first subscription: its unsubscribe has not run yet
    bayeux._dispatch({"channel": test_channel.name, "data": {"event": {"replayId": 1}, "payload": "stale"}})

    await second.ready()
    await test_channel.push({"payload": "fresh"})

    await eventually(lambda: len(received) == 1)
    assert [message.payload for message in received] == ["fresh"]

    meta = [
        m["channel"] for m in fake_org.bayeux_log
        if m["channel"] in ("/meta/subscribe", "/meta/unsubscribe")
    ]
    assert meta == ["/meta/subscribe", "/meta/unsubscribe", "/meta/subscribe"]
    second.cancel()


@pytest.mark.asyncio
async def test_cancel_before_acknowledgement_releases_channel(test_channel, connection):
    subscription = test_channel.subscribe(MessageFuture(), REPLAY_NEW)
    subscription.cancel()

    await subscription.ready()
    await eventually(lambda: test_channel.name not in connection.streaming.bayeux.subscriptions)
    assert test_channel.name not in connection.streaming.bayeux._listeners


@pytest.mark.asyncio
async def test_rejected_subscription_fails_ready(connection):
    subscription = connection.streaming.topic("NoSuchTopic").subscribe(MessageFuture())

    with pytest.raises(SubscriptionException):
        await subscription.ready()

    assert isinstance(subscription.errors[0], SubscriptionException)
    subscription.cancel()


@pytest.mark.asyncio
async def test_handler_errors_are_recorded(test_channel, connection):
    def handler(message):
        raise ValueError("bad handler")

    subscription = test_channel.subscribe(handler, REPLAY_NEW)
    await subscription.ready()

    await test_channel.push({"payload": "boom"})
    await eventually(lambda: len(subscription.errors) == 1)

    assert isinstance(subscription.errors[0], ValueError)
    subscription.cancel()


@pytest.mark.asyncio
async def test_malformed_message_is_recorded(test_channel, connection):
    future = MessageFuture()
    subscription = test_channel.subscribe(future, REPLAY_NEW)
    await subscription.ready()

    subscription._deliver({"event": "not-an-event"})

    assert len(subscription.errors) == 1
    assert not future.done
    subscription.cancel()


@pytest.mark.asyncio
async def test_push_single_event_returns_single_result(test_channel):
    result = await test_channel.push(PushEvent(payload="nobody listening"))

    assert isinstance(result, PushResult)
    assert result.fanoutCount == 0
    assert result.userOnlineStatus == {}


@pytest.mark.asyncio
async def test_push_list_returns_result_per_event(test_channel, fake_org):
    results = await test_channel.push([{"payload": "one"}, {"payload": "two", "userIds": []}])

    assert [r.fanoutCount for r in results] == [0, 0]

    # The channel id is looked up once
    await test_channel.push({"payload": "three"})
    lookups = [r for r in fake_org.requests if r == ("GET", "/services/data/v63.0/query")]
    assert len(lookups) == 1


@pytest.mark.asyncio
async def test_push_to_missing_channel_raises(connection):
    with pytest.raises(StreamingException, match="does not exist"):
        await connection.streaming.channel("/u/Missing").push({"payload": "x"})
