"""
Bayeux Long-Polling Client

Minimal CometD client for the Salesforce streaming endpoint
({instance_url}/cometd/{version}). Supports handshake, the /meta/connect
long-poll loop, subscribe/unsubscribe with the replay extension and disconnect.

Messages delivered on any response are dispatched synchronously to the
listeners registered for their channel.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from salesforce_streaming.auth.salesforce_oauth import SalesforceOAuth
from salesforce_streaming.config import Settings, settings as default_settings
from salesforce_streaming.utils.exceptions import (
    BayeuxException,
    SalesforceAuthException,
    SubscriptionException,
)
from salesforce_streaming.utils.logging_config import get_logger
from salesforce_streaming.utils.retry import calculate_backoff

logger = get_logger(__name__)

BAYEUX_VERSION = "1.0"
CONNECTION_TYPE = "long-polling"

Listener = Callable[[Dict[str, Any]], None]


class BayeuxClient:
    """One Bayeux session (one clientId) against the streaming endpoint"""

    def __init__(
        self,
        oauth: SalesforceOAuth,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or default_settings
        self.oauth = oauth
        self.api_version = config.salesforce_api_version_number
        self.long_poll_timeout = config.streaming_long_poll_timeout
        self.http_timeout = config.http_timeout
        self.backoff_base = config.retry_backoff_base
        self.backoff_max = config.retry_backoff_max
        self._transport = transport

        self.client_id: Optional[str] = None
        self.advice: Dict[str, Any] = {"reconnect": "retry", "interval": 0}
        self._http_client: Optional[httpx.AsyncClient] = None
        self._message_id = 0
        self._listeners: Dict[str, List[Listener]] = {}
        # channel -> replay id requested on subscribe
        self._subscriptions: Dict[str, Optional[int]] = {}
        # channel -> last replay id delivered
        self._replay_positions: Dict[str, int] = {}
        self._connect_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return (
            self.client_id is not None
            and self._connect_task is not None
            and not self._connect_task.done()
        )

    @property
    def subscriptions(self) -> Dict[str, Optional[int]]:
        return dict(self._subscriptions)

    def _get_http_client(self) -> httpx.AsyncClient:
        # One client per session: the server pins the session with cookies
        if self._http_client is None:
            timeout = httpx.Timeout(self.http_timeout, read=self.long_poll_timeout + self.http_timeout)
            self._http_client = httpx.AsyncClient(timeout=timeout, transport=self._transport)
        return self._http_client

    async def _endpoint(self) -> str:
        instance_url = await self.oauth.get_instance_url()
        return f"{instance_url}/cometd/{self.api_version}"

    def _next_id(self) -> str:
        self._message_id += 1
        return str(self._message_id)

    async def _send(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST one meta message and return its reply.

        Data messages piggybacked on the response are dispatched first.

        Raises:
            BayeuxException: On HTTP errors or a response without a reply
        """
        message = {**message, "id": self._next_id()}
        meta_channel = message["channel"]
        url = await self._endpoint()
        access_token = await self.oauth.get_access_token()

        response = await self._get_http_client().post(
            url,
            json=[message],
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )

        if response.status_code >= 400:
            raise BayeuxException(
                f"Bayeux {meta_channel} failed with HTTP {response.status_code}",
                status_code=response.status_code,
                details={"body": response.text[:500]},
            )

        reply: Optional[Dict[str, Any]] = None
        for item in response.json():
            channel = item.get("channel", "")
            if channel == meta_channel and (reply is None or item.get("id") == message["id"]):
                reply = item
            elif not channel.startswith("/meta/"):
                self._dispatch(item)

        if reply is None:
            raise BayeuxException(
                f"No reply to {meta_channel}",
                details={"message_id": message["id"]},
            )

        if "advice" in reply:
            self.advice = {**self.advice, **reply["advice"]}

        return reply

    def _dispatch(self, message: Dict[str, Any]) -> None:
        channel = message.get("channel", "")
        data = message.get("data") or {}

        replay_id = (data.get("event") or {}).get("replayId")
        if isinstance(replay_id, int):
            self._replay_positions[channel] = replay_id

        listeners = list(self._listeners.get(channel, []))
        if not listeners:
            logger.debug(f"Dropping message on {channel}: no listeners", extra={"replay_id": replay_id})
            return

        for listener in listeners:
            try:
                listener(data)
            except Exception as e:
                logger.error(
                    f"Listener on {channel} raised: {e}",
                    extra={"channel": channel, "replay_id": replay_id},
                    exc_info=True,
                )

    async def handshake(self) -> str:
        """
        Open a new Bayeux session.

        Returns:
            The clientId assigned by the server
        """
        reply = await self._send({
            "channel": "/meta/handshake",
            "version": BAYEUX_VERSION,
            "minimumVersion": BAYEUX_VERSION,
            "supportedConnectionTypes": [CONNECTION_TYPE],
            "ext": {"replay": True},
        })

        if not reply.get("successful"):
            raise BayeuxException(
                f"Handshake failed: {reply.get('error')}",
                details={"error": reply.get("error"), "advice": reply.get("advice")},
            )

        self.client_id = reply["clientId"]
        logger.info("Bayeux handshake complete", extra={"client_id": self.client_id})
        return self.client_id

    async def _ensure_started(self) -> None:
        """Handshake and start the connect loop. Caller holds the lock."""
        if self.connected:
            return
        await self.handshake()
        self._connect_task = asyncio.create_task(self._connect_loop())

    async def _connect_loop(self) -> None:
        attempt = 0
        rehandshake = False

        while True:
            try:
                if rehandshake:
                    await self._rehandshake()
                    rehandshake = False

                reply = await self._send({
                    "channel": "/meta/connect",
                    "clientId": self.client_id,
                    "connectionType": CONNECTION_TYPE,
                })

            except (httpx.RequestError, ValueError, BayeuxException, SalesforceAuthException) as e:
                backoff = calculate_backoff(attempt, self.backoff_base, self.backoff_max)
                attempt += 1

                logger.warning(
                    f"Bayeux connect failed: {e}. Retrying in {backoff}s",
                    extra={
                        "attempt": attempt,
                        "backoff_time": backoff,
                        "client_id": self.client_id,
                        "channels": list(self._subscriptions),
                    },
                )

                if isinstance(e, BayeuxException) and e.is_auth_failure:
                    self.oauth.invalidate()
                    rehandshake = True

                await asyncio.sleep(backoff)
                continue

            attempt = 0
            interval = float(self.advice.get("interval") or 0) / 1000

            if reply.get("successful"):
                if interval:
                    await asyncio.sleep(interval)
                continue

            reconnect = self.advice.get("reconnect", "retry")
            logger.warning(
                f"Bayeux connect unsuccessful: {reply.get('error')}",
                extra={"reconnect": reconnect, "client_id": self.client_id},
            )

            if reconnect == "none":
                logger.warning("Server advised not to reconnect; streaming stopped")
                return

            rehandshake = reconnect == "handshake"
            await asyncio.sleep(interval)

    async def _rehandshake(self) -> None:
        """New session, then re-subscribe each channel from the last replay id seen on it"""
        async with self._lock:
            await self.handshake()

            channels = dict(self._subscriptions)
            self._subscriptions.clear()

            for channel, replay_id in channels.items():
                resume_from = self._replay_positions.get(channel, replay_id)
                try:
                    await self._subscribe(channel, resume_from)
                except SubscriptionException as e:
                    logger.error(f"Re-subscribe to {channel} failed: {e}", extra={"error": e.to_dict()})

    async def _subscribe(self, channel: str, replay_id: Optional[int]) -> None:
        message: Dict[str, Any] = {
            "channel": "/meta/subscribe",
            "clientId": self.client_id,
            "subscription": channel,
        }
        if replay_id is not None:
            message["ext"] = {"replay": {channel: replay_id}}

        reply = await self._send(message)

        if not reply.get("successful"):
            raise SubscriptionException(
                f"Subscription to {channel} rejected: {reply.get('error')}",
                channel=channel,
                details={"error": reply.get("error"), "replay_id": replay_id},
            )

        self._subscriptions[channel] = replay_id
        logger.info(
            f"Subscribed to {channel}",
            extra={"channel": channel, "replay_id": replay_id},
        )

    async def subscribe(
        self,
        channel: str,
        replay_id: Optional[int] = None,
        listener: Optional[Listener] = None,
    ) -> None:
        """
        Subscribe to a channel, starting the session if needed.

        Meta operations run one at a time in call order, so an unsubscribe
        issued before a subscribe on the same channel reaches the server first.
        listener is attached only once the subscription is in place, so it
        never sees messages from an earlier subscription at another cursor.

        Raises:
            SubscriptionException: If the server rejects the subscription
        """
        async with self._lock:
            await self._ensure_started()

            if channel in self._subscriptions:
                logger.debug(
                    f"Already subscribed to {channel}; replay id {replay_id} not applied",
                    extra={"channel": channel},
                )
            else:
                await self._subscribe(channel, replay_id)

            if listener is not None:
                self.add_listener(channel, listener)

    async def _unsubscribe(self, channel: str) -> None:
        if channel not in self._subscriptions or self.client_id is None:
            return

        try:
            reply = await self._send({
                "channel": "/meta/unsubscribe",
                "clientId": self.client_id,
                "subscription": channel,
            })
            if not reply.get("successful"):
                logger.warning(
                    f"Unsubscribe from {channel} unsuccessful: {reply.get('error')}",
                    extra={"channel": channel},
                )
        finally:
            self._subscriptions.pop(channel, None)
            self._replay_positions.pop(channel, None)

        logger.info(f"Unsubscribed from {channel}", extra={"channel": channel})

    async def unsubscribe(self, channel: str) -> None:
        async with self._lock:
            await self._unsubscribe(channel)

    async def release(self, channel: str, listener: Optional[Listener] = None) -> None:
        """Detach listener, then unsubscribe when no listener is left on the channel"""
        async with self._lock:
            if listener is not None:
                self.remove_listener(channel, listener)
            if self._listeners.get(channel):
                return
            await self._unsubscribe(channel)

    def schedule_unsubscribe(self, channel: str, listener: Optional[Listener] = None) -> asyncio.Task:
        """release() in the background; disconnect() waits for it"""
        task = asyncio.ensure_future(self.release(channel, listener))
        self._pending.add(task)
        task.add_done_callback(self._unsubscribe_done)
        return task

    def _unsubscribe_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Background unsubscribe failed: {task.exception()}")

    def add_listener(self, channel: str, listener: Listener) -> None:
        self._listeners.setdefault(channel, []).append(listener)

    def remove_listener(self, channel: str, listener: Listener) -> int:
        """Remove a listener. Returns how many listeners remain on the channel."""
        listeners = self._listeners.get(channel, [])
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            self._listeners.pop(channel, None)
        return len(listeners)

    async def disconnect(self) -> None:
        """Finish pending unsubscribes, stop the connect loop and close the session"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

        if self._connect_task is not None:
            self._connect_task.cancel()
            await asyncio.gather(self._connect_task, return_exceptions=True)
            self._connect_task = None

        if self.client_id is not None:
            try:
                await self._send({"channel": "/meta/disconnect", "clientId": self.client_id})
                logger.info("Bayeux session closed", extra={"client_id": self.client_id})
            except (httpx.HTTPError, BayeuxException) as e:
                logger.warning(f"Bayeux disconnect failed: {e}")

        self.client_id = None
        self._subscriptions.clear()

        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
