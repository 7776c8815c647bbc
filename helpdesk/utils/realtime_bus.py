import asyncio
import json
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from helpdesk.config import get_settings
from helpdesk.utils.dates import parse_timestamp, utcnow


logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Awaitable[None]]
OnChange = Callable[[Dict[str, Any]], Awaitable[None]]

SYNC = "sync"


def change_channel(table: str) -> str:
    return f"changes:{table}"


def presence_channel(channel: str) -> str:
    return f"presence:{channel}"


def _expired(record: Dict[str, Any], stale_seconds: Optional[float]) -> bool:
    if not stale_seconds:
        return False
    seen = parse_timestamp(record.get("online_at"))
    return seen is None or seen < utcnow() - timedelta(seconds=stale_seconds)


class LocalBus:
    """In-process pub/sub used when no REDIS_URL is configured.

    Only reaches subscribers inside the same worker process.
    """

    enabled = False

    def __init__(self) -> None:
        self._subscribers: Dict[str, Set["_LocalSubscription"]] = {}
        self._presence: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for sub in list(self._subscribers.get(channel, ())):
            sub.deliver(message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> "_LocalSubscription":
        sub = _LocalSubscription(self, channel, on_message)
        self._subscribers.setdefault(channel, set()).add(sub)
        return sub

    def _drop(self, sub: "_LocalSubscription") -> None:
        subs = self._subscribers.get(sub.channel)
        if subs is not None:
            subs.discard(sub)
            if not subs:
                del self._subscribers[sub.channel]

    async def track(self, channel: str, key: str, record: Dict[str, Any]) -> None:
        self._presence.setdefault(channel, {})[key] = dict(record)
        await self.publish(presence_channel(channel), SYNC)

    async def untrack(self, channel: str, key: str) -> None:
        state = self._presence.get(channel, {})
        if state.pop(key, None) is not None:
            await self.publish(presence_channel(channel), SYNC)

    async def presence_state(self, channel: str, stale_seconds: Optional[float] = None) -> Dict[str, List[Dict[str, Any]]]:
        records = self._presence.get(channel, {})
        for key in [k for k, record in records.items() if _expired(record, stale_seconds)]:
            del records[key]
        return {key: [dict(record)] for key, record in records.items()}

    async def close(self) -> None:
        self._subscribers.clear()


class _LocalSubscription:

    def __init__(self, bus: LocalBus, channel: str, on_message: OnMessage) -> None:
        self._bus = bus
        self.channel = channel
        self._on_message = on_message
        self._queue: asyncio.Queue = asyncio.Queue()

    def deliver(self, message: str) -> None:
        self._queue.put_nowait(message)

    async def run(self) -> None:
        while True:
            message = await self._queue.get()
            if message is None:
                return
            try:
                await self._on_message(message)
            except Exception:
                logger.exception("Subscriber for %s failed", self.channel)

    async def cancel(self) -> None:
        self._bus._drop(self)
        self._queue.put_nowait(None)


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> "_RedisSubscription":
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return _RedisSubscription(pubsub, channel, on_message)

    async def track(self, channel: str, key: str, record: Dict[str, Any]) -> None:
        await self._redis.hset(presence_channel(channel), key, json.dumps(record))
        await self.publish(presence_channel(channel), SYNC)

    async def untrack(self, channel: str, key: str) -> None:
        removed = await self._redis.hdel(presence_channel(channel), key)
        if removed:
            await self.publish(presence_channel(channel), SYNC)

    async def presence_state(self, channel: str, stale_seconds: Optional[float] = None) -> Dict[str, List[Dict[str, Any]]]:
        raw = await self._redis.hgetall(presence_channel(channel))
        state: Dict[str, List[Dict[str, Any]]] = {}
        dead: List[str] = []
        for key, value in raw.items():
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            try:
                record = json.loads(value)
            except ValueError:
                logger.warning("Dropping malformed presence record %s", key)
                dead.append(key)
                continue
            if _expired(record, stale_seconds):
                dead.append(key)
            else:
                state[key] = [record]
        if dead:
            # hash fields carry no TTL; clients that died without leaving are removed here
            await self._redis.hdel(presence_channel(channel), *dead)
        return state

    async def close(self) -> None:
        await self._redis.aclose()


class _RedisSubscription:

    def __init__(self, pubsub, channel: str, on_message: OnMessage) -> None:
        self._pubsub = pubsub
        self.channel = channel
        self._on_message = on_message
        self._running = True

    async def run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if msg and msg.get("type") == "message":
                    data = msg.get("data")
                    if isinstance(data, bytes):
                        data = data.decode("utf-8")
                    await self._on_message(data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Subscriber for %s failed", self.channel)
                await asyncio.sleep(0.5)

    async def cancel(self) -> None:
        self._running = False
        try:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
        except RedisError:
            logger.warning("Could not unsubscribe from %s", self.channel)


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = get_settings().REDIS_URL
    if url:
        _bus = RedisBus(url)
        logger.info("Realtime bus: redis")
    else:
        _bus = LocalBus()
        logger.info("Realtime bus: in-process")
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
    _bus = None


async def publish_change(table: str, event: str, row: Dict[str, Any]) -> None:
    """Announce a row mutation. ``row`` must be JSON-serializable."""
    bus = await get_bus()
    await bus.publish(change_channel(table), json.dumps({"table": table, "event": event, "new": row}))


async def subscribe_changes(
    table: str,
    on_change: OnChange,
    event: str = "*",
    filter: Optional[Dict[str, Any]] = None,
):
    """Subscribe to (table, event, row filter). Returns the bus subscription; caller drives ``run()``."""

    async def _handle(message: str) -> None:
        payload = json.loads(message)
        if event != "*" and payload.get("event") != event:
            return
        row = payload.get("new") or {}
        if filter and any(row.get(col) != value for col, value in filter.items()):
            return
        await on_change(payload)

    bus = await get_bus()
    return await bus.subscribe(change_channel(table), _handle)


async def announce(table: str, event: str, row: Dict[str, Any]) -> None:
    # the write already happened; a bus outage only delays other viewers
    try:
        await publish_change(table, event, row)
    except RedisError:
        logger.warning("Could not publish %s %s change", table, event, exc_info=True)
