import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from helpdesk.config import get_settings
from helpdesk.utils.dates import parse_timestamp, utcnow
from helpdesk.utils.realtime_bus import SYNC, get_bus, presence_channel
from helpdesk.utils.tasks import finish_task


logger = logging.getLogger(__name__)


def flatten_presence(
    state: Dict[str, List[Dict[str, Any]]],
    now: Optional[datetime] = None,
    stale_seconds: Optional[float] = None,
) -> Set[str]:
    """Collapse a channel membership snapshot into the set of online user ids.

    Records whose ``online_at`` is older than ``stale_seconds`` are skipped.
    """
    now = now or utcnow()
    cutoff = now - timedelta(seconds=stale_seconds) if stale_seconds else None
    online: Set[str] = set()
    for metas in state.values():
        for meta in metas:
            user_id = meta.get("user_id")
            if not user_id:
                continue
            if cutoff is not None and not _is_fresh(meta.get("online_at"), cutoff):
                continue
            online.add(user_id)
    return online


def _is_fresh(online_at: Any, cutoff: datetime) -> bool:
    seen = parse_timestamp(online_at)
    return seen is not None and seen >= cutoff


class PresenceTracker:
    """Membership in the shared presence channel for one connected client.

    Use as ``async with PresenceTracker(user_id) as tracker``; leaving the block
    removes this client's record from the channel.
    """

    def __init__(
        self,
        user_id: Optional[str],
        bus=None,
        channel: Optional[str] = None,
        heartbeat_seconds: Optional[float] = None,
        stale_seconds: Optional[float] = None,
        on_sync: Optional[Callable[[Set[str]], Awaitable[None]]] = None,
    ) -> None:
        settings = get_settings()
        self.user_id = user_id
        self.channel = channel or settings.PRESENCE_CHANNEL
        self.heartbeat_seconds = heartbeat_seconds or settings.PRESENCE_HEARTBEAT_SECONDS
        self.stale_seconds = stale_seconds or settings.PRESENCE_STALE_SECONDS
        self.online_user_ids: Set[str] = set()
        self.synced = asyncio.Event()
        self._bus = bus
        self._on_sync = on_sync
        # one user may be connected from several clients
        self._key = uuid.uuid4().hex
        self._subscription = None
        self._listener: Optional[asyncio.Task] = None
        self._heartbeat: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "PresenceTracker":
        await self.join()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.leave()

    async def join(self) -> None:
        if not self.user_id or self._subscription is not None:
            return
        if self._bus is None:
            self._bus = await get_bus()
        self._subscription = await self._bus.subscribe(presence_channel(self.channel), self._handle)
        self._listener = asyncio.create_task(self._subscription.run())
        # subscribed: start publishing liveness
        await self.track()
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())
        logger.debug("User %s joined presence channel %s", self.user_id, self.channel)

    async def track(self) -> None:
        await self._bus.track(self.channel, self._key, {"user_id": self.user_id, "online_at": utcnow().isoformat()})

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            try:
                await self.track()
            except Exception:
                logger.warning("Presence heartbeat failed for %s", self.user_id, exc_info=True)

    async def _handle(self, message: str) -> None:
        if message == SYNC:
            await self.sync()

    async def sync(self) -> None:
        state = await self._bus.presence_state(self.channel, self.stale_seconds)
        # full replace, not incremental
        self.online_user_ids = flatten_presence(state, stale_seconds=self.stale_seconds)
        self.synced.set()
        if self._on_sync is not None:
            await self._on_sync(self.online_user_ids)

    def is_online(self, user_id: str) -> bool:
        return user_id in self.online_user_ids

    async def leave(self) -> None:
        if self._subscription is None:
            return
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        try:
            await self._bus.untrack(self.channel, self._key)
        finally:
            await self._subscription.cancel()
            self._subscription = None
            if self._listener is not None:
                await finish_task(self._listener)
                self._listener = None
        logger.debug("User %s left presence channel %s", self.user_id, self.channel)


async def online_users(channel: Optional[str] = None) -> Set[str]:
    settings = get_settings()
    bus = await get_bus()
    state = await bus.presence_state(channel or settings.PRESENCE_CHANNEL, settings.PRESENCE_STALE_SECONDS)
    return flatten_presence(state, stale_seconds=settings.PRESENCE_STALE_SECONDS)
