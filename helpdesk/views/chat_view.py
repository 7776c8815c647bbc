import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from helpdesk.config import get_settings
from helpdesk.schemas.chat import MessageCreate, MessageOut
from helpdesk.schemas.user import Session
from helpdesk.services.chat_service import ChatService
from helpdesk.utils.presence import PresenceTracker
from helpdesk.views.feeds import MessageFeed


logger = logging.getLogger(__name__)

Emit = Callable[[Dict[str, Any]], Awaitable[None]]


class ChatView:
    """One open chat window: header, message thread and composer.

    Every state change is pushed through ``emit`` as a full snapshot frame.
    Write failures are pushed as ``notification`` frames.
    """

    def __init__(
        self,
        service: ChatService,
        session: Session,
        conversation_id: str,
        peer_id: Optional[str],
        peer_name: str,
        emit: Optional[Emit] = None,
        bus=None,
        typing_timeout: Optional[float] = None,
    ) -> None:
        self.session = session
        self.peer_id = peer_id
        self.peer_name = peer_name
        self.feed = MessageFeed(service, session, conversation_id, on_change=self.refresh)
        self.presence = PresenceTracker(session.user_id, bus=bus, on_sync=self._on_presence)
        self.is_typing = False
        self.typing_timeout = typing_timeout or get_settings().TYPING_TIMEOUT_SECONDS
        self._emit = emit
        self._typing_timer: Optional[asyncio.TimerHandle] = None
        self._pending: Set[asyncio.Task] = set()
        self._stack: Optional[AsyncExitStack] = None

    async def __aenter__(self) -> "ChatView":
        self._stack = AsyncExitStack()
        try:
            await self._stack.enter_async_context(self.presence)
            await self._stack.enter_async_context(self.feed)
        except BaseException:
            await self._stack.aclose()
            raise
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None
        for task in list(self._pending):
            task.cancel()
        self._emit = None
        if self._stack is not None:
            await self._stack.aclose()
            self._stack = None

    @property
    def peer_online(self) -> bool:
        return bool(self.peer_id) and self.presence.is_online(self.peer_id)

    def render(self) -> Dict[str, Any]:
        messages = self.feed.messages
        return {
            "type": "snapshot",
            "header": {"title": self.peer_name, "is_online": self.peer_online},
            "messages": [m.model_dump(mode="json") for m in messages],
            # the client scrolls to this id; it moves on every list change
            "scroll_to": messages[-1].id if messages else None,
            "loading": self.feed.loading,
            "is_typing": self.is_typing,
        }

    async def refresh(self) -> None:
        if self._emit is not None:
            await self._emit(self.render())

    async def _on_presence(self, online) -> None:
        await self.refresh()

    async def notify(self, message: str, level: str = "error") -> None:
        if self._emit is not None:
            await self._emit({"type": "notification", "level": level, "message": message})

    async def submit(self, text: Any) -> Optional[MessageOut]:
        try:
            payload = MessageCreate.model_validate({"content": "" if text is None else text})
        except ValidationError:
            await self.notify("Invalid message payload")
            return None
        content = payload.content.strip()
        if not content:
            return None
        try:
            return await self.feed.send(content)
        except (PyMongoError, LookupError, PermissionError):
            logger.warning("Send failed in conversation %s", self.feed.conversation_id, exc_info=True)
            await self.notify("Failed to send message")
            return None

    def on_keystroke(self) -> None:
        """Local typing indicator; never sent to the peer."""
        loop = asyncio.get_running_loop()
        was_typing = self.is_typing
        self.is_typing = True
        if self._typing_timer is not None:
            self._typing_timer.cancel()
        self._typing_timer = loop.call_later(self.typing_timeout, self._stop_typing)
        if not was_typing:
            self._schedule_refresh()

    def _stop_typing(self) -> None:
        self._typing_timer = None
        self.is_typing = False
        self._schedule_refresh()

    def _schedule_refresh(self) -> None:
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
