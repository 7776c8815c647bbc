"""Live, in-memory copies of query results.

A feed does an initial fetch, then keeps itself current from the change
stream until it is closed. Feeds are async context managers so the
subscriptions are released on every exit path.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError

from helpdesk.schemas.chat import ConversationOut, MessageOut
from helpdesk.schemas.dashboard import Activity
from helpdesk.schemas.problem import ProblemOut
from helpdesk.schemas.user import Session
from helpdesk.services.chat_service import ChatService, side_for
from helpdesk.services.dashboard_service import DashboardService
from helpdesk.services.problem_service import ProblemService
from helpdesk.utils.dates import as_utc
from helpdesk.utils.realtime_bus import subscribe_changes
from helpdesk.utils.tasks import finish_task


logger = logging.getLogger(__name__)

OnChange = Callable[[], Awaitable[None]]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class _Feed:

    def __init__(self, on_change: Optional[OnChange] = None) -> None:
        self._on_change = on_change
        self._subscriptions: List[Tuple[Any, asyncio.Task]] = []

    async def __aenter__(self):
        try:
            await self.open()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self) -> None:
        raise NotImplementedError

    async def _listen(self, table: str, handler, **kwargs: Any) -> None:
        subscription = await subscribe_changes(table, handler, **kwargs)
        self._subscriptions.append((subscription, asyncio.create_task(subscription.run())))

    async def close(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription, listener in subscriptions:
            await subscription.cancel()
            await finish_task(listener)

    async def _changed(self) -> None:
        if self._on_change is not None:
            await self._on_change()


class MessageFeed(_Feed):
    """Messages of one conversation, oldest first."""

    def __init__(self, service: ChatService, session: Session, conversation_id: str, on_change: Optional[OnChange] = None) -> None:
        super().__init__(on_change)
        self._service = service
        self._session = session
        self.conversation_id = conversation_id
        self.messages: List[MessageOut] = []
        self.loading = False

    async def open(self) -> None:
        # subscribe before fetching so inserts racing the fetch are not lost
        await self._listen(
            "messages",
            self._on_insert,
            event="INSERT",
            filter={"conversation_id": self.conversation_id},
        )
        await self.refresh()
        await self.mark_read()

    async def refresh(self) -> None:
        self.loading = True
        try:
            docs = await self._service.list_messages(self.conversation_id)
        except PyMongoError:
            logger.warning("Could not load messages for %s", self.conversation_id, exc_info=True)
            return
        finally:
            self.loading = False
        fetched = [MessageOut.from_doc(doc) for doc in docs]
        known = {m.id for m in fetched}
        # keep anything the subscription delivered while the fetch was in flight
        pending = [m for m in self.messages if m.id not in known]
        self.messages = fetched
        for message in pending:
            self.merge(message)
        await self._changed()

    async def mark_read(self) -> None:
        try:
            await self._service.mark_read(self._session, self.conversation_id)
            await self._service.reset_unread(self.conversation_id, side_for(self._session))
        except PyMongoError:
            logger.warning("Could not mark %s read", self.conversation_id, exc_info=True)

    def merge(self, message: MessageOut) -> bool:
        """Place ``message`` by (created_at, id). Returns False for a duplicate."""
        if any(m.id == message.id for m in self.messages):
            return False
        key = (message.created_at, message.id)
        index = len(self.messages)
        while index > 0 and (self.messages[index - 1].created_at, self.messages[index - 1].id) > key:
            index -= 1
        self.messages.insert(index, message)
        return True

    async def _on_insert(self, payload: Dict[str, Any]) -> None:
        message = MessageOut.model_validate(payload["new"])
        if self.merge(message):
            await self._changed()

    async def send(self, body: str) -> Optional[MessageOut]:
        saved = await self._service.send(self._session, self.conversation_id, body)
        if saved is None:
            return None
        message = MessageOut.from_doc(saved)
        if self.merge(message):
            await self._changed()
        return message


class ConversationFeed(_Feed):
    """Conversations, most recent activity first, with student names.

    Admins see every conversation. A student session narrows the feed to the
    student's own conversation, which keeps its unread badge live.
    """

    def __init__(self, service: ChatService, on_change: Optional[OnChange] = None, session: Optional[Session] = None) -> None:
        super().__init__(on_change)
        self._service = service
        self._session = session
        self._names: Dict[str, str] = {}
        self.conversations: List[ConversationOut] = []

    @property
    def _student_id(self) -> Optional[str]:
        if self._session is None or self._session.is_admin:
            return None
        return self._session.user_id

    async def open(self) -> None:
        if self._student_id:
            await self._listen("conversations", self._on_row, filter={"student_id": self._student_id})
        else:
            await self._listen("conversations", self._on_row)
        await self.refresh()

    async def refresh(self) -> None:
        try:
            if self._student_id:
                own = await self._service.conversation_of(self._student_id)
                docs = [own] if own else []
            else:
                docs = await self._service.list_for_admin()
        except PyMongoError:
            logger.warning("Could not load conversations", exc_info=True)
            return
        self.conversations = [ConversationOut.from_doc(doc) for doc in docs]
        for convo in self.conversations:
            self._names[convo.student_id] = convo.student_name or "Unknown"
        await self._changed()

    async def _on_row(self, payload: Dict[str, Any]) -> None:
        row = ConversationOut.model_validate(payload["new"])
        if row.student_id not in self._names:
            try:
                self._names[row.student_id] = await self._service.student_name(row.student_id)
            except PyMongoError:
                logger.warning("Could not resolve student %s", row.student_id, exc_info=True)
        row.student_name = self._names.get(row.student_id, "Unknown")
        self.conversations = [c for c in self.conversations if c.id != row.id]
        self.conversations.append(row)
        self.conversations.sort(
            key=lambda c: (as_utc(c.last_message_at) if c.last_message_at else _EPOCH, c.id),
            reverse=True,
        )
        await self._changed()


class ProblemFeed(_Feed):
    """Problem tickets, newest first.

    Students follow their own tickets; admins follow all of them, annotated
    with the submitter's name.
    """

    def __init__(self, service: ProblemService, session: Session, on_change: Optional[OnChange] = None) -> None:
        super().__init__(on_change)
        self._service = service
        self._session = session
        self._names: Dict[str, str] = {}
        self.problems: List[ProblemOut] = []

    async def open(self) -> None:
        if self._session.is_admin:
            await self._listen("problems", self._on_row)
        else:
            await self._listen("problems", self._on_row, filter={"submitted_by": self._session.user_id})
        await self.refresh()

    async def refresh(self) -> None:
        try:
            if self._session.is_admin:
                docs = await self._service.list_all()
            else:
                docs = await self._service.list_mine(self._session)
        except PyMongoError:
            logger.warning("Could not load problems for %s", self._session.user_id, exc_info=True)
            return
        self.problems = [ProblemOut.from_doc(doc) for doc in docs]
        for problem in self.problems:
            if problem.submitter_name:
                self._names[problem.submitted_by] = problem.submitter_name
        await self._changed()

    async def _on_row(self, payload: Dict[str, Any]) -> None:
        row = ProblemOut.model_validate(payload["new"])
        if self._session.is_admin:
            if row.submitted_by not in self._names:
                try:
                    self._names[row.submitted_by] = await self._service.submitter_name(row.submitted_by)
                except PyMongoError:
                    logger.warning("Could not resolve submitter %s", row.submitted_by, exc_info=True)
            row.submitter_name = self._names.get(row.submitted_by, "Unknown")
        self.problems = [p for p in self.problems if p.id != row.id]
        self.problems.append(row)
        self.problems.sort(key=lambda p: (as_utc(p.created_at), p.id), reverse=True)
        await self._changed()


class ActivityFeed(_Feed):
    """Admin recent-activity list, re-read whenever a ticket or message is created."""

    def __init__(self, service: DashboardService, on_change: Optional[OnChange] = None) -> None:
        super().__init__(on_change)
        self._service = service
        self.items: List[Activity] = []

    async def open(self) -> None:
        await self._listen("problems", self._on_insert, event="INSERT")
        await self._listen("messages", self._on_insert, event="INSERT")
        await self.refresh()

    async def refresh(self) -> None:
        try:
            self.items = await self._service.recent_activity()
        except PyMongoError:
            logger.warning("Could not load recent activity", exc_info=True)
            return
        await self._changed()

    async def _on_insert(self, payload: Dict[str, Any]) -> None:
        await self.refresh()
