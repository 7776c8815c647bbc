import logging
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

from helpdesk.models.conversation import Side
from helpdesk.repositories.conversation_repository import ConversationRepository
from helpdesk.repositories.message_repository import MessageRepository
from helpdesk.repositories.user_repository import UserRepository
from helpdesk.schemas.chat import ConversationOut, MessageOut
from helpdesk.schemas.user import Session
from helpdesk.utils.realtime_bus import announce


logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


def side_for(session: Session) -> Side:
    return "admin" if session.is_admin else "student"


class ChatService:

    def __init__(self, message_repo: MessageRepository, conversation_repo: ConversationRepository, user_repo: UserRepository) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo

    # conversations

    async def find_or_create(self, student_id: str) -> Dict[str, Any]:
        existing = await self._conversation_repo.get_by_student(student_id)
        if existing:
            return existing
        admin_id = await self._user_repo.find_first_admin_id()
        convo = await self._conversation_repo.get_or_create_for_student(student_id, admin_id)
        logger.info("Opened conversation %s for student %s", convo["_id"], student_id)
        await announce("conversations", "INSERT", ConversationOut.from_doc(convo).model_dump(mode="json"))
        return convo

    async def get_conversation_for(self, session: Session, conversation_id: str) -> Dict[str, Any]:
        convo = await self._conversation_repo.get(conversation_id)
        if not convo:
            raise LookupError("Conversation not found")
        if not session.is_admin and convo["student_id"] != session.user_id:
            raise PermissionError("Not a participant of this conversation")
        return convo

    async def list_for_admin(self) -> List[Dict[str, Any]]:
        items = await self._conversation_repo.list_all()
        names: Dict[str, str] = {}
        for it in items:
            student_id = it["student_id"]
            if student_id not in names:
                names[student_id] = await self._user_repo.get_full_name(student_id) or "Unknown"
            it["student_name"] = names[student_id]
        return items

    async def student_name(self, student_id: str) -> str:
        return await self._user_repo.get_full_name(student_id) or "Unknown"

    async def conversation_of(self, student_id: str) -> Optional[Dict[str, Any]]:
        """The student's conversation with its ``student_name``, without creating one."""
        convo = await self._conversation_repo.get_by_student(student_id)
        if convo:
            convo["student_name"] = await self.student_name(student_id)
        return convo

    async def reset_unread(self, conversation_id: str, side: Side) -> None:
        updated = await self._conversation_repo.reset_unread(conversation_id, side)
        if updated:
            await announce("conversations", "UPDATE", ConversationOut.from_doc(updated).model_dump(mode="json"))

    # messages

    async def list_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        return await self._message_repo.get_messages_by_conversation(conversation_id)

    async def send(self, session: Session, conversation_id: str, body: Optional[str]) -> Optional[Dict[str, Any]]:
        """Append a message and refresh the conversation preview.

        Returns ``None`` without touching the store when the body is blank.
        """
        content = (body or "").strip()
        if not content:
            return None
        convo = await self.get_conversation_for(session, conversation_id)
        saved = await self._message_repo.save_message(conversation_id, session.user_id, content)
        await announce("messages", "INSERT", MessageOut.from_doc(saved).model_dump(mode="json"))

        recipient: Side = "admin" if session.user_id == convo["student_id"] else "student"
        try:
            updated = await self._conversation_repo.update_on_new_message(
                conversation_id, content[:PREVIEW_LENGTH], saved["created_at"], recipient
            )
        except PyMongoError:
            logger.exception("Preview update failed for conversation %s, reconciling", conversation_id)
            updated = await self.reconcile_preview(conversation_id, recipient)
        if updated:
            await announce("conversations", "UPDATE", ConversationOut.from_doc(updated).model_dump(mode="json"))
        return saved

    async def reconcile_preview(self, conversation_id: str, recipient: Optional[Side] = None) -> Optional[Dict[str, Any]]:
        """Rewrite the preview from the newest stored message.

        ``recipient`` is the side whose unread counter the failed update should have raised.
        """
        try:
            latest = await self._message_repo.get_latest(conversation_id)
            if latest is None:
                return None
            return await self._conversation_repo.set_preview(
                conversation_id, latest["content"][:PREVIEW_LENGTH], latest["created_at"], recipient
            )
        except PyMongoError:
            logger.exception("Could not reconcile preview for conversation %s", conversation_id)
            return None

    async def mark_read(self, session: Session, conversation_id: str) -> int:
        return await self._message_repo.mark_read(conversation_id, session.user_id)
