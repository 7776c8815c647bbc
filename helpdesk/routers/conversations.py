from typing import List

from fastapi import APIRouter, Depends, HTTPException

from helpdesk.schemas.chat import ConversationOut, MessageCreate, MessageOut
from helpdesk.schemas.user import Session
from helpdesk.services.chat_service import ChatService, side_for
from helpdesk.utils.dependencies import get_chat_service, get_current_session, require_admin, require_student


router = APIRouter(prefix="/conversations", tags=["chat"])


async def _conversation_or_error(service: ChatService, session: Session, conversation_id: str) -> dict:
    try:
        return await service.get_conversation_for(session, conversation_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except PermissionError:
        raise HTTPException(status_code=403, detail="Not a participant of this conversation")


@router.post("/mine", response_model=ConversationOut)
async def my_conversation(session: Session = Depends(require_student), service: ChatService = Depends(get_chat_service)):
    convo = await service.find_or_create(session.user_id)
    return ConversationOut.from_doc(convo)


@router.get("", response_model=List[ConversationOut])
async def list_conversations(session: Session = Depends(require_admin), service: ChatService = Depends(get_chat_service)):
    return [ConversationOut.from_doc(doc) for doc in await service.list_for_admin()]


@router.post("/{conversation_id}/read")
async def reset_unread(conversation_id: str, session: Session = Depends(get_current_session), service: ChatService = Depends(get_chat_service)):
    await _conversation_or_error(service, session, conversation_id)
    await service.reset_unread(conversation_id, side_for(session))
    return {"ok": True}


@router.get("/{conversation_id}/messages", response_model=List[MessageOut])
async def list_messages(conversation_id: str, session: Session = Depends(get_current_session), service: ChatService = Depends(get_chat_service)):
    await _conversation_or_error(service, session, conversation_id)
    return [MessageOut.from_doc(doc) for doc in await service.list_messages(conversation_id)]


@router.post("/{conversation_id}/messages")
async def send_message(conversation_id: str, payload: MessageCreate, session: Session = Depends(get_current_session), service: ChatService = Depends(get_chat_service)):
    await _conversation_or_error(service, session, conversation_id)
    saved = await service.send(session, conversation_id, payload.content)
    if saved is None:
        # blank bodies are ignored, nothing is stored
        return {"message": None}
    return {"message": MessageOut.from_doc(saved).model_dump(mode="json")}


@router.post("/{conversation_id}/messages/read")
async def mark_read(conversation_id: str, session: Session = Depends(get_current_session), service: ChatService = Depends(get_chat_service)):
    await _conversation_or_error(service, session, conversation_id)
    count = await service.mark_read(session, conversation_id)
    return {"updated": count}
