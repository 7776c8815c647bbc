import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from helpdesk.database.connection import mongo_db_dependency
from helpdesk.repositories.user_repository import UserRepository
from helpdesk.schemas.user import Session
from helpdesk.utils.dependencies import (
    build_chat_service,
    build_dashboard_service,
    build_problem_service,
    session_from_token,
)
from helpdesk.views.chat_view import ChatView
from helpdesk.views.feeds import ActivityFeed, ConversationFeed, ProblemFeed


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["chat"])


async def _authenticate(websocket: WebSocket, db) -> Optional[Session]:
    # browsers cannot set headers on a WebSocket, so the token travels as ?token=
    session = await session_from_token(websocket.query_params.get("token"), db)
    if session is None:
        await websocket.close(code=4401)
    return session


@router.websocket("/chat/{conversation_id}")
async def chat_socket(websocket: WebSocket, conversation_id: str, db = Depends(mongo_db_dependency)):
    session = await _authenticate(websocket, db)
    if session is None:
        return
    service = build_chat_service(db)
    try:
        convo = await service.get_conversation_for(session, conversation_id)
    except LookupError:
        await websocket.close(code=4404)
        return
    except PermissionError:
        await websocket.close(code=4403)
        return

    if session.is_admin:
        peer_id = convo["student_id"]
        peer_name = await service.student_name(peer_id)
    else:
        peer_id = convo.get("admin_id") or await UserRepository(db).find_first_admin_id()
        peer_name = "Admin"

    await websocket.accept()

    async def emit(frame: dict) -> None:
        await websocket.send_text(json.dumps(frame))

    try:
        async with ChatView(service, session, conversation_id, peer_id, peer_name, emit=emit) as view:
            await view.refresh()
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except ValueError:
                    await view.notify("Invalid message payload")
                    continue
                # Expect {"type": "send", "content": str} | {"type": "typing"} | {"type": "read"}
                kind = msg.get("type") if isinstance(msg, dict) else None
                if kind == "send":
                    await view.submit(msg.get("content"))
                elif kind == "typing":
                    view.on_keystroke()
                elif kind == "read":
                    await view.feed.mark_read()
                else:
                    await view.notify("Invalid message payload")
    except WebSocketDisconnect:
        logger.debug("Chat socket for %s closed by %s", conversation_id, session.user_id)


async def _serve_list(websocket: WebSocket, session: Session, make_feed, frame_type: str, items) -> None:
    """Push ``{"type": frame_type, "items": [...]}`` on every feed change.

    ``items`` reads the current rows off the feed. Any frame from the client
    forces a full re-fetch.
    """
    await websocket.accept()

    async def push() -> None:
        await websocket.send_text(json.dumps({
            "type": frame_type,
            "items": [row.model_dump(mode="json") for row in items(feed)],
        }))

    feed = make_feed(push)
    try:
        async with feed:
            while True:
                await websocket.receive_text()
                await feed.refresh()
    except WebSocketDisconnect:
        logger.debug("%s socket closed by %s", frame_type, session.user_id)


@router.websocket("/conversations")
async def conversations_socket(websocket: WebSocket, db = Depends(mongo_db_dependency)):
    """Admins get every conversation; a student gets their own, for the unread badge."""
    session = await _authenticate(websocket, db)
    if session is None:
        return
    await _serve_list(
        websocket,
        session,
        lambda push: ConversationFeed(build_chat_service(db), on_change=push, session=session),
        "conversations",
        lambda feed: feed.conversations,
    )


@router.websocket("/problems")
async def problems_socket(websocket: WebSocket, db = Depends(mongo_db_dependency)):
    session = await _authenticate(websocket, db)
    if session is None:
        return
    await _serve_list(
        websocket,
        session,
        lambda push: ProblemFeed(build_problem_service(db), session, on_change=push),
        "problems",
        lambda feed: feed.problems,
    )


@router.websocket("/activity")
async def activity_socket(websocket: WebSocket, db = Depends(mongo_db_dependency)):
    session = await _authenticate(websocket, db)
    if session is None:
        return
    if not session.is_admin:
        await websocket.close(code=4403)
        return
    await _serve_list(
        websocket,
        session,
        lambda push: ActivityFeed(build_dashboard_service(db), on_change=push),
        "activity",
        lambda feed: feed.items,
    )
