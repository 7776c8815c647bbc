import pytest
from starlette.websockets import WebSocketDisconnect

from helpdesk.repositories.conversation_repository import ConversationRepository
from helpdesk.repositories.problem_repository import ProblemRepository
from helpdesk.utils.security import create_access_token


def _token(session) -> str:
    return create_access_token(session.user_id, session.role)


def _receive_until(ws, predicate, limit: int = 20) -> dict:
    for _ in range(limit):
        frame = ws.receive_json()
        if predicate(frame):
            return frame
    raise AssertionError("expected frame never arrived")


def _is_notification(frame: dict) -> bool:
    return frame["type"] == "notification"


# chat socket

async def test_chat_socket_send_typing_and_read(ws_client, chat_service, admin, student):
    convo = await chat_service.find_or_create(student.user_id)
    await chat_service.send(student, convo["_id"], "Printer is jammed")

    with ws_client.websocket_connect(f"/ws/chat/{convo['_id']}?token={_token(admin)}") as ws:
        first = _receive_until(ws, lambda f: f["type"] == "snapshot" and f["messages"])
        assert first["header"]["title"] == "Sam Student"
        assert [m["content"] for m in first["messages"]] == ["Printer is jammed"]

        ws.send_json({"type": "send", "content": "  On my way  "})
        sent = _receive_until(ws, lambda f: f["type"] == "snapshot" and len(f["messages"]) == 2)
        assert sent["messages"][-1]["content"] == "On my way"
        assert sent["scroll_to"] == sent["messages"][-1]["id"]

        ws.send_json({"type": "typing"})
        typing = _receive_until(ws, lambda f: f["type"] == "snapshot" and f["is_typing"])
        assert typing["header"]["is_online"] is False

        ws.send_json({"type": "read"})
        # the socket stays usable after a read frame
        ws.send_json({"type": "unknown"})
        _receive_until(ws, _is_notification)

    stored = await chat_service.list_messages(convo["_id"])
    assert [m["content"] for m in stored] == ["Printer is jammed", "On my way"]
    assert stored[0]["is_read"] is True
    refreshed = await chat_service.get_conversation_for(admin, convo["_id"])
    assert refreshed["unread_by_admin"] == 0
    assert refreshed["unread_by_student"] == 1


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        '["send"]',
        '{"type": "send", "content": 123}',
        '{"type": "send", "content": {"text": "hi"}}',
        '{"type": "send", "content": "' + "x" * 5001 + '"}',
    ],
)
async def test_chat_socket_rejects_bad_frames(ws_client, chat_service, student, raw):
    convo = await chat_service.find_or_create(student.user_id)

    with ws_client.websocket_connect(f"/ws/chat/{convo['_id']}?token={_token(student)}") as ws:
        ws.send_text(raw)
        frame = _receive_until(ws, _is_notification)
        assert frame == {"type": "notification", "level": "error", "message": "Invalid message payload"}

    assert await chat_service.list_messages(convo["_id"]) == []


async def test_chat_socket_close_codes(ws_client, chat_service, make_user, student):
    other = await make_user("other@example.com")
    theirs = await chat_service.find_or_create(other.user_id)

    with pytest.raises(WebSocketDisconnect) as forbidden:
        with ws_client.websocket_connect(f"/ws/chat/{theirs['_id']}?token={_token(student)}"):
            pass
    assert forbidden.value.code == 4403

    with pytest.raises(WebSocketDisconnect) as missing:
        with ws_client.websocket_connect(f"/ws/chat/000000000000000000000000?token={_token(student)}"):
            pass
    assert missing.value.code == 4404

    with pytest.raises(WebSocketDisconnect) as bad_token:
        with ws_client.websocket_connect(f"/ws/chat/{theirs['_id']}?token=garbage"):
            pass
    assert bad_token.value.code == 4401


# list sockets

async def test_conversations_socket_for_admin_refreshes_on_request(ws_client, db, chat_service, admin, make_user):
    alice = await make_user("alice@example.com", full_name="Alice")
    await chat_service.find_or_create(alice.user_id)

    with ws_client.websocket_connect(f"/ws/conversations?token={_token(admin)}") as ws:
        first = ws.receive_json()
        assert first["type"] == "conversations"
        assert [c["student_name"] for c in first["items"]] == ["Alice"]

        bob = await make_user("bob@example.com", full_name="Bob")
        await ConversationRepository(db).get_or_create_for_student(bob.user_id, admin.user_id)
        ws.send_text("refresh")
        frame = _receive_until(ws, lambda f: len(f["items"]) == 2)

    assert {c["student_name"] for c in frame["items"]} == {"Alice", "Bob"}


async def test_conversations_socket_for_student_shows_own_unread(ws_client, chat_service, make_user, admin, student):
    convo = await chat_service.find_or_create(student.user_id)
    other = await make_user("other@example.com")
    await chat_service.find_or_create(other.user_id)
    await chat_service.send(admin, convo["_id"], "Any update?")

    with ws_client.websocket_connect(f"/ws/conversations?token={_token(student)}") as ws:
        frame = ws.receive_json()

    assert [c["id"] for c in frame["items"]] == [convo["_id"]]
    assert frame["items"][0]["unread_by_student"] == 1


async def test_problems_socket_scopes_by_role(ws_client, db, make_user, admin, student):
    problems = ProblemRepository(db)
    other = await make_user("other@example.com", full_name="Olive Other")
    await problems.create(student.user_id, "Wifi keeps dropping", "Library wifi drops often", "technical", False)
    await problems.create(other.user_id, "Broken chair", "Chair in room 12 is broken", "facilities", True)

    with ws_client.websocket_connect(f"/ws/problems?token={_token(student)}") as ws:
        mine = ws.receive_json()
    assert mine["type"] == "problems"
    assert [p["title"] for p in mine["items"]] == ["Wifi keeps dropping"]

    with ws_client.websocket_connect(f"/ws/problems?token={_token(admin)}") as ws:
        everything = ws.receive_json()
        await problems.create(student.user_id, "Projector broken", "Room 101 projector is dead", "facilities", False)
        ws.send_text("refresh")
        refreshed = _receive_until(ws, lambda f: len(f["items"]) == 3)

    assert {p["submitter_name"] for p in everything["items"]} == {"Sam Student", "Olive Other"}
    assert "Projector broken" in {p["title"] for p in refreshed["items"]}


async def test_activity_socket_is_admin_only(ws_client, db, admin, student):
    await ProblemRepository(db).create(student.user_id, "Wifi keeps dropping", "Library wifi drops often", "technical", False)

    with pytest.raises(WebSocketDisconnect) as info:
        with ws_client.websocket_connect(f"/ws/activity?token={_token(student)}"):
            pass
    assert info.value.code == 4403

    with ws_client.websocket_connect(f"/ws/activity?token={_token(admin)}") as ws:
        frame = ws.receive_json()
    assert frame["type"] == "activity"
    assert frame["items"][0]["description"] == 'Sam Student submitted "Wifi keeps dropping"'
