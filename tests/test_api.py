import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from helpdesk.database.connection import mongo_db_dependency
from helpdesk.main import app
from helpdesk.utils import file_storage
from helpdesk.utils.presence import PresenceTracker
from helpdesk.utils.security import create_access_token


PROBLEM = {
    "title": "Wifi keeps dropping",
    "description": "The library wifi disconnects every few minutes.",
    "category": "technical",
    "is_urgent": False,
}


# auth

async def test_signup_login_and_me(client):
    resp = await client.post(
        "/auth/signup",
        json={"email": "new@example.com", "password": "secret123", "full_name": "  New Student  "},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["role"] == "student"

    resp = await client.post("/auth/login", json={"email": "new@example.com", "password": "secret123"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    resp = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    me = resp.json()
    assert me["email"] == "new@example.com"
    assert me["full_name"] == "New Student"
    assert me["role"] == "student"


@pytest.mark.parametrize(
    "payload",
    [
        {"email": "not-an-email", "password": "secret123", "full_name": "Someone"},
        {"email": "short@example.com", "password": "123", "full_name": "Someone"},
        {"email": "noname@example.com", "password": "secret123", "full_name": " "},
    ],
)
async def test_signup_validation(client, payload):
    resp = await client.post("/auth/signup", json=payload)
    assert resp.status_code == 422


async def test_signup_duplicate_email(client, student):
    resp = await client.post(
        "/auth/signup",
        json={"email": student.email, "password": "secret123", "full_name": "Copy Cat"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Email already registered"


async def test_login_wrong_password(client, student):
    resp = await client.post("/auth/login", json={"email": student.email, "password": "wrong-pass"})
    assert resp.status_code == 401


async def test_me_requires_token(client):
    assert (await client.get("/auth/me")).status_code == 401
    bad = await client.get("/auth/me", headers={"Authorization": "Bearer garbage"})
    assert bad.status_code == 401


# problems

async def test_student_submits_and_lists_problem(client, student_headers):
    resp = await client.post("/problems", json=PROBLEM, headers=student_headers)
    assert resp.status_code == 201
    created = resp.json()
    assert created["status"] == "pending"

    mine = (await client.get("/problems/mine", headers=student_headers)).json()
    assert [p["id"] for p in mine] == [created["id"]]


@pytest.mark.parametrize(
    "override",
    [
        {"title": "Hi"},
        {"description": "too short"},
        {"category": ""},
        {"category": "cafeteria"},
    ],
)
async def test_problem_validation(client, student_headers, override):
    resp = await client.post("/problems", json={**PROBLEM, **override}, headers=student_headers)
    assert resp.status_code == 422


async def test_admin_filters_problems_and_sees_submitter(client, student_headers, admin_headers):
    await client.post("/problems", json=PROBLEM, headers=student_headers)
    await client.post(
        "/problems",
        json={**PROBLEM, "title": "Broken chair", "description": "Chair in room 12 is broken.", "category": "facilities"},
        headers=student_headers,
    )

    everything = (await client.get("/problems", headers=admin_headers)).json()
    assert len(everything) == 2
    assert {p["submitter_name"] for p in everything} == {"Sam Student"}

    facilities = (await client.get("/problems", params={"category": "facilities"}, headers=admin_headers)).json()
    assert [p["title"] for p in facilities] == ["Broken chair"]

    found = (await client.get("/problems", params={"search": "WIFI", "status": "all"}, headers=admin_headers)).json()
    assert [p["title"] for p in found] == ["Wifi keeps dropping"]


async def test_admin_updates_problem_status(client, student_headers, admin_headers):
    created = (await client.post("/problems", json=PROBLEM, headers=student_headers)).json()

    resp = await client.patch(f"/problems/{created['id']}/status", json={"status": "resolved"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "resolved"

    resolved = (await client.get("/problems", params={"status": "resolved"}, headers=admin_headers)).json()
    assert [p["id"] for p in resolved] == [created["id"]]

    bad = await client.patch(f"/problems/{created['id']}/status", json={"status": "closed"}, headers=admin_headers)
    assert bad.status_code == 422
    missing = await client.patch("/problems/000000000000000000000000/status", json={"status": "resolved"}, headers=admin_headers)
    assert missing.status_code == 404


async def test_problem_role_checks(client, student_headers, admin_headers):
    assert (await client.get("/problems", headers=student_headers)).status_code == 403
    assert (await client.post("/problems", json=PROBLEM, headers=admin_headers)).status_code == 403


# conversations

async def test_conversation_flow(client, student, student_headers, admin_headers):
    convo = (await client.post("/conversations/mine", headers=student_headers)).json()
    again = (await client.post("/conversations/mine", headers=student_headers)).json()
    assert convo["id"] == again["id"]

    blank = await client.post(f"/conversations/{convo['id']}/messages", json={"content": "   "}, headers=student_headers)
    assert blank.json() == {"message": None}

    sent = await client.post(f"/conversations/{convo['id']}/messages", json={"content": "Need help"}, headers=student_headers)
    assert sent.json()["message"]["content"] == "Need help"

    listing = (await client.get("/conversations", headers=admin_headers)).json()
    assert listing[0]["student_name"] == "Sam Student"
    assert listing[0]["unread_by_admin"] == 1

    messages = (await client.get(f"/conversations/{convo['id']}/messages", headers=admin_headers)).json()
    assert [m["content"] for m in messages] == ["Need help"]

    read = await client.post(f"/conversations/{convo['id']}/messages/read", headers=admin_headers)
    assert read.json() == {"updated": 1}
    await client.post(f"/conversations/{convo['id']}/read", headers=admin_headers)
    listing = (await client.get("/conversations", headers=admin_headers)).json()
    assert listing[0]["unread_by_admin"] == 0


async def test_conversation_access_errors(client, make_user, student_headers, admin_headers):
    other = await make_user("other@example.com")
    other_headers = {"Authorization": f"Bearer {create_access_token(other.user_id, other.role)}"}
    theirs = (await client.post("/conversations/mine", headers=other_headers)).json()

    resp = await client.get(f"/conversations/{theirs['id']}/messages", headers=student_headers)
    assert resp.status_code == 403
    resp = await client.get("/conversations/000000000000000000000000/messages", headers=admin_headers)
    assert resp.status_code == 404
    assert (await client.get("/conversations", headers=student_headers)).status_code == 403


async def test_presence_endpoint(client, bus, student, admin_headers):
    url = f"/presence/{student.user_id}"
    assert (await client.get(url, headers=admin_headers)).json() == {"user_id": student.user_id, "online": False}

    async with PresenceTracker(student.user_id, bus=bus):
        assert (await client.get(url, headers=admin_headers)).json()["online"] is True


# profile

async def test_profile_update_and_password_change(client, student, student_headers):
    profile = (await client.get("/profile", headers=student_headers)).json()
    assert profile["full_name"] == "Sam Student"

    empty = await client.patch("/profile", json={"full_name": "   "}, headers=student_headers)
    assert empty.status_code == 400
    assert empty.json()["detail"] == "Name cannot be empty"

    renamed = await client.patch("/profile", json={"full_name": "Samantha"}, headers=student_headers)
    assert renamed.json()["full_name"] == "Samantha"

    missing = await client.post("/profile/password", json={"new_password": "abcdef"}, headers=student_headers)
    assert missing.json()["detail"] == "Please fill in all password fields"
    mismatch = await client.post(
        "/profile/password", json={"new_password": "abcdef", "confirm_password": "abcdeg"}, headers=student_headers
    )
    assert mismatch.status_code == 400
    assert mismatch.json()["detail"] == "New passwords do not match"
    short = await client.post(
        "/profile/password", json={"new_password": "abc", "confirm_password": "abc"}, headers=student_headers
    )
    assert short.json()["detail"] == "Password must be at least 6 characters"

    ok = await client.post(
        "/profile/password", json={"new_password": "brandnew", "confirm_password": "brandnew"}, headers=student_headers
    )
    assert ok.status_code == 200
    login = await client.post("/auth/login", json={"email": student.email, "password": "brandnew"})
    assert login.status_code == 200


async def test_avatar_upload_replaces_previous_file(client, monkeypatch, tmp_path, student, student_headers):
    storage = file_storage.LocalFileStorage(str(tmp_path), "/media", "avatars")
    monkeypatch.setattr("helpdesk.routers.profile.get_avatar_storage", lambda: storage)

    first = await client.post(
        "/profile/avatar", files={"file": ("me.png", b"\x89PNG first", "image/png")}, headers=student_headers
    )
    assert first.status_code == 200
    assert first.json()["avatar_url"] == f"/media/avatars/{student.user_id}/avatar.png"

    second = await client.post(
        "/profile/avatar", files={"file": ("me.jpg", b"jpeg bytes", "image/jpeg")}, headers=student_headers
    )
    assert second.json()["avatar_url"].endswith("avatar.jpg")
    files = sorted(p.name for p in (tmp_path / "avatars" / student.user_id).iterdir())
    assert files == ["avatar.jpg"]


async def test_avatar_rejects_non_images(client, monkeypatch, tmp_path, student_headers):
    storage = file_storage.LocalFileStorage(str(tmp_path), "/media", "avatars")
    monkeypatch.setattr("helpdesk.routers.profile.get_avatar_storage", lambda: storage)

    resp = await client.post(
        "/profile/avatar", files={"file": ("notes.txt", b"hello", "text/plain")}, headers=student_headers
    )
    assert resp.status_code == 400


# admin

async def test_admin_dashboard_and_users(client, student_headers, admin_headers):
    await client.post("/problems", json={**PROBLEM, "is_urgent": True}, headers=student_headers)

    dashboard = (await client.get("/admin/dashboard", headers=admin_headers)).json()
    assert dashboard["stats"] == {"total_problems": 1, "active_users": 2, "urgent_problems": 1}
    assert len(dashboard["timeline"]) == 7

    activity = (await client.get("/admin/activity", headers=admin_headers)).json()
    assert activity[0]["description"] == 'Sam Student submitted "Wifi keeps dropping"'

    users = (await client.get("/admin/users", params={"search": "sam"}, headers=admin_headers)).json()
    assert [(u["full_name"], u["problem_count"]) for u in users] == [("Sam Student", 1)]

    assert (await client.get("/admin/dashboard", headers=student_headers)).status_code == 403


# websockets

async def test_chat_socket_rejects_missing_token():
    async def no_db():
        return None

    app.dependency_overrides[mongo_db_dependency] = no_db
    try:
        # no lifespan: the socket is refused before any database access
        tc = TestClient(app)
        with pytest.raises(WebSocketDisconnect) as info:
            with tc.websocket_connect("/ws/chat/anything"):
                pass
    finally:
        app.dependency_overrides.clear()
    assert info.value.code == 4401
