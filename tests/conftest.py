"""
Shared fixtures: an in-memory MongoDB, an in-process realtime bus and an HTTP client.
"""
import asyncio
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient
from starlette.testclient import TestClient

from helpdesk.database.connection import ensure_indexes, mongo_db_dependency
from helpdesk.main import app
from helpdesk.repositories.conversation_repository import ConversationRepository
from helpdesk.repositories.message_repository import MessageRepository
from helpdesk.repositories.problem_repository import ProblemRepository
from helpdesk.repositories.user_repository import UserRepository
from helpdesk.schemas.user import Session, UserCreate
from helpdesk.services.chat_service import ChatService
from helpdesk.services.user_service import UserService
from helpdesk.utils import realtime_bus
from helpdesk.utils.realtime_bus import LocalBus
from helpdesk.utils.security import create_access_token


@pytest.fixture
async def db():
    """Fresh database per test"""
    client = AsyncMongoMockClient()
    database = client["helpdesk_test"]
    await ensure_indexes(database)
    yield database


@pytest.fixture(autouse=True)
def bus(monkeypatch) -> LocalBus:
    """Every test gets its own in-process bus"""
    local = LocalBus()
    monkeypatch.setattr(realtime_bus, "_bus", local)
    return local


@pytest.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    async def override_db():
        return db

    app.dependency_overrides[mongo_db_dependency] = override_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def ws_client(db) -> TestClient:
    """Blocking client for WebSocket routes. The lifespan is not run."""
    async def override_db():
        return db

    app.dependency_overrides[mongo_db_dependency] = override_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user_service(db) -> UserService:
    return UserService(UserRepository(db), ProblemRepository(db))


@pytest.fixture
def chat_service(db) -> ChatService:
    return ChatService(MessageRepository(db), ConversationRepository(db), UserRepository(db))


@pytest.fixture
def make_user(user_service):
    async def _make(email: str, role: str = "student", full_name: str = "Test User") -> Session:
        return await user_service.register_user(
            UserCreate(email=email, password="secret123", full_name=full_name, role=role)
        )
    return _make


@pytest.fixture
async def admin(make_user) -> Session:
    return await make_user("admin@example.com", role="admin", full_name="Ada Admin")


@pytest.fixture
async def student(make_user) -> Session:
    return await make_user("sam@example.com", role="student", full_name="Sam Student")


def auth_headers(session: Session) -> dict:
    return {"Authorization": f"Bearer {create_access_token(session.user_id, session.role)}"}


@pytest.fixture
def admin_headers(admin) -> dict:
    return auth_headers(admin)


@pytest.fixture
def student_headers(student) -> dict:
    return auth_headers(student)


@pytest.fixture
def eventually():
    """Poll an async-updated condition instead of sleeping a fixed time"""
    async def _wait(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)
    return _wait
