from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from helpdesk.database.connection import mongo_db_dependency
from helpdesk.repositories.conversation_repository import ConversationRepository
from helpdesk.repositories.message_repository import MessageRepository
from helpdesk.repositories.problem_repository import ProblemRepository
from helpdesk.repositories.user_repository import UserRepository
from helpdesk.schemas.user import Session
from helpdesk.services.chat_service import ChatService
from helpdesk.services.dashboard_service import DashboardService
from helpdesk.services.problem_service import ProblemService
from helpdesk.services.user_service import UserService
from helpdesk.utils.security import decode_access_token


bearer = HTTPBearer(auto_error=False)


def build_chat_service(db) -> ChatService:
    return ChatService(MessageRepository(db), ConversationRepository(db), UserRepository(db))


def get_chat_service(db = Depends(mongo_db_dependency)) -> ChatService:
    return build_chat_service(db)


def get_user_service(db = Depends(mongo_db_dependency)) -> UserService:
    return UserService(UserRepository(db), ProblemRepository(db))


def build_problem_service(db) -> ProblemService:
    return ProblemService(ProblemRepository(db), UserRepository(db))


def get_problem_service(db = Depends(mongo_db_dependency)) -> ProblemService:
    return build_problem_service(db)


def build_dashboard_service(db) -> DashboardService:
    return DashboardService(ProblemRepository(db), MessageRepository(db), UserRepository(db))


def get_dashboard_service(db = Depends(mongo_db_dependency)) -> DashboardService:
    return build_dashboard_service(db)


async def session_from_token(token: Optional[str], db) -> Optional[Session]:
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except JWTError:
        return None
    sub = payload.get("sub")
    if not sub:
        return None
    return await UserService(UserRepository(db)).get_session(sub)


async def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db = Depends(mongo_db_dependency),
) -> Session:
    session = await session_from_token(credentials.credentials if credentials else None, db)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session


async def require_admin(session: Session = Depends(get_current_session)) -> Session:
    if not session.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admins only")
    return session


async def require_student(session: Session = Depends(get_current_session)) -> Session:
    if session.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Students only")
    return session
