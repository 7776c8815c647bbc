from fastapi import APIRouter, Depends, HTTPException, status

from helpdesk.schemas.user import Session, Token, UserCreate, UserLogin
from helpdesk.services.user_service import UserService
from helpdesk.utils.dependencies import get_current_session, get_user_service
from helpdesk.utils.security import create_access_token


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=Token, status_code=status.HTTP_201_CREATED)
async def signup(payload: UserCreate, service: UserService = Depends(get_user_service)):
    try:
        session = await service.register_user(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return Token(access_token=create_access_token(session.user_id, session.role), role=session.role)


@router.post("/login", response_model=Token)
async def login(payload: UserLogin, service: UserService = Depends(get_user_service)):
    user = await service.authenticate_user(payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    session = await service.get_session(user["_id"])
    return Token(access_token=create_access_token(session.user_id, session.role), role=session.role)


@router.get("/me", response_model=Session)
async def me(session: Session = Depends(get_current_session)):
    return session
