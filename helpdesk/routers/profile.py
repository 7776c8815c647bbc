from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from helpdesk.config import get_settings
from helpdesk.schemas.user import PasswordChange, ProfilePublic, ProfileUpdate, Session
from helpdesk.services.user_service import UserService
from helpdesk.utils.dependencies import get_current_session, get_user_service
from helpdesk.utils.file_storage import get_avatar_storage


router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("", response_model=ProfilePublic)
async def get_profile(session: Session = Depends(get_current_session), service: UserService = Depends(get_user_service)):
    return await service.get_profile(session)


@router.patch("", response_model=ProfilePublic)
async def update_profile(payload: ProfileUpdate, session: Session = Depends(get_current_session), service: UserService = Depends(get_user_service)):
    try:
        return await service.update_profile(session, payload.full_name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/password")
async def change_password(payload: PasswordChange, session: Session = Depends(get_current_session), service: UserService = Depends(get_user_service)):
    try:
        await service.change_password(session, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"msg": "Password changed"}


@router.post("/avatar", response_model=ProfilePublic)
async def upload_avatar(
    file: UploadFile = File(...),
    session: Session = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    settings = get_settings()
    # read one byte past the limit so oversized uploads are detectable
    data = await file.read(settings.AVATAR_MAX_BYTES + 1)
    try:
        return await service.upload_avatar(
            session,
            get_avatar_storage(),
            filename=file.filename or "avatar",
            content_type=file.content_type,
            data=data,
            max_bytes=settings.AVATAR_MAX_BYTES,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
