from typing import List, Optional

from fastapi import APIRouter, Depends

from helpdesk.schemas.dashboard import Activity, DashboardOut
from helpdesk.schemas.user import Session, UserSummary
from helpdesk.services.dashboard_service import DashboardService
from helpdesk.services.user_service import UserService
from helpdesk.utils.dependencies import get_dashboard_service, get_user_service, require_admin


router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/dashboard", response_model=DashboardOut)
async def dashboard(session: Session = Depends(require_admin), service: DashboardService = Depends(get_dashboard_service)):
    return await service.overview()


@router.get("/activity", response_model=List[Activity])
async def recent_activity(session: Session = Depends(require_admin), service: DashboardService = Depends(get_dashboard_service)):
    return await service.recent_activity()


@router.get("/users", response_model=List[UserSummary])
async def list_users(search: Optional[str] = None, session: Session = Depends(require_admin), service: UserService = Depends(get_user_service)):
    return await service.list_users(search)
