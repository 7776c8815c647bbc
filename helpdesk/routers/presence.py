from fastapi import APIRouter, Depends

from helpdesk.schemas.user import Session
from helpdesk.utils.dependencies import get_current_session
from helpdesk.utils.presence import online_users


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}")
async def presence(user_id: str, session: Session = Depends(get_current_session)):
    """
    Online status from the shared presence channel. A user counts as online while
    at least one of their clients has a fresh heartbeat in the channel.
    """
    online = await online_users()
    return {"user_id": user_id, "online": user_id in online}
