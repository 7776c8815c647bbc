from datetime import datetime
from typing import Literal, Optional, TypedDict


# which participant's unread counter an operation targets
Side = Literal["admin", "student"]


class ConversationDocument(TypedDict, total=False):
    _id: str
    student_id: str
    admin_id: Optional[str]
    last_message: Optional[str]
    last_message_at: datetime
    unread_by_admin: int
    unread_by_student: int
    created_at: datetime
