from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from helpdesk.utils.dates import as_utc


def _normalize_doc(data: Any) -> Any:
    # repository documents carry "_id"
    if isinstance(data, dict) and "_id" in data and "id" not in data:
        data = dict(data)
        data["id"] = str(data.pop("_id"))
    return data


class MessageOut(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    content: str
    is_read: bool = False
    created_at: datetime

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "MessageOut":
        return cls.model_validate(_normalize_doc(doc))

    @field_validator("created_at")
    @classmethod
    def utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class ConversationOut(BaseModel):

    id: str
    student_id: str
    admin_id: Optional[str] = None
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_by_admin: int = 0
    unread_by_student: int = 0
    student_name: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "ConversationOut":
        return cls.model_validate(_normalize_doc(doc))


class MessageCreate(BaseModel):

    content: str = Field(default="", max_length=5000)
