from datetime import datetime
from typing import Literal, Optional, TypedDict


Role = Literal["student", "admin"]


class UserDocument(TypedDict, total=False):

    _id: str
    email: str
    hashed_password: str
    created_at: datetime


class UserRoleDocument(TypedDict, total=False):
    _id: str
    user_id: str
    role: Role


class ProfileDocument(TypedDict, total=False):
    _id: str
    user_id: str
    full_name: str
    avatar_url: Optional[str]
    created_at: datetime
