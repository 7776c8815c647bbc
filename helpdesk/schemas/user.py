from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from helpdesk.models.user import Role


class UserBase(BaseModel):

    email: EmailStr


class UserCreate(UserBase):

    password: str = Field(min_length=6)
    full_name: str = Field(min_length=2)
    role: Role = "student"

    @field_validator("full_name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value


class UserLogin(UserBase):

    password: str


class Token(BaseModel):

    access_token: str
    token_type: str = "bearer"
    role: Role


class Session(BaseModel):
    """Who is calling. Resolved once per request and handed to every service call."""

    user_id: str
    role: Role
    email: Optional[str] = None
    full_name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class ProfilePublic(BaseModel):

    user_id: str
    full_name: str
    avatar_url: Optional[str] = None
    email: Optional[str] = None
    role: Optional[Role] = None


class ProfileUpdate(BaseModel):

    full_name: str


class PasswordChange(BaseModel):

    new_password: str = ""
    confirm_password: str = ""


class UserSummary(BaseModel):

    user_id: str
    full_name: str
    role: Role
    problem_count: int
    created_at: Optional[datetime] = None
