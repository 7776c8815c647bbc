from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from helpdesk.models.problem import PROBLEM_CATEGORIES, ProblemStatus


class ProblemCreate(BaseModel):

    title: str = Field(min_length=5, max_length=200)
    description: str = Field(min_length=10, max_length=2000)
    category: str = Field(min_length=1)
    is_urgent: bool = False

    @field_validator("title", "description", mode="before")
    @classmethod
    def strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("category")
    @classmethod
    def known_category(cls, value: str) -> str:
        if value not in PROBLEM_CATEGORIES:
            raise ValueError("Please select a category")
        return value


class ProblemStatusUpdate(BaseModel):

    status: ProblemStatus


class ProblemOut(BaseModel):

    id: str
    title: str
    description: str
    category: str
    status: ProblemStatus = "pending"
    is_urgent: bool = False
    submitted_by: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    submitter_name: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "ProblemOut":
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)
