from datetime import datetime
from typing import Literal, TypedDict


ProblemStatus = Literal["pending", "in_progress", "resolved"]

PROBLEM_STATUSES = ("pending", "in_progress", "resolved")
PROBLEM_CATEGORIES = ("technical", "academic", "facilities", "administrative", "other")


class ProblemDocument(TypedDict, total=False):
    _id: str
    title: str
    description: str
    category: str
    status: ProblemStatus
    is_urgent: bool
    submitted_by: str
    created_at: datetime
    updated_at: datetime
