from datetime import date, datetime
from typing import List, Literal

from pydantic import BaseModel


class DashboardStats(BaseModel):

    total_problems: int
    active_users: int
    urgent_problems: int


class DailyBucket(BaseModel):

    date: date
    total: int
    urgent: int
    resolved: int


class NamedCount(BaseModel):

    name: str
    value: int


class DashboardOut(BaseModel):

    stats: DashboardStats
    timeline: List[DailyBucket]
    categories: List[NamedCount]
    statuses: List[NamedCount]


class Activity(BaseModel):

    id: str
    type: Literal["problem", "message"]
    description: str
    timestamp: datetime
