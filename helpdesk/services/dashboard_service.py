from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from helpdesk.repositories.message_repository import MessageRepository
from helpdesk.repositories.problem_repository import ProblemRepository
from helpdesk.repositories.user_repository import UserRepository
from helpdesk.schemas.dashboard import Activity, DailyBucket, DashboardOut, DashboardStats, NamedCount
from helpdesk.utils.dates import as_utc, utcnow


def daily_buckets(problems: Iterable[Dict[str, Any]], today: date, days: int = 7) -> List[DailyBucket]:
    """Per-day totals for the ``days`` calendar days ending with ``today`` (UTC)."""
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    buckets = {day: {"total": 0, "urgent": 0, "resolved": 0} for day in window}
    for problem in problems:
        day = as_utc(problem["created_at"]).date()
        bucket = buckets.get(day)
        if bucket is None:
            continue
        bucket["total"] += 1
        if problem.get("is_urgent"):
            bucket["urgent"] += 1
        if problem.get("status") == "resolved":
            bucket["resolved"] += 1
    return [DailyBucket(date=day, **buckets[day]) for day in window]


def count_by(problems: Iterable[Dict[str, Any]], field: str) -> List[NamedCount]:
    counts: Dict[str, int] = {}
    for problem in problems:
        key = problem.get(field)
        if key is None:
            continue
        counts[key] = counts.get(key, 0) + 1
    return [NamedCount(name=name, value=value) for name, value in counts.items()]


def merge_activity(
    problems: Iterable[Dict[str, Any]],
    messages: Iterable[Dict[str, Any]],
    names: Dict[str, str],
    limit: int = 10,
) -> List[Activity]:
    items = [
        Activity(
            id=p["_id"],
            type="problem",
            description=f'{names.get(p["submitted_by"]) or "User"} submitted "{p["title"]}"',
            timestamp=as_utc(p["created_at"]),
        )
        for p in problems
    ]
    items.extend(
        Activity(
            id=m["_id"],
            type="message",
            description=f'{names.get(m["sender_id"]) or "User"} sent a message',
            timestamp=as_utc(m["created_at"]),
        )
        for m in messages
    )
    items.sort(key=lambda a: a.timestamp, reverse=True)
    return items[:limit]


class DashboardService:

    def __init__(self, problem_repo: ProblemRepository, message_repo: MessageRepository, user_repo: UserRepository) -> None:
        self._problem_repo = problem_repo
        self._message_repo = message_repo
        self._user_repo = user_repo

    async def overview(self, today: Optional[date] = None) -> DashboardOut:
        problems = await self._problem_repo.list_problems()
        stats = DashboardStats(
            total_problems=len(problems),
            active_users=await self._user_repo.count_profiles(),
            urgent_problems=sum(1 for p in problems if p.get("is_urgent")),
        )
        return DashboardOut(
            stats=stats,
            timeline=daily_buckets(problems, today or utcnow().date()),
            categories=count_by(problems, "category"),
            statuses=count_by(problems, "status"),
        )

    async def recent_activity(self, per_source: int = 5, limit: int = 10) -> List[Activity]:
        problems = await self._problem_repo.list_problems(limit=per_source)
        messages = await self._message_repo.list_recent(limit=per_source)
        names: Dict[str, str] = {}
        for user_id in {p["submitted_by"] for p in problems} | {m["sender_id"] for m in messages}:
            name = await self._user_repo.get_full_name(user_id)
            if name:
                names[user_id] = name
        return merge_activity(problems, messages, names, limit=limit)
