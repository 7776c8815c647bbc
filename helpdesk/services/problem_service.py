import logging
from typing import Any, Dict, List, Optional

from helpdesk.models.problem import PROBLEM_STATUSES
from helpdesk.repositories.problem_repository import ProblemRepository
from helpdesk.repositories.user_repository import UserRepository
from helpdesk.schemas.problem import ProblemCreate, ProblemOut
from helpdesk.schemas.user import Session
from helpdesk.utils.realtime_bus import announce


logger = logging.getLogger(__name__)


def filter_problems(
    problems: List[Dict[str, Any]],
    status: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Dict[str, Any]]:
    needle = (search or "").lower()
    result = []
    for problem in problems:
        if status and status != "all" and problem.get("status") != status:
            continue
        if category and category != "all" and problem.get("category") != category:
            continue
        if needle and needle not in problem.get("title", "").lower() and needle not in problem.get("description", "").lower():
            continue
        result.append(problem)
    return result


class ProblemService:

    def __init__(self, problem_repo: ProblemRepository, user_repo: UserRepository) -> None:
        self._problem_repo = problem_repo
        self._user_repo = user_repo

    async def submit(self, session: Session, payload: ProblemCreate) -> Dict[str, Any]:
        doc = await self._problem_repo.create(
            submitted_by=session.user_id,
            title=payload.title,
            description=payload.description,
            category=payload.category,
            is_urgent=payload.is_urgent,
        )
        if payload.is_urgent:
            logger.warning("Urgent problem %s submitted by %s", doc["_id"], session.user_id)
        else:
            logger.info("Problem %s submitted by %s", doc["_id"], session.user_id)
        await announce("problems", "INSERT", ProblemOut.from_doc(doc).model_dump(mode="json"))
        return doc

    async def list_mine(self, session: Session) -> List[Dict[str, Any]]:
        return await self._problem_repo.list_problems(submitted_by=session.user_id)

    async def list_all(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        problems = filter_problems(await self._problem_repo.list_problems(), status, category, search)
        names: Dict[str, str] = {}
        for problem in problems:
            submitter = problem["submitted_by"]
            if submitter not in names:
                names[submitter] = await self.submitter_name(submitter)
            problem["submitter_name"] = names[submitter]
        return problems

    async def submitter_name(self, user_id: str) -> str:
        return await self._user_repo.get_full_name(user_id) or "Unknown"

    async def update_status(self, problem_id: str, status: str) -> Dict[str, Any]:
        if status not in PROBLEM_STATUSES:
            raise ValueError(f"Unknown status: {status}")
        doc = await self._problem_repo.update_status(problem_id, status)
        if not doc:
            raise LookupError("Problem not found")
        logger.info("Problem %s moved to %s", problem_id, status)
        await announce("problems", "UPDATE", ProblemOut.from_doc(doc).model_dump(mode="json"))
        return doc
