from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from helpdesk.schemas.problem import ProblemCreate, ProblemOut, ProblemStatusUpdate
from helpdesk.schemas.user import Session
from helpdesk.services.problem_service import ProblemService
from helpdesk.utils.dependencies import get_problem_service, require_admin, require_student


router = APIRouter(prefix="/problems", tags=["problems"])


@router.post("", response_model=ProblemOut, status_code=status.HTTP_201_CREATED)
async def submit_problem(payload: ProblemCreate, session: Session = Depends(require_student), service: ProblemService = Depends(get_problem_service)):
    doc = await service.submit(session, payload)
    return ProblemOut.from_doc(doc)


@router.get("/mine", response_model=List[ProblemOut])
async def my_problems(session: Session = Depends(require_student), service: ProblemService = Depends(get_problem_service)):
    return [ProblemOut.from_doc(doc) for doc in await service.list_mine(session)]


@router.get("", response_model=List[ProblemOut])
async def all_problems(
    status_filter: Optional[str] = Query(None, alias="status"),
    category: Optional[str] = None,
    search: Optional[str] = None,
    session: Session = Depends(require_admin),
    service: ProblemService = Depends(get_problem_service),
):
    docs = await service.list_all(status=status_filter, category=category, search=search)
    return [ProblemOut.from_doc(doc) for doc in docs]


@router.patch("/{problem_id}/status", response_model=ProblemOut)
async def update_status(problem_id: str, payload: ProblemStatusUpdate, session: Session = Depends(require_admin), service: ProblemService = Depends(get_problem_service)):
    try:
        doc = await service.update_status(problem_id, payload.status)
    except LookupError:
        raise HTTPException(status_code=404, detail="Problem not found")
    return ProblemOut.from_doc(doc)
