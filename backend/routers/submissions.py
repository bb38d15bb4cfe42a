from fastapi import APIRouter, Depends
from typing import List
import logging

from database import CosmosDBService, get_cosmosdb
from models import Student, SubmitAnswersRequest
from security import require_approved_student, require_student
from submission_service import list_student_submissions, submit_answers

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", status_code=201)
async def submit_test(
    request: SubmitAnswersRequest,
    student: Student = Depends(require_approved_student),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> dict:
    """Score and store a student's answers; only while the test is Live, only once"""
    result = await submit_answers(db, student, request)
    return result.model_dump(mode="json", by_alias=True)


@router.get("/mysubmissions")
async def get_my_submissions(
    student: Student = Depends(require_student),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> List[dict]:
    return await list_student_submissions(db, student.id)
