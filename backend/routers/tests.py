from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from typing import Dict, List, Optional, Union
import datetime as dt
import logging

from pydantic import ValidationError

from constants import CONTAINER
from database import CosmosDBService, get_cosmosdb
from datetime_utils import now_portal
from error_utils import NotFoundError, ValidationFailed, safe_raise_http
from lifecycle import classify, seconds_remaining
from models import CreateTestRequest, Student, Teacher, Test, parse_user
from reports import load_report
from repository import load_test
from security import get_current_user, require_teacher
from spreadsheets import XLSX_MEDIA_TYPE, build_results_workbook, parse_question_sheet, results_content_disposition

router = APIRouter()
logger = logging.getLogger(__name__)


def _test_payload(test: Test, now: dt.datetime, owner_name: Optional[str] = None, include_questions: bool = True) -> dict:
    """API view of a test with its lifecycle status computed at read time"""
    payload = test.to_api()
    if not include_questions:
        payload.pop("questions", None)
    payload["totalQuestions"] = len(test.questions)
    payload["status"] = classify(now, test).value
    payload["secondsRemaining"] = seconds_remaining(now, test)
    if owner_name is not None:
        payload["createdBy"] = {"_id": test.created_by, "name": owner_name}
    return payload


async def _store_test(db: CosmosDBService, request: CreateTestRequest, teacher: Teacher) -> dict:
    test = Test.from_request(request, created_by=teacher.id)
    await db.create_item(CONTAINER["TESTS"], test.to_document())
    logger.info(f"Teacher {teacher.id} created test {test.id} '{test.name}' with {len(test.questions)} questions")
    return _test_payload(test, now_portal())


@router.post("", status_code=201)
async def create_test(
    request: CreateTestRequest,
    teacher: Teacher = Depends(require_teacher),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> dict:
    """Create a test from a JSON question set"""
    return await _store_test(db, request, teacher)


@router.post("/upload", status_code=201)
async def create_test_from_sheet(
    name: str = Form(...),
    date: dt.date = Form(...),
    start_time: dt.time = Form(..., alias="startTime"),
    end_time: dt.time = Form(..., alias="endTime"),
    marks_per_question: int = Form(1, alias="marksPerQuestion"),
    file: UploadFile = File(...),
    teacher: Teacher = Depends(require_teacher),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> dict:
    """Create a test from an uploaded .xlsx question sheet"""
    logger.info(f"Processing question sheet upload: {file.filename}")
    questions = parse_question_sheet(await file.read())
    try:
        request = CreateTestRequest(
            name=name,
            date=date,
            start_time=start_time,
            end_time=end_time,
            marks_per_question=marks_per_question,
            questions=questions,
        )
    except ValidationError as e:
        raise ValidationFailed("; ".join(err["msg"] for err in e.errors()), code="invalid_test")
    return await _store_test(db, request, teacher)


@router.get("")
async def get_tests(
    user: Union[Teacher, Student] = Depends(get_current_user),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> List[dict]:
    """All tests with owner names and current status"""
    try:
        tests = [Test.model_validate(doc) for doc in await db.find_many(CONTAINER["TESTS"])]
        owners: Dict[str, Optional[str]] = {}
        for owner_id in {test.created_by for test in tests}:
            document = await db.read_item(CONTAINER["USERS"], owner_id)
            owners[owner_id] = parse_user(document).name if document else None
    except Exception as e:
        safe_raise_http("Could not get tests.", e)

    now = now_portal()
    tests.sort(key=lambda t: (t.date, t.start_time))
    return [
        _test_payload(test, now, owner_name=owners.get(test.created_by) or "Unknown", include_questions=False)
        for test in tests
    ]


@router.get("/{test_id}")
async def get_test(
    test_id: str,
    user: Union[Teacher, Student] = Depends(get_current_user),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> dict:
    """A test with its full question set (answer key included)"""
    return _test_payload(await load_test(db, test_id), now_portal())


@router.delete("/{test_id}")
async def delete_test(
    test_id: str,
    teacher: Teacher = Depends(require_teacher),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> dict:
    """Delete a test; its submissions are left in place"""
    if not await db.delete_item(CONTAINER["TESTS"], test_id):
        raise NotFoundError("Test not found", code="test_not_found")
    logger.info(f"Teacher {teacher.id} deleted test {test_id}")
    return {"message": "Test deleted successfully"}


@router.get("/{test_id}/results")
async def get_test_results(
    test_id: str,
    teacher: Teacher = Depends(require_teacher),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> dict:
    report = await load_report(db, test_id)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/{test_id}/results/download")
async def download_test_results(
    test_id: str,
    teacher: Teacher = Depends(require_teacher),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> Response:
    """The submitted rows of the report as an Excel workbook"""
    report = await load_report(db, test_id)
    try:
        content = build_results_workbook(report.test_name, report.submitted)
    except Exception as e:
        safe_raise_http("Could not generate Excel file.", e)

    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": results_content_disposition(report.test_name)},
    )
