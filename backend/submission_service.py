"""Submission intake.

A submission is accepted only while its test is Live and only once per
(test, student). The once-only rule is enforced by the store: the document
id is derived from the pair, so a racing second insert fails with a conflict
instead of overwriting the first.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from azure.cosmos.exceptions import CosmosResourceExistsError

from constants import CONTAINER
from database import CosmosDBService
from datetime_utils import now_portal
from error_utils import DuplicateSubmissionError, SubmissionWindowError
from lifecycle import classify
from models import Student, Submission, SubmitAnswersRequest, SubmitResult, Test, TestState, TestSummary
from repository import load_test
from scoring import score

logger = logging.getLogger(__name__)


async def submit_answers(
    db: CosmosDBService,
    student: Student,
    request: SubmitAnswersRequest,
    now: Optional[datetime] = None,
) -> SubmitResult:
    test = await load_test(db, request.test_id)

    now = now or now_portal()
    state = classify(now, test)
    if state != TestState.LIVE:
        logger.warning(f"Rejected submission from {student.id} for test {test.id}: test is {state.value}")
        raise SubmissionWindowError(state.value)

    answers = request.answer_map()
    submission = Submission(
        id=Submission.document_id(test.id, student.id),
        test_id=test.id,
        student_id=student.id,
        answers=answers,
        score=score(test.questions, answers),
        total_questions=len(test.questions),
        submitted_at=now,
        auto_submitted=request.auto_submitted,
        auto_submit_reason=request.auto_submit_reason,
        violation_count=request.violation_count,
    )

    try:
        await db.create_item(CONTAINER["SUBMISSIONS"], submission.to_document())
    except CosmosResourceExistsError:
        logger.warning(f"Duplicate submission from {student.id} for test {test.id}")
        raise DuplicateSubmissionError()

    logger.info(
        f"Submission stored for test {test.id} by {student.id}: "
        f"score={submission.score}/{submission.total_questions}, auto_submitted={submission.auto_submitted}"
    )
    return SubmitResult(
        score=submission.score,
        total_questions=submission.total_questions,
        submission=submission.to_api(),
    )


def summarize_test(test: Test) -> TestSummary:
    return TestSummary(
        id=test.id,
        name=test.name,
        date=test.date,
        total_marks=test.total_marks,
        total_questions=len(test.questions),
    )


async def list_student_submissions(db: CosmosDBService, student_id: str) -> List[Dict[str, Any]]:
    """A student's submissions, newest first, each with its parent test (null once deleted)."""
    documents = await db.find_many(CONTAINER["SUBMISSIONS"], {"student_id": student_id})
    submissions = sorted(
        (Submission.model_validate(doc) for doc in documents),
        key=lambda s: s.submitted_at,
        reverse=True,
    )

    tests: Dict[str, Optional[TestSummary]] = {}
    history = []
    for submission in submissions:
        if submission.test_id not in tests:
            document = await db.read_item(CONTAINER["TESTS"], submission.test_id)
            tests[submission.test_id] = summarize_test(Test.model_validate(document)) if document else None
        entry = submission.to_api()
        parent = tests[submission.test_id]
        entry["testId"] = parent.model_dump(mode="json", by_alias=True) if parent else None
        history.append(entry)
    return history
