"""Results aggregation: who submitted, who did not, and summary statistics.

Every currently stored student lands in exactly one of the two lists. A
submission whose student no longer exists is dropped from the report
entirely; that information loss is accepted.
"""
import logging
from typing import Dict, Iterable, List

from constants import CONTAINER
from database import CosmosDBService
from models import ReportSummary, Student, StudentSummary, Submission, SubmittedStudentRow, Test, TestReport
from repository import load_roster, load_test

logger = logging.getLogger(__name__)


def summarize(scores: List[int], roster_size: int) -> ReportSummary:
    submitted_count = len(scores)
    return ReportSummary(
        roster_size=roster_size,
        submitted_count=submitted_count,
        average_score=round(sum(scores) / submitted_count, 2) if submitted_count else 0.0,
        highest_score=max(scores) if scores else 0,
        submission_rate=round(100.0 * submitted_count / roster_size, 2) if roster_size else 0.0,
    )


def build_report(test: Test, submissions: Iterable[Submission], roster: Iterable[Student]) -> TestReport:
    """Join a test's submissions against the current student roster."""
    roster = list(roster)
    students: Dict[str, Student] = {student.id: student for student in roster}

    submitted: List[SubmittedStudentRow] = []
    for submission in sorted(submissions, key=lambda s: s.submitted_at):
        student = students.get(submission.student_id)
        if student is None:
            logger.info(f"Skipping submission {submission.id}: student {submission.student_id} no longer exists")
            continue
        submitted.append(SubmittedStudentRow(
            submission_id=submission.id,
            student=StudentSummary.from_student(student),
            score=submission.score,
            marks=submission.score * test.marks_per_question,
            submitted_at=submission.submitted_at,
            auto_submitted=submission.auto_submitted,
            auto_submit_reason=submission.auto_submit_reason,
        ))

    submitted_ids = {row.student.id for row in submitted}
    not_submitted = [
        StudentSummary.from_student(student) for student in roster if student.id not in submitted_ids
    ]

    return TestReport(
        test_name=test.name,
        total_marks=test.total_marks,
        submitted=submitted,
        not_submitted=not_submitted,
        summary=summarize([row.score for row in submitted], len(roster)),
    )


async def load_report(db: CosmosDBService, test_id: str) -> TestReport:
    test = await load_test(db, test_id)
    documents = await db.find_many(CONTAINER["SUBMISSIONS"], {"test_id": test_id})
    submissions = [Submission.model_validate(doc) for doc in documents]
    roster = await load_roster(db)
    return build_report(test, submissions, roster)
