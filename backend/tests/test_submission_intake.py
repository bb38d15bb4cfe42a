import asyncio
import datetime as dt

import pytest

from constants import CONTAINER
from error_utils import DuplicateSubmissionError, NotFoundError, SubmissionWindowError
from fakes import at
from models import SubmitAnswersRequest
from submission_service import list_student_submissions, submit_answers


def _request(test_id: str, answers: dict, **extra) -> SubmitAnswersRequest:
    return SubmitAnswersRequest(
        test_id=test_id,
        answers=[{"questionId": qid, "selectedOption": option} for qid, option in answers.items()],
        **extra,
    )


HALF_RIGHT = {"q1": "q1-a", "q2": "q2-b", "q3": "q3-a", "q4": "q4-c"}


def test_live_submission_is_scored_and_stored(db, make_test, student):
    test = make_test()

    result = asyncio.run(submit_answers(db, student, _request(test.id, HALF_RIGHT), now=at(10, 30)))

    assert (result.score, result.total_questions) == (2, 4)
    stored = db.items(CONTAINER["SUBMISSIONS"])
    assert len(stored) == 1
    assert stored[0]["id"] == f"{test.id}:{student.id}"
    assert stored[0]["score"] == 2


@pytest.mark.parametrize("now", [at(10, 0, 0), at(11, 0, 0)])
def test_window_edges_are_accepted(db, make_test, student, now):
    test = make_test()
    result = asyncio.run(submit_answers(db, student, _request(test.id, HALF_RIGHT), now=now))
    assert result.score == 2


@pytest.mark.parametrize("now,state", [(at(9, 59, 59), "Upcoming"), (at(11, 0, 1), "Completed")])
def test_outside_window_is_rejected(db, make_test, student, now, state):
    test = make_test()

    with pytest.raises(SubmissionWindowError) as excinfo:
        asyncio.run(submit_answers(db, student, _request(test.id, HALF_RIGHT), now=now))

    assert excinfo.value.state == state
    assert db.items(CONTAINER["SUBMISSIONS"]) == []


def test_second_submission_is_rejected_and_first_kept(db, make_test, student):
    test = make_test()
    asyncio.run(submit_answers(db, student, _request(test.id, HALF_RIGHT), now=at(10, 10)))

    all_right = {"q1": "q1-a", "q2": "q2-a", "q3": "q3-a", "q4": "q4-a"}
    with pytest.raises(DuplicateSubmissionError):
        asyncio.run(submit_answers(db, student, _request(test.id, all_right), now=at(10, 20)))

    stored = db.items(CONTAINER["SUBMISSIONS"])
    assert len(stored) == 1
    assert stored[0]["score"] == 2


def test_concurrent_submissions_store_exactly_one(db, make_test, student):
    test = make_test()

    async def race():
        return await asyncio.gather(
            submit_answers(db, student, _request(test.id, HALF_RIGHT), now=at(10, 10)),
            submit_answers(db, student, _request(test.id, HALF_RIGHT), now=at(10, 10)),
            return_exceptions=True,
        )

    outcomes = asyncio.run(race())

    assert sum(isinstance(o, DuplicateSubmissionError) for o in outcomes) == 1
    assert len(db.items(CONTAINER["SUBMISSIONS"])) == 1


def test_different_students_may_both_submit(db, make_test, make_student):
    test = make_test()
    first = make_student()
    second = make_student(name="Ravi", email="ravi@school.edu", prn="PRN002")

    asyncio.run(submit_answers(db, first, _request(test.id, HALF_RIGHT), now=at(10, 10)))
    asyncio.run(submit_answers(db, second, _request(test.id, {}), now=at(10, 11)))

    assert len(db.items(CONTAINER["SUBMISSIONS"])) == 2


def test_unknown_test(db, student):
    with pytest.raises(NotFoundError):
        asyncio.run(submit_answers(db, student, _request("missing", {}), now=at(10, 10)))


def test_proctoring_metadata_is_recorded_without_affecting_score(db, make_test, student):
    test = make_test()
    request = _request(
        test.id, HALF_RIGHT, auto_submitted=True, auto_submit_reason="fullscreen_exit", violation_count=3
    )

    result = asyncio.run(submit_answers(db, student, request, now=at(10, 45)))

    assert result.score == 2
    stored = db.items(CONTAINER["SUBMISSIONS"])[0]
    assert stored["auto_submitted"] is True
    assert stored["auto_submit_reason"] == "fullscreen_exit"
    assert stored["violation_count"] == 3


def test_history_is_newest_first_with_deleted_tests_as_null(db, make_test, student):
    older = make_test(name="Older")
    newer = make_test(name="Newer")
    asyncio.run(submit_answers(db, student, _request(older.id, HALF_RIGHT), now=at(10, 5)))
    asyncio.run(submit_answers(db, student, _request(newer.id, HALF_RIGHT), now=at(10, 50)))
    db.containers[CONTAINER["TESTS"]].pop(older.id)

    history = asyncio.run(list_student_submissions(db, student.id))

    assert [entry["testId"] and entry["testId"]["name"] for entry in history] == ["Newer", None]
    assert history[0]["testId"]["totalQuestions"] == 4


def test_duplicate_question_ids_are_refused():
    with pytest.raises(ValueError):
        SubmitAnswersRequest(
            test_id="t",
            answers=[
                {"questionId": "q1", "selectedOption": "a"},
                {"questionId": "q1", "selectedOption": "b"},
            ],
        )


def test_submitted_at_is_the_intake_instant(db, make_test, student):
    test = make_test()
    asyncio.run(submit_answers(db, student, _request(test.id, {}), now=at(10, 42)))

    stored = db.items(CONTAINER["SUBMISSIONS"])[0]
    assert dt.datetime.fromisoformat(stored["submitted_at"]) == at(10, 42)
