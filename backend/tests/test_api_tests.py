import datetime as dt
import io
from urllib.parse import quote

import pandas as pd

from constants import CONTAINER
from fakes import at, auth_headers
from models import Submission
from spreadsheets import XLSX_MEDIA_TYPE


def _test_body(**overrides):
    body = {
        "name": "Algebra Quiz",
        "date": "2026-03-10",
        "startTime": "10:00",
        "endTime": "11:00",
        "marksPerQuestion": 2,
        "questions": [
            {"questionText": "2 + 2?", "options": ["3", "4", "5", "6"], "correctAnswer": "4"},
            {"questionText": "3 + 3?", "options": ["6", "7", "8", "9"], "correctAnswer": "6"},
        ],
    }
    body.update(overrides)
    return body


def _sheet(rows) -> bytes:
    buffer = io.BytesIO()
    frame = pd.DataFrame(
        rows, columns=["questionText", "optionA", "optionB", "optionC", "optionD", "correctAnswer"]
    )
    frame.to_excel(buffer, index=False, engine="openpyxl")
    return buffer.getvalue()


def test_create_test_derives_total_and_assigns_question_ids(client, db, teacher):
    response = client.post("/api/tests", json=_test_body(), headers=auth_headers(teacher))

    assert response.status_code == 201
    body = response.json()
    assert body["totalMarks"] == 4
    assert body["status"] == "Live"
    assert all(q["_id"] for q in body["questions"])
    assert db.items(CONTAINER["TESTS"])[0]["created_by"] == teacher.id


def test_create_test_validation(client, teacher):
    headers = auth_headers(teacher)
    wrong_total = client.post("/api/tests", json=_test_body(totalMarks=10), headers=headers)
    reversed_window = client.post("/api/tests", json=_test_body(startTime="11:00", endTime="10:00"), headers=headers)
    bad_answer = client.post("/api/tests", json=_test_body(questions=[
        {"questionText": "Q?", "options": ["a", "b", "c", "d"], "correctAnswer": "e"},
    ]), headers=headers)
    three_options = client.post("/api/tests", json=_test_body(questions=[
        {"questionText": "Q?", "options": ["a", "b", "c"], "correctAnswer": "a"},
    ]), headers=headers)
    no_questions = client.post("/api/tests", json=_test_body(questions=[]), headers=headers)

    for response in (wrong_total, reversed_window, bad_answer, three_options, no_questions):
        assert response.status_code == 422


def test_students_cannot_create_tests(client, student):
    assert client.post("/api/tests", json=_test_body(), headers=auth_headers(student)).status_code == 403


def test_upload_question_sheet(client, db, teacher):
    content = _sheet([
        ["2 + 2?", "3", "4", "5", "6", "4"],
        ["Capital of France?", "Paris", "Rome", "Madrid", "Berlin", "Paris"],
    ])

    response = client.post(
        "/api/tests/upload",
        data={"name": "Sheet Quiz", "date": "2026-03-10", "startTime": "10:00", "endTime": "11:00"},
        files={"file": ("questions.xlsx", content, XLSX_MEDIA_TYPE)},
        headers=auth_headers(teacher),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["totalQuestions"] == 2
    assert body["totalMarks"] == 2
    assert len(db.items(CONTAINER["TESTS"])) == 1


def test_upload_rejects_bad_sheet(client, teacher):
    content = _sheet([["Broken", "a", "b", "c", "d", "z"]])

    response = client.post(
        "/api/tests/upload",
        data={"name": "Sheet Quiz", "date": "2026-03-10", "startTime": "10:00", "endTime": "11:00"},
        files={"file": ("questions.xlsx", content, XLSX_MEDIA_TYPE)},
        headers=auth_headers(teacher),
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_question_sheet"
    assert "row 2" in response.json()["message"]


def test_upload_rejects_reversed_window(client, teacher):
    content = _sheet([["2 + 2?", "3", "4", "5", "6", "4"]])

    response = client.post(
        "/api/tests/upload",
        data={"name": "Sheet Quiz", "date": "2026-03-10", "startTime": "11:00", "endTime": "10:00"},
        files={"file": ("questions.xlsx", content, XLSX_MEDIA_TYPE)},
        headers=auth_headers(teacher),
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_test"


def test_list_tests_with_owner_and_status(client, clock, teacher, student, make_test):
    make_test(created_by=teacher.id, name="Today")
    make_test(created_by=teacher.id, name="Tomorrow", date=dt.date(2026, 3, 11))
    make_test(created_by="gone-teacher", name="Yesterday", date=dt.date(2026, 3, 9))

    response = client.get("/api/tests", headers=auth_headers(student))

    assert response.status_code == 200
    tests = response.json()
    assert [(t["name"], t["status"]) for t in tests] == [
        ("Yesterday", "Completed"), ("Today", "Live"), ("Tomorrow", "Upcoming"),
    ]
    assert tests[1]["createdBy"] == {"_id": teacher.id, "name": teacher.name}
    assert tests[0]["createdBy"]["name"] == "Unknown"
    assert "questions" not in tests[0]


def test_status_follows_the_clock(client, clock, student, make_test):
    test = make_test()
    headers = auth_headers(student)

    clock.now = at(9, 59, 59)
    assert client.get(f"/api/tests/{test.id}", headers=headers).json()["status"] == "Upcoming"
    clock.now = at(11, 0, 0)
    assert client.get(f"/api/tests/{test.id}", headers=headers).json()["status"] == "Live"
    clock.now = at(11, 0, 1)
    assert client.get(f"/api/tests/{test.id}", headers=headers).json()["status"] == "Completed"


def test_get_test_includes_questions_and_time_left(client, clock, student, make_test):
    test = make_test()
    clock.now = at(10, 59)

    body = client.get(f"/api/tests/{test.id}", headers=auth_headers(student)).json()

    assert len(body["questions"]) == 4
    assert body["secondsRemaining"] == 60


def test_get_missing_test(client, student):
    response = client.get("/api/tests/missing", headers=auth_headers(student))
    assert response.status_code == 404
    assert response.json()["error"] == "test_not_found"


def test_delete_test_keeps_submissions(client, db, teacher, student, make_test):
    test = make_test(created_by=teacher.id)
    submission = Submission(
        id=Submission.document_id(test.id, student.id),
        test_id=test.id, student_id=student.id, score=1, total_questions=4, submitted_at=at(10, 5),
    )
    db.insert(CONTAINER["SUBMISSIONS"], submission.to_document())

    response = client.delete(f"/api/tests/{test.id}", headers=auth_headers(teacher))

    assert response.status_code == 200
    assert db.items(CONTAINER["TESTS"]) == []
    assert len(db.items(CONTAINER["SUBMISSIONS"])) == 1
    assert client.delete(f"/api/tests/{test.id}", headers=auth_headers(teacher)).status_code == 404


def _seed_results(db, make_test, make_student, teacher, name="Algebra Quiz"):
    test = make_test(created_by=teacher.id, name=name, marks_per_question=2)
    a = make_student(name="Asha", email="a@school.edu", prn="A1")
    b = make_student(name="Bala", email="b@school.edu", prn="B2")
    c = make_student(name="Chen", email="c@school.edu", prn="C3")
    for student, score, minute in ((b, 3, 20), (a, 2, 10)):
        db.insert(CONTAINER["SUBMISSIONS"], Submission(
            id=Submission.document_id(test.id, student.id),
            test_id=test.id, student_id=student.id, score=score, total_questions=4, submitted_at=at(10, minute),
        ).to_document())
    return test, (a, b, c)


def test_results_report(client, db, teacher, make_test, make_student):
    test, (a, b, c) = _seed_results(db, make_test, make_student, teacher)

    response = client.get(f"/api/tests/{test.id}/results", headers=auth_headers(teacher))

    assert response.status_code == 200
    body = response.json()
    assert [row["studentId"]["name"] for row in body["submittedStudents"]] == ["Asha", "Bala"]
    assert [row["marks"] for row in body["submittedStudents"]] == [4, 6]
    assert [s["name"] for s in body["notSubmittedStudents"]] == ["Chen"]
    assert body["summary"]["submissionRate"] == 66.67
    assert body["summary"]["averageScore"] == 2.5


def test_results_require_teacher(client, db, teacher, make_test, make_student):
    test, (a, _, _) = _seed_results(db, make_test, make_student, teacher)
    assert client.get(f"/api/tests/{test.id}/results", headers=auth_headers(a)).status_code == 403


def test_results_download(client, db, teacher, make_test, make_student):
    test, _ = _seed_results(db, make_test, make_student, teacher)

    response = client.get(f"/api/tests/{test.id}/results/download", headers=auth_headers(teacher))

    assert response.status_code == 200
    assert response.headers["content-type"] == XLSX_MEDIA_TYPE
    assert response.headers["content-disposition"] == (
        "attachment; filename=\"Algebra Quiz_results.xlsx\"; filename*=UTF-8''Algebra%20Quiz_results.xlsx"
    )
    frame = pd.read_excel(io.BytesIO(response.content), dtype=str)
    assert frame["PRN"].tolist() == ["A1", "B2"]


def test_results_download_with_non_latin_test_name(client, db, teacher, make_test, make_student):
    test, _ = _seed_results(db, make_test, make_student, teacher, name="गणित Quiz")

    response = client.get(f"/api/tests/{test.id}/results/download", headers=auth_headers(teacher))

    assert response.status_code == 200
    disposition = response.headers["content-disposition"]
    assert 'filename="_ Quiz_results.xlsx"' in disposition
    assert f"filename*=UTF-8''{quote('गणित Quiz_results.xlsx', safe='')}" in disposition
    frame = pd.read_excel(io.BytesIO(response.content), dtype=str)
    assert frame["PRN"].tolist() == ["A1", "B2"]


def test_create_test_rejects_times_with_utc_offset(client, db, teacher):
    headers = auth_headers(teacher)
    start_only = client.post("/api/tests", json=_test_body(startTime="10:00:00Z"), headers=headers)
    both = client.post("/api/tests", json=_test_body(startTime="10:00:00Z", endTime="11:00:00+05:30"), headers=headers)

    assert start_only.status_code == 422
    assert both.status_code == 422
    assert db.items(CONTAINER["TESTS"]) == []


def test_upload_rejects_times_with_utc_offset(client, db, teacher):
    content = _sheet([["2 + 2?", "3", "4", "5", "6", "4"]])

    response = client.post(
        "/api/tests/upload",
        data={"name": "Sheet Quiz", "date": "2026-03-10", "startTime": "10:00:00Z", "endTime": "11:00:00Z"},
        files={"file": ("questions.xlsx", content, XLSX_MEDIA_TYPE)},
        headers=auth_headers(teacher),
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_test"
    assert db.items(CONTAINER["TESTS"]) == []


def test_list_tests_after_rejected_offset_time(client, teacher, make_test):
    make_test(created_by=teacher.id, name="Morning")
    headers = auth_headers(teacher)
    client.post("/api/tests", json=_test_body(startTime="10:30:00Z", endTime="10:45:00Z"), headers=headers)

    response = client.get("/api/tests", headers=headers)

    assert response.status_code == 200
    assert [t["name"] for t in response.json()] == ["Morning"]
