import datetime as dt
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from constants import CONTAINER
from database import get_cosmosdb
from fakes import END, START, TEST_DATE, FakeCosmosDB, FrozenClock, at, quick_hash, sample_questions
from models import Question, Student, StudentStatus, Teacher, Test


@pytest.fixture
def db() -> FakeCosmosDB:
    return FakeCosmosDB()


@pytest.fixture
def clock(monkeypatch) -> FrozenClock:
    """Freeze the portal clock inside the window of the default test"""
    frozen = FrozenClock(at(10, 30))
    import submission_service
    from routers import tests as tests_router
    monkeypatch.setattr(submission_service, "now_portal", frozen)
    monkeypatch.setattr(tests_router, "now_portal", frozen)
    return frozen


@pytest.fixture
def client(db, clock):
    from main import app
    app.dependency_overrides[get_cosmosdb] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_teacher(db):
    def _make(name: str = "Ada Teacher", email: str = "ada@school.edu", password: str = "teacher-pass") -> Teacher:
        teacher = Teacher(name=name, email=email, password_hash=quick_hash(password))
        db.insert(CONTAINER["USERS"], teacher.to_document())
        return teacher
    return _make


@pytest.fixture
def make_student(db):
    def _make(
        name: str = "Sam Student",
        email: str = "sam@school.edu",
        prn: str = "PRN001",
        status: StudentStatus = StudentStatus.APPROVED,
        password: str = "student-pass",
    ) -> Student:
        student = Student(name=name, email=email, prn=prn, status=status, password_hash=quick_hash(password))
        db.insert(CONTAINER["USERS"], student.to_document())
        return student
    return _make


@pytest.fixture
def make_test(db):
    def _make(
        created_by: str = "teacher-1",
        name: str = "Algebra Quiz",
        questions: Optional[List[Question]] = None,
        marks_per_question: int = 1,
        date: dt.date = TEST_DATE,
        start: dt.time = START,
        end: dt.time = END,
    ) -> Test:
        questions = questions or sample_questions()
        test = Test(
            name=name,
            date=date,
            start_time=start,
            end_time=end,
            marks_per_question=marks_per_question,
            total_marks=len(questions) * marks_per_question,
            questions=questions,
            created_by=created_by,
        )
        db.insert(CONTAINER["TESTS"], test.to_document())
        return test
    return _make


@pytest.fixture
def teacher(make_teacher) -> Teacher:
    return make_teacher()


@pytest.fixture
def student(make_student) -> Student:
    return make_student()
