import datetime as dt
from enum import Enum
from typing import List, Optional, Any, Dict, Union, Annotated, Literal
from pydantic import BaseModel, Field, ConfigDict, TypeAdapter, field_validator, model_validator
import uuid

from constants import OPTIONS_PER_QUESTION


def _new_id() -> str:
    return str(uuid.uuid4())


# ===========================
# COSMOS DB SPECIFIC MODELS
# ===========================

class CosmosDocument(BaseModel):
    """Base class for all Cosmos DB documents"""
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore"
    )

    # Azure Cosmos DB standard fields
    id: str = Field(default_factory=_new_id, alias="_id", description="Document ID")
    etag: Optional[str] = Field(None, alias="_etag", description="Cosmos DB ETag for optimistic concurrency")
    ts: Optional[float] = Field(None, alias="_ts", description="Cosmos DB timestamp")

    @property
    def partition_key(self) -> str:
        """Override in subclasses to define partition key"""
        return self.id

    def to_document(self) -> Dict[str, Any]:
        """Serialize for storage: snake_case field names, system fields left to Cosmos."""
        return self.model_dump(mode="json", exclude={"etag", "ts"})

    def to_api(self) -> Dict[str, Any]:
        """Serialize for API responses: camelCase aliases, id exposed as ``_id``."""
        return self.model_dump(mode="json", by_alias=True, exclude={"etag", "ts"})


# ===========================
# ENUMS AND BASE TYPES
# ===========================

class UserRole(str, Enum):
    TEACHER = "teacher"
    STUDENT = "student"


class StudentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TestState(str, Enum):
    """Lifecycle state of a test, derived from the clock on every read."""
    __test__ = False

    UPCOMING = "Upcoming"
    LIVE = "Live"
    COMPLETED = "Completed"


class AutoSubmitReason(str, Enum):
    TIMER_EXPIRED = "timer_expired"
    FULLSCREEN_EXIT = "fullscreen_exit"
    TAB_SWITCH = "tab_switch"


# ===========================
# USERS CONTAINER MODELS
# ===========================

class UserBase(CosmosDocument):
    name: str = Field(..., min_length=1, description="Full name of the user")
    email: str = Field(..., min_length=3, description="Email address, unique across users")
    password_hash: str = Field(..., alias="passwordHash", description="bcrypt hash, never returned")
    created_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc), alias="createdAt")

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude={"etag", "ts", "password_hash"})


class Teacher(UserBase):
    role: Literal["teacher"] = "teacher"


class Student(UserBase):
    role: Literal["student"] = "student"
    prn: str = Field(..., min_length=1, description="Institutional identifier")
    status: StudentStatus = Field(default=StudentStatus.PENDING)


# A user is exactly one of the role variants; role-specific fields only exist on their variant
User = Annotated[Union[Teacher, Student], Field(discriminator="role")]
user_adapter: TypeAdapter = TypeAdapter(User)


def parse_user(document: Dict[str, Any]) -> Union[Teacher, Student]:
    return user_adapter.validate_python(document)


class StudentSummary(BaseModel):
    """Roster entry as shown in reports"""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    name: str
    prn: str
    email: Optional[str] = None

    @classmethod
    def from_student(cls, student: Student) -> "StudentSummary":
        return cls(id=student.id, name=student.name, prn=student.prn, email=student.email)


class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    prn: str = Field(..., min_length=1)

    @field_validator("password")
    @classmethod
    def _bcrypt_limit(cls, value: str) -> str:
        if len(value.encode("utf-8")) > 72:
            raise ValueError("Password must be at most 72 bytes")
        return value


class AddTeacherRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)

    @field_validator("password")
    @classmethod
    def _bcrypt_limit(cls, value: str) -> str:
        if len(value.encode("utf-8")) > 72:
            raise ValueError("Password must be at most 72 bytes")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str


class UpdateStatusRequest(BaseModel):
    status: StudentStatus


# ===========================
# TESTS CONTAINER MODELS
# ===========================

class QuestionIn(BaseModel):
    """A question as authored (JSON body or one spreadsheet row)"""
    model_config = ConfigDict(populate_by_name=True)

    question_text: str = Field(..., alias="questionText", min_length=1)
    options: Annotated[List[str], Field(min_length=OPTIONS_PER_QUESTION, max_length=OPTIONS_PER_QUESTION)]
    correct_answer: str = Field(..., alias="correctAnswer")

    @model_validator(mode="after")
    def _answer_is_an_option(self):
        # Exact comparison; stray whitespace in authored data is not corrected here
        if self.correct_answer not in self.options:
            raise ValueError(f"correctAnswer {self.correct_answer!r} is not one of the options")
        return self


class Question(QuestionIn):
    """A stored question; identity is assigned at creation and never changes"""
    id: str = Field(default_factory=_new_id, alias="_id")


class TestBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200)
    date: dt.date = Field(..., description="Calendar date of the test")
    start_time: dt.time = Field(..., alias="startTime")
    end_time: dt.time = Field(..., alias="endTime")
    marks_per_question: int = Field(default=1, gt=0, alias="marksPerQuestion")

    @field_validator("start_time", "end_time")
    @classmethod
    def _wall_clock_time(cls, value: dt.time) -> dt.time:
        # Wall-clock values in the portal zone
        if value.tzinfo is not None:
            raise ValueError("startTime and endTime must be wall-clock times without a UTC offset")
        return value

    @model_validator(mode="after")
    def _window_is_ordered(self):
        if self.start_time >= self.end_time:
            raise ValueError("startTime must be before endTime")
        return self


class CreateTestRequest(TestBase):
    """Request model for creating a new test"""
    total_marks: Optional[int] = Field(None, alias="totalMarks")
    questions: Annotated[List[QuestionIn], Field(min_length=1)]

    @model_validator(mode="after")
    def _total_marks_consistent(self):
        expected = len(self.questions) * self.marks_per_question
        if self.total_marks is not None and self.total_marks != expected:
            raise ValueError(
                f"totalMarks {self.total_marks} does not match {len(self.questions)} questions "
                f"x {self.marks_per_question} marks"
            )
        return self


class Test(TestBase, CosmosDocument):
    """A scheduled test and its owned question set"""
    __test__ = False

    total_marks: int = Field(..., alias="totalMarks")
    questions: List[Question] = Field(..., min_length=1)
    created_by: str = Field(..., alias="createdBy", description="User ID of the owning teacher")
    created_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc), alias="createdAt")

    @classmethod
    def from_request(cls, request: CreateTestRequest, created_by: str) -> "Test":
        questions = [Question(**q.model_dump()) for q in request.questions]
        return cls(
            name=request.name,
            date=request.date,
            start_time=request.start_time,
            end_time=request.end_time,
            marks_per_question=request.marks_per_question,
            total_marks=len(questions) * request.marks_per_question,
            questions=questions,
            created_by=created_by,
        )


class TestSummary(BaseModel):
    """Parent test reference attached to a student's submission history"""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    name: str
    date: dt.date
    total_marks: int = Field(..., alias="totalMarks")
    total_questions: int = Field(..., alias="totalQuestions")


# ===========================
# SUBMISSIONS CONTAINER MODELS
# ===========================

class AnswerEntry(BaseModel):
    """One selected option as sent by the exam page"""
    model_config = ConfigDict(populate_by_name=True)

    question_id: str = Field(..., alias="questionId")
    selected_option: str = Field(..., alias="selectedOption")


class SubmitAnswersRequest(BaseModel):
    """The full answer set, sent once per test (manual or automatic submit)"""
    model_config = ConfigDict(populate_by_name=True)

    test_id: str = Field(..., alias="testId")
    answers: List[AnswerEntry] = Field(default_factory=list)
    auto_submitted: bool = Field(default=False, alias="autoSubmitted")
    auto_submit_reason: Optional[AutoSubmitReason] = Field(None, alias="autoSubmitReason")
    violation_count: int = Field(default=0, ge=0, alias="violationCount")

    @field_validator("answers")
    @classmethod
    def _one_answer_per_question(cls, answers: List[AnswerEntry]) -> List[AnswerEntry]:
        seen = set()
        for entry in answers:
            if entry.question_id in seen:
                raise ValueError(f"question {entry.question_id} answered more than once")
            seen.add(entry.question_id)
        return answers

    def answer_map(self) -> Dict[str, str]:
        return {entry.question_id: entry.selected_option for entry in self.answers}


class Submission(CosmosDocument):
    """One student's answer set for one test; written once, never updated"""
    test_id: str = Field(..., alias="testId")
    student_id: str = Field(..., alias="studentId")
    answers: Dict[str, str] = Field(default_factory=dict, description="question id -> selected option")
    score: int = Field(..., ge=0)
    total_questions: int = Field(..., alias="totalQuestions", ge=0)
    submitted_at: dt.datetime = Field(..., alias="submittedAt")

    # Proctoring metadata, recorded for audit only
    auto_submitted: bool = Field(default=False, alias="autoSubmitted")
    auto_submit_reason: Optional[AutoSubmitReason] = Field(None, alias="autoSubmitReason")
    violation_count: int = Field(default=0, alias="violationCount")

    @staticmethod
    def document_id(test_id: str, student_id: str) -> str:
        """One id per (test, student) pair, so the store itself rejects a second insert"""
        return f"{test_id}:{student_id}"

    @property
    def partition_key(self) -> str:
        """Partition by test ID for efficient report queries"""
        return self.test_id


class SubmitResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = "Test submitted successfully!"
    score: int
    total_questions: int = Field(..., alias="totalQuestions")
    submission: Dict[str, Any]


# ===========================
# REPORT MODELS
# ===========================

class SubmittedStudentRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    submission_id: str = Field(..., alias="_id")
    student: StudentSummary = Field(..., alias="studentId")
    score: int
    marks: int
    submitted_at: dt.datetime = Field(..., alias="submittedAt")
    auto_submitted: bool = Field(default=False, alias="autoSubmitted")
    auto_submit_reason: Optional[AutoSubmitReason] = Field(None, alias="autoSubmitReason")


class ReportSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    roster_size: int = Field(..., alias="rosterSize")
    submitted_count: int = Field(..., alias="submittedCount")
    average_score: float = Field(..., alias="averageScore")
    highest_score: int = Field(..., alias="highestScore")
    submission_rate: float = Field(..., alias="submissionRate", description="Percent of the roster that submitted")


class TestReport(BaseModel):
    __test__ = False
    model_config = ConfigDict(populate_by_name=True)

    test_name: str = Field(..., alias="testName")
    total_marks: int = Field(..., alias="totalMarks")
    submitted: List[SubmittedStudentRow] = Field(default_factory=list, alias="submittedStudents")
    not_submitted: List[StudentSummary] = Field(default_factory=list, alias="notSubmittedStudents")
    summary: ReportSummary
