from fastapi import APIRouter, Depends
from typing import List, Union
import logging

from azure.cosmos.exceptions import CosmosAccessConditionFailedError

from constants import CONTAINER
from database import CosmosDBService, get_cosmosdb
from error_utils import AuthenticationError, ConcurrentUpdateError, NotFoundError, ValidationFailed
from models import (
    AddTeacherRequest, LoginRequest, SignupRequest, Student, Teacher,
    UpdateStatusRequest, parse_user,
)
from repository import find_user_by_email, load_roster
from security import (
    create_access_token, ensure_student_approved, get_current_user, hash_password,
    require_teacher, verify_password,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _session_payload(user: Union[Teacher, Student]) -> dict:
    """Public user fields plus a fresh bearer token"""
    payload = user.to_api()
    payload["token"] = create_access_token(user.id, user.role)
    return payload


async def _authenticate(db: CosmosDBService, request: LoginRequest) -> Union[Teacher, Student]:
    user = await find_user_by_email(db, request.email)
    if user is None or not verify_password(request.password, user.password_hash):
        logger.warning(f"Invalid login attempt for email: {request.email}")
        raise AuthenticationError("Invalid email or password", code="invalid_credentials")
    return user


@router.post("/signup", status_code=201)
async def register_student(request: SignupRequest, db: CosmosDBService = Depends(get_cosmosdb)) -> dict:
    """Register a new student; the account waits for teacher approval"""
    existing = await db.find_one(CONTAINER["USERS"], {"email": request.email})
    if existing is None:
        existing = await db.find_one(CONTAINER["USERS"], {"prn": request.prn})
    if existing is not None:
        raise ValidationFailed("User with this email or PRN already exists", code="email_taken")

    student = Student(
        name=request.name,
        email=request.email,
        prn=request.prn,
        password_hash=hash_password(request.password),
    )
    await db.create_item(CONTAINER["USERS"], student.to_document())
    logger.info(f"Registered student {student.id} ({student.prn}), status pending")
    return student.to_api()


@router.post("/login")
async def login(request: LoginRequest, db: CosmosDBService = Depends(get_cosmosdb)) -> dict:
    """Authenticate any user and return a bearer token"""
    user = await _authenticate(db, request)
    if isinstance(user, Student):
        ensure_student_approved(user)
    logger.info(f"Login successful for {user.role} {user.id}")
    return _session_payload(user)


@router.post("/teacher-login")
async def teacher_login(request: LoginRequest, db: CosmosDBService = Depends(get_cosmosdb)) -> dict:
    """Authenticate a teacher; students are refused with the same message as a bad password"""
    user = await _authenticate(db, request)
    if not isinstance(user, Teacher):
        logger.warning(f"Non-teacher {user.id} attempted teacher login")
        raise AuthenticationError("Invalid email or password", code="invalid_credentials")
    return _session_payload(user)


@router.get("/profile")
async def get_profile(user: Union[Teacher, Student] = Depends(get_current_user)) -> dict:
    return user.to_api()


@router.get("/getStudents")
async def get_students(
    teacher: Teacher = Depends(require_teacher),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> List[dict]:
    return [student.to_api() for student in await load_roster(db)]


@router.put("/{user_id}/status")
async def update_student_status(
    user_id: str,
    request: UpdateStatusRequest,
    teacher: Teacher = Depends(require_teacher),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> dict:
    """Approve or reject a student"""
    document = await db.read_item(CONTAINER["USERS"], user_id)
    user = parse_user(document) if document else None
    if not isinstance(user, Student):
        raise NotFoundError("Student not found", code="student_not_found")

    user.status = request.status
    try:
        stored = await db.replace_item(CONTAINER["USERS"], user.to_document(), etag=user.etag)
    except CosmosAccessConditionFailedError:
        raise ConcurrentUpdateError("The student was changed by another request; reload and try again.")
    if stored is None:
        raise NotFoundError("Student not found", code="student_not_found")
    logger.info(f"Teacher {teacher.id} set student {user.id} status to {user.status.value}")
    return user.to_api()


@router.delete("/delete-student/{user_id}")
async def delete_student(
    user_id: str,
    teacher: Teacher = Depends(require_teacher),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> dict:
    """Remove a student account; their submissions stay behind as dangling references"""
    document = await db.read_item(CONTAINER["USERS"], user_id)
    if document is None or not isinstance(parse_user(document), Student):
        raise NotFoundError("Student not found", code="student_not_found")
    await db.delete_item(CONTAINER["USERS"], user_id)
    logger.info(f"Teacher {teacher.id} deleted student {user_id}")
    return {"message": "Student deleted successfully"}


@router.post("/add-teacher", status_code=201)
async def add_teacher(
    request: AddTeacherRequest,
    teacher: Teacher = Depends(require_teacher),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> dict:
    if await db.find_one(CONTAINER["USERS"], {"email": request.email}) is not None:
        raise ValidationFailed("A user with this email already exists", code="email_taken")

    new_teacher = Teacher(
        name=request.name,
        email=request.email,
        password_hash=hash_password(request.password),
    )
    await db.create_item(CONTAINER["USERS"], new_teacher.to_document())
    logger.info(f"Teacher {teacher.id} added teacher {new_teacher.id}")
    return new_teacher.to_api()
