"""Password hashing, bearer tokens and the role dependencies used by the routers."""
from datetime import timedelta
from typing import Optional, Union
import logging

import bcrypt
from fastapi import Depends, Header
from jose import JWTError, jwt

from constants import CONTAINER, JWT_ALGORITHM, JWT_EXPIRES_DAYS, JWT_SECRET
from database import CosmosDBService, get_cosmosdb
from datetime_utils import now_portal
from error_utils import AuthenticationError, AuthorizationError
from models import Student, StudentStatus, Teacher, parse_user

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or an over-long password
        return False


def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    expire = now_portal() + (expires_delta or timedelta(days=JWT_EXPIRES_DAYS))
    return jwt.encode({"sub": user_id, "role": role, "exp": expire}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise AuthenticationError("Not authorized, token failed", code="invalid_token")
    if not payload.get("sub"):
        raise AuthenticationError("Not authorized, token failed", code="invalid_token")
    return payload


async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: CosmosDBService = Depends(get_cosmosdb),
) -> Union[Teacher, Student]:
    """Resolve the bearer token to a stored user; a deleted account's token stops working"""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Not authorized, no token")

    payload = decode_access_token(authorization.split(" ", 1)[1])
    document = await db.read_item(CONTAINER["USERS"], payload["sub"])
    if document is None:
        logger.warning(f"Token presented for missing user {payload['sub']}")
        raise AuthenticationError("Not authorized, user not found", code="invalid_token")
    return parse_user(document)


async def require_teacher(user: Union[Teacher, Student] = Depends(get_current_user)) -> Teacher:
    if not isinstance(user, Teacher):
        raise AuthorizationError("Not authorized as a teacher")
    return user


async def require_student(user: Union[Teacher, Student] = Depends(get_current_user)) -> Student:
    if not isinstance(user, Student):
        raise AuthorizationError("Not authorized as a student")
    return user


def ensure_student_approved(student: Student) -> None:
    """Pending and rejected students may neither log in nor submit."""
    if student.status == StudentStatus.PENDING:
        raise AuthorizationError(
            "Your account is pending approval. Please wait for a teacher to review your request.",
            code="account_pending",
        )
    if student.status == StudentStatus.REJECTED:
        raise AuthorizationError(
            "Your account registration was rejected. Please contact a teacher.",
            code="account_rejected",
        )


async def require_approved_student(student: Student = Depends(require_student)) -> Student:
    ensure_student_approved(student)
    return student
