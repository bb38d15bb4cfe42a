import logging
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from typing import Optional

logger = logging.getLogger(__name__)


class PortalError(Exception):
    """Base class for rejections a client can act on.

    Each error carries a stable machine code (``error``) and a human-readable
    message, so a client can tell "already submitted" apart from "try again".
    """
    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(PortalError):
    status_code = 404
    code = "not_found"


class ValidationFailed(PortalError):
    status_code = 400
    code = "validation_failed"


class SubmissionWindowError(ValidationFailed):
    """Submission attempted while the test is not Live."""
    code = "test_not_live"

    def __init__(self, state: str):
        super().__init__(f"Test is not live (currently {state}); submissions are not accepted.")
        self.state = state


class DuplicateSubmissionError(PortalError):
    status_code = 409
    code = "already_submitted"

    def __init__(self, message: str = "You have already submitted this test."):
        super().__init__(message)


class ConcurrentUpdateError(PortalError):
    status_code = 409
    code = "concurrent_update"


class AuthenticationError(PortalError):
    status_code = 401
    code = "not_authenticated"


class AuthorizationError(PortalError):
    status_code = 403
    code = "forbidden"


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    """Render a PortalError as ``{"error": code, "message": text}``."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message},
    )


def safe_raise_http(user_message: str, exc: Optional[Exception] = None, status_code: int = 500) -> None:
    """
    Log the full exception server-side and raise a generic HTTPException for clients.

    - user_message: short, non-sensitive message returned to client
    - exc: optional exception instance; full details are logged with stack trace
    - status_code: HTTP status code to raise
    """
    if exc is not None:
        logger.exception("%s: %s", user_message, exc)
    else:
        logger.error(user_message)
    raise HTTPException(status_code=status_code, detail={"error": "server_error", "message": user_message})
