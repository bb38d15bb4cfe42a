"""
Python client for the exam portal API.

Wraps the HTTP endpoints with an ``httpx`` client, keeps the logged-in session
in a small JSON credential file, and carries the exam-page behaviour a
front end needs: a proctoring violation counter and a one-shot exam session
that submits on demand, on timer expiry or on the violation limit.
"""

import datetime as dt
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import httpx

from constants import MAX_PROCTORING_VIOLATIONS
from datetime_utils import now_portal
from lifecycle import seconds_remaining
from models import AutoSubmitReason, Test

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = os.getenv("PORTAL_API_URL", "http://localhost:8000")
DEFAULT_CREDENTIALS_PATH = os.getenv(
    "PORTAL_CREDENTIALS_PATH", str(Path.home() / ".exam_portal" / "session.json")
)


class NotLoggedIn(Exception):
    """No stored session; call ``PortalClient.login`` first."""


class PortalAPIError(Exception):
    """A non-2xx answer from the portal API."""

    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message

    @property
    def already_submitted(self) -> bool:
        return self.code == "already_submitted"

    @classmethod
    def from_response(cls, response: httpx.Response) -> "PortalAPIError":
        try:
            body = response.json()
        except ValueError:
            return cls(response.status_code, "http_error", response.text or response.reason_phrase)

        # Domain errors are {"error", "message"}; HTTPException bodies nest under "detail"
        if isinstance(body, dict) and isinstance(body.get("detail"), dict):
            body = body["detail"]
        if isinstance(body, dict) and "error" in body:
            return cls(response.status_code, body["error"], body.get("message", ""))
        if isinstance(body, dict) and "detail" in body:
            return cls(response.status_code, "http_error", json.dumps(body["detail"]))
        return cls(response.status_code, "http_error", str(body))


class CredentialCache:
    """The logged-in session (user fields plus token) persisted as JSON."""

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path or DEFAULT_CREDENTIALS_PATH)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            session = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable credential file {self.path}: {e}")
            return None
        return session if isinstance(session, dict) and session.get("token") else None

    def save(self, session: Dict[str, Any]) -> None:
        """Write the session readable by the owner only (mode 0600)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(session, f)
        # An existing file keeps its old mode through O_CREAT
        os.chmod(self.path, 0o600)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()

    def token(self) -> str:
        session = self.load()
        if session is None:
            raise NotLoggedIn(f"No session stored at {self.path}")
        return session["token"]


class PortalClient:
    """Synchronous client for the portal's REST API."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        cache: Optional[CredentialCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.cache = cache or CredentialCache()
        self._http = httpx.Client(base_url=base_url.rstrip("/"), transport=transport, timeout=timeout)

    def __enter__(self) -> "PortalClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, auth: bool = True, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if auth:
            headers["Authorization"] = f"Bearer {self.cache.token()}"
        response = self._http.request(method, path, headers=headers, **kwargs)
        if response.is_error:
            error = PortalAPIError.from_response(response)
            logger.warning(f"{method} {path} failed: {error}")
            raise error
        return response

    # Session

    def login(self, email: str, password: str, teacher: bool = False) -> Dict[str, Any]:
        path = "/api/users/teacher-login" if teacher else "/api/users/login"
        session = self._request("POST", path, auth=False, json={"email": email, "password": password}).json()
        self.cache.save(session)
        logger.info(f"Logged in as {session.get('role')} {session.get('email')}")
        return session

    def logout(self) -> None:
        self.cache.clear()

    def signup(self, name: str, email: str, password: str, prn: str) -> Dict[str, Any]:
        payload = {"name": name, "email": email, "password": password, "prn": prn}
        return self._request("POST", "/api/users/signup", auth=False, json=payload).json()

    def profile(self) -> Dict[str, Any]:
        return self._request("GET", "/api/users/profile").json()

    # Teacher administration

    def list_students(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/users/getStudents").json()

    def update_student_status(self, student_id: str, status: str) -> Dict[str, Any]:
        return self._request("PUT", f"/api/users/{student_id}/status", json={"status": status}).json()

    def delete_student(self, student_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/users/delete-student/{student_id}").json()

    def add_teacher(self, name: str, email: str, password: str) -> Dict[str, Any]:
        payload = {"name": name, "email": email, "password": password}
        return self._request("POST", "/api/users/add-teacher", json=payload).json()

    # Tests

    def list_tests(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/tests").json()

    def get_test(self, test_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/tests/{test_id}").json()

    def create_test(self, test: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/tests", json=test).json()

    def upload_test(
        self,
        name: str,
        date: Union[str, dt.date],
        start_time: Union[str, dt.time],
        end_time: Union[str, dt.time],
        sheet: Union[str, Path, bytes],
        marks_per_question: int = 1,
    ) -> Dict[str, Any]:
        """Create a test from an .xlsx question sheet (a path or the file's bytes)."""
        if isinstance(sheet, (str, Path)):
            filename, content = Path(sheet).name, Path(sheet).read_bytes()
        else:
            filename, content = "questions.xlsx", sheet
        form = {
            "name": name,
            "date": str(date),
            "startTime": str(start_time),
            "endTime": str(end_time),
            "marksPerQuestion": str(marks_per_question),
        }
        files = {"file": (filename, content, "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")}
        return self._request("POST", "/api/tests/upload", data=form, files=files).json()

    def delete_test(self, test_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/tests/{test_id}").json()

    def results(self, test_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/tests/{test_id}/results").json()

    def download_results(self, test_id: str, destination: Union[str, Path, None] = None) -> bytes:
        """Fetch the results workbook; also written to ``destination`` when given."""
        content = self._request("GET", f"/api/tests/{test_id}/results/download").content
        if destination is not None:
            Path(destination).write_bytes(content)
        return content

    # Submissions

    def submit(
        self,
        test_id: str,
        answers: Mapping[str, str],
        auto_submitted: bool = False,
        auto_submit_reason: Optional[AutoSubmitReason] = None,
        violation_count: int = 0,
    ) -> Dict[str, Any]:
        payload = {
            "testId": test_id,
            "answers": [{"questionId": qid, "selectedOption": option} for qid, option in answers.items()],
            "autoSubmitted": auto_submitted,
            "autoSubmitReason": auto_submit_reason.value if auto_submit_reason else None,
            "violationCount": violation_count,
        }
        return self._request("POST", "/api/submissions", json=payload).json()

    def my_submissions(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/submissions/mysubmissions").json()


class ProctoringMonitor:
    """Counts proctoring violations per kind; the limit for any one kind ends the exam."""

    KINDS = (AutoSubmitReason.FULLSCREEN_EXIT, AutoSubmitReason.TAB_SWITCH)

    def __init__(self, limit: int = MAX_PROCTORING_VIOLATIONS):
        self.limit = limit
        self.counts: Dict[AutoSubmitReason, int] = {kind: 0 for kind in self.KINDS}

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def remaining(self, kind: AutoSubmitReason) -> int:
        return max(0, self.limit - self.counts[kind])

    def record(self, kind: AutoSubmitReason) -> bool:
        """Count one violation; True once ``kind`` has reached the limit."""
        if kind not in self.counts:
            raise ValueError(f"{kind} is not a proctoring violation")
        self.counts[kind] += 1
        logger.info(f"Proctoring violation {kind.value}: {self.counts[kind]}/{self.limit}")
        return self.counts[kind] >= self.limit


class ExamSession:
    """One student's attempt at one live test."""

    def __init__(
        self,
        client: PortalClient,
        test: Dict[str, Any],
        monitor: Optional[ProctoringMonitor] = None,
        clock: Callable[[], dt.datetime] = now_portal,
    ):
        self.client = client
        self.test = Test.model_validate(test)
        self.monitor = monitor or ProctoringMonitor()
        self.clock = clock
        self.answers: Dict[str, str] = {}
        self.result: Optional[Dict[str, Any]] = None
        self._options = {question.id: question.options for question in self.test.questions}

    @property
    def submitted(self) -> bool:
        return self.result is not None

    def answer(self, question_id: str, option: str) -> None:
        if self.submitted:
            raise RuntimeError("The test has already been submitted")
        if question_id not in self._options:
            raise ValueError(f"Unknown question {question_id}")
        if option not in self._options[question_id]:
            raise ValueError(f"{option!r} is not an option of question {question_id}")
        self.answers[question_id] = option

    def seconds_remaining(self) -> int:
        return seconds_remaining(self.clock(), self.test)

    def tick(self) -> Optional[Dict[str, Any]]:
        """Submit automatically once the window has closed; otherwise nothing."""
        if not self.submitted and self.seconds_remaining() == 0:
            return self.submit(reason=AutoSubmitReason.TIMER_EXPIRED)
        return None

    def record_violation(self, kind: AutoSubmitReason) -> Optional[Dict[str, Any]]:
        if self.submitted:
            return None
        if self.monitor.record(kind):
            return self.submit(reason=kind)
        return None

    def submit(self, reason: Optional[AutoSubmitReason] = None) -> Dict[str, Any]:
        """Send the answers; later calls return the first result without resubmitting."""
        if self.submitted:
            return self.result
        self.result = self.client.submit(
            self.test.id,
            self.answers,
            auto_submitted=reason is not None,
            auto_submit_reason=reason,
            violation_count=self.monitor.total,
        )
        return self.result
