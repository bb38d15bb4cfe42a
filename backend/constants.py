"""Centralized constants for Cosmos DB containers and portal settings."""
from typing import Dict, List
import os

from dotenv import load_dotenv

load_dotenv()

# ===== Database Settings =====

# COSMOS_DB_ENDPOINT: Cosmos account URL; when unset the API runs in development mode without a database
COSMOS_DB_ENDPOINT = os.getenv("COSMOS_DB_ENDPOINT")

# COSMOS_DB_KEY: Account key; when unset DefaultAzureCredential is used
COSMOS_DB_KEY = os.getenv("COSMOS_DB_KEY")

DATABASE_NAME = os.getenv("DATABASE_NAME", "exam_portal")
COSMOS_DB_CONSISTENCY_LEVEL = os.getenv("COSMOS_DB_CONSISTENCY_LEVEL", "Session")

# ===== Authentication Settings =====

JWT_SECRET = os.getenv("JWT_SECRET", "exam-portal-dev-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS", "30"))

# Optional first teacher account, created on startup when no user has this email
BOOTSTRAP_TEACHER_EMAIL = os.getenv("BOOTSTRAP_TEACHER_EMAIL")
BOOTSTRAP_TEACHER_PASSWORD = os.getenv("BOOTSTRAP_TEACHER_PASSWORD")
BOOTSTRAP_TEACHER_NAME = os.getenv("BOOTSTRAP_TEACHER_NAME", "Administrator")

# ===== Exam Settings =====

# PORTAL_UTC_OFFSET_MINUTES: Every test's date/startTime/endTime is wall-clock time in this zone (IST by default)
PORTAL_UTC_OFFSET_MINUTES = int(os.getenv("PORTAL_UTC_OFFSET_MINUTES", "330"))

# MAX_PROCTORING_VIOLATIONS: Fullscreen exits (or tab switches) that trigger an automatic submit
MAX_PROCTORING_VIOLATIONS = int(os.getenv("MAX_PROCTORING_VIOLATIONS", "3"))

OPTIONS_PER_QUESTION = 4

# Column headers expected in an uploaded question sheet
QUESTION_SHEET_COLUMNS: List[str] = [
    "questionText", "optionA", "optionB", "optionC", "optionD", "correctAnswer",
]

# ===== Server Settings =====

CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
    ).split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ===== Container Definitions =====

# Container definitions with intended partition key fields (logical keys, not paths)
COLLECTIONS: Dict[str, Dict[str, str]] = {
    "TESTS": {"name": "tests", "pk_field": "id"},
    "SUBMISSIONS": {"name": "submissions", "pk_field": "test_id"},
    "USERS": {"name": "users", "pk_field": "id"},
}

# Convenience single-source names
CONTAINER = {k: v["name"] for k, v in COLLECTIONS.items()}
