"""Question-sheet import and results export (.xlsx via pandas/openpyxl)."""
import io
import re
import zipfile
from urllib.parse import quote
from typing import List

import pandas as pd
from pydantic import ValidationError

from constants import QUESTION_SHEET_COLUMNS
from error_utils import ValidationFailed
from models import QuestionIn, SubmittedStudentRow

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Excel sheet names: at most 31 characters, none of []:*?/\
_SHEET_NAME_MAX = 31
_SHEET_NAME_INVALID = re.compile(r"[\[\]:*?/\\]")
_FILENAME_INVALID = re.compile(r"[^A-Za-z0-9_\- .]+")


class QuestionSheetError(ValidationFailed):
    code = "invalid_question_sheet"


def parse_question_sheet(content: bytes) -> List[QuestionIn]:
    """Read the first sheet of an uploaded workbook into questions.

    Expected header: questionText, optionA..optionD, correctAnswer. Every cell
    is read as text, blank rows are skipped and all row problems are reported
    together (row numbers as shown in Excel, header = row 1).
    """
    try:
        frame = pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=str, keep_default_na=False)
    except (ValueError, zipfile.BadZipFile, KeyError) as e:
        raise QuestionSheetError(f"Could not read the Excel file: {e}")

    missing = [column for column in QUESTION_SHEET_COLUMNS if column not in frame.columns]
    if missing:
        raise QuestionSheetError(f"The Excel file is missing columns: {', '.join(missing)}")

    questions: List[QuestionIn] = []
    errors: List[str] = []
    for index, row in frame.iterrows():
        values = {column: str(row[column]) for column in QUESTION_SHEET_COLUMNS}
        if not any(value.strip() for value in values.values()):
            continue
        try:
            questions.append(QuestionIn(
                question_text=values["questionText"],
                options=[values["optionA"], values["optionB"], values["optionC"], values["optionD"]],
                correct_answer=values["correctAnswer"],
            ))
        except ValidationError as e:
            reasons = "; ".join(err["msg"] for err in e.errors())
            errors.append(f"row {index + 2}: {reasons}")

    if errors:
        raise QuestionSheetError("Invalid questions in the Excel file: " + " | ".join(errors))
    if not questions:
        raise QuestionSheetError("The Excel file is empty or formatted incorrectly.")
    return questions


def results_sheet_name(test_name: str) -> str:
    name = _SHEET_NAME_INVALID.sub(" ", f"{test_name} Results").strip()
    return name[:_SHEET_NAME_MAX] or "Results"


def results_filename(test_name: str) -> str:
    """ASCII-only download name; header values must stay latin-1 encodable."""
    safe = _FILENAME_INVALID.sub("_", test_name).strip() or "test"
    return f"{safe}_results.xlsx"


def results_content_disposition(test_name: str) -> str:
    """Attachment header with an ASCII fallback plus the full UTF-8 name (RFC 5987)."""
    utf8_name = quote(f"{test_name}_results.xlsx", safe="")
    return f"attachment; filename=\"{results_filename(test_name)}\"; filename*=UTF-8''{utf8_name}"


def build_results_workbook(test_name: str, rows: List[SubmittedStudentRow]) -> bytes:
    """One row per submitted student: PRN, Student Name, Marks Obtained."""
    frame = pd.DataFrame(
        [[row.student.prn, row.student.name, row.score] for row in rows],
        columns=["PRN", "Student Name", "Marks Obtained"],
    )
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        sheet_name = results_sheet_name(test_name)
        frame.to_excel(writer, sheet_name=sheet_name, index=False)
        sheet = writer.sheets[sheet_name]
        for column, width in zip("ABC", (25, 35, 20)):
            sheet.column_dimensions[column].width = width
    return buffer.getvalue()
