"""Submission scoring.

A question earns one point when the selected option string equals its
``correct_answer`` exactly: case-sensitive, no trimming. There is no partial
credit and no penalty; a question missing from the answer map scores zero.
"""
from typing import Iterable, Mapping, Protocol


class ScorableQuestion(Protocol):
    id: str
    correct_answer: str


def is_correct(question: ScorableQuestion, answers: Mapping[str, str]) -> bool:
    selected = answers.get(question.id)
    return selected is not None and selected == question.correct_answer


def score(questions: Iterable[ScorableQuestion], answers: Mapping[str, str]) -> int:
    """Count the questions answered correctly.

    Answers for ids that are not in ``questions`` are ignored, so the result
    always lies in ``[0, len(questions)]``.
    """
    return sum(1 for question in questions if is_correct(question, answers))
