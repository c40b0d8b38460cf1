"""Scoring engine: per-question partial credit and test-level aggregation.

Every function here is pure. Essay and image-recognition answers are never
graded by this module; their ``score`` is supplied by a grader and only
summed in.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping

from cbt_app.constants.test_constants import FAILING_GRADE, GRADE_THRESHOLDS
from cbt_app.core.models import (
    AUTO_SCORED_TYPES,
    AnswerValue,
    FillBlankQuestion,
    MatchingPair,
    MatchingQuestion,
    McqQuestion,
    Question,
    ResultStatus,
    StudentAnswer,
    TrueFalseQuestion,
)


@dataclass(slots=True)
class ScoreBreakdown:
    """Aggregate outcome for one attempt."""

    total_score: float
    total_possible: float
    percentage: int
    grade: str
    status: ResultStatus


def score_answer(
    question: Question,
    answer: AnswerValue | None,
    external_score: float | None = None,
) -> float:
    """Return the points earned by ``answer``, always within ``[0, question.points]``."""
    if answer is None:
        return 0.0

    if isinstance(question, McqQuestion):
        earned = _score_mcq(question, answer)
    elif isinstance(question, TrueFalseQuestion):
        earned = question.points if _is_text(answer) and answer.lower() == question.correct_answer.lower() else 0.0
    elif isinstance(question, FillBlankQuestion):
        earned = question.points if _is_text(answer) and _normalize(answer) == _normalize(question.correct_answer) else 0.0
    elif isinstance(question, MatchingQuestion):
        earned = _score_matching(question, answer)
    else:
        # Essay and image recognition: graded outside the engine.
        earned = external_score or 0.0

    return min(max(float(earned), 0.0), float(question.points))


def is_auto_scored(question: Question) -> bool:
    return question.type in AUTO_SCORED_TYPES


def is_full_credit(question: Question, points: float) -> bool:
    return math.isclose(points, question.points)


def calculate_score(
    questions: Iterable[Question],
    answers: Iterable[StudentAnswer],
    passing_score: float,
) -> ScoreBreakdown:
    """Score every answer against the test's questions.

    Answers referring to a question outside ``questions`` are ignored.
    Unanswered questions still count toward ``total_possible``.
    """
    by_id: Mapping[str, Question] = {question.id: question for question in questions}
    total_possible = sum(float(question.points) for question in by_id.values())

    latest: dict[str, StudentAnswer] = {}
    for answer in answers:
        if answer.question_id in by_id:
            latest[answer.question_id] = answer

    total_score = 0.0
    for question_id, answer in latest.items():
        question = by_id[question_id]
        total_score += score_answer(question, answer.answer, answer.score)

    percentage = calculate_percentage(total_score, total_possible)
    return ScoreBreakdown(
        total_score=total_score,
        total_possible=total_possible,
        percentage=percentage,
        grade=determine_grade(percentage),
        status=determine_status(percentage, passing_score),
    )


def calculate_percentage(score: float, total: float) -> int:
    """Round half up to a whole percentage; a zero total yields 0."""
    if total <= 0:
        return 0
    percentage = math.floor(score / total * 100 + 0.5)
    return min(max(percentage, 0), 100)


def determine_grade(percentage: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if percentage >= threshold:
            return grade
    return FAILING_GRADE


def determine_status(percentage: float, passing_score: float) -> ResultStatus:
    return ResultStatus.PASS if percentage >= passing_score else ResultStatus.FAIL


def _score_mcq(question: McqQuestion, answer: AnswerValue) -> float:
    if _is_text(answer):
        if question.is_multi_select:
            return _fraction_of_correct_options(question, [answer])
        return question.points if answer == question.correct_answer else 0.0
    if isinstance(answer, list) and all(_is_text(item) for item in answer):
        return _fraction_of_correct_options(question, answer)
    return 0.0


def _fraction_of_correct_options(question: McqQuestion, selected: list[str]) -> float:
    # Wrong selections earn nothing and cost nothing.
    correct = set(question.correct_options())
    if not correct:
        return 0.0
    matched = len(correct.intersection(selected))
    return question.points * matched / len(correct)


def _score_matching(question: MatchingQuestion, answer: AnswerValue) -> float:
    if not question.matching_pairs or not isinstance(answer, list):
        return 0.0
    expected = {pair.left: pair.right for pair in question.matching_pairs}
    matched_lefts = {
        pair.left
        for pair in answer
        if isinstance(pair, MatchingPair) and expected.get(pair.left) == pair.right
    }
    return question.points * len(matched_lefts) / len(question.matching_pairs)


def _is_text(value: object) -> bool:
    return isinstance(value, str)


def _normalize(value: str) -> str:
    return value.strip().lower()
