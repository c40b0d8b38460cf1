"""Service for turning finished sessions into results and reporting on them."""

from __future__ import annotations

import csv
import io
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Callable

from cbt_app.constants.test_constants import RESULT_EXPORT_LIMIT
from cbt_app.core import document_store as collections
from cbt_app.core.clock import Clock, system_clock
from cbt_app.core.document_store import DocumentStore
from cbt_app.core.errors import InvalidStateError, ValidationError
from cbt_app.core.models import (
    ResultComparison,
    ResultStatus,
    ResultTrendPoint,
    StudentPerformance,
    TestResult,
    TestResultStatistics,
)
from cbt_app.core.services.notifier import Notifier, notify_safely
from cbt_app.core.services.scoring import calculate_score
from cbt_app.core.services.test_session import TestSessionService

logger = logging.getLogger(__name__)

_SORT_KEYS: dict[str, Callable[[TestResult], object]] = {
    "created_at": lambda result: result.created_at,
    "score": lambda result: result.total_score,
    "percentage": lambda result: result.percentage,
}

_CSV_HEADER = ("Test", "Student", "Score", "Percentage", "Grade", "Status", "Date", "Feedback")


@dataclass(slots=True)
class ResultFilters:
    """Optional criteria for listing, counting and exporting results."""

    test_id: str | None = None
    student_id: str | None = None
    status: ResultStatus | None = None
    grade: str | None = None
    min_percentage: float | None = None
    max_percentage: float | None = None

    def matches(self, result: TestResult) -> bool:
        if self.test_id is not None and result.test_id != self.test_id:
            return False
        if self.student_id is not None and result.student_id != self.student_id:
            return False
        if self.status is not None and result.status is not self.status:
            return False
        if self.grade is not None and result.grade != self.grade:
            return False
        if self.min_percentage is not None and result.percentage < self.min_percentage:
            return False
        if self.max_percentage is not None and result.percentage > self.max_percentage:
            return False
        return True


class ResultService:
    """Creates results exactly once per session and aggregates them."""

    def __init__(
        self,
        store: DocumentStore,
        sessions: TestSessionService,
        notifier: Notifier,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._notifier = notifier
        self._clock = clock

    def calculate_result(self, session_id: str) -> TestResult:
        """Score a terminal session and store its result.

        A session has at most one result; later calls return the stored one.
        """
        session = self._sessions.get_session(session_id)
        if not session.status.is_terminal:
            raise InvalidStateError("Results can only be calculated for finished sessions.")

        existing = self.get_result_by_session(session_id)
        if existing is not None:
            return existing

        test = self._sessions.get_test_for(session)
        questions = self._sessions.get_session_questions(session)
        answers = self._store.get_many(collections.ANSWERS, session.answers)
        breakdown = calculate_score(questions, answers, test.passing_score)

        result = TestResult(
            session_id=session.id,
            test_id=session.test_id,
            student_id=session.student_id,
            total_score=breakdown.total_score,
            total_possible=breakdown.total_possible,
            percentage=breakdown.percentage,
            grade=breakdown.grade,
            status=breakdown.status,
            answers=list(session.answers),
            created_at=self._clock(),
        )
        stored = self._store.insert(collections.RESULTS, result)

        session.result_id = stored.id
        self._store.save(collections.SESSIONS, session)
        logger.info(
            "Result %s for session %s: %s%% (%s, %s)",
            stored.id,
            session.id,
            stored.percentage,
            stored.grade,
            stored.status.value,
        )

        notify_safely("result", self._notifier.send_result_email, stored)
        return stored

    def get_result(self, result_id: str) -> TestResult:
        return self._store.require(collections.RESULTS, result_id, "Test result")

    def get_result_by_session(self, session_id: str) -> TestResult | None:
        matches = self._store.find(collections.RESULTS, lambda result: result.session_id == session_id, limit=1)
        return matches[0] if matches else None

    def list_results(
        self,
        filters: ResultFilters | None = None,
        limit: int = 100,
        skip: int = 0,
        sort: str = "created_at",
        order: str = "desc",
    ) -> list[TestResult]:
        if sort not in _SORT_KEYS:
            raise ValidationError(f"Cannot sort results by '{sort}'.")
        if order not in ("asc", "desc"):
            raise ValidationError("Order must be 'asc' or 'desc'.")
        if limit < 0 or skip < 0:
            raise ValidationError("Limit and skip cannot be negative.")

        filters = filters or ResultFilters()
        return self._store.find(
            collections.RESULTS,
            filters.matches,
            sort_key=_SORT_KEYS[sort],
            reverse=order == "desc",
            skip=skip,
            limit=limit,
        )

    def count_results(self, filters: ResultFilters | None = None) -> int:
        return self._store.count(collections.RESULTS, (filters or ResultFilters()).matches)

    def add_feedback(self, result_id: str, feedback: str, reviewed_by: str) -> TestResult:
        result = self.get_result(result_id)
        result.feedback = feedback
        result.reviewed_by = reviewed_by
        result.review_date = self._clock()
        return self._store.save(collections.RESULTS, result)

    def publish_result(self, result_id: str) -> TestResult:
        result = self.get_result(result_id)
        if result.is_published:
            return result
        result.is_published = True
        result.published_at = self._clock()
        logger.info("Result published: %s", result_id)
        return self._store.save(collections.RESULTS, result)

    def get_test_statistics(self, test_id: str) -> TestResultStatistics:
        results = self._store.find(collections.RESULTS, lambda result: result.test_id == test_id)
        pass_count = sum(1 for result in results if result.status is ResultStatus.PASS)
        return TestResultStatistics(
            total_results=len(results),
            pass_count=pass_count,
            fail_count=len(results) - pass_count,
            average_score=_average(result.percentage for result in results),
            grade_distribution=dict(Counter(result.grade for result in results)),
        )

    def get_test_result_comparison(self, result_id: str) -> ResultComparison:
        """Compare one result with every result of the same test.

        Tied scores do not count as "above" when computing the percentile.
        """
        result = self.get_result(result_id)
        scores = [
            other.percentage
            for other in self._store.find(collections.RESULTS, lambda other: other.test_id == result.test_id)
        ]
        above = sum(1 for score in scores if score > result.percentage)
        return ResultComparison(
            student_score=result.percentage,
            class_average=_average(scores),
            class_high=max(scores),
            class_low=min(scores),
            percentile=100 - above / len(scores) * 100,
        )

    def get_student_performance(self, student_id: str) -> StudentPerformance:
        results = self._store.find(
            collections.RESULTS,
            lambda result: result.student_id == student_id,
            sort_key=lambda result: result.created_at,
        )
        percentages = [float(result.percentage) for result in results]
        passed = sum(1 for result in results if result.status is ResultStatus.PASS)
        return StudentPerformance(
            total_tests=len(results),
            passed_tests=passed,
            failed_tests=len(results) - passed,
            average_score=_average(percentages),
            improvement_trend=_trend(percentages),
        )

    def get_test_result_trends(self, student_id: str, limit: int = 10) -> list[ResultTrendPoint]:
        """The student's latest results, newest first, labelled with test titles."""
        if limit < 1:
            raise ValidationError("Limit must be at least 1.")
        results = self.get_recent_results(limit, student_id=student_id)
        points = []
        for result in results:
            test = self._store.get(collections.TESTS, result.test_id)
            points.append(
                ResultTrendPoint(
                    test_id=result.test_id,
                    test_title=test.title if test is not None else result.test_id,
                    percentage=result.percentage,
                    date=result.created_at,
                )
            )
        return points

    def get_recent_results(
        self,
        limit: int = 10,
        student_id: str | None = None,
        test_id: str | None = None,
    ) -> list[TestResult]:
        return self.list_results(
            ResultFilters(test_id=test_id, student_id=student_id),
            limit=limit,
            sort="created_at",
            order="desc",
        )

    def export_results_csv(self, filters: ResultFilters | None = None) -> str:
        results = self.list_results(filters, limit=RESULT_EXPORT_LIMIT)
        titles: dict[str, str] = {}

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(_CSV_HEADER)
        for result in results:
            if result.test_id not in titles:
                test = self._store.get(collections.TESTS, result.test_id)
                titles[result.test_id] = test.title if test is not None else result.test_id
            writer.writerow(
                (
                    titles[result.test_id],
                    result.student_id,
                    _format_score(result.total_score),
                    result.percentage,
                    result.grade,
                    result.status.value,
                    result.created_at.date().isoformat() if result.created_at else "",
                    result.feedback or "",
                )
            )
        return buffer.getvalue()


def _average(values) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


def _trend(values: list[float]) -> float:
    """Least-squares slope of ``values`` against their position."""
    n = len(values)
    if n < 2:
        return 0.0
    sum_x = n * (n - 1) / 2
    sum_x2 = (n - 1) * n * (2 * n - 1) / 6
    sum_y = sum(values)
    sum_xy = sum(index * value for index, value in enumerate(values))
    return (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)


def _format_score(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.2f}"
