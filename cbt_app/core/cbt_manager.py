"""Business logic facade shared by the HTTP layer and scripts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Any

from cbt_app.core.clock import Clock, system_clock
from cbt_app.core.document_store import DocumentStore
from cbt_app.core.errors import InvalidStateError, SessionExpiredError
from cbt_app.core.models import (
    AnswerValue,
    Difficulty,
    Question,
    QuestionImportSummary,
    QuestionStatistics,
    QuestionType,
    ResultComparison,
    ResultTrendPoint,
    SecurityEvent,
    SecurityEventType,
    SessionProgress,
    SessionStatistics,
    SessionStatus,
    Severity,
    StudentAnswer,
    StudentPerformance,
    Test,
    TestPreview,
    TestResult,
    TestResultStatistics,
    TestSession,
    TestStatistics,
    TestStatus,
    TimeRemaining,
)
from cbt_app.core.services.essay_scorer import (
    EssayScorer,
    FallbackEssayScorer,
    HeuristicEssayScorer,
    RemoteEssayScorer,
)
from cbt_app.core.services.notifier import LoggingNotifier, Notifier, notify_safely
from cbt_app.core.services.question_bank import QuestionBank
from cbt_app.core.services.results import ResultFilters, ResultService
from cbt_app.core.services.security_events import SecurityEventLog
from cbt_app.core.services.test_builder import TestBuilder, validate_test
from cbt_app.core.services.test_session import TestSessionService
from cbt_app.core.settings import Settings, get_settings
from cbt_app.core.test_exporter import export_test
from cbt_app.core.test_importer import import_test

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CurrentQuestion:
    """What a student sees for the question they are on."""

    session_id: str
    index: int
    total: int
    question: Question
    saved_answer: StudentAnswer | None
    time_remaining: TimeRemaining


def build_essay_scorer(settings: Settings) -> EssayScorer:
    """Remote scorer with the local heuristic as fallback."""
    remote = RemoteEssayScorer(
        api_key=settings.essay_scorer_api_key,
        api_url=settings.essay_scorer_api_url,
        model=settings.essay_scorer_model,
        timeout=settings.essay_scorer_timeout,
    )
    return FallbackEssayScorer(primary=remote, fallback=HeuristicEssayScorer())


class CbtManager:
    """Facade for CBT services: QuestionBank, TestBuilder, TestSession and Results."""

    def __init__(
        self,
        store: DocumentStore | None = None,
        clock: Clock = system_clock,
        settings: Settings | None = None,
        essay_scorer: EssayScorer | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._lock = Lock()
        settings = settings or get_settings()

        self._store = store or DocumentStore()
        self._notifier = notifier or LoggingNotifier()
        self._essay_scorer = essay_scorer or build_essay_scorer(settings)

        # Services
        self._questions = QuestionBank(self._store)
        self._tests = TestBuilder(self._store, self._questions, clock)
        self._sessions = TestSessionService(self._store, self._tests, clock, settings.shuffle_seed)
        self._results = ResultService(self._store, self._sessions, self._notifier, clock)
        self._security = SecurityEventLog(self._store, clock)

    # --- Question Bank Delegation ---

    def add_question(self, question: Question) -> Question:
        with self._lock:
            return self._questions.add_question(question)

    def get_question(self, question_id: str) -> Question:
        with self._lock:
            return self._questions.get_question(question_id)

    def list_questions(
        self,
        question_type: QuestionType | None = None,
        difficulty: Difficulty | None = None,
        created_by: str | None = None,
    ) -> list[Question]:
        with self._lock:
            return self._questions.list_questions(question_type, difficulty, created_by)

    def update_question(self, question_id: str, question: Question) -> Question:
        with self._lock:
            return self._questions.update_question(question_id, question)

    def delete_question(self, question_id: str) -> None:
        with self._lock:
            self._questions.delete_question(question_id)

    def search_questions(self, query: str, limit: int = 10) -> list[Question]:
        with self._lock:
            return self._questions.search_questions(query, limit)

    def get_question_versions(self, question_id: str) -> list[Question]:
        with self._lock:
            return self._questions.get_question_versions(question_id)

    def get_question_statistics(self) -> QuestionStatistics:
        with self._lock:
            return self._questions.get_question_statistics()

    def import_questions(self, payloads: list[Any], created_by: str | None = None) -> QuestionImportSummary:
        with self._lock:
            return self._questions.import_questions(payloads, created_by)

    def export_questions(
        self,
        question_type: QuestionType | None = None,
        difficulty: Difficulty | None = None,
        created_by: str | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            return self._questions.export_questions(question_type, difficulty, created_by)

    # --- Test Builder Delegation ---

    def create_test(self, test: Test) -> Test:
        with self._lock:
            return self._tests.create_test(test)

    def get_test(self, test_id: str) -> Test:
        with self._lock:
            return self._tests.get_test(test_id)

    def list_tests(self, status: TestStatus | None = None) -> list[Test]:
        with self._lock:
            return self._tests.list_tests(status)

    def update_test(self, test_id: str, changes: dict[str, Any]) -> Test:
        with self._lock:
            return self._tests.update_test(test_id, changes)

    def add_question_to_test(self, test_id: str, question_id: str) -> Test:
        with self._lock:
            return self._tests.add_question_to_test(test_id, question_id)

    def remove_question_from_test(self, test_id: str, question_id: str) -> Test:
        with self._lock:
            return self._tests.remove_question_from_test(test_id, question_id)

    def publish_test(self, test_id: str) -> Test:
        with self._lock:
            return self._tests.publish_test(test_id)

    def archive_test(self, test_id: str) -> Test:
        with self._lock:
            return self._tests.archive_test(test_id)

    def get_test_questions(self, test_id: str) -> list[Question]:
        with self._lock:
            return self._tests.get_test_questions(self._tests.get_test(test_id))

    def get_test_statistics(self, test_id: str) -> TestStatistics:
        with self._lock:
            return self._tests.calculate_test_statistics(self._tests.get_test(test_id))

    def get_test_preview(self, test_id: str) -> TestPreview:
        with self._lock:
            return self._tests.generate_test_preview(self._tests.get_test(test_id))

    def export_test(self, test_id: str) -> str:
        with self._lock:
            test = self._tests.get_test(test_id)
            return export_test(test, self._tests.get_test_questions(test))

    def import_test(self, text: str, created_by: str | None = None) -> Test:
        """Store the questions of an exported test and create it as a draft."""
        imported = import_test(text)
        validate_test(imported.test)
        with self._lock:
            question_ids = []
            for question in imported.questions:
                question.created_by = created_by
                question_ids.append(self._questions.add_question(question).id)
            imported.test.questions = question_ids
            if created_by is not None:
                imported.test.instructor = created_by
            test = self._tests.create_test(imported.test)
            logger.info("Imported test %s with %d question(s)", test.id, len(question_ids))
            return test

    def invite_student(self, test_id: str, student_id: str) -> None:
        with self._lock:
            test = self._tests.get_test(test_id)
            if test.status is not TestStatus.PUBLISHED:
                raise InvalidStateError("Only published tests can be shared with students.")
        notify_safely("invitation", self._notifier.send_invitation_email, test, student_id)

    # --- Session Delegation ---

    def can_student_take_test(self, student_id: str, test_id: str) -> bool:
        with self._lock:
            return self._sessions.can_student_take_test(student_id, test_id)

    def start_session(self, test_id: str, student_id: str) -> TestSession:
        with self._lock:
            return self._sessions.create_session(test_id, student_id)

    def get_session(self, session_id: str) -> TestSession:
        with self._lock:
            return self._sessions.get_session(session_id)

    def list_sessions(self, test_id: str | None = None, student_id: str | None = None) -> list[TestSession]:
        with self._lock:
            if test_id is not None:
                sessions = self._sessions.list_sessions_by_test(test_id)
                if student_id is not None:
                    sessions = [session for session in sessions if session.student_id == student_id]
                return sessions
            if student_id is not None:
                return self._sessions.list_sessions_by_student(student_id)
            return self._sessions.list_sessions()

    def get_active_sessions(self) -> list[TestSession]:
        with self._lock:
            return self._sessions.get_active_sessions()

    def submit_answer(
        self,
        session_id: str,
        question_id: str,
        answer: AnswerValue,
        time_spent: float = 0.0,
        marked_for_review: bool | None = None,
    ) -> StudentAnswer:
        with self._lock:
            return self._sessions.submit_answer(session_id, question_id, answer, time_spent, marked_for_review)

    def mark_for_review(self, session_id: str, question_id: str, flag: bool = True) -> StudentAnswer:
        with self._lock:
            return self._sessions.mark_for_review(session_id, question_id, flag)

    def go_to_question(self, session_id: str, index: int) -> TestSession:
        with self._lock:
            return self._sessions.go_to_question(session_id, index)

    def get_answers(self, session_id: str) -> list[StudentAnswer]:
        with self._lock:
            return self._sessions.get_answers(session_id)

    def get_current_question(self, session_id: str) -> CurrentQuestion:
        with self._lock:
            remaining = self._sessions.time_remaining(session_id)
            session = self._sessions.get_session(session_id)
            if session.status is SessionStatus.EXPIRED:
                raise SessionExpiredError(session_id)
            if session.status.is_terminal:
                raise InvalidStateError(f"Session is {session.status.value}.")
            questions = self._sessions.get_session_questions(session)
            if not questions:
                raise InvalidStateError("This test has no questions.")
            index = min(session.current_question, len(questions) - 1)
            question = questions[index]
            saved = next(
                (answer for answer in self._sessions.get_answers(session_id) if answer.question_id == question.id),
                None,
            )
            return CurrentQuestion(
                session_id=session_id,
                index=index,
                total=len(questions),
                question=question,
                saved_answer=saved,
                time_remaining=remaining,
            )

    def time_remaining(self, session_id: str) -> TimeRemaining:
        with self._lock:
            return self._sessions.time_remaining(session_id)

    def get_progress(self, session_id: str) -> SessionProgress:
        with self._lock:
            return self._sessions.get_progress(session_id)

    def submit_session(self, session_id: str) -> TestSession:
        """Student hand-in; scores right away unless answers await grading."""
        with self._lock:
            session = self._sessions.submit_session(session_id)
            return self._finalize(session)

    def end_session(self, session_id: str) -> TestSession:
        with self._lock:
            session = self._sessions.end_session(session_id)
            return self._finalize(session)

    def extend_session(self, session_id: str, minutes: int) -> TestSession:
        with self._lock:
            return self._sessions.extend_session(session_id, minutes)

    def expire_overdue_sessions(self) -> list[TestSession]:
        with self._lock:
            return self._sessions.expire_overdue_sessions()

    def get_session_statistics(self) -> SessionStatistics:
        with self._lock:
            return self._sessions.get_session_statistics()

    def grade_answer(
        self,
        answer_id: str,
        score: float,
        feedback: str | None = None,
        session_id: str | None = None,
    ) -> StudentAnswer:
        with self._lock:
            return self._sessions.grade_answer(answer_id, score, feedback, session_id=session_id)

    def auto_grade_essays(self, session_id: str) -> list[StudentAnswer]:
        with self._lock:
            return self._sessions.auto_grade_essays(session_id, self._essay_scorer)

    # --- Security Events ---

    def record_security_event(
        self,
        session_id: str,
        event_type: SecurityEventType,
        severity: Severity,
        description: str,
    ) -> SecurityEvent:
        with self._lock:
            return self._security.record_event(session_id, event_type, severity, description)

    def list_security_events(self, session_id: str, unresolved_only: bool = False) -> list[SecurityEvent]:
        with self._lock:
            return self._security.list_events(session_id, unresolved_only)

    def resolve_security_event(self, event_id: str, resolved_by: str, notes: str | None = None) -> SecurityEvent:
        with self._lock:
            return self._security.resolve_event(event_id, resolved_by, notes)

    # --- Results Delegation ---

    def calculate_result(self, session_id: str) -> TestResult:
        with self._lock:
            return self._results.calculate_result(session_id)

    def get_result(self, result_id: str) -> TestResult:
        with self._lock:
            return self._results.get_result(result_id)

    def get_result_by_session(self, session_id: str) -> TestResult | None:
        with self._lock:
            return self._results.get_result_by_session(session_id)

    def list_results(
        self,
        filters: ResultFilters | None = None,
        limit: int = 100,
        skip: int = 0,
        sort: str = "created_at",
        order: str = "desc",
    ) -> list[TestResult]:
        with self._lock:
            return self._results.list_results(filters, limit, skip, sort, order)

    def count_results(self, filters: ResultFilters | None = None) -> int:
        with self._lock:
            return self._results.count_results(filters)

    def add_result_feedback(self, result_id: str, feedback: str, reviewed_by: str) -> TestResult:
        with self._lock:
            return self._results.add_feedback(result_id, feedback, reviewed_by)

    def publish_result(self, result_id: str) -> TestResult:
        with self._lock:
            return self._results.publish_result(result_id)

    def get_result_statistics(self, test_id: str) -> TestResultStatistics:
        with self._lock:
            return self._results.get_test_statistics(test_id)

    def get_result_comparison(self, result_id: str) -> ResultComparison:
        with self._lock:
            return self._results.get_test_result_comparison(result_id)

    def get_student_performance(self, student_id: str) -> StudentPerformance:
        with self._lock:
            return self._results.get_student_performance(student_id)

    def get_result_trends(self, student_id: str, limit: int = 10) -> list[ResultTrendPoint]:
        with self._lock:
            return self._results.get_test_result_trends(student_id, limit)

    def get_recent_results(
        self,
        limit: int = 10,
        student_id: str | None = None,
        test_id: str | None = None,
    ) -> list[TestResult]:
        with self._lock:
            return self._results.get_recent_results(limit, student_id, test_id)

    def export_results_csv(self, filters: ResultFilters | None = None) -> str:
        with self._lock:
            return self._results.export_results_csv(filters)

    def _finalize(self, session: TestSession) -> TestSession:
        if session.result_id is None and not self._sessions.has_ungraded_answers(session):
            self._results.calculate_result(session.id)
            session = self._sessions.get_session(session.id)
        return session
