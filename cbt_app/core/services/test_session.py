"""Service for the timed test-session lifecycle.

A session is ``in-progress`` until it is submitted by the student, ended by
an instructor, or found to be past its deadline. There is no timer: every
read of the remaining time and every mutation re-derives the deadline from
the clock, so an untouched overdue session stays ``in-progress`` in storage
until the next interaction (or an explicit ``expire_overdue_sessions`` sweep).

Two deadlines apply to a session:

* the answer deadline, ``start_time + duration + extra_minutes``, after which
  no answer is accepted and the session is expired on the next answer attempt;
* the hand-in deadline, the answer deadline plus the test's grace period,
  until which the student may still submit the session as ``submitted``.
"""

from __future__ import annotations

import logging
import math
import random
from datetime import datetime, timedelta

from cbt_app.core import document_store as collections
from cbt_app.core.clock import Clock, system_clock
from cbt_app.core.document_store import DocumentStore
from cbt_app.core.errors import (
    EligibilityError,
    InvalidStateError,
    NotFoundError,
    SessionExpiredError,
    ValidationError,
)
from cbt_app.core.models import (
    AnswerValue,
    EssayQuestion,
    ImageRecognitionQuestion,
    MatchingPair,
    MatchingQuestion,
    McqQuestion,
    Question,
    SessionProgress,
    SessionStatistics,
    SessionStatus,
    StudentAnswer,
    Test,
    TestSession,
    TestStatus,
    TimeRemaining,
)
from cbt_app.core.services.essay_scorer import EssayScorer, EssayScoringRequest
from cbt_app.core.services.scoring import is_auto_scored, is_full_credit, score_answer
from cbt_app.core.services.test_builder import TestBuilder

logger = logging.getLogger(__name__)

_MANUALLY_GRADED = (EssayQuestion, ImageRecognitionQuestion)


class TestSessionService:
    """Creates sessions, captures answers and drives state transitions."""

    def __init__(
        self,
        store: DocumentStore,
        test_builder: TestBuilder,
        clock: Clock = system_clock,
        shuffle_seed: int | None = None,
    ) -> None:
        self._store = store
        self._tests = test_builder
        self._clock = clock
        self._shuffle_rng = random.Random(shuffle_seed)

    # --- Eligibility & creation ---

    def can_student_take_test(self, student_id: str, test_id: str) -> bool:
        test = self._tests.get_test(test_id)
        sessions = self._sessions_for(student_id, test_id, test)
        if any(session.status is SessionStatus.IN_PROGRESS for session in sessions):
            return False
        return len(sessions) < test.max_attempts

    def create_session(self, test_id: str, student_id: str) -> TestSession:
        test = self._tests.get_test(test_id)
        if test.status is not TestStatus.PUBLISHED:
            raise EligibilityError("This test is not open for attempts.")

        now = self._clock()
        if not test.start_date <= now <= test.end_date:
            raise EligibilityError("This test is not available at this time.")

        sessions = self._sessions_for(student_id, test_id, test)
        if any(session.status is SessionStatus.IN_PROGRESS for session in sessions):
            raise EligibilityError("You already have a session in progress for this test.")
        if len(sessions) >= test.max_attempts:
            raise EligibilityError("You have already used your attempts for this test.")

        question_order = list(test.questions)
        if test.shuffle_questions:
            self._shuffle_rng.shuffle(question_order)

        session = TestSession(
            test_id=test_id,
            student_id=student_id,
            start_time=now,
            attempt_number=len(sessions) + 1,
            question_order=question_order,
        )
        stored = self._store.insert(collections.SESSIONS, session)
        logger.info(
            "Test session created: %s (test %s, student %s, attempt %d)",
            stored.id,
            test_id,
            student_id,
            stored.attempt_number,
        )
        return stored

    # --- Reads ---

    def get_session(self, session_id: str) -> TestSession:
        return self._store.require(collections.SESSIONS, session_id, "Test session")

    def list_sessions(self) -> list[TestSession]:
        return self._store.find(collections.SESSIONS)

    def list_sessions_by_test(self, test_id: str) -> list[TestSession]:
        return self._store.find(collections.SESSIONS, lambda session: session.test_id == test_id)

    def list_sessions_by_student(self, student_id: str) -> list[TestSession]:
        return self._store.find(collections.SESSIONS, lambda session: session.student_id == student_id)

    def get_active_sessions(self) -> list[TestSession]:
        return self._store.find(
            collections.SESSIONS,
            lambda session: session.status is SessionStatus.IN_PROGRESS,
        )

    def get_test_for(self, session: TestSession) -> Test:
        return self._tests.get_test(session.test_id)

    def get_session_questions(self, session: TestSession) -> list[Question]:
        """Return the session's questions in the order the student sees them."""
        test = self.get_test_for(session)
        by_id = {question.id: question for question in self._tests.get_test_questions(test)}
        return [by_id[question_id] for question_id in session.question_order if question_id in by_id]

    def get_answers(self, session_id: str) -> list[StudentAnswer]:
        session = self.get_session(session_id)
        return self._store.get_many(collections.ANSWERS, session.answers)

    def get_progress(self, session_id: str) -> SessionProgress:
        session = self.get_session(session_id)
        total = len(session.question_order)
        answered = sum(1 for answer in self.get_answers(session_id) if answer.answer is not None)
        percentage = round(answered / total * 100) if total else 0
        return SessionProgress(total_questions=total, answered_questions=answered, percentage=percentage)

    def get_session_statistics(self) -> SessionStatistics:
        sessions = self._store.find(collections.SESSIONS)
        active = sum(1 for session in sessions if session.status is SessionStatus.IN_PROGRESS)
        completed = sum(1 for session in sessions if session.status is SessionStatus.COMPLETED)
        durations = [
            (session.end_time - session.start_time).total_seconds() / 60
            for session in sessions
            if session.status.is_terminal and session.end_time is not None
        ]
        average = sum(durations) / len(durations) if durations else 0.0
        return SessionStatistics(
            active_sessions=active,
            completed_sessions=completed,
            average_duration_minutes=average,
        )

    # --- Timing ---

    def answer_deadline(self, session: TestSession, test: Test) -> datetime:
        return session.start_time + timedelta(minutes=test.duration + session.extra_minutes)

    def hand_in_deadline(self, session: TestSession, test: Test) -> datetime:
        return self.answer_deadline(session, test) + timedelta(minutes=test.grace_period)

    def time_remaining(self, session_id: str) -> TimeRemaining:
        session = self.get_session(session_id)
        test = self.get_test_for(session)
        session = self._refresh(session, test)
        if session.status.is_terminal:
            return TimeRemaining(minutes=0, seconds=0, expired=True)

        remaining = (self.answer_deadline(session, test) - self._clock()).total_seconds()
        if remaining <= 0:
            return TimeRemaining(minutes=0, seconds=0, expired=True)
        whole_seconds = math.floor(remaining)
        return TimeRemaining(minutes=whole_seconds // 60, seconds=whole_seconds % 60, expired=False)

    def expire_overdue_sessions(self) -> list[TestSession]:
        """Expire every in-progress session past its hand-in deadline."""
        expired: list[TestSession] = []
        for session in self.get_active_sessions():
            refreshed = self._refresh(session, self.get_test_for(session))
            if refreshed.status is SessionStatus.EXPIRED:
                expired.append(refreshed)
        return expired

    # --- Answer capture ---

    def submit_answer(
        self,
        session_id: str,
        question_id: str,
        answer: AnswerValue,
        time_spent: float = 0.0,
        marked_for_review: bool | None = None,
    ) -> StudentAnswer:
        """Store the student's answer, replacing any earlier one for the question."""
        session, test = self._require_answerable(session_id)
        question = self._question_in_session(session, test, question_id)
        _validate_answer_shape(question, answer)
        if time_spent < 0:
            raise ValidationError("Time spent cannot be negative.")

        previous = self._find_answer(session, question_id)
        student_answer = StudentAnswer(
            session_id=session.id,
            question_id=question_id,
            answer=answer,
            time_spent=time_spent,
            marked_for_review=(
                marked_for_review
                if marked_for_review is not None
                else bool(previous and previous.marked_for_review)
            ),
            submitted_at=self._clock(),
        )
        if is_auto_scored(question):
            student_answer.score = score_answer(question, answer)
            student_answer.is_correct = is_full_credit(question, student_answer.score)

        stored = self._store.upsert_answer(student_answer)
        logger.info("Answer saved for session %s, question %s", session.id, question_id)
        return stored

    def mark_for_review(self, session_id: str, question_id: str, flag: bool = True) -> StudentAnswer:
        session, test = self._require_answerable(session_id)
        self._question_in_session(session, test, question_id)
        existing = self._find_answer(session, question_id)
        if existing is None:
            existing = StudentAnswer(session_id=session.id, question_id=question_id, answer=None)
        existing.marked_for_review = flag
        return self._store.upsert_answer(existing)

    def go_to_question(self, session_id: str, index: int) -> TestSession:
        session, _ = self._require_answerable(session_id)
        if not 0 <= index < len(session.question_order):
            raise ValidationError(f"Question index {index} out of range")
        session.current_question = index
        return self._store.save(collections.SESSIONS, session)

    # --- Termination ---

    def submit_session(self, session_id: str) -> TestSession:
        """Student hand-in. Past the grace window the session expires instead."""
        return self._terminate(session_id, SessionStatus.SUBMITTED)

    def end_session(self, session_id: str) -> TestSession:
        """Instructor or system close-out of a session."""
        return self._terminate(session_id, SessionStatus.COMPLETED)

    def extend_session(self, session_id: str, minutes: int) -> TestSession:
        if minutes <= 0:
            raise ValidationError("Extension must be a positive number of minutes.")
        session = self.get_session(session_id)
        session = self._refresh(session, self.get_test_for(session))
        if session.status.is_terminal:
            raise InvalidStateError(f"Cannot extend a session that is {session.status.value}.")
        session.extra_minutes += minutes
        logger.info("Test session %s extended by %d minute(s)", session_id, minutes)
        return self._store.save(collections.SESSIONS, session)

    # --- Grading ---

    def grade_answer(
        self,
        answer_id: str,
        score: float,
        feedback: str | None = None,
        session_id: str | None = None,
    ) -> StudentAnswer:
        """Record a grader's score for an essay or image-recognition answer.

        When ``session_id`` is given the answer must belong to that session.
        """
        answer = self._store.require(collections.ANSWERS, answer_id, "Answer")
        if session_id is not None and answer.session_id != session_id:
            raise NotFoundError("Answer", answer_id)
        session = self._require_gradable(answer.session_id)
        test = self.get_test_for(session)
        question = self._question_in_session(session, test, answer.question_id)
        if not isinstance(question, _MANUALLY_GRADED):
            raise ValidationError(f"{question.type.value} answers are scored automatically.")
        if not 0 <= score <= question.points:
            raise ValidationError(f"Score must be between 0 and {question.points}.")

        answer.score = float(score)
        answer.is_correct = is_full_credit(question, answer.score)
        answer.feedback = feedback
        return self._store.save(collections.ANSWERS, answer)

    def auto_grade_essays(self, session_id: str, scorer: EssayScorer) -> list[StudentAnswer]:
        """Score every ungraded essay answer of a finished session."""
        session = self._require_gradable(session_id)
        questions = {question.id: question for question in self.get_session_questions(session)}
        graded: list[StudentAnswer] = []
        for answer in self.get_answers(session_id):
            question = questions.get(answer.question_id)
            if not isinstance(question, EssayQuestion) or answer.score is not None:
                continue
            if not isinstance(answer.answer, str) or not answer.answer.strip():
                continue
            essay_score = scorer.score_essay(
                EssayScoringRequest(
                    essay_text=answer.answer,
                    question=question.text,
                    max_score=question.points,
                    rubric=question.rubric,
                    model_answer=question.model_answer,
                )
            )
            answer.score = min(max(essay_score.score, 0.0), float(question.points))
            answer.is_correct = is_full_credit(question, answer.score)
            answer.feedback = essay_score.feedback
            graded.append(self._store.save(collections.ANSWERS, answer))
        logger.info("Auto-graded %d essay answer(s) for session %s", len(graded), session_id)
        return graded

    def has_ungraded_answers(self, session: TestSession) -> bool:
        questions = {question.id: question for question in self.get_session_questions(session)}
        return any(
            isinstance(questions.get(answer.question_id), _MANUALLY_GRADED)
            and answer.answer is not None
            and answer.score is None
            for answer in self._store.get_many(collections.ANSWERS, session.answers)
        )

    # --- Internals ---

    def _sessions_for(self, student_id: str, test_id: str, test: Test) -> list[TestSession]:
        sessions = self._store.find(
            collections.SESSIONS,
            lambda session: session.student_id == student_id and session.test_id == test_id,
            sort_key=lambda session: session.attempt_number,
        )
        return [self._refresh(session, test) for session in sessions]

    def _refresh(self, session: TestSession, test: Test) -> TestSession:
        """Expire an in-progress session whose hand-in deadline has passed."""
        if session.status is SessionStatus.IN_PROGRESS and self._clock() >= self.hand_in_deadline(session, test):
            return self._transition(session, SessionStatus.EXPIRED)
        return session

    def _transition(self, session: TestSession, status: SessionStatus) -> TestSession:
        session.status = status
        session.end_time = self._clock()
        logger.info("Test session %s -> %s", session.id, status.value)
        return self._store.save(collections.SESSIONS, session)

    def _terminate(self, session_id: str, status: SessionStatus) -> TestSession:
        session = self.get_session(session_id)
        if session.status.is_terminal:
            return session
        test = self.get_test_for(session)
        session = self._refresh(session, test)
        if session.status.is_terminal:
            return session
        return self._transition(session, status)

    def _require_answerable(self, session_id: str) -> tuple[TestSession, Test]:
        session = self.get_session(session_id)
        if session.status is SessionStatus.EXPIRED:
            raise SessionExpiredError(session_id)
        if session.status.is_terminal:
            raise InvalidStateError(f"Session is {session.status.value}; answers are closed.")
        test = self.get_test_for(session)
        if self._clock() >= self.answer_deadline(session, test):
            self._transition(session, SessionStatus.EXPIRED)
            raise SessionExpiredError(session_id)
        return session, test

    def _require_gradable(self, session_id: str) -> TestSession:
        session = self.get_session(session_id)
        if not session.status.is_terminal:
            raise InvalidStateError("Answers can only be graded after the session has ended.")
        if session.result_id is not None:
            raise InvalidStateError("The result for this session has already been calculated.")
        return session

    def _question_in_session(self, session: TestSession, test: Test, question_id: str) -> Question:
        if question_id not in session.question_order:
            raise ValidationError(f"Question '{question_id}' is not part of this test.")
        for question in self._tests.get_test_questions(test):
            if question.id == question_id:
                return question
        raise ValidationError(f"Question '{question_id}' is not part of this test.")

    def _find_answer(self, session: TestSession, question_id: str) -> StudentAnswer | None:
        for answer in self._store.get_many(collections.ANSWERS, session.answers):
            if answer.question_id == question_id:
                return answer
        return None


def _validate_answer_shape(question: Question, answer: AnswerValue) -> None:
    if isinstance(question, McqQuestion):
        valid = isinstance(answer, str) or (
            isinstance(answer, list) and all(isinstance(item, str) for item in answer)
        )
    elif isinstance(question, MatchingQuestion):
        valid = isinstance(answer, list) and all(isinstance(item, MatchingPair) for item in answer)
    else:
        valid = isinstance(answer, str)
    if not valid:
        raise ValidationError(f"Answer has the wrong shape for a {question.type.value} question.")
