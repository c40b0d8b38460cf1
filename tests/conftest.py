from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from cbt_app.core.document_store import DocumentStore
from cbt_app.core.models import (
    EssayQuestion,
    FillBlankQuestion,
    MatchingPair,
    MatchingQuestion,
    McqQuestion,
    Test,
    TrueFalseQuestion,
)
from cbt_app.core.services.question_bank import QuestionBank
from cbt_app.core.services.results import ResultService
from cbt_app.core.services.test_builder import TestBuilder
from cbt_app.core.services.test_session import TestSessionService

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when a test tells it to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.results = []
        self.invitations = []

    def send_result_email(self, result) -> None:
        self.results.append(result)

    def send_invitation_email(self, test, student_id) -> None:
        self.invitations.append((test.id, student_id))


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return DocumentStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def bank(store):
    return QuestionBank(store)


@pytest.fixture
def builder(store, bank, clock):
    return TestBuilder(store, bank, clock)


@pytest.fixture
def sessions(store, builder, clock):
    return TestSessionService(store, builder, clock, shuffle_seed=1234)


@pytest.fixture
def results(store, sessions, notifier, clock):
    return ResultService(store, sessions, notifier, clock)


def make_mcq(text: str = "What is 2 + 2?", points: float = 2) -> McqQuestion:
    return McqQuestion(text=text, points=points, options=["3", "4", "5"], correct_answer="4")


def make_test(question_ids: list[str], **overrides) -> Test:
    values = dict(
        title="Algebra basics",
        subject="Mathematics",
        start_date=T0 - timedelta(days=1),
        end_date=T0 + timedelta(days=7),
        duration=60,
        passing_score=70,
        max_attempts=1,
        grace_period=5,
        questions=question_ids,
    )
    values.update(overrides)
    return Test(**values)


@pytest.fixture
def mcq_pair(bank):
    """Two 2-point MCQs stored in the bank."""
    first = bank.add_question(make_mcq("What is 2 + 2?"))
    second = bank.add_question(
        McqQuestion(text="What is 3 * 3?", points=2, options=["6", "9", "12"], correct_answer="9")
    )
    return first, second


@pytest.fixture
def publish(builder):
    """Create and publish a test over the given question ids."""

    def _publish(question_ids: list[str], **overrides) -> Test:
        test = builder.create_test(make_test(question_ids, **overrides))
        return builder.publish_test(test.id)

    return _publish


@pytest.fixture
def mixed_questions(bank):
    return {
        "mcq": bank.add_question(make_mcq()),
        "multi": bank.add_question(
            McqQuestion(
                text="Pick the primes",
                points=3,
                options=["2", "3", "4", "5"],
                correct_answer=["2", "3", "5"],
            )
        ),
        "true_false": bank.add_question(TrueFalseQuestion(text="The earth is round", correct_answer="true")),
        "fill_blank": bank.add_question(FillBlankQuestion(text="Capital of France is ___", correct_answer="Paris")),
        "matching": bank.add_question(
            MatchingQuestion(
                text="Match the capitals",
                points=2,
                matching_pairs=[
                    MatchingPair(left="France", right="Paris"),
                    MatchingPair(left="Spain", right="Madrid"),
                ],
            )
        ),
        "essay": bank.add_question(EssayQuestion(text="Explain photosynthesis", points=10, rubric="Clarity")),
    }
