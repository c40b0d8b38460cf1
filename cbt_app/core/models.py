"""Domain models for the CBT application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar

from cbt_app.constants.test_constants import (
    DEFAULT_DIFFICULTY,
    DEFAULT_GRACE_PERIOD_MINUTES,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PASSING_SCORE,
    DEFAULT_QUESTION_POINTS,
    DEFAULT_TEST_DURATION_MINUTES,
)


class QuestionType(str, Enum):
    MCQ = "mcq"
    ESSAY = "essay"
    MATCHING = "matching"
    FILL_BLANK = "fill-blank"
    TRUE_FALSE = "true-false"
    IMAGE_RECOGNITION = "image-recognition"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class TestStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class SessionStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    SUBMITTED = "submitted"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.IN_PROGRESS


class ResultStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class SecurityEventType(str, Enum):
    TAB_SWITCH = "tab-switch"
    COPY_PASTE = "copy-paste"
    SCREENSHOT = "screenshot"
    WINDOW_FOCUS_LOSS = "window-focus-loss"
    MULTIPLE_TABS = "multiple-tabs"
    DEVELOPER_TOOLS = "developer-tools"
    FACE_NOT_DETECTED = "face-not-detected"
    SUSPICIOUS_PATTERN = "suspicious-pattern"
    IP_CHANGE = "ip-change"
    UNAUTHORIZED_ACCESS = "unauthorized-access"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(slots=True)
class MatchingPair:
    """A left/right pair used by matching questions and their answers."""

    left: str
    right: str


@dataclass(slots=True, kw_only=True)
class QuestionBase:
    """Fields shared by every question variant.

    Each subclass pins ``type`` and carries only the correctness data its
    question type needs.
    """

    type: ClassVar[QuestionType]

    id: str = ""
    text: str
    points: float = DEFAULT_QUESTION_POINTS
    difficulty: Difficulty = Difficulty(DEFAULT_DIFFICULTY)
    section: str = ""
    hint: str | None = None
    explanation: str | None = None
    created_by: str | None = None
    version_of: str | None = None


@dataclass(slots=True, kw_only=True)
class McqQuestion(QuestionBase):
    """Multiple-choice question; a list ``correct_answer`` makes it multi-select."""

    type: ClassVar[QuestionType] = QuestionType.MCQ

    options: list[str] = field(default_factory=list)
    correct_answer: str | list[str] = ""

    @property
    def is_multi_select(self) -> bool:
        return isinstance(self.correct_answer, list)

    def correct_options(self) -> list[str]:
        if isinstance(self.correct_answer, list):
            return list(self.correct_answer)
        return [self.correct_answer]


@dataclass(slots=True, kw_only=True)
class TrueFalseQuestion(QuestionBase):
    type: ClassVar[QuestionType] = QuestionType.TRUE_FALSE

    correct_answer: str = ""


@dataclass(slots=True, kw_only=True)
class FillBlankQuestion(QuestionBase):
    type: ClassVar[QuestionType] = QuestionType.FILL_BLANK

    correct_answer: str = ""


@dataclass(slots=True, kw_only=True)
class MatchingQuestion(QuestionBase):
    type: ClassVar[QuestionType] = QuestionType.MATCHING

    matching_pairs: list[MatchingPair] = field(default_factory=list)


@dataclass(slots=True, kw_only=True)
class EssayQuestion(QuestionBase):
    """Free-text question graded manually or by the essay scorer."""

    type: ClassVar[QuestionType] = QuestionType.ESSAY

    rubric: str | None = None
    model_answer: str | None = None


@dataclass(slots=True, kw_only=True)
class ImageRecognitionQuestion(QuestionBase):
    type: ClassVar[QuestionType] = QuestionType.IMAGE_RECOGNITION

    image_url: str = ""
    correct_answer: str | None = None


Question = (
    McqQuestion
    | TrueFalseQuestion
    | FillBlankQuestion
    | MatchingQuestion
    | EssayQuestion
    | ImageRecognitionQuestion
)

QUESTION_CLASSES: dict[QuestionType, type[QuestionBase]] = {
    cls.type: cls
    for cls in (
        McqQuestion,
        TrueFalseQuestion,
        FillBlankQuestion,
        MatchingQuestion,
        EssayQuestion,
        ImageRecognitionQuestion,
    )
}

# Question types the scoring engine grades on its own.
AUTO_SCORED_TYPES: frozenset[QuestionType] = frozenset(
    {
        QuestionType.MCQ,
        QuestionType.TRUE_FALSE,
        QuestionType.FILL_BLANK,
        QuestionType.MATCHING,
    }
)

AnswerValue = str | list[str] | list[MatchingPair]


@dataclass(slots=True, kw_only=True)
class Test:
    """Ordered question set plus the rules for taking it."""

    id: str = ""
    title: str
    subject: str
    start_date: datetime
    end_date: datetime
    description: str = ""
    instructor: str | None = None
    duration: int = DEFAULT_TEST_DURATION_MINUTES
    passing_score: float = DEFAULT_PASSING_SCORE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    grace_period: int = DEFAULT_GRACE_PERIOD_MINUTES
    shuffle_questions: bool = False
    allow_review: bool = True
    negative_marking: bool = False
    negative_marking_value: float = 0
    status: TestStatus = TestStatus.DRAFT
    questions: list[str] = field(default_factory=list)
    created_at: datetime | None = None


@dataclass(slots=True, kw_only=True)
class TestSession:
    """One student's timed attempt at a test."""

    id: str = ""
    test_id: str
    student_id: str
    start_time: datetime
    end_time: datetime | None = None
    status: SessionStatus = SessionStatus.IN_PROGRESS
    current_question: int = 0
    answers: list[str] = field(default_factory=list)
    attempt_number: int = 1
    question_order: list[str] = field(default_factory=list)
    extra_minutes: int = 0
    result_id: str | None = None


@dataclass(slots=True, kw_only=True)
class StudentAnswer:
    """Answer captured for one question inside a session."""

    id: str = ""
    session_id: str
    question_id: str
    answer: AnswerValue | None
    is_correct: bool | None = None
    score: float | None = None
    time_spent: float = 0.0  # seconds
    marked_for_review: bool = False
    feedback: str | None = None
    submitted_at: datetime | None = None


@dataclass(slots=True, kw_only=True)
class TestResult:
    """Finalized outcome of a terminal session."""

    id: str = ""
    session_id: str
    test_id: str
    student_id: str
    total_score: float
    total_possible: float
    percentage: int
    grade: str
    status: ResultStatus
    answers: list[str] = field(default_factory=list)
    feedback: str | None = None
    reviewed_by: str | None = None
    review_date: datetime | None = None
    is_published: bool = False
    published_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(slots=True, kw_only=True)
class SecurityEvent:
    """Client-reported anti-cheating signal attached to a session."""

    id: str = ""
    session_id: str
    student_id: str
    type: SecurityEventType
    severity: Severity
    description: str
    timestamp: datetime
    resolved: bool = False
    resolved_by: str | None = None
    resolution_notes: str | None = None


@dataclass(slots=True)
class TimeRemaining:
    minutes: int
    seconds: int
    expired: bool


@dataclass(slots=True)
class SessionProgress:
    total_questions: int
    answered_questions: int
    percentage: int


@dataclass(slots=True)
class SessionStatistics:
    active_sessions: int
    completed_sessions: int
    average_duration_minutes: float


@dataclass(slots=True)
class ResultComparison:
    student_score: int
    class_average: float
    class_high: int
    class_low: int
    percentile: float


@dataclass(slots=True)
class TestResultStatistics:
    total_results: int
    pass_count: int
    fail_count: int
    average_score: float
    grade_distribution: dict[str, int]


@dataclass(slots=True)
class StudentPerformance:
    total_tests: int
    passed_tests: int
    failed_tests: int
    average_score: float
    improvement_trend: float


@dataclass(slots=True)
class TestStatistics:
    question_count: int
    total_points: float
    by_type: dict[str, int]
    by_difficulty: dict[str, int]


@dataclass(slots=True)
class TestPreview:
    title: str
    subject: str
    duration: int
    passing_score: float
    question_count: int
    total_points: float
    start_date: datetime
    end_date: datetime


@dataclass(slots=True)
class QuestionStatistics:
    total_questions: int
    by_type: dict[str, int]
    by_difficulty: dict[str, int]


@dataclass(slots=True)
class QuestionImportSummary:
    success: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ResultTrendPoint:
    """One result in a student's history, as plotted on a trend chart."""

    test_id: str
    test_title: str
    percentage: int
    date: datetime | None
