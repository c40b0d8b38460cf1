"""FastAPI server that exposes the CBT manager over HTTP."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ConfigDict, Field
import uvicorn

from cbt_app.constants.about import APP_NAME, APP_VERSION
from cbt_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from cbt_app.constants.test_constants import (
    DEFAULT_DIFFICULTY,
    DEFAULT_GRACE_PERIOD_MINUTES,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PASSING_SCORE,
    DEFAULT_QUESTION_POINTS,
    DEFAULT_TEST_DURATION_MINUTES,
)
from cbt_app.core.cbt_manager import CbtManager, CurrentQuestion
from cbt_app.core.errors import (
    EligibilityError,
    InvalidStateError,
    NotFoundError,
    SessionExpiredError,
    ValidationError,
)
from cbt_app.core.markdown_math_renderer import MATHJAX_SCRIPT, renderer
from cbt_app.core.models import (
    Difficulty,
    MatchingPair,
    MatchingQuestion,
    McqQuestion,
    Question,
    QuestionType,
    ResultStatus,
    SecurityEventType,
    Severity,
    Test,
    TestStatus,
    TrueFalseQuestion,
)
from cbt_app.core.question_format import question_from_dict, question_to_dict
from cbt_app.core.services.results import ResultFilters
from cbt_app.core.test_importer import TestImportError

logger = logging.getLogger(__name__)


# --- Request payloads ---


class MatchingPairPayload(BaseModel):
    left: str
    right: str


class _QuestionPayloadBase(BaseModel):
    text: str
    points: float = DEFAULT_QUESTION_POINTS
    difficulty: Difficulty = Difficulty(DEFAULT_DIFFICULTY)
    section: str = ""
    hint: str | None = None
    explanation: str | None = None
    created_by: str | None = None


class McqPayload(_QuestionPayloadBase):
    type: Literal["mcq"]
    options: list[str]
    correct_answer: str | list[str]


class TrueFalsePayload(_QuestionPayloadBase):
    type: Literal["true-false"]
    correct_answer: str


class FillBlankPayload(_QuestionPayloadBase):
    type: Literal["fill-blank"]
    correct_answer: str


class MatchingPayload(_QuestionPayloadBase):
    type: Literal["matching"]
    matching_pairs: list[MatchingPairPayload]


class EssayPayload(_QuestionPayloadBase):
    model_config = ConfigDict(protected_namespaces=())

    type: Literal["essay"]
    rubric: str | None = None
    model_answer: str | None = None


class ImageRecognitionPayload(_QuestionPayloadBase):
    type: Literal["image-recognition"]
    image_url: str
    correct_answer: str | None = None


QuestionPayload = Annotated[
    Union[
        McqPayload,
        TrueFalsePayload,
        FillBlankPayload,
        MatchingPayload,
        EssayPayload,
        ImageRecognitionPayload,
    ],
    Field(discriminator="type"),
]


class TestPayload(BaseModel):
    """Payload schema for creating a test."""

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
    questions: list[str] = Field(default_factory=list)


class TestUpdatePayload(BaseModel):
    """Partial update for a draft test; only fields that are sent change."""

    title: str | None = None
    subject: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    description: str | None = None
    instructor: str | None = None
    duration: int | None = None
    passing_score: float | None = None
    max_attempts: int | None = None
    grace_period: int | None = None
    shuffle_questions: bool | None = None
    allow_review: bool | None = None
    negative_marking: bool | None = None
    negative_marking_value: float | None = None


class SessionPayload(BaseModel):
    test_id: str
    student_id: str


class AnswerPayload(BaseModel):
    """Payload schema for submitted answers."""

    question_id: str
    answer: Union[str, list[str], list[MatchingPairPayload]]
    time_spent: float = 0.0
    marked_for_review: bool | None = None


class ReviewPayload(BaseModel):
    question_id: str
    flag: bool = True


class NavigatePayload(BaseModel):
    index: int


class ExtendPayload(BaseModel):
    minutes: int


class GradePayload(BaseModel):
    answer_id: str
    score: float
    feedback: str | None = None


class SecurityEventPayload(BaseModel):
    type: SecurityEventType
    severity: Severity
    description: str = ""


class ResolvePayload(BaseModel):
    resolved_by: str
    notes: str | None = None


class FeedbackPayload(BaseModel):
    feedback: str
    reviewed_by: str


class InvitePayload(BaseModel):
    student_id: str


class QuestionImportPayload(BaseModel):
    """Bulk question import; each entry is checked on its own."""

    questions: list[dict[str, Any]]
    created_by: str | None = None


# --- Conversions ---


def _to_question(payload: _QuestionPayloadBase) -> Question:
    return question_from_dict(payload.model_dump(mode="json"))


def _to_test(payload: TestPayload) -> Test:
    return Test(**payload.model_dump())


def _to_answer(value: Any) -> Any:
    if isinstance(value, list) and value and isinstance(value[0], MatchingPairPayload):
        return [MatchingPair(left=pair.left, right=pair.right) for pair in value]
    return value


def _question_out(question: Question) -> dict[str, Any]:
    payload = question_to_dict(question)
    payload["id"] = question.id
    payload["version_of"] = question.version_of
    return payload


def _current_question_out(current: CurrentQuestion) -> dict[str, Any]:
    """Student-facing view of a question; never carries the correct answer."""
    question = current.question
    payload: dict[str, Any] = {
        "session_id": current.session_id,
        "index": current.index,
        "total": current.total,
        "question_id": question.id,
        "type": question.type.value,
        "question_html": renderer.render_fragment(question.text),
        "mathjax_script": MATHJAX_SCRIPT,
        "points": question.points,
        "hint": question.hint,
        "options": [],
        "time_remaining": jsonable_encoder(current.time_remaining),
        "saved_answer": None,
        "marked_for_review": False,
    }
    if isinstance(question, McqQuestion):
        payload["options"] = [renderer.render_inline(option) for option in question.options]
        payload["multi_select"] = question.is_multi_select
    elif isinstance(question, TrueFalseQuestion):
        payload["options"] = ["true", "false"]
    elif isinstance(question, MatchingQuestion):
        payload["left_items"] = [pair.left for pair in question.matching_pairs]
        payload["right_items"] = sorted(pair.right for pair in question.matching_pairs)
    elif question.type is QuestionType.IMAGE_RECOGNITION:
        payload["image_url"] = question.image_url

    if current.saved_answer is not None:
        payload["saved_answer"] = jsonable_encoder(current.saved_answer.answer)
        payload["marked_for_review"] = current.saved_answer.marked_for_review
    return payload


# --- Error mapping ---


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})

    @app.exception_handler(TestImportError)
    def handle_import_error(request: Request, exc: TestImportError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc), "errors": [str(exc)]})

    @app.exception_handler(NotFoundError)
    def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(EligibilityError)
    def handle_eligibility_error(request: Request, exc: EligibilityError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    @app.exception_handler(InvalidStateError)
    def handle_invalid_state(request: Request, exc: InvalidStateError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(SessionExpiredError)
    def handle_session_expired(request: Request, exc: SessionExpiredError) -> JSONResponse:
        return JSONResponse(status_code=410, content={"detail": str(exc), "expired": True})

    @app.exception_handler(Exception)
    def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error."})


def _get_cbt_manager_dependency(cbt_manager: CbtManager):
    def dependency() -> CbtManager:
        return cbt_manager

    return dependency


def create_api_app(cbt_manager: CbtManager) -> FastAPI:
    """Create a FastAPI application wired to the provided CBT manager."""
    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION)
    manager_dep = _get_cbt_manager_dependency(cbt_manager)
    _install_error_handlers(app)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "app": APP_NAME, "version": APP_VERSION}

    # --- Questions ---

    @app.post("/questions", status_code=201)
    def create_question(
        payload: QuestionPayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return _question_out(manager.add_question(_to_question(payload)))

    @app.get("/questions")
    def list_questions(
        type: QuestionType | None = None,
        difficulty: Difficulty | None = None,
        created_by: str | None = None,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        questions = manager.list_questions(type, difficulty, created_by)
        return {"questions": [_question_out(question) for question in questions]}

    @app.get("/questions/search")
    def search_questions(
        q: str,
        limit: int = Query(default=10, ge=1),
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return {"questions": [_question_out(question) for question in manager.search_questions(q, limit)]}

    @app.get("/questions/statistics")
    def get_question_statistics(manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.get_question_statistics())

    @app.get("/questions/export")
    def export_questions(
        type: QuestionType | None = None,
        difficulty: Difficulty | None = None,
        created_by: str | None = None,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return {"questions": manager.export_questions(type, difficulty, created_by)}

    @app.post("/questions/import")
    def import_questions(
        payload: QuestionImportPayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return jsonable_encoder(manager.import_questions(payload.questions, payload.created_by))

    @app.get("/questions/{question_id}/versions")
    def get_question_versions(question_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return {"versions": [_question_out(question) for question in manager.get_question_versions(question_id)]}

    @app.get("/questions/{question_id}")
    def get_question(question_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return _question_out(manager.get_question(question_id))

    @app.put("/questions/{question_id}")
    def update_question(
        question_id: str,
        payload: QuestionPayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return _question_out(manager.update_question(question_id, _to_question(payload)))

    @app.delete("/questions/{question_id}", status_code=204)
    def delete_question(question_id: str, manager: CbtManager = Depends(manager_dep)) -> Response:
        manager.delete_question(question_id)
        return Response(status_code=204)

    # --- Tests ---

    @app.post("/tests", status_code=201)
    def create_test(payload: TestPayload, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.create_test(_to_test(payload)))

    @app.get("/tests")
    def list_tests(
        status: TestStatus | None = None,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return {"tests": jsonable_encoder(manager.list_tests(status))}

    @app.post("/tests/import", status_code=201)
    def import_test(
        document: dict[str, Any] = Body(...),
        created_by: str | None = None,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return jsonable_encoder(manager.import_test(json.dumps(document), created_by=created_by))

    @app.get("/tests/{test_id}")
    def get_test(test_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.get_test(test_id))

    @app.patch("/tests/{test_id}")
    def update_test(
        test_id: str,
        payload: TestUpdatePayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        changes = payload.model_dump(exclude_unset=True)
        return jsonable_encoder(manager.update_test(test_id, changes))

    @app.post("/tests/{test_id}/questions/{question_id}")
    def add_question_to_test(
        test_id: str,
        question_id: str,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return jsonable_encoder(manager.add_question_to_test(test_id, question_id))

    @app.delete("/tests/{test_id}/questions/{question_id}")
    def remove_question_from_test(
        test_id: str,
        question_id: str,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return jsonable_encoder(manager.remove_question_from_test(test_id, question_id))

    @app.get("/tests/{test_id}/questions")
    def get_test_questions(test_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return {"questions": [_question_out(question) for question in manager.get_test_questions(test_id)]}

    @app.post("/tests/{test_id}/publish")
    def publish_test(test_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.publish_test(test_id))

    @app.post("/tests/{test_id}/archive")
    def archive_test(test_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.archive_test(test_id))

    @app.get("/tests/{test_id}/export")
    def export_test(test_id: str, manager: CbtManager = Depends(manager_dep)) -> Response:
        return Response(content=manager.export_test(test_id), media_type="application/json")

    @app.get("/tests/{test_id}/statistics")
    def get_test_statistics(test_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return {
            "questions": jsonable_encoder(manager.get_test_statistics(test_id)),
            "results": jsonable_encoder(manager.get_result_statistics(test_id)),
        }

    @app.get("/tests/{test_id}/preview")
    def get_test_preview(test_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.get_test_preview(test_id))

    @app.get("/tests/{test_id}/eligibility/{student_id}")
    def get_eligibility(
        test_id: str,
        student_id: str,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return {
            "test_id": test_id,
            "student_id": student_id,
            "eligible": manager.can_student_take_test(student_id, test_id),
        }

    @app.post("/tests/{test_id}/invitations", status_code=202)
    def invite_student(
        test_id: str,
        payload: InvitePayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        manager.invite_student(test_id, payload.student_id)
        return {"test_id": test_id, "student_id": payload.student_id}

    # --- Sessions ---

    @app.post("/sessions", status_code=201)
    def start_session(payload: SessionPayload, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.start_session(payload.test_id, payload.student_id))

    @app.get("/sessions")
    def list_sessions(
        test_id: str | None = None,
        student_id: str | None = None,
        active: bool = False,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        if active:
            sessions = manager.get_active_sessions()
        else:
            sessions = manager.list_sessions(test_id=test_id, student_id=student_id)
        return {"sessions": jsonable_encoder(sessions)}

    @app.get("/sessions/statistics")
    def get_session_statistics(manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.get_session_statistics())

    @app.post("/sessions/expire-overdue")
    def expire_overdue_sessions(manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        expired = manager.expire_overdue_sessions()
        return {"expired": [session.id for session in expired]}

    @app.get("/sessions/{session_id}")
    def get_session(session_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.get_session(session_id))

    @app.post("/sessions/{session_id}/answers", status_code=201)
    def submit_answer(
        session_id: str,
        payload: AnswerPayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        answer = manager.submit_answer(
            session_id,
            payload.question_id,
            _to_answer(payload.answer),
            time_spent=payload.time_spent,
            marked_for_review=payload.marked_for_review,
        )
        return {
            "id": answer.id,
            "question_id": answer.question_id,
            "marked_for_review": answer.marked_for_review,
            "submitted_at": answer.submitted_at.isoformat() if answer.submitted_at else None,
        }

    @app.get("/sessions/{session_id}/answers")
    def get_answers(session_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return {"answers": jsonable_encoder(manager.get_answers(session_id))}

    @app.post("/sessions/{session_id}/review")
    def mark_for_review(
        session_id: str,
        payload: ReviewPayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        answer = manager.mark_for_review(session_id, payload.question_id, payload.flag)
        return {"question_id": answer.question_id, "marked_for_review": answer.marked_for_review}

    @app.get("/sessions/{session_id}/time-remaining")
    def get_time_remaining(session_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.time_remaining(session_id))

    @app.get("/sessions/{session_id}/progress")
    def get_progress(session_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.get_progress(session_id))

    @app.get("/sessions/{session_id}/current-question")
    def get_current_question(session_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return _current_question_out(manager.get_current_question(session_id))

    @app.post("/sessions/{session_id}/navigate")
    def navigate(
        session_id: str,
        payload: NavigatePayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        session = manager.go_to_question(session_id, payload.index)
        return {"session_id": session.id, "current_question": session.current_question}

    @app.post("/sessions/{session_id}/submit")
    def submit_session(session_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.submit_session(session_id))

    @app.post("/sessions/{session_id}/end")
    def end_session(session_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.end_session(session_id))

    @app.post("/sessions/{session_id}/extend")
    def extend_session(
        session_id: str,
        payload: ExtendPayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return jsonable_encoder(manager.extend_session(session_id, payload.minutes))

    @app.post("/sessions/{session_id}/grade")
    def grade_answer(
        session_id: str,
        payload: GradePayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        answer = manager.grade_answer(payload.answer_id, payload.score, payload.feedback, session_id=session_id)
        return jsonable_encoder(answer)

    @app.post("/sessions/{session_id}/auto-grade")
    def auto_grade(session_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return {"graded": jsonable_encoder(manager.auto_grade_essays(session_id))}

    @app.post("/sessions/{session_id}/result", status_code=201)
    def calculate_result(session_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.calculate_result(session_id))

    @app.post("/sessions/{session_id}/security-events", status_code=201)
    def record_security_event(
        session_id: str,
        payload: SecurityEventPayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        event = manager.record_security_event(session_id, payload.type, payload.severity, payload.description)
        return jsonable_encoder(event)

    @app.get("/sessions/{session_id}/security-events")
    def list_security_events(
        session_id: str,
        unresolved_only: bool = False,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return {"events": jsonable_encoder(manager.list_security_events(session_id, unresolved_only))}

    @app.post("/security-events/{event_id}/resolve")
    def resolve_security_event(
        event_id: str,
        payload: ResolvePayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return jsonable_encoder(manager.resolve_security_event(event_id, payload.resolved_by, payload.notes))

    # --- Results ---

    def result_filters(
        test_id: str | None = None,
        student_id: str | None = None,
        status: ResultStatus | None = None,
        grade: str | None = None,
        min_percentage: float | None = Query(default=None, ge=0, le=100),
        max_percentage: float | None = Query(default=None, ge=0, le=100),
    ) -> ResultFilters:
        return ResultFilters(
            test_id=test_id,
            student_id=student_id,
            status=status,
            grade=grade,
            min_percentage=min_percentage,
            max_percentage=max_percentage,
        )

    @app.get("/results")
    def list_results(
        filters: ResultFilters = Depends(result_filters),
        limit: int = Query(default=100, ge=0),
        skip: int = Query(default=0, ge=0),
        sort: Literal["created_at", "score", "percentage"] = "created_at",
        order: Literal["asc", "desc"] = "desc",
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        results = manager.list_results(filters, limit=limit, skip=skip, sort=sort, order=order)
        return {"results": jsonable_encoder(results), "total": manager.count_results(filters)}

    @app.get("/results/export")
    def export_results(
        filters: ResultFilters = Depends(result_filters),
        manager: CbtManager = Depends(manager_dep),
    ) -> PlainTextResponse:
        return PlainTextResponse(
            manager.export_results_csv(filters),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="results.csv"'},
        )

    @app.get("/results/recent")
    def recent_results(
        limit: int = Query(default=10, ge=1),
        student_id: str | None = None,
        test_id: str | None = None,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return {"results": jsonable_encoder(manager.get_recent_results(limit, student_id, test_id))}

    @app.get("/results/{result_id}")
    def get_result(result_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.get_result(result_id))

    @app.post("/results/{result_id}/feedback")
    def add_feedback(
        result_id: str,
        payload: FeedbackPayload,
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return jsonable_encoder(manager.add_result_feedback(result_id, payload.feedback, payload.reviewed_by))

    @app.post("/results/{result_id}/publish")
    def publish_result(result_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.publish_result(result_id))

    @app.get("/results/{result_id}/comparison")
    def get_comparison(result_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.get_result_comparison(result_id))

    @app.get("/students/{student_id}/performance")
    def get_student_performance(student_id: str, manager: CbtManager = Depends(manager_dep)) -> dict[str, Any]:
        return jsonable_encoder(manager.get_student_performance(student_id))

    @app.get("/students/{student_id}/trends")
    def get_result_trends(
        student_id: str,
        limit: int = Query(default=10, ge=1),
        manager: CbtManager = Depends(manager_dep),
    ) -> dict[str, Any]:
        return {"trends": jsonable_encoder(manager.get_result_trends(student_id, limit))}

    return app


def run_api_server(
    cbt_manager: CbtManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> None:
    """Serve the API in the current thread until interrupted."""
    app = create_api_app(cbt_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level.lower())
    server = uvicorn.Server(config)
    server.run()
