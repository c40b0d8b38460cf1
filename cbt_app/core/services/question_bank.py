"""Service for authoring and storing questions."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from cbt_app.constants.test_constants import QUESTION_EXPORT_LIMIT
from cbt_app.core import document_store as collections
from cbt_app.core.document_store import DocumentStore
from cbt_app.core.errors import ValidationError
from cbt_app.core.models import (
    Difficulty,
    EssayQuestion,
    FillBlankQuestion,
    ImageRecognitionQuestion,
    MatchingQuestion,
    McqQuestion,
    Question,
    QuestionImportSummary,
    QuestionStatistics,
    QuestionType,
    Test,
    TestStatus,
    TrueFalseQuestion,
)
from cbt_app.core.question_format import question_from_dict, question_to_dict

logger = logging.getLogger(__name__)


class QuestionBank:
    """Manages the lifecycle and storage of questions."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def add_question(self, question: Question) -> Question:
        prepared = self._prepare_question(question)
        prepared.id = ""
        stored = self._store.insert(collections.QUESTIONS, prepared)
        logger.info("Question created: %s (%s)", stored.id, stored.type.value)
        return stored

    def get_question(self, question_id: str) -> Question:
        return self._store.require(collections.QUESTIONS, question_id, "Question")

    def get_questions(self, question_ids: list[str]) -> list[Question]:
        return self._store.get_many(collections.QUESTIONS, question_ids)

    def list_questions(
        self,
        question_type: QuestionType | None = None,
        difficulty: Difficulty | None = None,
        created_by: str | None = None,
        limit: int | None = None,
    ) -> list[Question]:
        def matches(question: Question) -> bool:
            if question_type is not None and question.type is not question_type:
                return False
            if difficulty is not None and question.difficulty is not difficulty:
                return False
            return created_by is None or question.created_by == created_by

        return self._store.find(collections.QUESTIONS, matches, limit=limit)

    def search_questions(self, query: str, limit: int = 10) -> list[Question]:
        """Case-insensitive match on question text, explanation and hint."""
        needle = query.strip().casefold()
        if not needle:
            raise ValidationError("Search query is required.")
        if limit < 1:
            raise ValidationError("Limit must be at least 1.")

        def matches(question: Question) -> bool:
            fields = (question.text, question.explanation, question.hint)
            return any(value and needle in value.casefold() for value in fields)

        return self._store.find(collections.QUESTIONS, matches, limit=limit)

    def update_question(self, question_id: str, question: Question) -> Question:
        """Update a question in place, or version it once tests have gone live with it.

        The returned question is the one callers should reference from now on.
        """
        original = self.get_question(question_id)
        prepared = self._prepare_question(question)
        prepared.created_by = original.created_by

        if self._is_locked(question_id):
            prepared.id = ""
            prepared.version_of = original.id
            stored = self._store.insert(collections.QUESTIONS, prepared)
            logger.info("Question %s is in use; stored new version %s", question_id, stored.id)
            return stored

        prepared.id = original.id
        prepared.version_of = original.version_of
        return self._store.save(collections.QUESTIONS, prepared)

    def get_question_versions(self, question_id: str) -> list[Question]:
        """Questions stored as edits of ``question_id``, newest first."""
        self.get_question(question_id)
        versions = self._store.find(collections.QUESTIONS, lambda question: question.version_of == question_id)
        versions.reverse()
        return versions

    def delete_question(self, question_id: str) -> None:
        self.get_question(question_id)
        referencing = self._referencing_tests(question_id)
        if referencing:
            titles = ", ".join(test.title for test in referencing)
            raise ValidationError(f"Question is used by test(s): {titles}.")
        self._store.delete(collections.QUESTIONS, question_id)
        logger.info("Question deleted: %s", question_id)

    def get_question_statistics(self) -> QuestionStatistics:
        by_type = {question_type.value: 0 for question_type in QuestionType}
        by_difficulty = {difficulty.value: 0 for difficulty in Difficulty}
        questions = self._store.find(collections.QUESTIONS)
        for question in questions:
            by_type[question.type.value] += 1
            by_difficulty[question.difficulty.value] += 1
        return QuestionStatistics(
            total_questions=len(questions),
            by_type=by_type,
            by_difficulty=by_difficulty,
        )

    def import_questions(self, payloads: list[Any], created_by: str | None = None) -> QuestionImportSummary:
        """Store every valid question dictionary; invalid ones are counted and skipped."""
        summary = QuestionImportSummary()
        for position, payload in enumerate(payloads, start=1):
            try:
                question = question_from_dict(payload)
                question.created_by = created_by
                self.add_question(question)
            except ValidationError as exc:
                logger.warning("Skipped question %d on import: %s", position, exc)
                summary.failed += 1
                summary.errors.append(f"Question {position}: {exc}")
            else:
                summary.success += 1
        logger.info("Imported questions: %d success, %d failed", summary.success, summary.failed)
        return summary

    def export_questions(
        self,
        question_type: QuestionType | None = None,
        difficulty: Difficulty | None = None,
        created_by: str | None = None,
    ) -> list[dict[str, Any]]:
        questions = self.list_questions(question_type, difficulty, created_by, limit=QUESTION_EXPORT_LIMIT)
        exported = []
        for question in questions:
            payload = question_to_dict(question)
            payload["id"] = question.id
            exported.append(payload)
        return exported

    def _is_locked(self, question_id: str) -> bool:
        """A question is frozen once a non-draft test or any session uses it."""
        if self._referencing_tests(question_id, live_only=True):
            return True
        return self._store.count(
            collections.SESSIONS,
            lambda session: question_id in session.question_order,
        ) > 0

    def _referencing_tests(self, question_id: str, live_only: bool = False) -> list[Test]:
        def uses_question(test: Test) -> bool:
            if live_only and test.status is TestStatus.DRAFT:
                return False
            return question_id in test.questions

        return self._store.find(collections.TESTS, uses_question)

    def _prepare_question(self, question: Question) -> Question:
        """Validate and normalize a question before storage."""
        validate_question(question)
        prepared = dataclasses.replace(question, text=question.text.strip())
        if isinstance(prepared, McqQuestion):
            prepared.options = [option.strip() for option in prepared.options]
            if isinstance(prepared.correct_answer, list):
                prepared.correct_answer = [item.strip() for item in prepared.correct_answer]
            else:
                prepared.correct_answer = prepared.correct_answer.strip()
        return prepared


def validate_question(question: Question) -> None:
    """Raise ``ValidationError`` listing every problem found in ``question``."""
    errors: list[str] = []

    if not question.text or not question.text.strip():
        errors.append("Question text is required")
    if question.points is None or question.points <= 0:
        errors.append("Points must be greater than 0")

    if isinstance(question, McqQuestion):
        errors.extend(_validate_mcq(question))
    elif isinstance(question, TrueFalseQuestion):
        if (question.correct_answer or "").lower() not in ("true", "false"):
            errors.append("Correct answer must be true or false")
    elif isinstance(question, FillBlankQuestion):
        if not (question.correct_answer or "").strip():
            errors.append("Correct answer is required for fill-in-the-blank")
    elif isinstance(question, MatchingQuestion):
        if len(question.matching_pairs) < 2:
            errors.append("Matching questions require at least 2 pairs")
        elif any(not pair.left.strip() or not pair.right.strip() for pair in question.matching_pairs):
            errors.append("Matching pairs cannot have empty sides")
    elif isinstance(question, ImageRecognitionQuestion):
        if not question.image_url:
            errors.append("Image URL is required for image recognition")
    elif not isinstance(question, EssayQuestion):
        errors.append("Question type is required")

    if errors:
        raise ValidationError("Invalid question: " + "; ".join(errors), errors)


def _validate_mcq(question: McqQuestion) -> list[str]:
    errors: list[str] = []
    options = [option.strip() for option in question.options]
    if len(options) < 2:
        errors.append("MCQ questions require at least 2 options")
    if any(not option for option in options):
        errors.append("Option text cannot be empty")

    correct = question.correct_answer
    if isinstance(correct, list):
        if not correct:
            errors.append("At least one correct answer is required")
        elif any(item.strip() not in options for item in correct):
            errors.append("Correct answers must be among the options")
    elif not correct:
        errors.append("Correct answer is required for MCQ")
    elif correct.strip() not in options:
        errors.append("Correct answer must be one of the options")
    return errors
