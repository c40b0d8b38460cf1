"""Dictionary form of questions shared by test files, bulk import and the API."""

from __future__ import annotations

import dataclasses
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from cbt_app.core.errors import ValidationError
from cbt_app.core.models import (
    QUESTION_CLASSES,
    Difficulty,
    ImageRecognitionQuestion,
    MatchingPair,
    MatchingQuestion,
    McqQuestion,
    Question,
    QuestionType,
)

# Storage bookkeeping that does not travel with a question.
_QUESTION_FIELDS_SKIPPED = frozenset({"id", "version_of"})


def is_text(value: Any) -> bool:
    return isinstance(value, str)


def is_optional_text(value: Any) -> bool:
    return value is None or isinstance(value, str)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_text_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


_FIELD_CHECKS: dict[str, tuple[Callable[[Any], bool], str]] = {
    "text": (is_text, "a string"),
    "points": (is_number, "a number"),
    "section": (is_text, "a string"),
    "hint": (is_optional_text, "a string"),
    "explanation": (is_optional_text, "a string"),
    "created_by": (is_optional_text, "a string"),
    "options": (is_text_list, "a list of strings"),
    "rubric": (is_optional_text, "a string"),
    "model_answer": (is_optional_text, "a string"),
    "image_url": (is_text, "a string"),
}


def question_to_dict(question: Question) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": question.type.value}
    for name, value in iter_fields(question):
        if name not in _QUESTION_FIELDS_SKIPPED:
            payload[name] = to_json_value(value)
    return payload


def question_from_dict(payload: dict[str, Any]) -> Question:
    """Build a question dataclass from its ``type``-tagged dictionary form.

    Raises ``ValidationError`` when the type is unknown or a field has the
    wrong JSON type; content rules are left to ``validate_question``.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Question must be an object.")
    raw_type = payload.get("type")
    try:
        question_type = QuestionType(raw_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown question type: {raw_type!r}.") from exc

    cls = QUESTION_CLASSES[question_type]
    allowed = {field.name for field in dataclasses.fields(cls)} - _QUESTION_FIELDS_SKIPPED
    values = {name: value for name, value in payload.items() if name in allowed}

    errors = [
        f"'{name}' must be {expected}"
        for name, (check, expected) in _FIELD_CHECKS.items()
        if name in values and not check(values[name])
    ]
    if "correct_answer" in values and not _correct_answer_fits(cls, values["correct_answer"]):
        errors.append("'correct_answer' has the wrong type")
    if errors:
        raise ValidationError("Invalid question: " + "; ".join(errors), errors)

    if "difficulty" in values:
        try:
            values["difficulty"] = Difficulty(values["difficulty"])
        except ValueError as exc:
            raise ValidationError(f"Unknown difficulty: {values['difficulty']!r}.") from exc
    if cls is MatchingQuestion:
        values["matching_pairs"] = _parse_pairs(values.get("matching_pairs") or [])

    try:
        return cls(**values)
    except TypeError as exc:
        raise ValidationError(f"Question is missing required fields: {exc}.") from exc


def _correct_answer_fits(cls: type, value: Any) -> bool:
    if cls is McqQuestion:
        return is_text(value) or is_text_list(value)
    if cls is ImageRecognitionQuestion:
        return is_optional_text(value)
    return is_text(value)


def _parse_pairs(pairs: Any) -> list[MatchingPair]:
    if not isinstance(pairs, list):
        raise ValidationError("'matching_pairs' must be a list.")
    parsed = []
    for pair in pairs:
        if not isinstance(pair, dict) or not is_text(pair.get("left")) or not is_text(pair.get("right")):
            raise ValidationError("Matching pairs need string 'left' and 'right'.")
        parsed.append(MatchingPair(left=pair["left"], right=pair["right"]))
    return parsed


def iter_fields(instance: Any):
    for item in dataclasses.fields(instance):
        yield item.name, getattr(instance, item.name)


def to_json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value):
        return {name: to_json_value(item) for name, item in iter_fields(value)}
    if isinstance(value, list):
        return [to_json_value(item) for item in value]
    return value
