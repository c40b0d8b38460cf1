"""Essay scorers: a remote LLM grader and a local heuristic fallback."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from cbt_app.core.errors import EssayScoringError

logger = logging.getLogger(__name__)

_ANTHROPIC_VERSION = "2023-06-01"

_PROMPT_TEMPLATE = """You are an expert educator tasked with scoring a student's essay response.
Please evaluate the following essay based on the provided question, rubric, and model answer.

Question: {question}
{rubric}{model_answer}
Student's Essay: {essay}

Please provide:
1. A numerical score out of {max_score}
2. Detailed feedback on strengths and weaknesses
3. A confidence level (0-1) for your evaluation
4. Specific suggestions for improvement

Respond in JSON format with the following structure:
{{"score": number, "feedback": string, "confidence": number, "suggestions": string[]}}
"""

_FALLBACK_SUGGESTIONS = (
    "Ensure your essay has a clear introduction and conclusion",
    "Directly address all parts of the question",
    "Use specific examples to support your points",
    "Proofread for grammar and spelling errors",
)


@dataclass(slots=True)
class EssayScoringRequest:
    essay_text: str
    question: str
    max_score: float
    rubric: str | None = None
    model_answer: str | None = None


@dataclass(slots=True)
class EssayScore:
    score: float
    feedback: str
    confidence: float
    suggestions: list[str] = field(default_factory=list)


class EssayScorer(Protocol):
    def score_essay(self, request: EssayScoringRequest) -> EssayScore:
        ...


class RemoteEssayScorer:
    """Scores essays through an Anthropic-compatible messages endpoint."""

    def __init__(
        self,
        api_key: str | None,
        api_url: str,
        model: str,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.timeout = timeout
        self._client = client

    def score_essay(self, request: EssayScoringRequest) -> EssayScore:
        if not self.api_key:
            raise EssayScoringError("Essay scorer API key not configured")

        payload = {
            "model": self.model,
            "max_tokens": 1024,
            "messages": [{"role": "user", "content": _build_prompt(request)}],
        }
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": _ANTHROPIC_VERSION,
        }

        try:
            if self._client is not None:
                response = self._client.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            else:
                response = httpx.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            content = response.json()["content"][0]["text"]
        except httpx.HTTPError as exc:
            raise EssayScoringError(f"Essay scorer request failed: {exc}") from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise EssayScoringError("Essay scorer returned an unexpected payload") from exc

        return _parse_reply(content, request.max_score)


class HeuristicEssayScorer:
    """Local scorer based on length and a few structural markers."""

    def score_essay(self, request: EssayScoringRequest) -> EssayScore:
        text = request.essay_text.lower()
        word_count = len(request.essay_text.split())
        has_introduction = "introduction" in text or "first" in text
        has_conclusion = "conclusion" in text or "finally" in text
        mentions_question = request.question.lower() in text

        max_score = request.max_score
        score = min(word_count / 50, 1) * max_score * 0.2
        if has_introduction:
            score += max_score * 0.1
        if has_conclusion:
            score += max_score * 0.1
        if mentions_question:
            score += max_score * 0.1
        score += max_score * 0.25

        structure = "good" if has_introduction and has_conclusion else "fair"
        addressed = (
            "It addresses the question well."
            if mentions_question
            else "It could better address the question."
        )
        return EssayScore(
            score=float(round(score)),
            feedback=f"This essay has {word_count} words and {structure} structure. {addressed}",
            confidence=0.5,
            suggestions=list(_FALLBACK_SUGGESTIONS),
        )


class FallbackEssayScorer:
    """Tries ``primary`` first and falls back when it cannot score."""

    def __init__(self, primary: EssayScorer, fallback: EssayScorer) -> None:
        self._primary = primary
        self._fallback = fallback

    def score_essay(self, request: EssayScoringRequest) -> EssayScore:
        try:
            return self._primary.score_essay(request)
        except EssayScoringError as exc:
            logger.warning("Primary essay scorer failed, using fallback: %s", exc)
            return self._fallback.score_essay(request)


def _build_prompt(request: EssayScoringRequest) -> str:
    return _PROMPT_TEMPLATE.format(
        question=request.question,
        rubric=f"\nRubric: {request.rubric}\n" if request.rubric else "",
        model_answer=f"\nModel Answer: {request.model_answer}\n" if request.model_answer else "",
        essay=request.essay_text,
        max_score=_format_number(request.max_score),
    )


def _parse_reply(content: str, max_score: float) -> EssayScore:
    try:
        parsed = json.loads(content)
        score = float(parsed["score"])
        feedback = str(parsed.get("feedback", ""))
        confidence = float(parsed.get("confidence", 0.7))
        suggestions = [str(item) for item in parsed.get("suggestions") or []]
    except (ValueError, KeyError, TypeError, AttributeError):
        logger.warning("Could not parse essay scorer reply as JSON, extracting fields from text")
        score = _extract_score(content, max_score)
        feedback = _extract_feedback(content)
        confidence = _extract_confidence(content)
        suggestions = _extract_suggestions(content)

    return EssayScore(
        score=min(max(score, 0.0), float(max_score)),
        feedback=feedback,
        confidence=min(max(confidence, 0.0), 1.0),
        suggestions=suggestions,
    )


def _extract_score(text: str, max_score: float) -> float:
    match = re.search(r"score[\s:]*(\d+(?:\.\d+)?)", text, re.IGNORECASE)
    if match:
        return min(float(match.group(1)), float(max_score))
    return max_score / 2


def _extract_feedback(text: str) -> str:
    match = re.search(
        r"feedback[\s:]*([\s\S]*?)(?=\n\n|\nscore|\nconfidence|\nsuggestions|$)",
        text,
        re.IGNORECASE,
    )
    if match and match.group(1).strip():
        return match.group(1).strip()
    return text.split("\n\n")[0].strip()


def _extract_confidence(text: str) -> float:
    match = re.search(r"confidence[\s:]*(\d+(?:\.\d+)?)", text, re.IGNORECASE)
    if match:
        return float(match.group(1))
    return 0.7


def _extract_suggestions(text: str) -> list[str]:
    match = re.search(r"suggestions[\s:]*([\s\S]*)", text, re.IGNORECASE)
    if not match:
        return []
    return [line.strip() for line in match.group(1).strip().splitlines() if line.strip()]


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
