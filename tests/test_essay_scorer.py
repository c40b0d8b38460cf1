import json

import httpx
import pytest

from cbt_app.core.errors import EssayScoringError
from cbt_app.core.services.essay_scorer import (
    EssayScore,
    EssayScoringRequest,
    FallbackEssayScorer,
    HeuristicEssayScorer,
    RemoteEssayScorer,
)

API_URL = "https://scorer.example/v1/messages"


def _request(**overrides):
    values = dict(
        essay_text="First, plants capture light. Finally, they store energy as sugar.",
        question="Explain photosynthesis",
        max_score=10,
        rubric="Mentions light and sugar",
    )
    values.update(overrides)
    return EssayScoringRequest(**values)


def _scorer(handler, api_key="secret"):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return RemoteEssayScorer(api_key=api_key, api_url=API_URL, model="test-model", client=client)


def _reply(text):
    return httpx.Response(200, json={"content": [{"type": "text", "text": text}]})


def test_remote_scorer_parses_json_reply():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return _reply(json.dumps({"score": 8, "feedback": "Solid", "confidence": 0.9, "suggestions": ["More detail"]}))

    score = _scorer(handler).score_essay(_request())

    assert score == EssayScore(score=8, feedback="Solid", confidence=0.9, suggestions=["More detail"])
    assert seen["headers"]["x-api-key"] == "secret"
    assert seen["body"]["model"] == "test-model"
    prompt = seen["body"]["messages"][0]["content"]
    assert "Explain photosynthesis" in prompt
    assert "Rubric: Mentions light and sugar" in prompt
    assert "out of 10" in prompt


def test_remote_scorer_clamps_score():
    score = _scorer(lambda request: _reply('{"score": 42, "feedback": "", "confidence": 3}')).score_essay(_request())
    assert score.score == 10
    assert score.confidence == 1


def test_remote_scorer_extracts_fields_from_prose():
    text = "Score: 6\nFeedback: Covers the basics but lacks depth.\n\nConfidence: 0.8\nSuggestions:\nAdd examples"
    score = _scorer(lambda request: _reply(text)).score_essay(_request())
    assert score.score == 6
    assert score.feedback == "Covers the basics but lacks depth."
    assert score.confidence == pytest.approx(0.8)
    assert score.suggestions == ["Add examples"]


def test_remote_scorer_defaults_when_nothing_is_found():
    score = _scorer(lambda request: _reply("I cannot grade this.")).score_essay(_request())
    assert score.score == 5
    assert score.confidence == pytest.approx(0.7)


def test_remote_scorer_requires_api_key():
    with pytest.raises(EssayScoringError):
        _scorer(lambda request: _reply("{}"), api_key=None).score_essay(_request())


@pytest.mark.parametrize(
    "response",
    [httpx.Response(500, json={"error": "boom"}), httpx.Response(200, json={"unexpected": True})],
)
def test_remote_scorer_wraps_failures(response):
    with pytest.raises(EssayScoringError):
        _scorer(lambda request: response).score_essay(_request())


def test_heuristic_scorer():
    score = HeuristicEssayScorer().score_essay(_request())
    # 10 words -> 0.4, intro 1, conclusion 1, content 2.5
    assert score.score == 5
    assert score.confidence == 0.5
    assert len(score.suggestions) == 4
    assert "10 words" in score.feedback


def test_fallback_scorer_uses_heuristic_on_failure():
    remote = _scorer(lambda request: httpx.Response(503))
    scorer = FallbackEssayScorer(primary=remote, fallback=HeuristicEssayScorer())
    assert scorer.score_essay(_request()).confidence == 0.5
