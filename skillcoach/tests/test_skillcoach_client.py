from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

from skillcoach.services.skillcoach_client import (
    SkillCoachClient,
    SkillCoachConfig,
    extract_explanation,
    extract_questions,
)
from skillcoach.utils.errors import ProviderUnavailable

PRACTICE_URL = "https://agent.example.com/api/practice-by-tag"


def _config(**kw: Any) -> SkillCoachConfig:
    base = dict(
        practice_url=PRACTICE_URL,
        api_key="secret-key",
        max_attempts=2,
        retry_wait_multiplier=0,
    )
    base.update(kw)
    return SkillCoachConfig(**base)


def test_config_from_settings(monkeypatch) -> None:
    monkeypatch.setenv("SMYTHOS_SKILLCOACH_URL", PRACTICE_URL)
    monkeypatch.setenv("SMYTHOS_API_KEY", "k")
    monkeypatch.setenv("SKILLCOACH_TIMEOUT_SECONDS", "3")
    monkeypatch.delenv("SMYTHOS_EXPLANATION_URL", raising=False)
    cfg = SkillCoachConfig.from_settings()
    assert cfg.practice_url == PRACTICE_URL
    assert cfg.api_key == "k"
    assert cfg.timeout_seconds == 3.0
    assert cfg.resolved_explanation_url() == "https://agent.example.com/api/getExplanationForQuestion"
    assert cfg.is_configured()


def test_request_practice_posts_wire_format_and_reads_array_shape() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[
                {"name": "LLMStep", "result": {}},
                {
                    "name": "APIOutput",
                    "result": {"Output": {"questions": [{"question": "q1", "answer": "a1"}]}},
                },
            ],
        )

    client = SkillCoachClient(_config(), transport=httpx.MockTransport(handler))
    out = client.request_practice(student_id="u1", tag="arrays", desired_count=3, auth_token="tok")

    assert out == [{"question": "q1", "answer": "a1"}]
    req = seen[0]
    assert req.method == "POST"
    assert str(req.url) == PRACTICE_URL
    assert req.headers["Authorization"] == "Bearer secret-key"
    assert json.loads(req.content) == {
        "userId": "u1",
        "tag": "arrays",
        "desiredCount": 3,
        "authToken": "tok",
    }


def test_request_practice_reads_object_shape_and_omits_auth_header_without_key() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"result": {"Output": {"questions": [{"question": "q"}]}}})

    client = SkillCoachClient(_config(api_key=None), transport=httpx.MockTransport(handler))
    assert client.request_practice(student_id="u1", tag="t", desired_count=1) == [{"question": "q"}]
    assert "Authorization" not in seen[0].headers


def test_request_practice_retries_transport_errors_then_gives_up() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectTimeout("timed out", request=request)

    client = SkillCoachClient(_config(max_attempts=3), transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderUnavailable):
        client.request_practice(student_id="u1", tag="t", desired_count=1)
    assert calls["n"] == 3


def test_request_practice_maps_http_errors_and_bad_json() -> None:
    client = SkillCoachClient(
        _config(), transport=httpx.MockTransport(lambda r: httpx.Response(500, json={}))
    )
    with pytest.raises(ProviderUnavailable):
        client.request_practice(student_id="u1", tag="t", desired_count=1)

    client = SkillCoachClient(
        _config(), transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>"))
    )
    with pytest.raises(ProviderUnavailable):
        client.request_practice(student_id="u1", tag="t", desired_count=1)


def test_request_practice_unconfigured_raises() -> None:
    client = SkillCoachClient(SkillCoachConfig())
    with pytest.raises(ProviderUnavailable):
        client.request_practice(student_id="u1", tag="t", desired_count=1)


def test_extract_questions_tolerates_garbage() -> None:
    assert extract_questions(None) == []
    assert extract_questions([{"name": "Other"}]) == []
    assert extract_questions({"result": {"Output": {"questions": "nope"}}}) == []
    assert extract_questions({"result": {"Output": {"questions": [1, {"question": "q"}]}}}) == [
        {"question": "q"}
    ]


def test_request_explanation_uses_swapped_route() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body: Dict[str, Any] = {
            "result": {
                "Output": {
                    "explanation": "2+2 is 4",
                    "commonMistakes": ["off by one"],
                    "concept": "addition",
                    "tips": ["count"],
                }
            }
        }
        return httpx.Response(200, json=body)

    client = SkillCoachClient(_config(), transport=httpx.MockTransport(handler))
    exp = client.request_explanation(
        student_id="u1", question="2+2", user_answer="5", correct_answer="4"
    )
    assert str(seen[0].url) == "https://agent.example.com/api/getExplanationForQuestion"
    assert json.loads(seen[0].content)["requestType"] == "explanation"
    assert exp.explanation == "2+2 is 4"
    assert exp.common_mistakes == ["off by one"]
    assert exp.concept == "addition"
    assert exp.tips == ["count"]
    assert exp.fallback is False


def test_request_explanation_falls_back_on_provider_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    client = SkillCoachClient(_config(max_attempts=1), transport=httpx.MockTransport(handler))
    exp = client.request_explanation(
        student_id="u1", question="what is 2+2", user_answer="5", correct_answer="4"
    )
    assert exp.fallback is True
    assert exp.explanation == 'The correct answer is "4" because what is 2+2. Your answer "5" was incorrect.'
    assert exp.common_mistakes == ["Calculation error", "Misunderstanding the operation"]
    assert exp.concept == "Basic arithmetic"
    assert exp.tips == ["Double-check your work", "Practice similar problems"]


def test_extract_explanation_top_level_fields() -> None:
    exp = extract_explanation([{"explanation": "e", "tips": ["t"]}])
    assert exp.explanation == "e"
    assert exp.tips == ["t"]
    assert exp.common_mistakes == []
