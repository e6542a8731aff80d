"""
Client for the external SkillCoach tutoring agent.

Two endpoints:
- practice-by-tag: returns candidate practice questions for a student/tag.
- getExplanationForQuestion: explains a wrong answer.

Response shapes accepted (both seen in production):
- object: {"result": {"Output": {...}}}
- array: [..., {"name": "APIOutput", "result": {"Output": {...}}}, ...]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from skillcoach.models.schemas import Explanation
from skillcoach.utils.errors import ProviderUnavailable
from skillcoach.utils.observability import log_event, redact_url
from skillcoach.utils.settings import Settings, get_settings

logger = logging.getLogger(__name__)

PRACTICE_ROUTE = "/practice-by-tag"
EXPLANATION_ROUTE = "/getExplanationForQuestion"


@dataclass(frozen=True)
class SkillCoachConfig:
    practice_url: Optional[str] = None
    explanation_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: float = 10.0
    explanation_timeout_seconds: float = 15.0
    max_attempts: int = 2
    retry_wait_multiplier: float = 0.5

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SkillCoachConfig":
        s = settings or get_settings()
        return cls(
            practice_url=(s.skillcoach_practice_url or "").strip() or None,
            explanation_url=(s.skillcoach_explanation_url or "").strip() or None,
            api_key=(s.skillcoach_api_key or "").strip() or None,
            timeout_seconds=float(s.skillcoach_timeout_seconds),
            explanation_timeout_seconds=float(s.skillcoach_explanation_timeout_seconds),
            max_attempts=max(1, int(s.skillcoach_max_attempts)),
        )

    def is_configured(self) -> bool:
        return bool(self.practice_url)

    def resolved_explanation_url(self) -> Optional[str]:
        if self.explanation_url:
            return self.explanation_url
        if self.practice_url:
            return self.practice_url.replace(PRACTICE_ROUTE, EXPLANATION_ROUTE)
        return None


def _api_output(data: Any) -> Optional[Dict[str, Any]]:
    """Locate `result.Output` in either response shape."""
    if isinstance(data, list):
        item = next(
            (x for x in data if isinstance(x, dict) and x.get("name") == "APIOutput"),
            None,
        )
        data = item
    if not isinstance(data, dict):
        return None
    result = data.get("result")
    if not isinstance(result, dict):
        return None
    output = result.get("Output")
    return output if isinstance(output, dict) else None


def extract_questions(data: Any) -> List[Dict[str, Any]]:
    output = _api_output(data)
    if not output:
        return []
    questions = output.get("questions")
    if not isinstance(questions, list):
        return []
    return [q for q in questions if isinstance(q, dict)]


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def _explanation_from_fields(src: Dict[str, Any]) -> Explanation:
    return Explanation(
        explanation=(str(src["explanation"]) if src.get("explanation") else None),
        common_mistakes=_str_list(src.get("commonMistakes")),
        concept=str(src.get("concept") or ""),
        tips=_str_list(src.get("tips")),
    )


def extract_explanation(data: Any) -> Explanation:
    output = _api_output(data)
    if output:
        return _explanation_from_fields(output)
    # Some agent builds answer with the fields at the top level.
    first = data[0] if isinstance(data, list) and data else data
    if isinstance(first, dict):
        return _explanation_from_fields(first)
    return Explanation()


def fallback_explanation(
    *, question: str, user_answer: str, correct_answer: str
) -> Explanation:
    return Explanation(
        explanation=(
            f'The correct answer is "{correct_answer}" because {question}. '
            f'Your answer "{user_answer}" was incorrect.'
        ),
        common_mistakes=["Calculation error", "Misunderstanding the operation"],
        concept="Basic arithmetic",
        tips=["Double-check your work", "Practice similar problems"],
        fallback=True,
    )


class SkillCoachClient:
    def __init__(
        self,
        config: SkillCoachConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _post_json(self, url: str, payload: Dict[str, Any], *, timeout: float) -> Any:
        """POST with bounded retries on transport errors; any failure -> ProviderUnavailable."""
        retrying = Retrying(
            retry=retry_if_exception_type(httpx.TransportError),
            wait=wait_exponential(
                multiplier=self.config.retry_wait_multiplier, min=0, max=5
            ),
            stop=stop_after_attempt(max(1, int(self.config.max_attempts))),
            reraise=True,
        )
        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                for attempt in retrying:
                    with attempt:
                        r = client.post(url, json=payload, headers=self._headers())
                r.raise_for_status()
                return r.json()
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(
                f"agent responded {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"agent unreachable: {e.__class__.__name__}") from e
        except ValueError as e:
            raise ProviderUnavailable("agent returned invalid JSON") from e

    def request_practice(
        self,
        *,
        student_id: str,
        tag: str,
        desired_count: int,
        auth_token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        url = self.config.practice_url
        if not url:
            raise ProviderUnavailable("SMYTHOS_SKILLCOACH_URL is not set")
        payload = {
            "userId": student_id,
            "tag": tag,
            "desiredCount": int(desired_count),
            "authToken": auth_token,
        }
        log_event(
            logger,
            "skillcoach_practice_request",
            url=redact_url(url),
            student_id=student_id,
            tag=tag,
            desired_count=int(desired_count),
            has_auth_token=bool(auth_token),
        )
        try:
            data = self._post_json(url, payload, timeout=self.config.timeout_seconds)
        except ProviderUnavailable as e:
            log_event(
                logger,
                "skillcoach_practice_failed",
                level="warning",
                tag=tag,
                error=str(e),
            )
            raise
        questions = extract_questions(data)
        log_event(
            logger,
            "skillcoach_practice_response",
            tag=tag,
            questions=len(questions),
            shape="array" if isinstance(data, list) else "object",
        )
        return questions

    def request_explanation(
        self,
        *,
        student_id: str,
        question: str,
        user_answer: str,
        correct_answer: str,
        auth_token: Optional[str] = None,
    ) -> Explanation:
        url = self.config.resolved_explanation_url()
        if not url:
            log_event(logger, "skillcoach_explanation_unconfigured", level="warning")
            return Explanation()
        payload = {
            "userId": student_id,
            "question": question,
            "userAnswer": user_answer,
            "correctAnswer": correct_answer,
            "authToken": auth_token,
            "requestType": "explanation",
        }
        try:
            data = self._post_json(
                url, payload, timeout=self.config.explanation_timeout_seconds
            )
        except ProviderUnavailable as e:
            log_event(
                logger,
                "skillcoach_explanation_fallback",
                level="warning",
                error=str(e),
            )
            return fallback_explanation(
                question=question,
                user_answer=user_answer,
                correct_answer=correct_answer,
            )
        return extract_explanation(data)
