from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ErrorCode(str, Enum):
    # 4xx - Client errors
    INVALID_REQUEST = "E4000"
    EXTRACTION_FAILED = "E4001"
    NO_QUESTIONS_PARSED = "E4002"
    NOT_FOUND = "E4004"
    CONFLICT = "E4090"
    UNAUTHORIZED = "E4010"
    PAYLOAD_TOO_LARGE = "E4130"
    VALIDATION_ERROR = "E4220"

    # 5xx - Service errors
    SERVICE_ERROR = "E5000"
    PROVIDER_UNAVAILABLE = "E5001"
    STORE_UNAVAILABLE = "E5003"
    PERFORMANCE_WRITE_FAILED = "E5004"


class SkillCoachError(Exception):
    """Base error for the SkillCoach core."""


class ExtractionFailure(SkillCoachError):
    """Document could not be read, or yielded no text."""


class NoQuestionsParsed(SkillCoachError):
    """Document text matched zero valid question blocks."""


class InvalidEntry(SkillCoachError):
    """One parsed block is unusable (empty/non-text field, unknown difficulty)."""


class ProviderUnavailable(SkillCoachError):
    """AI provider unreachable, timed out, misconfigured or answered garbage."""


class StoreUnavailable(SkillCoachError):
    """Persistence backend is not configured or not reachable."""


class PerformanceWriteError(StoreUnavailable):
    """Counter update could not be applied after retries."""


class NoQuestionsAvailable(SkillCoachError):
    """No stored entries match the requested assessment filter."""


class AssessmentNotFound(SkillCoachError):
    """Unknown assessment id, or the assessment belongs to another student."""


class AssessmentAlreadyCompleted(SkillCoachError):
    pass


def error_code_for_http_status(status_code: int) -> ErrorCode:
    if status_code == 401:
        return ErrorCode.UNAUTHORIZED
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    if status_code == 409:
        return ErrorCode.CONFLICT
    if status_code == 413:
        return ErrorCode.PAYLOAD_TOO_LARGE
    if status_code == 422:
        return ErrorCode.VALIDATION_ERROR
    if 400 <= int(status_code) < 500:
        return ErrorCode.INVALID_REQUEST
    if status_code == 503:
        return ErrorCode.STORE_UNAVAILABLE
    return ErrorCode.SERVICE_ERROR


def build_error_payload(
    *,
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Canonical error shape for HTTP JSON responses.

    `error` stays the primary string message (clients of the original service parse it);
    `message` is an alias.
    """
    payload: Dict[str, Any] = {"code": code.value, "error": str(message), "message": str(message)}
    if details is not None:
        payload["details"] = details
    if request_id:
        payload["request_id"] = str(request_id)
    return payload


_ERROR_HTTP: Tuple[Tuple[type, int, ErrorCode], ...] = (
    (ExtractionFailure, 400, ErrorCode.EXTRACTION_FAILED),
    (NoQuestionsParsed, 400, ErrorCode.NO_QUESTIONS_PARSED),
    (InvalidEntry, 400, ErrorCode.INVALID_REQUEST),
    (NoQuestionsAvailable, 404, ErrorCode.NOT_FOUND),
    (AssessmentNotFound, 404, ErrorCode.NOT_FOUND),
    (AssessmentAlreadyCompleted, 409, ErrorCode.CONFLICT),
    (ProviderUnavailable, 502, ErrorCode.PROVIDER_UNAVAILABLE),
    (PerformanceWriteError, 503, ErrorCode.PERFORMANCE_WRITE_FAILED),
    (StoreUnavailable, 503, ErrorCode.STORE_UNAVAILABLE),
)


def http_status_for_error(exc: SkillCoachError) -> Tuple[int, ErrorCode]:
    for cls, status_code, code in _ERROR_HTTP:
        if isinstance(exc, cls):
            return status_code, code
    return 500, ErrorCode.SERVICE_ERROR
