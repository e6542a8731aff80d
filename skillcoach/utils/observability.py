from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_RE_BEARER = re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._-]{10,}\b")
_RE_JWT = re.compile(
    r"\beyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\b"
)
_SECRET_FIELD_MARKERS = ("token", "api_key", "apikey", "authorization", "password")


def _safe_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_safe_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    try:
        return str(value)
    except Exception:
        return repr(value)


def _redact_text(text: str) -> str:
    s = _RE_BEARER.sub("Bearer ***", text)
    return _RE_JWT.sub("***", s)


def _redact(key: str, value: Any) -> Any:
    k = key.lower()
    if any(m in k for m in _SECRET_FIELD_MARKERS):
        return "***" if value else value
    if isinstance(value, str):
        return _redact_text(value)
    if isinstance(value, list):
        return [_redact(key, v) for v in value]
    if isinstance(value, dict):
        return {kk: _redact(kk, vv) for kk, vv in value.items()}
    return value


def redact_url(
    url: str,
    *,
    redact_params: tuple[str, ...] = (
        "access_token",
        "token",
        "apikey",
        "api_key",
        "sig",
        "signature",
    ),
) -> str:
    """
    Redact sensitive query params from a URL for logging.
    Never raises; returns a best-effort sanitized URL.
    """
    try:
        s = str(url or "").strip()
        if not s:
            return s
        parts = urlsplit(s)
        if not parts.query:
            return s
        redact_set = {p.lower() for p in redact_params}
        q = []
        for k, v in parse_qsl(parts.query, keep_blank_values=True):
            q.append((k, "***") if str(k).lower() in redact_set else (k, v))
        return urlunsplit(
            (parts.scheme, parts.netloc, parts.path, urlencode(q, doseq=True), parts.fragment)
        )
    except Exception:
        return ""


def log_event(logger, event: str, *, level: str = "info", **fields: Any) -> None:
    """
    Emit a single-line JSON log with a stable `event` key.
    Fields that look like credentials are masked. Best-effort, never raises.
    """
    try:
        payload: Dict[str, Any] = {"event": event}
        for k, v in fields.items():
            if v is None:
                continue
            payload[str(k)] = _redact(str(k), _safe_value(v))
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        fn = getattr(logger, level, None) or getattr(logger, "info", None)
        if fn:
            fn(line)
    except Exception:
        return


def get_request_id_from_headers(headers: Any) -> Optional[str]:
    """
    Extract a correlation id from X-Request-Id / X-Correlation-Id.
    Returns stripped string or None.
    """
    if not hasattr(headers, "get"):
        return None
    for key in ("x-request-id", "X-Request-Id", "x-correlation-id", "X-Correlation-Id"):
        v = headers.get(key)
        if not v:
            continue
        s = str(v).strip()
        if s:
            return s
    return None
