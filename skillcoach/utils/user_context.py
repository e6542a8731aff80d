from __future__ import annotations

import os
from typing import Optional


def get_user_id(x_user_id: Optional[str]) -> str:
    """
    Dev-time user identity hook.

    Authentication lives in front of this service; the gateway forwards the
    authenticated user id in X-User-Id.
    """
    v = (x_user_id or "").strip()
    if v:
        return v
    return (os.getenv("DEV_USER_ID") or "dev_user").strip() or "dev_user"


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Opaque caller token; forwarded to the tutoring agent, never verified here."""
    if not authorization:
        return None
    s = str(authorization).strip()
    if not s.lower().startswith("bearer "):
        return None
    token = s.split(" ", 1)[1].strip()
    return token or None
