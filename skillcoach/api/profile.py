from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header

from skillcoach.api.deps import performance_store_dep
from skillcoach.services.performance_service import mastery_profile
from skillcoach.utils.performance_store import BasePerformanceStore
from skillcoach.utils.user_context import get_user_id

router = APIRouter()


@router.get("/profile")
def get_profile(
    *,
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    store: BasePerformanceStore = Depends(performance_store_dep),
) -> Dict[str, Any]:
    """Tag -> {total, correct, percentage}; empty until the first scored submission."""
    user_id = get_user_id(x_user_id)
    record = store.get(user_id)
    performance = {t: m.model_dump() for t, m in mastery_profile(record).items()}
    return {
        "user_id": user_id,
        "performance": performance,
        "last_updated": record.last_updated.isoformat() if record and record.last_updated else None,
    }
