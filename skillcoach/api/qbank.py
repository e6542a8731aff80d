from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from skillcoach.api.deps import qbank_store_dep
from skillcoach.models.schemas import Difficulty
from skillcoach.services.tag_registry import list_tags
from skillcoach.utils.qbank_store import BaseQBankStore

router = APIRouter()

_DIFFICULTY_VALUES = {d.value for d in Difficulty}


class QuestionOut(BaseModel):
    id: Optional[str] = None
    question: str
    answer: str
    tags: List[str] = Field(default_factory=list)
    difficulty: str
    type: Optional[int] = None


@router.get("/tags")
def get_tags(store: BaseQBankStore = Depends(qbank_store_dep)) -> Dict[str, Any]:
    names = list_tags(store)
    if not names:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No tags found.")
    return {"tags": names}


@router.get("/questions")
def get_questions(
    *,
    tag: str = Query(..., min_length=1),
    difficulties: str = Query(..., description="CSV, e.g. easy,medium"),
    limit: int = Query(default=10),
    store: BaseQBankStore = Depends(qbank_store_dep),
) -> Dict[str, Any]:
    wanted = [d.strip().lower() for d in difficulties.split(",") if d.strip()]
    unknown = [d for d in wanted if d not in _DIFFICULTY_VALUES]
    if not wanted or unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"difficulties must be a CSV of {sorted(_DIFFICULTY_VALUES)}",
        )
    entries = store.find_entries(tag=tag, difficulties=wanted, limit=max(int(limit), 1))
    return {
        "questions": [
            QuestionOut(
                id=e.id,
                question=e.question_text,
                answer=e.answer_text,
                tags=e.tags,
                difficulty=e.difficulty.value,
                type=e.topic_type_code,
            ).model_dump()
            for e in entries
        ]
    }
