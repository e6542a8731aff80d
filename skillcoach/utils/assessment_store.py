"""
Assessment persistence: which entries were handed to a student, their answers,
and whether the assessment has been scored.

Backends follow QBANK_BACKEND, since assessment rows reference qa_entries:
- InMemoryAssessmentStore: process-local (dev/tests, not for production).
- SupabaseAssessmentStore: `assessments` + `assessment_questions` tables
  (migrations/0002_batches_and_assessments.up.sql).
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from skillcoach.models.schemas import Assessment, AssessmentQuestion
from skillcoach.utils.errors import StoreUnavailable
from skillcoach.utils.settings import get_settings
from skillcoach.utils.supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

_CACHED_STORE: BaseAssessmentStore | None = None
_CACHED_STORE_CONFIG: tuple[str, str | None, str | None] | None = None

# question_id -> (student_answer, is_correct)
AnswerMap = Dict[str, Tuple[str, bool]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseAssessmentStore:
    def create(
        self,
        *,
        student_id: str,
        question_ids: List[str],
        topic_type_code: Optional[int] = None,
    ) -> Assessment:
        raise NotImplementedError

    def get(self, assessment_id: str) -> Optional[Assessment]:
        raise NotImplementedError

    def complete(self, assessment_id: str, answers: AnswerMap) -> bool:
        """
        Flip `completed` and store the answers. Returns False (and writes nothing)
        when the assessment was already completed.
        """
        raise NotImplementedError


class InMemoryAssessmentStore(BaseAssessmentStore):
    def __init__(self):
        self._lock = threading.Lock()
        self.assessments: Dict[str, Assessment] = {}

    def create(
        self,
        *,
        student_id: str,
        question_ids: List[str],
        topic_type_code: Optional[int] = None,
    ) -> Assessment:
        a = Assessment(
            id=uuid.uuid4().hex,
            student_id=student_id,
            topic_type_code=topic_type_code,
            questions=[AssessmentQuestion(question_id=str(q)) for q in question_ids],
            created_at=_utc_now(),
        )
        with self._lock:
            self.assessments[a.id] = a
        return a.model_copy(deep=True)

    def get(self, assessment_id: str) -> Optional[Assessment]:
        with self._lock:
            a = self.assessments.get(str(assessment_id))
            return a.model_copy(deep=True) if a else None

    def complete(self, assessment_id: str, answers: AnswerMap) -> bool:
        with self._lock:
            a = self.assessments.get(str(assessment_id))
            if a is None or a.completed:
                return False
            questions = []
            for q in a.questions:
                if q.question_id in answers:
                    student_answer, is_correct = answers[q.question_id]
                    q = AssessmentQuestion(
                        question_id=q.question_id,
                        student_answer=student_answer,
                        is_correct=bool(is_correct),
                    )
                questions.append(q)
            self.assessments[a.id] = a.model_copy(
                update={"questions": questions, "completed": True, "completed_at": _utc_now()}
            )
            return True


def _rows(resp: Any) -> List[Dict[str, Any]]:
    data = getattr(resp, "data", None)
    if not isinstance(data, list):
        return []
    return [r for r in data if isinstance(r, dict)]


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class SupabaseAssessmentStore(BaseAssessmentStore):
    def __init__(self, client: Any):
        self.client = client

    def _table(self, name: str):
        return self.client.table(name)

    def create(
        self,
        *,
        student_id: str,
        question_ids: List[str],
        topic_type_code: Optional[int] = None,
    ) -> Assessment:
        try:
            resp = (
                self._table("assessments")
                .insert({"student_id": student_id, "type": topic_type_code})
                .execute()
            )
            rows = _rows(resp)
            if not rows:
                raise StoreUnavailable("assessment insert returned no row")
            row = rows[0]
            assessment_id = str(row.get("id"))
            self._table("assessment_questions").insert(
                [
                    {"assessment_id": assessment_id, "question_id": str(q), "position": i}
                    for i, q in enumerate(question_ids)
                ]
            ).execute()
        except StoreUnavailable:
            raise
        except Exception as e:
            raise StoreUnavailable(f"failed to create assessment: {e}") from e
        return Assessment(
            id=assessment_id,
            student_id=str(row.get("student_id") or student_id),
            topic_type_code=row.get("type"),
            questions=[AssessmentQuestion(question_id=str(q)) for q in question_ids],
            created_at=row.get("created_at") or _utc_now(),
        )

    def get(self, assessment_id: str) -> Optional[Assessment]:
        # Ids come from the URL; a malformed one is simply unknown.
        if not _is_uuid(assessment_id):
            return None
        try:
            head = _rows(
                self._table("assessments")
                .select("id,student_id,type,completed,created_at,completed_at")
                .eq("id", str(assessment_id))
                .limit(1)
                .execute()
            )
            if not head:
                return None
            questions = _rows(
                self._table("assessment_questions")
                .select("question_id,position,student_answer,is_correct")
                .eq("assessment_id", str(assessment_id))
                .order("position")
                .execute()
            )
        except Exception as e:
            raise StoreUnavailable(f"failed to load assessment: {e}") from e
        row = head[0]
        return Assessment(
            id=str(row.get("id")),
            student_id=str(row.get("student_id") or ""),
            topic_type_code=row.get("type"),
            questions=[
                AssessmentQuestion(
                    question_id=str(q.get("question_id")),
                    student_answer=q.get("student_answer"),
                    is_correct=bool(q.get("is_correct")),
                )
                for q in questions
            ],
            completed=bool(row.get("completed")),
            created_at=row.get("created_at") or _utc_now(),
            completed_at=row.get("completed_at"),
        )

    def complete(self, assessment_id: str, answers: AnswerMap) -> bool:
        try:
            # Conditional update: only one caller flips completed=false -> true.
            claimed = _rows(
                self._table("assessments")
                .update({"completed": True, "completed_at": _utc_now().isoformat()})
                .eq("id", str(assessment_id))
                .eq("completed", False)
                .execute()
            )
            if not claimed:
                return False
            if answers:
                self._table("assessment_questions").upsert(
                    [
                        {
                            "assessment_id": str(assessment_id),
                            "question_id": qid,
                            "student_answer": student_answer,
                            "is_correct": bool(is_correct),
                        }
                        for qid, (student_answer, is_correct) in answers.items()
                    ],
                    on_conflict="assessment_id,question_id",
                ).execute()
        except Exception as e:
            raise StoreUnavailable(f"failed to complete assessment: {e}") from e
        return True


def get_assessment_store() -> BaseAssessmentStore:
    global _CACHED_STORE, _CACHED_STORE_CONFIG
    settings = get_settings()
    backend = str(settings.qbank_backend or "memory").strip().lower()
    config = (backend, settings.supabase_url, settings.supabase_key)
    if _CACHED_STORE is not None and _CACHED_STORE_CONFIG == config:
        return _CACHED_STORE

    if backend == "supabase":
        store: BaseAssessmentStore = SupabaseAssessmentStore(get_supabase_client())
    elif backend == "memory":
        logger.warning("QBANK_BACKEND=memory: assessments are process-local")
        store = InMemoryAssessmentStore()
    else:
        raise StoreUnavailable(f"unknown QBANK_BACKEND: {backend!r}")

    _CACHED_STORE = store
    _CACHED_STORE_CONFIG = config
    return store


def reset_assessment_store() -> None:
    global _CACHED_STORE, _CACHED_STORE_CONFIG
    _CACHED_STORE = None
    _CACHED_STORE_CONFIG = None
