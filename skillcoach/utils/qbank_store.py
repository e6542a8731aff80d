"""
Question-bank persistence: uploaded documents, question entries and tags.

Backends:
- InMemoryQBankStore: process-local (dev/tests, not for production).
- SupabaseQBankStore: Postgres via PostgREST; schema in migrations/0001_skillcoach_core.up.sql.

The practice assembler and ingestion only rely on: bulk insert, find-by-filter,
random sample of N matching a filter, and idempotent tag upsert.
"""

from __future__ import annotations

import logging
import random
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from skillcoach.models.schemas import Difficulty, QuestionEntry, UploadedDocument
from skillcoach.utils.errors import StoreUnavailable
from skillcoach.utils.settings import get_settings
from skillcoach.utils.supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

_CACHED_STORE: BaseQBankStore | None = None
_CACHED_STORE_CONFIG: tuple[str, str | None, str | None] | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseQBankStore:
    def create_document(
        self, *, file_name: str, topic_type_code: Optional[int] = None
    ) -> UploadedDocument:
        raise NotImplementedError

    def insert_entries(self, entries: List[QuestionEntry]) -> List[QuestionEntry]:
        raise NotImplementedError

    def find_entries(
        self,
        *,
        ids: Optional[Iterable[str]] = None,
        tag: Optional[str] = None,
        difficulties: Optional[Iterable[str]] = None,
        topic_type_code: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[QuestionEntry]:
        raise NotImplementedError

    def sample_entries(
        self,
        *,
        size: int,
        tag: Optional[str] = None,
        topic_type_code: Optional[int] = None,
    ) -> List[QuestionEntry]:
        raise NotImplementedError

    def upsert_tag(self, name: str) -> None:
        """Find-or-create; concurrent calls with the same name store one tag."""
        raise NotImplementedError

    def list_tags(self) -> List[str]:
        raise NotImplementedError

    def backfill_difficulty(self, default: Difficulty = Difficulty.MEDIUM) -> int:
        """Set `default` on entries stored without a difficulty; returns rows touched."""
        raise NotImplementedError


class InMemoryQBankStore(BaseQBankStore):
    def __init__(self, rng: Optional[random.Random] = None):
        self._lock = threading.Lock()
        self._rng = rng or random.Random()
        self.documents: Dict[str, UploadedDocument] = {}
        self.entries: Dict[str, QuestionEntry] = {}
        self.tags: Dict[str, datetime] = {}

    def create_document(
        self, *, file_name: str, topic_type_code: Optional[int] = None
    ) -> UploadedDocument:
        doc = UploadedDocument(
            id=uuid.uuid4().hex,
            file_name=file_name,
            topic_type_code=topic_type_code,
            uploaded_at=_utc_now(),
        )
        with self._lock:
            self.documents[doc.id] = doc
        return doc

    def insert_entries(self, entries: List[QuestionEntry]) -> List[QuestionEntry]:
        stored = [e.model_copy(update={"id": e.id or uuid.uuid4().hex}) for e in entries]
        with self._lock:
            for e in stored:
                self.entries[str(e.id)] = e
        return stored

    def _matching(
        self,
        *,
        ids: Optional[Iterable[str]] = None,
        tag: Optional[str] = None,
        difficulties: Optional[Iterable[str]] = None,
        topic_type_code: Optional[int] = None,
    ) -> List[QuestionEntry]:
        id_set = {str(i) for i in ids} if ids is not None else None
        diff_set = {str(d) for d in difficulties} if difficulties is not None else None
        with self._lock:
            rows = list(self.entries.values())
        out = []
        for e in rows:
            if id_set is not None and str(e.id) not in id_set:
                continue
            if tag is not None and tag not in e.tags:
                continue
            if diff_set is not None and e.difficulty.value not in diff_set:
                continue
            if topic_type_code is not None and e.topic_type_code != topic_type_code:
                continue
            out.append(e)
        return out

    def find_entries(
        self,
        *,
        ids: Optional[Iterable[str]] = None,
        tag: Optional[str] = None,
        difficulties: Optional[Iterable[str]] = None,
        topic_type_code: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[QuestionEntry]:
        rows = self._matching(
            ids=ids, tag=tag, difficulties=difficulties, topic_type_code=topic_type_code
        )
        return rows[:limit] if limit is not None else rows

    def sample_entries(
        self,
        *,
        size: int,
        tag: Optional[str] = None,
        topic_type_code: Optional[int] = None,
    ) -> List[QuestionEntry]:
        if size <= 0:
            return []
        rows = self._matching(tag=tag, topic_type_code=topic_type_code)
        return self._rng.sample(rows, min(size, len(rows)))

    def upsert_tag(self, name: str) -> None:
        with self._lock:
            self.tags.setdefault(name, _utc_now())

    def list_tags(self) -> List[str]:
        with self._lock:
            return sorted(self.tags)

    def backfill_difficulty(self, default: Difficulty = Difficulty.MEDIUM) -> int:
        # Entries are validated on construction and always carry a difficulty.
        return 0


def _entry_from_row(row: Dict[str, Any]) -> QuestionEntry:
    return QuestionEntry(
        id=str(row.get("id")) if row.get("id") is not None else None,
        source_document_id=(
            str(row.get("document_id")) if row.get("document_id") is not None else None
        ),
        topic_type_code=row.get("type"),
        question_text=str(row.get("question") or ""),
        answer_text=str(row.get("answer") or ""),
        tags=row.get("tags") or [],
        difficulty=row.get("difficulty"),
    )


def _row_from_entry(entry: QuestionEntry) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "document_id": entry.source_document_id,
        "type": entry.topic_type_code,
        "question": entry.question_text,
        "answer": entry.answer_text,
        "tags": list(entry.tags),
        "difficulty": entry.difficulty.value,
    }
    if entry.id:
        row["id"] = entry.id
    return row


def _rows(resp: Any) -> List[Dict[str, Any]]:
    data = getattr(resp, "data", None)
    if not isinstance(data, list):
        return []
    return [r for r in data if isinstance(r, dict)]


class SupabaseQBankStore(BaseQBankStore):
    def __init__(self, client: Any):
        self.client = client

    def _table(self, name: str):
        return self.client.table(name)

    def create_document(
        self, *, file_name: str, topic_type_code: Optional[int] = None
    ) -> UploadedDocument:
        try:
            resp = (
                self._table("uploaded_documents")
                .insert({"file_name": file_name, "type": topic_type_code})
                .execute()
            )
        except Exception as e:
            raise StoreUnavailable(f"failed to create document: {e}") from e
        rows = _rows(resp)
        if not rows:
            raise StoreUnavailable("document insert returned no row")
        row = rows[0]
        return UploadedDocument(
            id=str(row.get("id")),
            file_name=str(row.get("file_name") or file_name),
            topic_type_code=row.get("type"),
            uploaded_at=row.get("uploaded_at") or _utc_now(),
        )

    def insert_entries(self, entries: List[QuestionEntry]) -> List[QuestionEntry]:
        if not entries:
            return []
        try:
            resp = (
                self._table("qa_entries")
                .insert([_row_from_entry(e) for e in entries])
                .execute()
            )
        except Exception as e:
            raise StoreUnavailable(f"failed to insert question entries: {e}") from e
        return [_entry_from_row(r) for r in _rows(resp)]

    def find_entries(
        self,
        *,
        ids: Optional[Iterable[str]] = None,
        tag: Optional[str] = None,
        difficulties: Optional[Iterable[str]] = None,
        topic_type_code: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[QuestionEntry]:
        try:
            q = self._table("qa_entries").select(
                "id,document_id,type,question,answer,tags,difficulty"
            )
            if ids is not None:
                id_list = [str(i) for i in ids]
                if not id_list:
                    return []
                q = q.in_("id", id_list)
            if tag is not None:
                q = q.contains("tags", [tag])
            if difficulties is not None:
                q = q.in_("difficulty", [str(d) for d in difficulties])
            if topic_type_code is not None:
                q = q.eq("type", int(topic_type_code))
            if limit is not None:
                q = q.limit(int(limit))
            resp = q.execute()
        except Exception as e:
            raise StoreUnavailable(f"failed to query question entries: {e}") from e
        return [_entry_from_row(r) for r in _rows(resp)]

    def sample_entries(
        self,
        *,
        size: int,
        tag: Optional[str] = None,
        topic_type_code: Optional[int] = None,
    ) -> List[QuestionEntry]:
        if size <= 0:
            return []
        try:
            resp = self.client.rpc(
                "sample_qa_entries",
                {"p_tag": tag, "p_type": topic_type_code, "p_size": int(size)},
            ).execute()
        except Exception as e:
            raise StoreUnavailable(f"failed to sample question entries: {e}") from e
        return [_entry_from_row(r) for r in _rows(resp)]

    def upsert_tag(self, name: str) -> None:
        try:
            (
                self._table("tags")
                .upsert({"name": name}, on_conflict="name", ignore_duplicates=True)
                .execute()
            )
        except Exception as e:
            raise StoreUnavailable(f"failed to upsert tag {name!r}: {e}") from e

    def list_tags(self) -> List[str]:
        try:
            resp = self._table("tags").select("name").order("name").execute()
        except Exception as e:
            raise StoreUnavailable(f"failed to list tags: {e}") from e
        return [str(r["name"]) for r in _rows(resp) if r.get("name")]

    def backfill_difficulty(self, default: Difficulty = Difficulty.MEDIUM) -> int:
        try:
            resp = (
                self._table("qa_entries")
                .update({"difficulty": default.value})
                .is_("difficulty", "null")
                .execute()
            )
        except Exception as e:
            raise StoreUnavailable(f"failed to backfill difficulty: {e}") from e
        return len(_rows(resp))


def get_qbank_store() -> BaseQBankStore:
    global _CACHED_STORE, _CACHED_STORE_CONFIG
    settings = get_settings()
    backend = str(settings.qbank_backend or "memory").strip().lower()
    config = (backend, settings.supabase_url, settings.supabase_key)
    if _CACHED_STORE is not None and _CACHED_STORE_CONFIG == config:
        return _CACHED_STORE

    if backend == "supabase":
        store: BaseQBankStore = SupabaseQBankStore(get_supabase_client())
    elif backend == "memory":
        logger.warning("QBANK_BACKEND=memory: question bank is process-local")
        store = InMemoryQBankStore()
    else:
        raise StoreUnavailable(f"unknown QBANK_BACKEND: {backend!r}")

    _CACHED_STORE = store
    _CACHED_STORE_CONFIG = config
    return store


def reset_qbank_store() -> None:
    global _CACHED_STORE, _CACHED_STORE_CONFIG
    _CACHED_STORE = None
    _CACHED_STORE_CONFIG = None
