"""
Per-student, per-tag performance counters.

Every backend applies a whole batch of tag deltas as one atomic increment:
- InMemoryPerformanceStore: a process lock (dev/tests, not for production).
- RedisPerformanceStore: WATCH on a batch marker, then MULTI/EXEC of HINCRBY on
  two hashes per student.
- SupabasePerformanceStore: `increment_tag_performance` Postgres function
  (single upsert of the jsonb counters, see migrations/).

Each batch carries an id; a backend applies a given id at most once, so retrying
a write whose reply was lost cannot double-count. Only errors raised before the
write could have landed (connection/timeout) are retried. Backend errors surface
as PerformanceWriteError.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set, Tuple, Type, TypeVar

import httpx
import redis
from postgrest.exceptions import APIError
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from skillcoach.models.schemas import PerformanceRecord
from skillcoach.utils.errors import PerformanceWriteError, StoreUnavailable
from skillcoach.utils.observability import log_event
from skillcoach.utils.settings import get_settings
from skillcoach.utils.supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CACHED_STORE: BasePerformanceStore | None = None
_CACHED_STORE_CONFIG: tuple | None = None


@dataclass(frozen=True)
class TagDelta:
    attempted: int = 0
    correct: int = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_batch_id() -> str:
    return uuid.uuid4().hex


def _counter_map(raw: Any) -> Dict[str, int]:
    """Coerce a hash/jsonb payload into {tag: int}; redis may hand back bytes."""
    out: Dict[str, int] = {}
    if not isinstance(raw, dict):
        return out
    for k, v in raw.items():
        key = k.decode("utf-8") if isinstance(k, bytes) else str(k)
        if isinstance(v, bytes):
            v = v.decode("utf-8")
        try:
            out[key] = int(v)
        except (TypeError, ValueError):
            continue
    return out


def _apply_with_retry(
    fn: Callable[[], T],
    *,
    attempts: int,
    wait_multiplier: float,
    student_id: str,
    backend: str,
    retry_on: Tuple[Type[BaseException], ...],
    fail_on: Tuple[Type[BaseException], ...],
) -> T:
    retrying = Retrying(
        retry=retry_if_exception_type(retry_on),
        wait=wait_exponential(multiplier=wait_multiplier, min=0, max=5),
        stop=stop_after_attempt(max(1, int(attempts))),
        reraise=True,
    )
    try:
        return retrying(fn)
    except fail_on as e:
        log_event(
            logger,
            "performance_write_failed",
            level="error",
            backend=backend,
            student_id=student_id,
            max_attempts=attempts,
            error_type=e.__class__.__name__,
            error=str(e),
        )
        raise PerformanceWriteError(f"performance write failed: {e}") from e


class BasePerformanceStore:
    def get(self, student_id: str) -> Optional[PerformanceRecord]:
        raise NotImplementedError

    def increment(
        self,
        student_id: str,
        deltas: Dict[str, TagDelta],
        *,
        batch_id: Optional[str] = None,
    ) -> PerformanceRecord:
        """
        Apply all deltas in one atomic step; creates the record on first use.
        A `batch_id` that was already applied leaves the counters untouched.
        """
        raise NotImplementedError


class InMemoryPerformanceStore(BasePerformanceStore):
    def __init__(self):
        self._lock = threading.Lock()
        self.records: Dict[str, PerformanceRecord] = {}
        self.applied_batches: Set[str] = set()

    def get(self, student_id: str) -> Optional[PerformanceRecord]:
        with self._lock:
            rec = self.records.get(student_id)
            return rec.model_copy(deep=True) if rec else None

    def increment(
        self,
        student_id: str,
        deltas: Dict[str, TagDelta],
        *,
        batch_id: Optional[str] = None,
    ) -> PerformanceRecord:
        with self._lock:
            rec = self.records.get(student_id) or PerformanceRecord(student_id=student_id)
            if batch_id is not None and batch_id in self.applied_batches:
                return rec.model_copy(deep=True)
            attempted = dict(rec.attempted_by_tag)
            correct = dict(rec.correct_by_tag)
            for tag, d in deltas.items():
                attempted[tag] = attempted.get(tag, 0) + int(d.attempted)
                correct[tag] = correct.get(tag, 0) + int(d.correct)
            rec = PerformanceRecord(
                student_id=student_id,
                attempted_by_tag=attempted,
                correct_by_tag=correct,
                last_updated=_utc_now(),
            )
            self.records[student_id] = rec
            if batch_id is not None:
                self.applied_batches.add(batch_id)
            return rec.model_copy(deep=True)


class RedisPerformanceStore(BasePerformanceStore):
    retry_on: Tuple[Type[BaseException], ...] = (
        redis.ConnectionError,
        redis.TimeoutError,
        redis.WatchError,
    )

    def __init__(
        self,
        client: Any,
        *,
        prefix: str = "perf:",
        write_attempts: int = 3,
        retry_wait_multiplier: float = 0.5,
        batch_ttl_seconds: int = 7 * 24 * 3600,
    ):
        self.client = client
        self.prefix = prefix
        self.write_attempts = write_attempts
        self.retry_wait_multiplier = retry_wait_multiplier
        self.batch_ttl_seconds = batch_ttl_seconds

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisPerformanceStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def _k(self, student_id: str, part: str) -> str:
        return f"{self.prefix}{student_id}:{part}"

    def _record(
        self, student_id: str, attempted: Any, correct: Any, last_updated: Any
    ) -> PerformanceRecord:
        if isinstance(last_updated, bytes):
            last_updated = last_updated.decode("utf-8")
        return PerformanceRecord(
            student_id=student_id,
            attempted_by_tag=_counter_map(attempted),
            correct_by_tag=_counter_map(correct),
            last_updated=last_updated or None,
        )

    def _read(self, student_id: str) -> Tuple[Any, Any, Any]:
        pipe = self.client.pipeline(transaction=True)
        pipe.hgetall(self._k(student_id, "attempted"))
        pipe.hgetall(self._k(student_id, "correct"))
        pipe.hget(self._k(student_id, "meta"), "last_updated")
        attempted, correct, last_updated = pipe.execute()
        return attempted, correct, last_updated

    def get(self, student_id: str) -> Optional[PerformanceRecord]:
        try:
            attempted, correct, last_updated = self._read(student_id)
        except redis.RedisError as e:
            raise StoreUnavailable(f"redis read failed: {e}") from e
        if not attempted:
            return None
        return self._record(student_id, attempted, correct, last_updated)

    def _increment_once(
        self, student_id: str, deltas: Dict[str, TagDelta], batch_id: str
    ) -> PerformanceRecord:
        att_key = self._k(student_id, "attempted")
        cor_key = self._k(student_id, "correct")
        meta_key = self._k(student_id, "meta")
        marker = self._k(student_id, f"batch:{batch_id}")
        now = _utc_now().isoformat()
        with self.client.pipeline(transaction=True) as pipe:
            # EXEC aborts with WatchError if another writer sets the marker first.
            pipe.watch(marker)
            already_applied = bool(pipe.exists(marker))
            if not already_applied:
                pipe.multi()
                for tag, d in deltas.items():
                    pipe.hincrby(att_key, tag, int(d.attempted))
                    # Keep the field present so correct_by_tag mirrors attempted_by_tag.
                    pipe.hincrby(cor_key, tag, int(d.correct))
                pipe.hset(meta_key, "last_updated", now)
                pipe.set(marker, "1", ex=int(self.batch_ttl_seconds))
                pipe.hgetall(att_key)
                pipe.hgetall(cor_key)
                results = pipe.execute()
        if already_applied:
            log_event(
                logger,
                "performance_batch_already_applied",
                backend="redis",
                student_id=student_id,
                batch_id=batch_id,
            )
            return self._record(student_id, *self._read(student_id))
        return self._record(student_id, results[-2], results[-1], now)

    def increment(
        self,
        student_id: str,
        deltas: Dict[str, TagDelta],
        *,
        batch_id: Optional[str] = None,
    ) -> PerformanceRecord:
        bid = batch_id or new_batch_id()
        return _apply_with_retry(
            lambda: self._increment_once(student_id, deltas, bid),
            attempts=self.write_attempts,
            wait_multiplier=self.retry_wait_multiplier,
            student_id=student_id,
            backend="redis",
            retry_on=self.retry_on,
            fail_on=(redis.RedisError,),
        )


def _first_row(resp: Any) -> Optional[Dict[str, Any]]:
    data = getattr(resp, "data", None)
    if isinstance(data, list):
        data = data[0] if data else None
    return data if isinstance(data, dict) else None


def _record_from_row(student_id: str, row: Dict[str, Any]) -> PerformanceRecord:
    return PerformanceRecord(
        student_id=str(row.get("student_id") or student_id),
        attempted_by_tag=_counter_map(row.get("attempted")),
        correct_by_tag=_counter_map(row.get("correct")),
        last_updated=row.get("last_updated"),
    )


class SupabasePerformanceStore(BasePerformanceStore):
    table_name = "student_tag_performance"
    retry_on: Tuple[Type[BaseException], ...] = (httpx.TransportError,)

    def __init__(
        self,
        client: Any,
        *,
        write_attempts: int = 3,
        retry_wait_multiplier: float = 0.5,
    ):
        self.client = client
        self.write_attempts = write_attempts
        self.retry_wait_multiplier = retry_wait_multiplier

    def get(self, student_id: str) -> Optional[PerformanceRecord]:
        try:
            resp = (
                self.client.table(self.table_name)
                .select("student_id,attempted,correct,last_updated")
                .eq("student_id", student_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise StoreUnavailable(f"failed to load performance record: {e}") from e
        row = _first_row(resp)
        return _record_from_row(student_id, row) if row else None

    def _increment_once(
        self, student_id: str, deltas: Dict[str, TagDelta], batch_id: str
    ) -> PerformanceRecord:
        payload = {
            tag: {"attempted": int(d.attempted), "correct": int(d.correct)}
            for tag, d in deltas.items()
        }
        resp = self.client.rpc(
            "increment_tag_performance",
            {"p_student_id": student_id, "p_deltas": payload, "p_batch_id": batch_id},
        ).execute()
        row = _first_row(resp)
        if row is None:
            raise PerformanceWriteError("increment_tag_performance returned no row")
        return _record_from_row(student_id, row)

    def increment(
        self,
        student_id: str,
        deltas: Dict[str, TagDelta],
        *,
        batch_id: Optional[str] = None,
    ) -> PerformanceRecord:
        bid = batch_id or new_batch_id()
        return _apply_with_retry(
            lambda: self._increment_once(student_id, deltas, bid),
            attempts=self.write_attempts,
            wait_multiplier=self.retry_wait_multiplier,
            student_id=student_id,
            backend="supabase",
            retry_on=self.retry_on,
            fail_on=(APIError, httpx.HTTPError),
        )


def get_performance_store() -> BasePerformanceStore:
    global _CACHED_STORE, _CACHED_STORE_CONFIG
    settings = get_settings()
    backend = str(settings.performance_backend or "memory").strip().lower()
    config = (
        backend,
        settings.redis_url,
        settings.performance_redis_prefix,
        settings.supabase_url,
        settings.supabase_key,
        settings.performance_write_attempts,
    )
    if _CACHED_STORE is not None and _CACHED_STORE_CONFIG == config:
        return _CACHED_STORE

    if backend == "redis":
        if not settings.redis_url:
            raise StoreUnavailable("PERFORMANCE_BACKEND=redis but REDIS_URL is not set")
        store: BasePerformanceStore = RedisPerformanceStore.from_url(
            settings.redis_url,
            prefix=settings.performance_redis_prefix,
            write_attempts=settings.performance_write_attempts,
        )
    elif backend == "supabase":
        store = SupabasePerformanceStore(
            get_supabase_client(),
            write_attempts=settings.performance_write_attempts,
        )
    elif backend == "memory":
        logger.warning("PERFORMANCE_BACKEND=memory: counters are process-local")
        store = InMemoryPerformanceStore()
    else:
        raise StoreUnavailable(f"unknown PERFORMANCE_BACKEND: {backend!r}")

    _CACHED_STORE = store
    _CACHED_STORE_CONFIG = config
    return store


def reset_performance_store() -> None:
    global _CACHED_STORE, _CACHED_STORE_CONFIG
    _CACHED_STORE = None
    _CACHED_STORE_CONFIG = None
