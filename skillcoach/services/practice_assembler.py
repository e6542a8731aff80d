"""
Practice-set assembly.

AI first: a non-empty AI answer is returned as-is (truncated, never topped up).
Only an empty AI answer triggers the fallback: sample 2x the desired size from
the stored pool, deduplicate by normalized question text, truncate.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from skillcoach.models.schemas import (
    PracticeCandidate,
    PracticeSet,
    Provenance,
    QuestionEntry,
    clean_tags,
)
from skillcoach.utils.errors import ProviderUnavailable
from skillcoach.utils.metrics import inc_counter
from skillcoach.utils.observability import log_event
from skillcoach.utils.qbank_store import BaseQBankStore

logger = logging.getLogger(__name__)

FALLBACK_OVERSAMPLE = 2


class PracticeProvider(Protocol):
    def request_practice(
        self,
        *,
        student_id: str,
        tag: str,
        desired_count: int,
        auth_token: Optional[str] = None,
    ) -> List[Dict[str, Any]]: ...


def question_key(text: str) -> str:
    return str(text or "").strip().lower()


def _first_text(item: Dict[str, Any], *keys: str) -> Optional[str]:
    for k in keys:
        v = item.get(k)
        if isinstance(v, str) and v.strip():
            return v
    return None


def candidate_from_ai_item(item: Any, *, tag: str) -> Optional[PracticeCandidate]:
    """Map one agent item; None when question or answer is missing or not text."""
    if not isinstance(item, dict):
        return None
    question = _first_text(item, "question", "questionText")
    answer = _first_text(item, "answer", "answerText")
    if question is None or answer is None:
        return None
    raw_tags = item.get("tags")
    if isinstance(raw_tags, str):
        raw_tags = raw_tags.split(",")
    tags = clean_tags(raw_tags if isinstance(raw_tags, list) else None) or [tag]
    raw_id = item.get("_id") or item.get("id")
    return PracticeCandidate(
        id=str(raw_id) if raw_id else None,
        question_text=question.strip(),
        answer_text=answer.strip(),
        tags=tags,
        provenance=Provenance.AI,
    )


def candidate_from_entry(entry: QuestionEntry) -> PracticeCandidate:
    return PracticeCandidate(
        id=entry.id,
        question_text=entry.question_text,
        answer_text=entry.answer_text,
        tags=list(entry.tags),
        provenance=Provenance.FALLBACK,
    )


def dedupe_by_question(candidates: List[PracticeCandidate]) -> List[PracticeCandidate]:
    seen = set()
    out: List[PracticeCandidate] = []
    for c in candidates:
        key = question_key(c.question_text)
        if key in seen:
            continue
        seen.add(key)
        out.append(c)
    return out


def _ai_candidates(
    provider: Optional[PracticeProvider],
    *,
    student_id: str,
    tag: str,
    desired_count: int,
    auth_token: Optional[str],
) -> List[PracticeCandidate]:
    if provider is None:
        return []
    try:
        items = provider.request_practice(
            student_id=student_id,
            tag=tag,
            desired_count=desired_count,
            auth_token=auth_token,
        )
    except ProviderUnavailable as e:
        inc_counter("skillcoach_provider_failures_total")
        log_event(
            logger,
            "practice_provider_unavailable",
            level="warning",
            tag=tag,
            error=str(e),
        )
        return []

    out: List[PracticeCandidate] = []
    malformed = 0
    for item in items or []:
        c = candidate_from_ai_item(item, tag=tag)
        if c is None:
            malformed += 1
            continue
        out.append(c)
    if malformed:
        log_event(
            logger, "practice_ai_items_malformed", level="warning", tag=tag, dropped=malformed
        )
    unique = len({question_key(c.question_text) for c in out})
    if unique != len(out):
        log_event(
            logger,
            "practice_ai_duplicates",
            level="warning",
            tag=tag,
            total=len(out),
            unique=unique,
        )
    return out


def assemble_practice_set(
    *,
    student_id: str,
    tag: str,
    desired_count: int,
    provider: Optional[PracticeProvider],
    store: BaseQBankStore,
    auth_token: Optional[str] = None,
) -> PracticeSet:
    desired = int(desired_count)
    if desired <= 0:
        return PracticeSet(questions=[], source=Provenance.FALLBACK)

    ai = _ai_candidates(
        provider,
        student_id=student_id,
        tag=tag,
        desired_count=desired,
        auth_token=auth_token,
    )
    if ai:
        questions = ai[:desired]
        result = PracticeSet(
            questions=questions, source=Provenance.AI, ai_count=len(questions)
        )
    else:
        sampled = store.sample_entries(size=desired * FALLBACK_OVERSAMPLE, tag=tag)
        questions = dedupe_by_question([candidate_from_entry(e) for e in sampled])[:desired]
        result = PracticeSet(
            questions=questions,
            source=Provenance.FALLBACK,
            fallback_count=len(questions),
            pool_exhausted=len(questions) < desired,
        )

    inc_counter(
        "skillcoach_practice_questions_total",
        labels={"source": result.source.value},
        value=len(result.questions),
    )
    log_event(
        logger,
        "practice_set_assembled",
        student_id=student_id,
        tag=tag,
        desired_count=desired,
        source=result.source.value,
        ai_count=result.ai_count,
        fallback_count=result.fallback_count,
        pool_exhausted=result.pool_exhausted,
    )
    return result
