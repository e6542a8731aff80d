"""
Scoring and per-tag performance aggregation.

A batch of scored answers becomes one {tag: (attempted, correct)} delta map and is
applied with a single atomic increment. Mastery percentages are derived on read.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from skillcoach.models.schemas import (
    PerformanceRecord,
    QuestionEntry,
    ScoredAnswer,
    TagMastery,
)
from skillcoach.utils.metrics import inc_counter
from skillcoach.utils.observability import log_event
from skillcoach.utils.performance_store import BasePerformanceStore, TagDelta
from skillcoach.utils.qbank_store import BaseQBankStore

logger = logging.getLogger(__name__)

_ANSWER_PREFIX_RE = re.compile(r"^Ans:\s*")


def normalize_answer(text: Any) -> str:
    return str(text or "").strip().casefold()


def judge_answer(stored_answer: str, submitted_answer: Any) -> bool:
    """Exact match after stripping one leading `Ans:` from the stored answer."""
    expected = _ANSWER_PREFIX_RE.sub("", str(stored_answer or ""), count=1)
    return normalize_answer(expected) == normalize_answer(submitted_answer)


def aggregate_deltas(scored: Iterable[ScoredAnswer]) -> Dict[str, TagDelta]:
    attempted: Dict[str, int] = {}
    correct: Dict[str, int] = {}
    for answer in scored:
        # A tag listed twice on one question still counts as one attempt.
        for tag in dict.fromkeys(answer.tags):
            attempted[tag] = attempted.get(tag, 0) + 1
            correct[tag] = correct.get(tag, 0) + (1 if answer.is_correct else 0)
    return {t: TagDelta(attempted=attempted[t], correct=correct[t]) for t in attempted}


def record_batch(
    student_id: str,
    scored_answers: Iterable[ScoredAnswer],
    store: BasePerformanceStore,
    *,
    batch_id: Optional[str] = None,
) -> PerformanceRecord:
    """
    One atomic increment for the whole batch. Passing the same `batch_id` again
    (a client retry) does not count the batch twice.
    """
    deltas = aggregate_deltas(scored_answers)
    if not deltas:
        current = store.get(student_id)
        return current or PerformanceRecord(student_id=student_id)
    record = store.increment(student_id, deltas, batch_id=batch_id)
    log_event(
        logger,
        "performance_recorded",
        student_id=student_id,
        tags=len(deltas),
        attempted=sum(d.attempted for d in deltas.values()),
        correct=sum(d.correct for d in deltas.values()),
    )
    return record


def _percentage(correct: int, attempted: int) -> int:
    if attempted <= 0:
        return 0
    # Half-up, so 2/3 -> 67 and 1/8 -> 13.
    return int(math.floor(100.0 * correct / attempted + 0.5))


def mastery_profile(record: Optional[PerformanceRecord]) -> Dict[str, TagMastery]:
    if record is None:
        return {}
    out: Dict[str, TagMastery] = {}
    for tag, attempted in record.attempted_by_tag.items():
        total = int(attempted or 0)
        correct = int(record.correct_by_tag.get(tag, 0) or 0)
        out[tag] = TagMastery(
            total=total, correct=correct, percentage=_percentage(correct, total)
        )
    return out


@dataclass
class SubmittedAnswer:
    question_id: str
    student_answer: str


@dataclass
class QuestionResult:
    question_id: str
    question: str
    correct_answer: str
    student_answer: str
    is_correct: bool


@dataclass
class SubmissionResult:
    results: List[QuestionResult] = field(default_factory=list)
    total_questions: int = 0
    skipped: List[str] = field(default_factory=list)
    record: Optional[PerformanceRecord] = None

    @property
    def correct_answers(self) -> int:
        return sum(1 for r in self.results if r.is_correct)


def score_submission(
    student_id: str,
    answers: List[SubmittedAnswer],
    *,
    qbank_store: BaseQBankStore,
    performance_store: BasePerformanceStore,
    batch_id: Optional[str] = None,
) -> SubmissionResult:
    ids = [a.question_id for a in answers if a.question_id]
    entries: Dict[str, QuestionEntry] = {
        str(e.id): e for e in (qbank_store.find_entries(ids=ids) if ids else [])
    }

    out = SubmissionResult(total_questions=len(answers))
    scored: List[ScoredAnswer] = []
    for a in answers:
        entry = entries.get(str(a.question_id))
        if entry is None:
            out.skipped.append(str(a.question_id))
            continue
        ok = judge_answer(entry.answer_text, a.student_answer)
        out.results.append(
            QuestionResult(
                question_id=str(entry.id),
                question=entry.question_text,
                correct_answer=entry.answer_text,
                student_answer=a.student_answer,
                is_correct=ok,
            )
        )
        scored.append(ScoredAnswer(tags=entry.tags, is_correct=ok))

    if out.skipped:
        log_event(
            logger,
            "submission_unknown_questions",
            level="warning",
            student_id=student_id,
            skipped=len(out.skipped),
        )
    out.record = record_batch(student_id, scored, performance_store, batch_id=batch_id)
    inc_counter("skillcoach_answers_scored_total", value=len(scored))
    inc_counter("skillcoach_answers_correct_total", value=out.correct_answers)
    return out
