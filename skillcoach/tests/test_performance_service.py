from __future__ import annotations

from typing import Dict

from skillcoach.models.schemas import PerformanceRecord, QuestionEntry, ScoredAnswer
from skillcoach.services.performance_service import (
    SubmittedAnswer,
    aggregate_deltas,
    judge_answer,
    mastery_profile,
    record_batch,
    score_submission,
)
from skillcoach.utils.performance_store import InMemoryPerformanceStore, TagDelta
from skillcoach.utils.qbank_store import InMemoryQBankStore


class _RecordingStore(InMemoryPerformanceStore):
    def __init__(self):
        super().__init__()
        self.increments = 0

    def increment(self, student_id: str, deltas: Dict[str, TagDelta], *, batch_id=None):
        self.increments += 1
        return super().increment(student_id, deltas, batch_id=batch_id)


def test_judge_answer_strips_one_stored_prefix_and_ignores_case() -> None:
    assert judge_answer("Ans: Paris", "  paris ")
    assert judge_answer("PARIS", "paris")
    assert not judge_answer("Ans: Paris", "Ans: Paris")
    assert not judge_answer("Ans: Paris", "Lyon")
    assert judge_answer("Ans:   42", "42")


def test_judge_answer_case_folds_beyond_ascii() -> None:
    assert judge_answer("Ans: Straße", "STRASSE")
    assert judge_answer("ΣΊΣΥΦΟΣ", "σίσυφος")


def test_aggregate_deltas_counts_each_distinct_tag_once_per_answer() -> None:
    deltas = aggregate_deltas(
        [
            ScoredAnswer(tags=["A", "B"], is_correct=True),
            ScoredAnswer(tags=["A"], is_correct=False),
            ScoredAnswer(tags=["A", "A"], is_correct=True),
        ]
    )
    assert deltas == {"A": TagDelta(3, 2), "B": TagDelta(1, 1)}


def test_record_batch_is_additive_with_one_write_per_batch() -> None:
    store = _RecordingStore()
    record_batch(
        "s1",
        [ScoredAnswer(tags=["A"], is_correct=True)] * 3 + [ScoredAnswer(tags=["B"], is_correct=False)],
        store,
    )
    rec = record_batch("s1", [ScoredAnswer(tags=["A"], is_correct=False)] * 2, store)

    assert store.increments == 2
    assert rec.attempted_by_tag == {"A": 5, "B": 1}
    assert rec.correct_by_tag == {"A": 3, "B": 0}
    for tag, attempted in rec.attempted_by_tag.items():
        assert rec.correct_by_tag[tag] <= attempted


def test_replayed_batch_id_is_counted_once() -> None:
    store = InMemoryPerformanceStore()
    batch = [ScoredAnswer(tags=["A"], is_correct=True)]
    record_batch("s1", batch, store, batch_id="submit-1")
    rec = record_batch("s1", batch, store, batch_id="submit-1")
    assert rec.attempted_by_tag == {"A": 1}
    assert rec.correct_by_tag == {"A": 1}


def test_empty_batch_performs_no_write() -> None:
    store = _RecordingStore()
    rec = record_batch("s1", [], store)
    assert store.increments == 0
    assert rec == PerformanceRecord(student_id="s1")


def test_mastery_profile_percentages() -> None:
    rec = PerformanceRecord(
        student_id="s1",
        attempted_by_tag={"A": 4, "B": 0, "C": 3, "D": 8},
        correct_by_tag={"A": 3, "C": 2, "D": 1},
    )
    prof = mastery_profile(rec)
    assert prof["A"].percentage == 75
    assert prof["B"].percentage == 0
    assert prof["C"].percentage == 67
    # 12.5 rounds half up
    assert prof["D"].percentage == 13
    assert (prof["A"].total, prof["A"].correct) == (4, 3)
    assert mastery_profile(None) == {}


def test_score_submission_judges_known_questions_and_skips_unknown() -> None:
    qbank = InMemoryQBankStore()
    saved = qbank.insert_entries(
        [
            QuestionEntry(question_text="Capital of France?", answer_text="Ans: Paris", tags=["geo"]),
            QuestionEntry(question_text="2+2?", answer_text="4", tags=["math", "geo"]),
        ]
    )
    perf = _RecordingStore()

    out = score_submission(
        "s1",
        [
            SubmittedAnswer(saved[0].id, "paris"),
            SubmittedAnswer(saved[1].id, "5"),
            SubmittedAnswer("missing", "x"),
        ],
        qbank_store=qbank,
        performance_store=perf,
    )

    assert out.total_questions == 3
    assert out.correct_answers == 1
    assert out.skipped == ["missing"]
    assert [r.is_correct for r in out.results] == [True, False]
    assert out.results[0].correct_answer == "Ans: Paris"
    assert out.record is not None
    assert out.record.attempted_by_tag == {"geo": 2, "math": 1}
    assert out.record.correct_by_tag == {"geo": 1, "math": 0}
    assert perf.increments == 1
