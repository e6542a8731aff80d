from __future__ import annotations

import random
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytest

from skillcoach.models.schemas import QuestionEntry
from skillcoach.services.assessment_service import start_assessment, submit_assessment
from skillcoach.services.performance_service import SubmittedAnswer
from skillcoach.utils.assessment_store import (
    InMemoryAssessmentStore,
    SupabaseAssessmentStore,
    get_assessment_store,
)
from skillcoach.utils.errors import (
    AssessmentAlreadyCompleted,
    AssessmentNotFound,
    NoQuestionsAvailable,
)
from skillcoach.utils.performance_store import InMemoryPerformanceStore
from skillcoach.utils.qbank_store import InMemoryQBankStore


def _bank() -> InMemoryQBankStore:
    store = InMemoryQBankStore(rng=random.Random(3))
    store.insert_entries(
        [
            QuestionEntry(question_text="Q1", answer_text="Ans: one", tags=["arrays"], topic_type_code=1),
            QuestionEntry(question_text="Q2", answer_text="two", tags=["arrays", "loops"], topic_type_code=1),
            QuestionEntry(question_text="Q3", answer_text="three", tags=["loops"], topic_type_code=1),
            QuestionEntry(question_text="Other", answer_text="x", tags=["graphs"], topic_type_code=2),
        ]
    )
    return store


def _ids_by_text(qbank: InMemoryQBankStore) -> Dict[str, str]:
    return {e.question_text: str(e.id) for e in qbank.find_entries()}


def test_start_assessment_samples_by_topic_type_and_records_ids() -> None:
    qbank = _bank()
    assessments = InMemoryAssessmentStore()

    a, entries = start_assessment(
        "s1", size=5, topic_type_code=1, qbank_store=qbank, assessment_store=assessments
    )

    assert sorted(e.question_text for e in entries) == ["Q1", "Q2", "Q3"]
    stored = assessments.get(a.id)
    assert stored is not None
    assert stored.student_id == "s1"
    assert stored.completed is False
    assert sorted(stored.question_ids) == sorted(str(e.id) for e in entries)


def test_start_assessment_is_bounded_by_size() -> None:
    a, entries = start_assessment(
        "s1", size=2, topic_type_code=1, qbank_store=_bank(), assessment_store=InMemoryAssessmentStore()
    )
    assert len(entries) == 2
    assert len(a.questions) == 2


def test_start_assessment_without_matching_entries_raises() -> None:
    assessments = InMemoryAssessmentStore()
    with pytest.raises(NoQuestionsAvailable):
        start_assessment(
            "s1", size=5, topic_type_code=9, qbank_store=_bank(), assessment_store=assessments
        )
    assert assessments.assessments == {}


def test_submit_assessment_scores_updates_counters_and_completes() -> None:
    qbank = _bank()
    assessments = InMemoryAssessmentStore()
    perf = InMemoryPerformanceStore()
    a, _ = start_assessment(
        "s1", size=5, topic_type_code=1, qbank_store=qbank, assessment_store=assessments
    )
    ids = _ids_by_text(qbank)

    result = submit_assessment(
        a.id,
        "s1",
        [
            SubmittedAnswer(ids["Q1"], " ONE "),
            SubmittedAnswer(ids["Q2"], "2"),
            SubmittedAnswer(ids["Q1"], "again"),
            SubmittedAnswer(ids["Other"], "x"),
        ],
        assessment_store=assessments,
        qbank_store=qbank,
        performance_store=perf,
    )

    assert result.total_questions == 4
    assert result.correct_answers == 1
    assert [r.question for r in result.results] == ["Q1", "Q2"]
    assert result.skipped == [ids["Q1"], ids["Other"]]

    rec = perf.get("s1")
    assert rec is not None
    assert rec.attempted_by_tag == {"arrays": 2, "loops": 1}
    assert rec.correct_by_tag == {"arrays": 1, "loops": 0}

    stored = assessments.get(a.id)
    assert stored is not None and stored.completed
    by_id = {q.question_id: q for q in stored.questions}
    assert by_id[ids["Q1"]].student_answer == " ONE "
    assert by_id[ids["Q1"]].is_correct is True
    assert by_id[ids["Q3"]].student_answer is None


def test_submit_assessment_checks_ownership() -> None:
    qbank = _bank()
    assessments = InMemoryAssessmentStore()
    a, _ = start_assessment(
        "s1", size=5, topic_type_code=1, qbank_store=qbank, assessment_store=assessments
    )
    kwargs = dict(
        assessment_store=assessments,
        qbank_store=qbank,
        performance_store=InMemoryPerformanceStore(),
    )
    with pytest.raises(AssessmentNotFound):
        submit_assessment(a.id, "intruder", [], **kwargs)
    with pytest.raises(AssessmentNotFound):
        submit_assessment("missing", "s1", [], **kwargs)


def test_submit_assessment_twice_is_rejected_without_recounting() -> None:
    qbank = _bank()
    assessments = InMemoryAssessmentStore()
    perf = InMemoryPerformanceStore()
    a, _ = start_assessment(
        "s1", size=5, topic_type_code=1, qbank_store=qbank, assessment_store=assessments
    )
    answers = [SubmittedAnswer(_ids_by_text(qbank)["Q3"], "three")]
    kwargs = dict(assessment_store=assessments, qbank_store=qbank, performance_store=perf)

    submit_assessment(a.id, "s1", answers, **kwargs)
    with pytest.raises(AssessmentAlreadyCompleted):
        submit_assessment(a.id, "s1", answers, **kwargs)
    assert perf.get("s1").attempted_by_tag == {"loops": 1}


class _StaleAssessmentStore(InMemoryAssessmentStore):
    """Reads never see completion, as when two submissions race."""

    def get(self, assessment_id: str):
        a = super().get(assessment_id)
        return a.model_copy(update={"completed": False}) if a else None


def test_racing_submissions_count_once() -> None:
    qbank = _bank()
    assessments = _StaleAssessmentStore()
    perf = InMemoryPerformanceStore()
    a, _ = start_assessment(
        "s1", size=5, topic_type_code=1, qbank_store=qbank, assessment_store=assessments
    )
    answers = [SubmittedAnswer(_ids_by_text(qbank)["Q3"], "three")]
    kwargs = dict(assessment_store=assessments, qbank_store=qbank, performance_store=perf)

    submit_assessment(a.id, "s1", answers, **kwargs)
    submit_assessment(a.id, "s1", answers, **kwargs)

    rec = perf.get("s1")
    assert rec.attempted_by_tag == {"loops": 1}
    assert rec.correct_by_tag == {"loops": 1}


def test_get_assessment_store_follows_qbank_backend(monkeypatch) -> None:
    monkeypatch.delenv("QBANK_BACKEND", raising=False)
    store = get_assessment_store()
    assert store is get_assessment_store()
    assert isinstance(store, InMemoryAssessmentStore)


@dataclass
class _Resp:
    data: Any


class _FakeQuery:
    def __init__(self, name: str, db: Dict[str, List[Dict[str, Any]]]):
        self._name = name
        self._db = db
        self._filters: List[tuple] = []
        self._limit: Optional[int] = None
        self._insert: Optional[List[Dict[str, Any]]] = None
        self._upsert: Optional[List[Dict[str, Any]]] = None
        self._update: Optional[Dict[str, Any]] = None

    def select(self, _cols: str):  # noqa: ARG002
        return self

    def insert(self, payload):
        self._insert = payload if isinstance(payload, list) else [payload]
        return self

    def upsert(self, payload, on_conflict: str):
        assert on_conflict == "assessment_id,question_id"
        self._upsert = list(payload)
        return self

    def update(self, payload: Dict[str, Any]):
        self._update = dict(payload)
        return self

    def eq(self, key: str, value: Any):
        self._filters.append((key, value))
        return self

    def order(self, _key: str):  # noqa: ARG002
        return self

    def limit(self, n: int):
        self._limit = int(n)
        return self

    def execute(self):
        table = self._db.setdefault(self._name, [])
        if self._insert is not None:
            out = []
            for row in self._insert:
                stored = dict(row)
                if self._name == "assessments":
                    stored.update(
                        id=str(uuid.uuid4()),
                        completed=False,
                        created_at="2025-01-01T00:00:00+00:00",
                    )
                table.append(stored)
                out.append(dict(stored))
            return _Resp(data=out)
        if self._upsert is not None:
            for row in self._upsert:
                for existing in table:
                    if (existing["assessment_id"], existing["question_id"]) == (
                        row["assessment_id"],
                        row["question_id"],
                    ):
                        existing.update(row)
            return _Resp(data=[])
        rows = [r for r in table if all(r.get(k) == v for k, v in self._filters)]
        if self._update is not None:
            for r in rows:
                r.update(self._update)
            return _Resp(data=[dict(r) for r in rows])
        if self._limit is not None:
            rows = rows[: self._limit]
        return _Resp(data=[dict(r) for r in rows])


class _FakeSupabase:
    def __init__(self):
        self.db: Dict[str, List[Dict[str, Any]]] = {}

    def table(self, name: str):
        return _FakeQuery(name, self.db)


def test_supabase_assessment_store_create_get_complete() -> None:
    client = _FakeSupabase()
    store = SupabaseAssessmentStore(client)

    a = store.create(student_id="s1", question_ids=["q-1", "q-2"], topic_type_code=1)
    assert [r["position"] for r in client.db["assessment_questions"]] == [0, 1]

    loaded = store.get(a.id)
    assert loaded is not None
    assert loaded.student_id == "s1"
    assert loaded.question_ids == ["q-1", "q-2"]
    assert loaded.completed is False

    assert store.complete(a.id, {"q-1": ("x", True)}) is True
    assert store.complete(a.id, {"q-1": ("y", False)}) is False

    done = store.get(a.id)
    assert done.completed is True
    assert done.questions[0].student_answer == "x"
    assert done.questions[0].is_correct is True
    assert done.questions[1].student_answer is None


def test_supabase_assessment_store_treats_malformed_id_as_unknown() -> None:
    client = _FakeSupabase()
    store = SupabaseAssessmentStore(client)
    assert store.get("not-a-uuid") is None
    assert client.db == {}
