"""
Scored assessments: a random sample of stored entries for one topic type,
answered once and fed into the same per-tag counters as practice.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from skillcoach.models.schemas import Assessment, QuestionEntry
from skillcoach.services.performance_service import (
    SubmissionResult,
    SubmittedAnswer,
    score_submission,
)
from skillcoach.utils.assessment_store import BaseAssessmentStore
from skillcoach.utils.errors import (
    AssessmentAlreadyCompleted,
    AssessmentNotFound,
    NoQuestionsAvailable,
)
from skillcoach.utils.metrics import inc_counter
from skillcoach.utils.observability import log_event
from skillcoach.utils.performance_store import BasePerformanceStore
from skillcoach.utils.qbank_store import BaseQBankStore

logger = logging.getLogger(__name__)


def start_assessment(
    student_id: str,
    *,
    size: int,
    topic_type_code: Optional[int],
    qbank_store: BaseQBankStore,
    assessment_store: BaseAssessmentStore,
) -> Tuple[Assessment, List[QuestionEntry]]:
    entries = [
        e
        for e in qbank_store.sample_entries(size=size, topic_type_code=topic_type_code)
        if e.id
    ]
    if not entries:
        raise NoQuestionsAvailable(
            f"No questions found for type {topic_type_code}."
            if topic_type_code is not None
            else "No questions found."
        )
    assessment = assessment_store.create(
        student_id=student_id,
        question_ids=[str(e.id) for e in entries],
        topic_type_code=topic_type_code,
    )
    inc_counter("skillcoach_assessments_started_total")
    log_event(
        logger,
        "assessment_started",
        student_id=student_id,
        assessment_id=assessment.id,
        topic_type_code=topic_type_code,
        questions=len(entries),
        requested=size,
    )
    return assessment, entries


def submit_assessment(
    assessment_id: str,
    student_id: str,
    answers: List[SubmittedAnswer],
    *,
    assessment_store: BaseAssessmentStore,
    qbank_store: BaseQBankStore,
    performance_store: BasePerformanceStore,
) -> SubmissionResult:
    """
    Score answers against the assessment's own question set and update the
    student's counters once. Answers to questions outside the set, and repeated
    answers to the same question, are skipped.
    """
    assessment = assessment_store.get(assessment_id)
    if assessment is None or assessment.student_id != student_id:
        raise AssessmentNotFound("Test not found or does not belong to user.")
    if assessment.completed:
        raise AssessmentAlreadyCompleted("Test has already been submitted.")

    allowed = set(assessment.question_ids)
    seen = set()
    in_set: List[SubmittedAnswer] = []
    skipped: List[str] = []
    for a in answers:
        qid = str(a.question_id)
        if qid not in allowed or qid in seen:
            skipped.append(qid)
            continue
        seen.add(qid)
        in_set.append(a)

    # The batch id ties the counter update to this assessment, so a resubmission
    # racing this one cannot count twice.
    result = score_submission(
        student_id,
        in_set,
        qbank_store=qbank_store,
        performance_store=performance_store,
        batch_id=f"assessment:{assessment.id}",
    )
    result.total_questions = len(answers)
    result.skipped = skipped + result.skipped

    claimed = assessment_store.complete(
        assessment.id,
        {r.question_id: (r.student_answer, r.is_correct) for r in result.results},
    )
    inc_counter("skillcoach_assessments_completed_total")
    log_event(
        logger,
        "assessment_submitted",
        level="info" if claimed else "warning",
        student_id=student_id,
        assessment_id=assessment.id,
        answered=len(result.results),
        correct=result.correct_answers,
        skipped=len(result.skipped),
        completed_concurrently=not claimed,
    )
    return result
