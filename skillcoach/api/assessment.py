from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel

from skillcoach.api.deps import (
    assessment_store_dep,
    performance_store_dep,
    qbank_store_dep,
)
from skillcoach.api.practice import AnswerIn, result_rows
from skillcoach.services.assessment_service import start_assessment, submit_assessment
from skillcoach.services.performance_service import SubmittedAnswer
from skillcoach.utils.assessment_store import BaseAssessmentStore
from skillcoach.utils.performance_store import BasePerformanceStore
from skillcoach.utils.qbank_store import BaseQBankStore
from skillcoach.utils.settings import get_settings
from skillcoach.utils.user_context import get_user_id

logger = logging.getLogger(__name__)

router = APIRouter()


class SubmitTestRequest(BaseModel):
    answers: List[AnswerIn]


@router.get("/test")
def start_test(
    *,
    type: Optional[int] = Query(default=None),
    count: Optional[int] = Query(default=None),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    qbank: BaseQBankStore = Depends(qbank_store_dep),
    assessments: BaseAssessmentStore = Depends(assessment_store_dep),
) -> Dict[str, Any]:
    """Sample a fresh assessment; answers are withheld until submission."""
    settings = get_settings()
    size = count if count and count > 0 else int(settings.assessment_default_size)
    topic_type_code = type if type is not None else settings.assessment_default_type
    assessment, entries = start_assessment(
        get_user_id(x_user_id),
        size=size,
        topic_type_code=topic_type_code,
        qbank_store=qbank,
        assessment_store=assessments,
    )
    return {
        "testId": assessment.id,
        "type": assessment.topic_type_code,
        "questions": [{"_id": e.id, "question": e.question_text} for e in entries],
    }


@router.post("/submit-test/{test_id}")
def submit_test(
    test_id: str,
    req: SubmitTestRequest,
    *,
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    qbank: BaseQBankStore = Depends(qbank_store_dep),
    performance: BasePerformanceStore = Depends(performance_store_dep),
    assessments: BaseAssessmentStore = Depends(assessment_store_dep),
) -> Dict[str, Any]:
    outcome = submit_assessment(
        test_id,
        get_user_id(x_user_id),
        [SubmittedAnswer(a.question_id, a.student_answer) for a in req.answers],
        assessment_store=assessments,
        qbank_store=qbank,
        performance_store=performance,
    )
    return {
        "message": "Test submitted successfully!",
        "testId": test_id,
        "results": result_rows(outcome),
        "totalQuestions": outcome.total_questions,
        "correctAnswers": outcome.correct_answers,
        "skippedQuestionIds": outcome.skipped,
    }
