from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, ConfigDict, Field

from skillcoach.api.deps import (
    performance_store_dep,
    qbank_store_dep,
    skillcoach_client_dep,
)
from skillcoach.services.performance_service import (
    SubmissionResult,
    SubmittedAnswer,
    score_submission,
)
from skillcoach.services.practice_assembler import assemble_practice_set
from skillcoach.services.skillcoach_client import SkillCoachClient
from skillcoach.utils.performance_store import BasePerformanceStore
from skillcoach.utils.qbank_store import BaseQBankStore
from skillcoach.utils.settings import get_settings
from skillcoach.utils.user_context import extract_bearer_token, get_user_id

logger = logging.getLogger(__name__)

router = APIRouter()


class AnswerIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_id: str = Field(alias="questionId", min_length=1)
    student_answer: str = Field(default="", alias="studentAnswer")


class SubmitPracticeRequest(BaseModel):
    tag: str = Field(min_length=1)
    answers: List[AnswerIn]


def result_rows(outcome: SubmissionResult) -> List[Dict[str, Any]]:
    return [
        {
            "question_id": r.question_id,
            "question": r.question,
            "correct_answer": r.correct_answer,
            "student_answer": r.student_answer,
            "is_correct": r.is_correct,
        }
        for r in outcome.results
    ]


class ExplanationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(min_length=1)
    user_answer: str = Field(alias="userAnswer", min_length=1)
    correct_answer: str = Field(alias="correctAnswer", min_length=1)


@router.get("/practice/{tag}")
def get_practice(
    tag: str,
    *,
    count: Optional[int] = Query(default=None),
    authorization: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    store: BaseQBankStore = Depends(qbank_store_dep),
    client: SkillCoachClient = Depends(skillcoach_client_dep),
) -> Dict[str, Any]:
    user_id = get_user_id(x_user_id)
    # Missing, zero or negative counts fall back to the configured default.
    desired = count if count and count > 0 else int(get_settings().practice_default_count)
    result = assemble_practice_set(
        student_id=user_id,
        tag=tag,
        desired_count=desired,
        provider=client,
        store=store,
        auth_token=extract_bearer_token(authorization),
    )
    return {
        "questions": [
            {
                "_id": q.id,
                "question": q.question_text,
                "answer": q.answer_text,
                "tags": q.tags,
                "provenance": q.provenance.value,
            }
            for q in result.questions
        ],
        "source": result.source.value,
        "aiCount": result.ai_count,
        "fallbackCount": result.fallback_count,
        "poolExhausted": result.pool_exhausted,
    }


@router.post("/submit-practice")
def submit_practice(
    req: SubmitPracticeRequest,
    *,
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    qbank: BaseQBankStore = Depends(qbank_store_dep),
    performance: BasePerformanceStore = Depends(performance_store_dep),
) -> Dict[str, Any]:
    user_id = get_user_id(x_user_id)
    outcome = score_submission(
        user_id,
        [SubmittedAnswer(a.question_id, a.student_answer) for a in req.answers],
        qbank_store=qbank,
        performance_store=performance,
    )
    return {
        "message": "Practice submitted successfully!",
        "results": result_rows(outcome),
        "tag": req.tag,
        "totalQuestions": outcome.total_questions,
        "correctAnswers": outcome.correct_answers,
        "skippedQuestionIds": outcome.skipped,
        "performanceUpdated": bool(outcome.results),
    }


@router.post("/get-explanation")
def get_explanation(
    req: ExplanationRequest,
    *,
    authorization: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    client: SkillCoachClient = Depends(skillcoach_client_dep),
) -> Dict[str, Any]:
    explanation = client.request_explanation(
        student_id=get_user_id(x_user_id),
        question=req.question,
        user_answer=req.user_answer,
        correct_answer=req.correct_answer,
        auth_token=extract_bearer_token(authorization),
    )
    return {
        "explanation": explanation.explanation,
        "commonMistakes": explanation.common_mistakes,
        "concept": explanation.concept,
        "tips": explanation.tips,
        "fallback": explanation.fallback,
    }
