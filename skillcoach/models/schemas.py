from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Basic Enums ---
class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Provenance(str, Enum):
    AI = "ai"
    FALLBACK = "fallback"


def clean_tags(tags: Optional[List[str]]) -> List[str]:
    """Trim, drop empties and duplicates; first occurrence keeps its position."""
    out: List[str] = []
    seen = set()
    for t in tags or []:
        s = str(t if t is not None else "").strip()
        if not s or s in seen:
            continue
        seen.add(s)
        out.append(s)
    return out


# --- Question bank ---
class QuestionEntry(BaseModel):
    """One persisted question/answer record produced by ingestion."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    source_document_id: Optional[str] = None
    topic_type_code: Optional[int] = None
    question_text: str
    answer_text: str
    tags: List[str] = Field(default_factory=list)
    difficulty: Difficulty = Difficulty.MEDIUM

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        return clean_tags(v)

    @field_validator("difficulty", mode="before")
    @classmethod
    def _default_difficulty(cls, v):
        # Rows written before difficulty existed carry NULL.
        if v is None or (isinstance(v, str) and not v.strip()):
            return Difficulty.MEDIUM
        return v.strip().lower() if isinstance(v, str) else v


class UploadedDocument(BaseModel):
    id: str
    file_name: str
    topic_type_code: Optional[int] = None
    uploaded_at: datetime


# --- Practice ---
class PracticeCandidate(BaseModel):
    """Transient practice question; lives for one assembly call only."""

    id: Optional[str] = None
    question_text: str
    answer_text: str
    tags: List[str] = Field(default_factory=list)
    provenance: Provenance


class PracticeSet(BaseModel):
    questions: List[PracticeCandidate] = Field(default_factory=list)
    source: Provenance
    ai_count: int = 0
    fallback_count: int = 0
    # Fallback pool held fewer unique questions than requested.
    pool_exhausted: bool = False


class Explanation(BaseModel):
    explanation: Optional[str] = None
    common_mistakes: List[str] = Field(default_factory=list)
    concept: str = ""
    tips: List[str] = Field(default_factory=list)
    fallback: bool = False


# --- Performance ---
class ScoredAnswer(BaseModel):
    tags: List[str] = Field(default_factory=list)
    is_correct: bool


class PerformanceRecord(BaseModel):
    student_id: str
    attempted_by_tag: Dict[str, int] = Field(default_factory=dict)
    correct_by_tag: Dict[str, int] = Field(default_factory=dict)
    last_updated: Optional[datetime] = None


class TagMastery(BaseModel):
    total: int
    correct: int
    percentage: int


# --- Assessments ---
class AssessmentQuestion(BaseModel):
    question_id: str
    student_answer: Optional[str] = None
    is_correct: bool = False


class Assessment(BaseModel):
    """A fixed sample of question ids handed to one student and scored once."""

    id: str
    student_id: str
    topic_type_code: Optional[int] = None
    questions: List[AssessmentQuestion] = Field(default_factory=list)
    completed: bool = False
    created_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def question_ids(self) -> List[str]:
        return [q.question_id for q in self.questions]
