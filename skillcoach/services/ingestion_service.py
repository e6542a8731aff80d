"""
Document ingestion: extract -> parse -> register tags -> persist entries.

Per-block problems are absorbed by the parser; per-document problems
(no text, no valid blocks) are raised to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from skillcoach.core.qbank_parser import ParsedQuestion, parse_questions
from skillcoach.models.schemas import QuestionEntry, UploadedDocument
from skillcoach.services.tag_registry import TagRegistrationResult, register_tags
from skillcoach.services.text_extraction import extract_text, normalize_text
from skillcoach.utils.errors import ExtractionFailure, NoQuestionsParsed
from skillcoach.utils.metrics import Timer, inc_counter, observe_histogram
from skillcoach.utils.observability import log_event
from skillcoach.utils.qbank_store import BaseQBankStore

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    document: UploadedDocument
    entries: List[QuestionEntry] = field(default_factory=list)
    tags: TagRegistrationResult = field(default_factory=TagRegistrationResult)

    @property
    def question_count(self) -> int:
        return len(self.entries)


def _entries_for(
    parsed: List[ParsedQuestion], document: UploadedDocument
) -> List[QuestionEntry]:
    return [
        QuestionEntry(
            source_document_id=document.id,
            topic_type_code=document.topic_type_code,
            question_text=p.question,
            answer_text=p.answer,
            tags=p.tags,
            difficulty=p.difficulty,
        )
        for p in parsed
    ]


def ingest_text(
    text: str,
    *,
    file_name: str,
    store: BaseQBankStore,
    topic_type_code: Optional[int] = None,
    dialect: str = "auto",
) -> IngestionResult:
    timer = Timer()
    canonical = normalize_text(text)
    if not canonical:
        inc_counter("skillcoach_ingestion_failures_total", labels={"reason": "no_text"})
        raise ExtractionFailure(f"no text could be extracted from {file_name!r}")

    parsed = parse_questions(canonical, dialect=dialect)
    if not parsed:
        inc_counter("skillcoach_ingestion_failures_total", labels={"reason": "no_questions"})
        raise NoQuestionsParsed(f"no valid questions found in {file_name!r}")

    document = store.create_document(file_name=file_name, topic_type_code=topic_type_code)

    discovered: List[str] = []
    for p in parsed:
        discovered.extend(p.tags)
    tags = register_tags(discovered, store)

    # Entries reference tags by value, so tag failures do not block persistence.
    entries = store.insert_entries(_entries_for(parsed, document))

    inc_counter("skillcoach_ingested_documents_total")
    inc_counter("skillcoach_ingested_questions_total", value=len(entries))
    observe_histogram(
        "skillcoach_ingestion_seconds",
        value=timer.elapsed_seconds(),
        buckets=(0.1, 0.5, 1, 2, 5, 10, 30),
    )
    log_event(
        logger,
        "document_ingested",
        document_id=document.id,
        file_name=file_name,
        questions=len(entries),
        tags_registered=len(tags.registered),
        tags_failed=len(tags.failed),
        elapsed_ms=int(timer.elapsed_seconds() * 1000),
    )
    return IngestionResult(document=document, entries=entries, tags=tags)


def ingest_document(
    file_path: str | Path,
    *,
    store: BaseQBankStore,
    file_name: Optional[str] = None,
    topic_type_code: Optional[int] = None,
    dialect: str = "auto",
) -> IngestionResult:
    path = Path(file_path)
    name = file_name or path.name
    text = extract_text(path)
    if not text:
        inc_counter("skillcoach_ingestion_failures_total", labels={"reason": "no_text"})
        raise ExtractionFailure(f"no text could be extracted from {name!r}")
    return ingest_text(
        text,
        file_name=name,
        store=store,
        topic_type_code=topic_type_code,
        dialect=dialect,
    )
