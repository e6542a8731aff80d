from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from starlette.concurrency import run_in_threadpool

from skillcoach.api.deps import qbank_store_dep
from skillcoach.services.ingestion_service import ingest_document
from skillcoach.services.text_extraction import SUPPORTED_SUFFIXES
from skillcoach.utils.observability import log_event
from skillcoach.utils.qbank_store import BaseQBankStore
from skillcoach.utils.settings import get_settings


logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_type(raw: Optional[str]) -> Optional[int]:
    s = str(raw or "").strip()
    if not s:
        return None
    try:
        return int(s)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="type must be an integer"
        ) from e


@router.post("/upload-document", status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(...),
    type: Optional[str] = Form(default=None),
    store: BaseQBankStore = Depends(qbank_store_dep),
) -> Dict[str, Any]:
    """
    Ingest one question-bank document (.pdf/.docx/.txt/.md).
    The raw file is only kept on disk for the duration of extraction.
    """
    settings = get_settings()
    filename = (file.filename or "").strip() or "upload"
    suffix = Path(filename).suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"unsupported file type {suffix or '(none)'}; expected one of {', '.join(SUPPORTED_SUFFIXES)}",
        )
    topic_type_code = _parse_type(type)

    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="empty file")
    if len(raw) > int(settings.max_upload_bytes):
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"file exceeds {int(settings.max_upload_bytes)} bytes",
        )

    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
            tmp_path = tmp.name
            await run_in_threadpool(tmp.write, raw)
        # Extraction and store round-trips block; keep them off the event loop.
        result = await run_in_threadpool(
            ingest_document,
            tmp_path,
            store=store,
            file_name=filename,
            topic_type_code=topic_type_code,
            dialect=settings.qbank_parser_dialect,
        )
    finally:
        if tmp_path and os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError as e:
                log_event(
                    logger, "upload_tmp_cleanup_failed", level="warning", error=str(e)
                )

    tags: List[str] = []
    for e in result.entries:
        for t in e.tags:
            if t not in tags:
                tags.append(t)
    return {
        "message": "Document processed successfully!",
        "document_id": result.document.id,
        "file_name": result.document.file_name,
        "type": result.document.topic_type_code,
        "questions_inserted": result.question_count,
        "tags": tags,
        "tags_failed": result.tags.failed,
    }
