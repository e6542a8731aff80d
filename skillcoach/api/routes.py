"""API router aggregation; `skillcoach/main.py` mounts `router` under `/api`."""

from __future__ import annotations

from fastapi import APIRouter

from skillcoach.api import assessment as assessment_api
from skillcoach.api import practice as practice_api
from skillcoach.api import profile as profile_api
from skillcoach.api import qbank as qbank_api
from skillcoach.api import upload as upload_api

router = APIRouter()
router.include_router(upload_api.router)
router.include_router(qbank_api.router)
router.include_router(practice_api.router)
router.include_router(assessment_api.router)
router.include_router(profile_api.router)
