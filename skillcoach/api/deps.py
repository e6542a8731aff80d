"""
FastAPI dependency providers. Tests swap these via `app.dependency_overrides`.
"""

from __future__ import annotations

from skillcoach.services.skillcoach_client import SkillCoachClient, SkillCoachConfig
from skillcoach.utils.assessment_store import BaseAssessmentStore, get_assessment_store
from skillcoach.utils.performance_store import BasePerformanceStore, get_performance_store
from skillcoach.utils.qbank_store import BaseQBankStore, get_qbank_store


def qbank_store_dep() -> BaseQBankStore:
    return get_qbank_store()


def performance_store_dep() -> BasePerformanceStore:
    return get_performance_store()


def assessment_store_dep() -> BaseAssessmentStore:
    return get_assessment_store()


def skillcoach_client_dep() -> SkillCoachClient:
    return SkillCoachClient(SkillCoachConfig.from_settings())
