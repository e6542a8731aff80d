from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from skillcoach.models.schemas import clean_tags
from skillcoach.utils.errors import StoreUnavailable
from skillcoach.utils.observability import log_event
from skillcoach.utils.qbank_store import BaseQBankStore

logger = logging.getLogger(__name__)


@dataclass
class TagRegistrationResult:
    registered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def register_tags(names: Iterable[str], store: BaseQBankStore) -> TagRegistrationResult:
    """
    Idempotent find-or-create for each distinct tag name.
    A failing tag is logged and reported; the rest are still registered.
    """
    result = TagRegistrationResult()
    for name in clean_tags(list(names or [])):
        try:
            store.upsert_tag(name)
        except StoreUnavailable as e:
            result.failed.append(name)
            log_event(
                logger,
                "tag_register_failed",
                level="warning",
                tag=name,
                error=str(e),
            )
            continue
        result.registered.append(name)
    if result.registered or result.failed:
        log_event(
            logger,
            "tags_registered",
            registered=len(result.registered),
            failed=len(result.failed),
        )
    return result


def list_tags(store: BaseQBankStore) -> List[str]:
    return sorted(store.list_tags())
