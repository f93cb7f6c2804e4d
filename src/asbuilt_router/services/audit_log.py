from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from asbuilt_router.policy.section_types import AuditAction
from asbuilt_router.schemas import AuditEntry, Submission

LOGGER = logging.getLogger(__name__)

STATUS_VIEW_AUDIT_LIMIT = 10


def append_audit_entry(
    submission: Submission,
    action: AuditAction,
    details: str = "",
    *,
    section_index: int | None = None,
    user_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditEntry:
    entry = AuditEntry(
        action=action,
        timestamp=datetime.now(timezone.utc),
        details=details,
        section_index=section_index,
        user_id=user_id,
        metadata=dict(metadata or {}),
    )
    submission.audit_log.append(entry)
    LOGGER.info(
        "Submission audit entry",
        extra={
            "submission_id": submission.submission_id,
            "audit_action": action.value,
            "section_index": section_index,
        },
    )
    return entry


def recent_entries(submission: Submission, limit: int = STATUS_VIEW_AUDIT_LIMIT) -> list[AuditEntry]:
    if limit <= 0:
        return []
    return list(submission.audit_log[-limit:])


__all__ = ["STATUS_VIEW_AUDIT_LIMIT", "append_audit_entry", "recent_entries"]
