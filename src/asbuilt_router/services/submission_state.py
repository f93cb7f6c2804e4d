from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Sequence

from asbuilt_router.policy.section_types import (
    DELIVERED_STATES,
    DeliveryStatus,
    SubmissionStatus,
)
from asbuilt_router.schemas import RoutingSummary, Submission, SubmissionSection

_PENDING_STATES = frozenset({DeliveryStatus.PENDING, DeliveryStatus.QUEUED, DeliveryStatus.SENDING})


def compute_routing_summary(sections: Sequence[SubmissionSection]) -> RoutingSummary:
    return RoutingSummary(
        total_sections=len(sections),
        pending_sections=sum(1 for section in sections if section.delivery_status in _PENDING_STATES),
        delivered_sections=sum(1 for section in sections if section.delivery_status in DELIVERED_STATES),
        failed_sections=sum(1 for section in sections if section.delivery_status == DeliveryStatus.FAILED),
        skipped_sections=sum(1 for section in sections if section.delivery_status == DeliveryStatus.SKIPPED),
    )


def derive_submission_status(summary: RoutingSummary, current: SubmissionStatus) -> SubmissionStatus:
    """Aggregate status from section outcomes; ``current`` is kept when nothing decides."""
    total = summary.total_sections
    if total == 0:
        return current
    if summary.delivered_sections == total:
        return SubmissionStatus.DELIVERED
    if summary.failed_sections > 0 and summary.pending_sections == 0 and summary.delivered_sections == 0:
        return SubmissionStatus.FAILED
    if summary.delivered_sections > 0:
        return SubmissionStatus.PARTIALLY_DELIVERED
    if summary.skipped_sections == total:
        return SubmissionStatus.MANUAL_REVIEW
    return current


def refresh_submission_status(submission: Submission) -> SubmissionStatus:
    submission.routing_summary = compute_routing_summary(submission.sections)
    submission.status = derive_submission_status(submission.routing_summary, submission.status)
    return submission.status


def mark_section_delivered(
    submission: Submission,
    section_index: int,
    *,
    external_reference_id: str,
    delivered_at: datetime | None = None,
) -> SubmissionSection:
    section = submission.sections[section_index]
    section.delivery_status = DeliveryStatus.DELIVERED
    section.external_reference_id = external_reference_id
    section.delivered_at = delivered_at or datetime.now(timezone.utc)
    section.last_delivery_error = None
    section.retry_exhausted = False
    return section


def mark_section_failed(
    submission: Submission,
    section_index: int,
    *,
    error: str,
) -> SubmissionSection:
    section = submission.sections[section_index]
    section.delivery_status = DeliveryStatus.FAILED
    section.last_delivery_error = error
    section.retry_exhausted = is_retry_exhausted(section)
    return section


def is_retry_exhausted(section: SubmissionSection) -> bool:
    # The first delivery is not a retry.
    return section.delivery_attempts >= section.max_retries + 1


def next_retry_at(section: SubmissionSection) -> datetime | None:
    if section.delivery_status != DeliveryStatus.FAILED or section.retry_exhausted:
        return None
    if section.last_attempt_at is None:
        return None
    return section.last_attempt_at + timedelta(minutes=section.retry_delay_minutes)


__all__ = [
    "compute_routing_summary",
    "derive_submission_status",
    "is_retry_exhausted",
    "mark_section_delivered",
    "mark_section_failed",
    "next_retry_at",
    "refresh_submission_status",
]
