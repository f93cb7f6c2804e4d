from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

from asbuilt_router.policy.section_types import DELIVERED_STATES, DeliveryStatus, SubmissionStatus
from asbuilt_router.schemas import AnalyticsResponse, DestinationRollup, Submission

DEFAULT_ANALYTICS_DAYS = 30

_IN_FLIGHT_STATUSES = frozenset(
    {
        SubmissionStatus.UPLOADED,
        SubmissionStatus.PROCESSING,
        SubmissionStatus.CLASSIFIED,
        SubmissionStatus.ROUTING,
    }
)


def analytics_window_start(days: int, *, now: datetime | None = None) -> datetime:
    return (now or datetime.now(timezone.utc)) - timedelta(days=days)


def summarize_submissions(
    submissions: Iterable[Submission],
    *,
    company_id: str,
    period_days: int,
) -> AnalyticsResponse:
    submissions = list(submissions)
    status_counts = {status: 0 for status in SubmissionStatus}
    by_destination: dict[str, DestinationRollup] = {}
    durations: list[int] = []
    total_sections = 0

    for submission in submissions:
        status_counts[submission.status] += 1
        if submission.processing_duration_ms is not None:
            durations.append(submission.processing_duration_ms)
        for section in submission.sections:
            total_sections += 1
            rollup = by_destination.setdefault(section.destination.value, DestinationRollup())
            rollup.count += 1
            if section.delivery_status in DELIVERED_STATES:
                rollup.delivered += 1
            elif section.delivery_status == DeliveryStatus.FAILED:
                rollup.failed += 1

    return AnalyticsResponse(
        company_id=company_id,
        period_days=period_days,
        total_submissions=len(submissions),
        delivered=status_counts[SubmissionStatus.DELIVERED],
        partially_delivered=status_counts[SubmissionStatus.PARTIALLY_DELIVERED],
        failed=status_counts[SubmissionStatus.FAILED],
        manual_review=status_counts[SubmissionStatus.MANUAL_REVIEW],
        processing=sum(status_counts[status] for status in _IN_FLIGHT_STATUSES),
        avg_processing_time_ms=round(sum(durations) / len(durations)) if durations else None,
        total_sections=total_sections,
        by_destination=dict(sorted(by_destination.items())),
    )


__all__ = ["DEFAULT_ANALYTICS_DAYS", "analytics_window_start", "summarize_submissions"]
