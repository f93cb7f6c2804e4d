from __future__ import annotations

from datetime import datetime, timedelta, timezone

from asbuilt_router.policy.section_types import (
    AuditAction,
    DeliveryStatus,
    Destination,
    SubmissionStatus,
)
from asbuilt_router.schemas import FileReference, Submission, SubmissionSection
from asbuilt_router.services.analytics import analytics_window_start, summarize_submissions
from asbuilt_router.services.audit_log import append_audit_entry, recent_entries


def _submission(
    submission_id: str,
    status: SubmissionStatus,
    *,
    sections: list[tuple[Destination, DeliveryStatus]] = (),
    duration_ms: int | None = None,
) -> Submission:
    return Submission(
        submission_id=submission_id,
        company_id="company-1",
        utility_code="PGE",
        original_file=FileReference(key=f"asbuilt/{submission_id}/original.pdf"),
        status=status,
        processing_duration_ms=duration_ms,
        created_at=datetime(2025, 3, 10, tzinfo=timezone.utc),
        sections=[
            SubmissionSection(
                section_id=f"{submission_id}-S{index:02d}",
                section_index=index,
                section_type="permits",
                page_start=index + 1,
                page_end=index + 1,
                destination=destination,
                delivery_status=delivery_status,
            )
            for index, (destination, delivery_status) in enumerate(sections)
        ],
    )


def test_summarize_submissions_rolls_up_statuses_and_destinations() -> None:
    submissions = [
        _submission(
            "ASB-1",
            SubmissionStatus.DELIVERED,
            sections=[
                (Destination.ORACLE_PPM, DeliveryStatus.DELIVERED),
                (Destination.GIS_ESRI, DeliveryStatus.ACKNOWLEDGED),
            ],
            duration_ms=1000,
        ),
        _submission(
            "ASB-2",
            SubmissionStatus.PARTIALLY_DELIVERED,
            sections=[
                (Destination.GIS_ESRI, DeliveryStatus.FAILED),
                (Destination.MANUAL_REVIEW, DeliveryStatus.SKIPPED),
            ],
            duration_ms=3000,
        ),
        _submission("ASB-3", SubmissionStatus.ROUTING),
        _submission("ASB-4", SubmissionStatus.UPLOADED),
        _submission("ASB-5", SubmissionStatus.FAILED),
    ]

    summary = summarize_submissions(submissions, company_id="company-1", period_days=30)

    assert summary.total_submissions == 5
    assert summary.delivered == 1
    assert summary.partially_delivered == 1
    assert summary.failed == 1
    assert summary.processing == 2
    assert summary.manual_review == 0
    assert summary.avg_processing_time_ms == 2000
    assert summary.total_sections == 4
    assert list(summary.by_destination) == ["gis_esri", "manual_review", "oracle_ppm"]
    assert summary.by_destination["gis_esri"].count == 2
    assert summary.by_destination["gis_esri"].delivered == 1
    assert summary.by_destination["gis_esri"].failed == 1


def test_summarize_submissions_handles_empty_window() -> None:
    summary = summarize_submissions([], company_id="company-1", period_days=7)

    assert summary.total_submissions == 0
    assert summary.avg_processing_time_ms is None
    assert summary.by_destination == {}


def test_analytics_window_start_subtracts_days() -> None:
    now = datetime(2025, 3, 31, tzinfo=timezone.utc)

    assert analytics_window_start(30, now=now) == now - timedelta(days=30)


def test_append_audit_entry_records_in_order() -> None:
    submission = _submission("ASB-1", SubmissionStatus.UPLOADED)

    first = append_audit_entry(submission, AuditAction.UPLOADED, "Uploaded package", user_id="jdoe")
    append_audit_entry(
        submission,
        AuditAction.SECTION_ROUTED,
        "Routed to gis_esri",
        section_index=1,
        metadata={"rule": "pge-sketch-gis"},
    )

    assert [entry.action for entry in submission.audit_log] == [
        AuditAction.UPLOADED,
        AuditAction.SECTION_ROUTED,
    ]
    assert first.user_id == "jdoe"
    assert first.timestamp.tzinfo is not None
    assert submission.audit_log[1].metadata == {"rule": "pge-sketch-gis"}


def test_recent_entries_returns_tail() -> None:
    submission = _submission("ASB-1", SubmissionStatus.UPLOADED)
    for index in range(15):
        append_audit_entry(submission, AuditAction.WARNING, f"entry {index}")

    tail = recent_entries(submission)

    assert len(tail) == 10
    assert tail[0].details == "entry 5"
    assert tail[-1].details == "entry 14"
    assert recent_entries(submission, limit=0) == []
