from __future__ import annotations

from datetime import datetime, timezone
import threading

import fitz
import pytest

from asbuilt_router.destinations import (
    ArchiveAdapter,
    DeliveryContext,
    DeliveryError,
    DestinationAdapterRegistry,
    GisAdapter,
    OracleAdapter,
    RegulatoryPortalAdapter,
)
from asbuilt_router.errors import SubmissionBusyError, SubmissionNotFoundError
from asbuilt_router.policy.section_types import (
    AuditAction,
    DeliveryStatus,
    Destination,
    SubmissionStatus,
)
from asbuilt_router.policy.utility_config import CatalogUtilityConfigProvider
from asbuilt_router.routing import InMemoryRoutingRuleStore, RoutingRuleResolver, load_routing_rules
from asbuilt_router.schemas import FileReference, Submission, SubmissionMetadata
from asbuilt_router.services.blob_store import InMemoryBlobStore
from asbuilt_router.services.submission_orchestrator import SubmissionOrchestrator
from asbuilt_router.services.submission_store import InMemorySubmissionStore
from asbuilt_router.services.task_runner import BackgroundTaskRunner
from asbuilt_router.telemetry import DeliveryMetrics

_PACKAGE_PAGES = (
    "CREW FOREMAN SIGN-OFF SHEET\nPM 35611981",
    "SCALE: 1in = 40ft\nPole 110-22 replaced",
    "PERMIT #2025-0042\nCity of Fresno",
    "Construction Completion Standards Checklist",
)


def _build_pdf_bytes(*page_texts: str) -> bytes:
    document = fitz.open()
    for text in page_texts:
        page = document.new_page()
        if text:
            page.insert_text((72, 72), text)
    payload = document.tobytes()
    document.close()
    return payload


class _SwitchableAdapter:
    def __init__(self, destination: Destination, *, error: str = "GIS layer locked") -> None:
        self.destination = destination
        self.error = error
        self.failing = True
        self.calls: list[DeliveryContext] = []

    def deliver(self, context: DeliveryContext):
        self.calls.append(context)
        if self.failing:
            raise DeliveryError(self.destination.value, "destination_error", self.error)
        return GisAdapter(endpoint=None).deliver(context)


class _BlockingAdapter:
    destination = Destination.GIS_ESRI

    def __init__(self) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()

    def deliver(self, context: DeliveryContext):
        self.entered.set()
        self.release.wait(10)
        return GisAdapter(endpoint=None).deliver(context)


class _Harness:
    def __init__(self, *, gis_adapter=None, regulatory_adapter=None) -> None:
        self.store = InMemorySubmissionStore()
        self.blob_store = InMemoryBlobStore()
        self.metrics = DeliveryMetrics()
        self.gis_adapter = gis_adapter or GisAdapter(endpoint=None)
        self.regulatory_adapter = regulatory_adapter or RegulatoryPortalAdapter(portal_url=None)
        registry = DestinationAdapterRegistry(
            {
                Destination.ORACLE_PPM: lambda: OracleAdapter(Destination.ORACLE_PPM, base_url=None),
                Destination.GIS_ESRI: lambda: self.gis_adapter,
                Destination.REGULATORY_PORTAL: lambda: self.regulatory_adapter,
            },
            fallback_factory=lambda: ArchiveAdapter(blob_store=self.blob_store),
        )
        self.orchestrator = SubmissionOrchestrator(
            store=self.store,
            blob_store=self.blob_store,
            config_provider=CatalogUtilityConfigProvider.from_path(),
            resolver=RoutingRuleResolver(InMemoryRoutingRuleStore(load_routing_rules())),
            registry=registry,
            metrics=self.metrics,
            delivery_max_workers=2,
        )

    def seed(
        self,
        payload: bytes,
        *,
        submission_id: str = "ASB-202503-00001",
        job_type: str | None = "routine",
    ) -> Submission:
        key = f"asbuilt/{submission_id}/original.pdf"
        self.blob_store.put(payload, key)
        submission = Submission(
            submission_id=submission_id,
            company_id="company-1",
            utility_id="utility-pge",
            utility_code="PGE",
            metadata=SubmissionMetadata(pm_number="35611981", job_type=job_type),
            original_file=FileReference(key=key, size_bytes=len(payload)),
            created_at=datetime(2025, 3, 10, tzinfo=timezone.utc),
        )
        self.store.insert(submission)
        return submission


@pytest.fixture
def harness():
    harness = _Harness()
    yield harness
    harness.orchestrator.shutdown()


def test_process_submission_classifies_splits_and_delivers(harness: _Harness) -> None:
    harness.seed(_build_pdf_bytes(*_PACKAGE_PAGES))

    result = harness.orchestrator.process_submission("ASB-202503-00001")

    assert result.status == SubmissionStatus.DELIVERED
    assert [section.section_type for section in result.sections] == [
        "face_sheet",
        "construction_sketch",
        "permits",
        "ccsc",
    ]
    assert [section.destination for section in result.sections] == [
        Destination.ORACLE_PPM,
        Destination.GIS_ESRI,
        Destination.SHAREPOINT_PERMITS,
        Destination.REGULATORY_PORTAL,
    ]
    sketch = result.sections[1]
    assert sketch.section_id == "ASB-202503-00001-S01"
    assert sketch.routing_rule_name == "pge-sketch-gis"
    assert sketch.destination_metadata == {"LAST_ASBUILT_PM": "35611981", "CIRCUIT_ID": "UNKNOWN"}
    assert sketch.document_name == "35611981_SKETCH_R0"
    assert sketch.file is not None and harness.blob_store.exists(sketch.file.key)
    assert all(section.delivery_attempts == 1 for section in result.sections)
    assert all(section.external_reference_id for section in result.sections)
    assert result.routing_summary.delivered_sections == 4
    assert result.original_file.page_count == 4
    assert result.processing_duration_ms is not None

    stored = harness.store.get("ASB-202503-00001")
    assert stored.status == SubmissionStatus.DELIVERED
    actions = [entry.action for entry in stored.audit_log]
    assert actions[0] == AuditAction.PROCESSING_STARTED
    assert actions[-1] == AuditAction.COMPLETED
    assert actions.count(AuditAction.SECTION_DELIVERED) == 4


def test_unregistered_destination_falls_back_to_archive(harness: _Harness) -> None:
    harness.seed(_build_pdf_bytes(*_PACKAGE_PAGES))

    result = harness.orchestrator.process_submission("ASB-202503-00001")

    permits = result.sections[2]
    assert permits.delivery_status == DeliveryStatus.DELIVERED
    assert permits.external_reference_id == "ARC-ASB-202503-00001-02-permits"
    assert harness.blob_store.keys("archive/ARC-ASB-202503-00001-02-permits/")


def test_rule_conditions_steer_emergency_checklists(harness: _Harness) -> None:
    harness.seed(_build_pdf_bytes(*_PACKAGE_PAGES), job_type="emergency")

    result = harness.orchestrator.process_submission("ASB-202503-00001")

    ccsc = result.sections[3]
    assert ccsc.destination == Destination.EMAIL_COMPLIANCE
    assert ccsc.max_retries == 2
    assert ccsc.retry_delay_minutes == 10


def test_unclassified_pages_are_skipped_for_manual_review(harness: _Harness) -> None:
    harness.seed(
        _build_pdf_bytes(
            "CREW FOREMAN SIGN-OFF SHEET",
            "Coffee order for the crew",
            "Construction Completion Standards Checklist",
        )
    )

    result = harness.orchestrator.process_submission("ASB-202503-00001")

    other = result.sections[1]
    assert other.section_type == "other"
    assert other.destination == Destination.MANUAL_REVIEW
    assert other.delivery_status == DeliveryStatus.SKIPPED
    assert other.delivery_attempts == 0
    assert result.status == SubmissionStatus.PARTIALLY_DELIVERED
    assert harness.metrics.snapshot()["manual_review"]["skipped"] == 1


def test_package_without_recognizable_sections_goes_to_manual_review(harness: _Harness) -> None:
    harness.seed(_build_pdf_bytes("Lunch menu", "Parking instructions"))

    result = harness.orchestrator.process_submission("ASB-202503-00001")

    assert result.status == SubmissionStatus.MANUAL_REVIEW
    assert all(section.delivery_status == DeliveryStatus.SKIPPED for section in result.sections)
    assert all(section.file is None for section in result.sections)


def test_unknown_utility_config_leaves_pages_for_manual_review(harness: _Harness) -> None:
    submission = harness.seed(_build_pdf_bytes(*_PACKAGE_PAGES))
    submission.utility_code = "ZZZ"
    harness.store.save(submission)

    result = harness.orchestrator.process_submission("ASB-202503-00001")

    assert result.status == SubmissionStatus.MANUAL_REVIEW
    assert any(entry.action == AuditAction.WARNING for entry in result.audit_log)


def test_unreadable_package_marks_submission_failed(harness: _Harness) -> None:
    harness.seed(b"not a pdf at all")

    result = harness.orchestrator.process_submission("ASB-202503-00001")

    assert result.status == SubmissionStatus.FAILED
    assert result.processing_error == "unreadable_pdf_payload"
    assert harness.store.get("ASB-202503-00001").status == SubmissionStatus.FAILED


def test_retry_reprocesses_failed_package_without_sections(harness: _Harness) -> None:
    harness.seed(b"not a pdf at all")
    harness.orchestrator.process_submission("ASB-202503-00001")
    harness.blob_store.put(_build_pdf_bytes(*_PACKAGE_PAGES), "asbuilt/ASB-202503-00001/original.pdf")

    outcome = harness.orchestrator.retry_failed_sections("ASB-202503-00001")

    assert outcome.reprocess is True
    assert outcome.submission.status == SubmissionStatus.UPLOADED
    assert outcome.submission.processing_error is None
    assert any(entry.action == AuditAction.MANUAL_OVERRIDE for entry in outcome.submission.audit_log)
    assert harness.store.get("ASB-202503-00001").status == SubmissionStatus.UPLOADED

    result = harness.orchestrator.process_submission("ASB-202503-00001")

    assert result.status == SubmissionStatus.DELIVERED


def test_process_submission_returns_none_for_unknown_id(harness: _Harness) -> None:
    assert harness.orchestrator.process_submission("ASB-missing") is None


def test_retry_raises_for_unknown_id(harness: _Harness) -> None:
    with pytest.raises(SubmissionNotFoundError):
        harness.orchestrator.retry_failed_sections("ASB-missing")


def test_retry_without_failed_sections_is_a_no_op(harness: _Harness) -> None:
    harness.seed(_build_pdf_bytes(*_PACKAGE_PAGES))
    harness.orchestrator.process_submission("ASB-202503-00001")

    outcome = harness.orchestrator.retry_failed_sections("ASB-202503-00001")

    assert outcome.retried_sections == []
    assert outcome.exhausted_sections == []
    assert outcome.submission.status == SubmissionStatus.DELIVERED


def test_failed_delivery_is_recorded_and_retried() -> None:
    gis_adapter = _SwitchableAdapter(Destination.GIS_ESRI)
    harness = _Harness(gis_adapter=gis_adapter)
    try:
        harness.seed(_build_pdf_bytes(*_PACKAGE_PAGES))

        first = harness.orchestrator.process_submission("ASB-202503-00001")

        sketch = first.sections[1]
        assert first.status == SubmissionStatus.PARTIALLY_DELIVERED
        assert sketch.delivery_status == DeliveryStatus.FAILED
        assert sketch.last_delivery_error == "destination_error: GIS layer locked"
        assert sketch.retry_exhausted is False
        assert harness.metrics.snapshot()["gis_esri"]["failure"] == 1

        gis_adapter.failing = False
        outcome = harness.orchestrator.retry_failed_sections("ASB-202503-00001")

        assert outcome.retried_sections == [1]
        assert outcome.submission.status == SubmissionStatus.DELIVERED
        assert outcome.submission.sections[1].delivery_attempts == 2
        assert outcome.submission.sections[1].last_delivery_error is None
        assert harness.metrics.snapshot()["gis_esri"]["retry"] == 1
        assert gis_adapter.calls[-1].destination_metadata["LAST_ASBUILT_PM"] == "35611981"
    finally:
        harness.orchestrator.shutdown()


def test_retry_stops_once_attempts_are_exhausted() -> None:
    gis_adapter = _SwitchableAdapter(Destination.GIS_ESRI)
    harness = _Harness(gis_adapter=gis_adapter)
    try:
        harness.seed(_build_pdf_bytes(*_PACKAGE_PAGES))
        harness.orchestrator.process_submission("ASB-202503-00001")

        # Rule allows three retries after the first attempt.
        for _ in range(3):
            outcome = harness.orchestrator.retry_failed_sections("ASB-202503-00001")
            assert outcome.retried_sections == [1]

        exhausted = harness.orchestrator.retry_failed_sections("ASB-202503-00001")

        assert exhausted.retried_sections == []
        assert exhausted.exhausted_sections == [1]
        assert exhausted.submission.sections[1].delivery_attempts == 4
        assert exhausted.submission.sections[1].retry_exhausted is True
        assert len(gis_adapter.calls) == 4
    finally:
        harness.orchestrator.shutdown()


def test_retry_is_refused_while_pipeline_is_delivering() -> None:
    gis_adapter = _BlockingAdapter()
    regulatory_adapter = _SwitchableAdapter(Destination.REGULATORY_PORTAL, error="portal down")
    harness = _Harness(gis_adapter=gis_adapter, regulatory_adapter=regulatory_adapter)
    runner = BackgroundTaskRunner(max_workers=1)
    try:
        harness.seed(_build_pdf_bytes(*_PACKAGE_PAGES))
        future = runner.submit(
            "process_submission:ASB-202503-00001",
            harness.orchestrator.process_submission,
            "ASB-202503-00001",
        )
        assert gis_adapter.entered.wait(10)

        with pytest.raises(SubmissionBusyError) as exc_info:
            harness.orchestrator.retry_failed_sections("ASB-202503-00001")
        assert exc_info.value.status_code == 409
        assert harness.orchestrator.process_submission("ASB-202503-00001") is None

        gis_adapter.release.set()
        first = future.result(timeout=30)

        assert first.status == SubmissionStatus.PARTIALLY_DELIVERED
        assert first.sections[3].delivery_status == DeliveryStatus.FAILED

        regulatory_adapter.failing = False
        outcome = harness.orchestrator.retry_failed_sections("ASB-202503-00001")

        assert outcome.retried_sections == [3]
        stored = harness.store.get("ASB-202503-00001")
        assert stored.status == SubmissionStatus.DELIVERED
        assert stored.sections[3].delivery_status == DeliveryStatus.DELIVERED
        assert len(regulatory_adapter.calls) == 2
    finally:
        gis_adapter.release.set()
        runner.shutdown()
        harness.orchestrator.shutdown()


@pytest.mark.parametrize(
    "status",
    [SubmissionStatus.UPLOADED, SubmissionStatus.PROCESSING, SubmissionStatus.ROUTING],
)
def test_retry_is_refused_for_unsettled_status(harness: _Harness, status: SubmissionStatus) -> None:
    submission = harness.seed(_build_pdf_bytes(*_PACKAGE_PAGES))
    submission.status = status
    harness.store.save(submission)

    with pytest.raises(SubmissionBusyError):
        harness.orchestrator.retry_failed_sections("ASB-202503-00001")

    assert harness.store.get("ASB-202503-00001").status == status
