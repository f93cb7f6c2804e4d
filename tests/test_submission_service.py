from __future__ import annotations

from datetime import datetime, timezone

import fitz
import pytest

from asbuilt_router.destinations import ArchiveAdapter, DestinationAdapterRegistry
from asbuilt_router.errors import (
    SubmissionNotFoundError,
    SubmissionValidationError,
    UnsupportedUploadError,
    UploadTooLargeError,
)
from asbuilt_router.policy.section_types import AuditAction, SubmissionStatus
from asbuilt_router.policy.utility_config import CatalogUtilityConfigProvider
from asbuilt_router.routing import InMemoryRoutingRuleStore, RoutingRuleResolver, load_routing_rules
from asbuilt_router.schemas import SubmissionDraft, SubmissionMetadata
from asbuilt_router.services import (
    BackgroundTaskRunner,
    InMemoryBlobStore,
    InMemorySubmissionStore,
    SubmissionOrchestrator,
    SubmissionPackage,
    SubmissionService,
)

_NOW = datetime(2025, 3, 10, 15, 30, tzinfo=timezone.utc)


def _build_pdf_bytes(*page_texts: str) -> bytes:
    document = fitz.open()
    for text in page_texts:
        page = document.new_page()
        if text:
            page.insert_text((72, 72), text)
    payload = document.tobytes()
    document.close()
    return payload


_PACKAGE = _build_pdf_bytes(
    "CREW FOREMAN SIGN-OFF SHEET",
    "SCALE: 1in = 40ft",
    "Construction Completion Standards Checklist",
)


@pytest.fixture
def service():
    store = InMemorySubmissionStore()
    blob_store = InMemoryBlobStore()
    config_provider = CatalogUtilityConfigProvider.from_path()
    orchestrator = SubmissionOrchestrator(
        store=store,
        blob_store=blob_store,
        config_provider=config_provider,
        resolver=RoutingRuleResolver(InMemoryRoutingRuleStore(load_routing_rules())),
        registry=DestinationAdapterRegistry({}, fallback_factory=lambda: ArchiveAdapter(blob_store=blob_store)),
    )
    task_runner = BackgroundTaskRunner(max_workers=1)
    service = SubmissionService(
        store=store,
        blob_store=blob_store,
        config_provider=config_provider,
        orchestrator=orchestrator,
        task_runner=task_runner,
        upload_max_bytes=len(_PACKAGE) + 1024,
        clock=lambda: _NOW,
    )
    yield service
    task_runner.shutdown()
    orchestrator.shutdown()


def _package(**overrides) -> SubmissionPackage:
    values = {
        "company_id": "company-1",
        "utility_code": " pge ",
        "payload_bytes": _PACKAGE,
        "submitted_by": "jdoe",
        "metadata": SubmissionMetadata(pm_number="35611981"),
    }
    values.update(overrides)
    return SubmissionPackage(**values)


def test_generate_submission_id_uses_monthly_sequence(service: SubmissionService) -> None:
    assert service.generate_submission_id() == "ASB-202503-00001"
    assert service.generate_submission_id() == "ASB-202503-00002"
    assert service.generate_submission_id(datetime(2025, 4, 1, tzinfo=timezone.utc)) == "ASB-202504-00001"


def test_submit_stores_original_and_processes_in_background(service: SubmissionService) -> None:
    handle = service.submit(_package())

    submission = handle.submission
    assert submission.submission_id == "ASB-202503-00001"
    assert submission.status == SubmissionStatus.UPLOADED
    assert submission.utility_code == "PGE"
    assert submission.utility_id == "utility-pge"
    assert submission.original_file.key == "asbuilt/ASB-202503-00001/original.pdf"
    assert submission.original_file.page_count == 3
    assert len(submission.original_file.hash) == 64
    assert submission.audit_log[0].action == AuditAction.UPLOADED
    assert submission.audit_log[0].user_id == "jdoe"
    assert service.blob_store.exists("asbuilt/ASB-202503-00001/original.pdf")

    processed = handle.future.result(timeout=30)

    assert processed.status == SubmissionStatus.DELIVERED
    status = service.get_status("ASB-202503-00001")
    assert status.status == SubmissionStatus.DELIVERED
    assert [section.pages for section in status.sections] == ["1-1", "2-2", "3-3"]
    assert status.summary.delivered_sections == 3
    assert len(status.audit_log) <= 10


def test_submit_rejects_oversize_and_unreadable_uploads(service: SubmissionService) -> None:
    with pytest.raises(UploadTooLargeError):
        service.submit(_package(payload_bytes=_PACKAGE + b"x" * 2048))
    with pytest.raises(UnsupportedUploadError):
        service.submit(_package(payload_bytes=b"GIF89a not a pdf"))


def test_submit_blocks_invalid_draft(service: SubmissionService) -> None:
    draft = SubmissionDraft(utility_code="PGE", work_type="estimated")

    with pytest.raises(SubmissionValidationError) as exc_info:
        service.submit(_package(draft=draft))

    assert exc_info.value.status_code == 422
    assert any(error.code == "MISSING_DOC_EC_TAG" for error in exc_info.value.validation.errors)
    assert service.store.find(company_id="company-1") == []


def test_get_status_raises_for_unknown_submission(service: SubmissionService) -> None:
    with pytest.raises(SubmissionNotFoundError):
        service.get_status("ASB-missing")


def test_retry_reports_no_work_for_delivered_submission(service: SubmissionService) -> None:
    handle = service.submit(_package())
    handle.future.result(timeout=30)

    response = service.retry(handle.submission.submission_id)

    assert response.status == SubmissionStatus.DELIVERED
    assert response.retried_sections == []


def test_classify_pages_previews_without_persisting(service: SubmissionService) -> None:
    response = service.classify_pages(utility_code="pge", payload_bytes=_PACKAGE)

    assert response.utility_code == "PGE"
    assert response.total_pages == 3
    assert [page.section_type for page in response.pages] == [
        "face_sheet",
        "construction_sketch",
        "ccsc",
    ]
    assert response.sections == {"ccsc": [2], "construction_sketch": [1], "face_sheet": [0]}
    assert service.store.find(company_id="company-1") == []


def test_analytics_summarizes_company_window(service: SubmissionService) -> None:
    service.submit(_package()).future.result(timeout=30)
    service.submit(_package(company_id="company-2")).future.result(timeout=30)

    summary = service.analytics(company_id="company-1", days=30)

    assert summary.total_submissions == 1
    assert summary.delivered == 1
    assert summary.total_sections == 3


def test_retry_of_failed_package_reprocesses_in_background(service: SubmissionService) -> None:
    handle = service.submit(_package())
    handle.future.result(timeout=30)
    submission = service.store.get(handle.submission.submission_id)
    submission.status = SubmissionStatus.FAILED
    submission.processing_error = "unreadable_pdf_payload"
    submission.sections = []
    service.store.save(submission)

    response = service.retry(submission.submission_id)

    assert response.reprocessing is True
    assert response.status == SubmissionStatus.UPLOADED
    assert response.retried_sections == []

    service.task_runner.shutdown(wait=True)

    assert service.get_status(submission.submission_id).status == SubmissionStatus.DELIVERED
