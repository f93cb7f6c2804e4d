from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timezone
import hashlib
import logging
from typing import Any, Callable

from asbuilt_router.errors import (
    SubmissionNotFoundError,
    SubmissionValidationError,
    UnsupportedUploadError,
    UploadTooLargeError,
)
from asbuilt_router.policy.quality_validator import QualityValidator
from asbuilt_router.policy.section_types import AuditAction
from asbuilt_router.policy.utility_config import UtilityConfigProvider
from asbuilt_router.schemas import (
    AnalyticsResponse,
    ClassifyPagesResponse,
    FileReference,
    PageClassificationView,
    RetryResponse,
    SectionStatusView,
    Submission,
    SubmissionDraft,
    SubmissionMetadata,
    SubmissionStatusResponse,
    ValidationContext,
    ValidationResult,
)
from asbuilt_router.services.analytics import (
    DEFAULT_ANALYTICS_DAYS,
    analytics_window_start,
    summarize_submissions,
)
from asbuilt_router.services.audit_log import append_audit_entry, recent_entries
from asbuilt_router.services.blob_store import BlobStore
from asbuilt_router.services.page_classifier import classify_pages, get_pages_for_section
from asbuilt_router.services.page_extraction import count_pages, extract_page_texts
from asbuilt_router.services.submission_orchestrator import SubmissionOrchestrator
from asbuilt_router.services.submission_state import next_retry_at
from asbuilt_router.services.submission_store import SubmissionStore
from asbuilt_router.services.task_runner import BackgroundTaskRunner

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionPackage:
    company_id: str
    utility_code: str
    payload_bytes: bytes
    filename: str = "job-package.pdf"
    submitted_by: str | None = None
    job_id: str | None = None
    work_type: str | None = None
    metadata: SubmissionMetadata = field(default_factory=SubmissionMetadata)
    draft: SubmissionDraft | None = None
    validation_context: ValidationContext | None = None


@dataclass
class SubmissionHandle:
    submission: Submission
    validation: ValidationResult | None = None
    future: Future[Any] | None = None


class SubmissionService:
    def __init__(
        self,
        *,
        store: SubmissionStore,
        blob_store: BlobStore,
        config_provider: UtilityConfigProvider,
        orchestrator: SubmissionOrchestrator,
        task_runner: BackgroundTaskRunner,
        validator: QualityValidator | None = None,
        upload_max_bytes: int = 50 * 1024 * 1024,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.blob_store = blob_store
        self.config_provider = config_provider
        self.orchestrator = orchestrator
        self.task_runner = task_runner
        self.validator = validator or QualityValidator(config_provider)
        self.upload_max_bytes = upload_max_bytes
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate(
        self,
        draft: SubmissionDraft,
        context: ValidationContext | None = None,
    ) -> ValidationResult:
        return self.validator.validate(draft, context)

    def generate_submission_id(self, now: datetime | None = None) -> str:
        moment = now or self._clock()
        period = moment.strftime("%Y%m")
        sequence = self.store.next_sequence(f"asbuilt-{period}")
        return f"ASB-{period}-{sequence:05d}"

    def submit(self, package: SubmissionPackage) -> SubmissionHandle:
        if len(package.payload_bytes) > self.upload_max_bytes:
            raise UploadTooLargeError()
        try:
            page_count = count_pages(package.payload_bytes)
        except ValueError as exc:
            raise UnsupportedUploadError() from exc
        if page_count == 0:
            raise UnsupportedUploadError("Uploaded job package has no pages")

        validation: ValidationResult | None = None
        if package.draft is not None:
            validation = self.validator.validate(package.draft, package.validation_context)
            if not validation.valid:
                raise SubmissionValidationError(validation)

        utility_code = package.utility_code.strip().upper()
        config = self.config_provider.find_by_utility_code(utility_code)
        now = self._clock()
        submission_id = self.generate_submission_id(now)
        stored = self.blob_store.put(
            package.payload_bytes,
            f"asbuilt/{submission_id}/original.pdf",
            "application/pdf",
        )
        submission = Submission(
            submission_id=submission_id,
            company_id=package.company_id,
            job_id=package.job_id,
            utility_id=config.utility_id if config is not None else None,
            utility_code=utility_code,
            work_type=package.work_type or (package.draft.work_type if package.draft else None),
            submitted_by=package.submitted_by,
            metadata=package.metadata,
            original_file=FileReference(
                key=stored.key,
                hash=hashlib.sha256(package.payload_bytes).hexdigest(),
                size_bytes=stored.size_bytes,
                page_count=page_count,
                filename=package.filename,
            ),
            validation_score=validation.score if validation is not None else None,
            created_at=now,
        )
        append_audit_entry(
            submission,
            AuditAction.UPLOADED,
            f"Uploaded {package.filename} ({page_count} pages)",
            user_id=package.submitted_by,
        )
        if validation is not None and validation.warnings:
            append_audit_entry(
                submission,
                AuditAction.WARNING,
                f"Pre-flight validation passed with {len(validation.warnings)} warning(s)",
                metadata={"codes": [warning.code for warning in validation.warnings]},
            )
        self.store.insert(submission)
        LOGGER.info(
            "Accepted as-built submission",
            extra={
                "submission_id": submission_id,
                "company_id": package.company_id,
                "utility_code": utility_code,
                "page_count": page_count,
            },
        )

        future = self.task_runner.submit(
            f"process_submission:{submission_id}",
            self.orchestrator.process_submission,
            submission_id,
        )
        return SubmissionHandle(submission=submission, validation=validation, future=future)

    def _require(self, submission_id: str) -> Submission:
        submission = self.store.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        return submission

    def get_status(self, submission_id: str) -> SubmissionStatusResponse:
        submission = self._require(submission_id)
        return SubmissionStatusResponse(
            submission_id=submission.submission_id,
            status=submission.status,
            pm_number=submission.metadata.pm_number,
            utility_code=submission.utility_code,
            submitted_by=submission.submitted_by,
            created_at=submission.created_at,
            processing_started_at=submission.processing_started_at,
            processing_completed_at=submission.processing_completed_at,
            processing_duration_ms=submission.processing_duration_ms,
            processing_error=submission.processing_error,
            summary=submission.routing_summary,
            sections=[
                SectionStatusView(
                    section_index=section.section_index,
                    section_type=section.section_type,
                    pages=f"{section.page_start}-{section.page_end}",
                    destination=section.destination,
                    routing_rule_name=section.routing_rule_name,
                    status=section.delivery_status,
                    delivery_attempts=section.delivery_attempts,
                    max_retries=section.max_retries,
                    retry_exhausted=section.retry_exhausted,
                    next_retry_at=next_retry_at(section),
                    delivered_at=section.delivered_at,
                    external_reference_id=section.external_reference_id,
                    error=section.last_delivery_error,
                )
                for section in submission.sections
            ],
            utility_acknowledged=submission.utility_acknowledged,
            audit_log=recent_entries(submission),
        )

    def retry(self, submission_id: str) -> RetryResponse:
        outcome = self.orchestrator.retry_failed_sections(submission_id)
        if outcome.reprocess:
            self.task_runner.submit(
                f"reprocess_submission:{submission_id}",
                self.orchestrator.process_submission,
                submission_id,
            )
        return RetryResponse(
            submission_id=outcome.submission.submission_id,
            status=outcome.submission.status,
            retried_sections=outcome.retried_sections,
            exhausted_sections=outcome.exhausted_sections,
            reprocessing=outcome.reprocess,
            summary=outcome.submission.routing_summary,
        )

    def classify_pages(self, *, utility_code: str, payload_bytes: bytes) -> ClassifyPagesResponse:
        if len(payload_bytes) > self.upload_max_bytes:
            raise UploadTooLargeError()
        try:
            package = extract_page_texts(payload_bytes)
        except ValueError as exc:
            raise UnsupportedUploadError() from exc

        normalized_code = utility_code.strip().upper()
        config = self.config_provider.find_by_utility_code(normalized_code)
        definitions = config.page_ranges if config is not None else ()
        classifications = classify_pages(package.page_texts, definitions)
        section_types = sorted({classification.section_type for classification in classifications})
        return ClassifyPagesResponse(
            utility_code=normalized_code,
            total_pages=package.total_pages,
            pages=[
                PageClassificationView(
                    page_index=classification.page_index,
                    section_type=classification.section_type,
                    confidence=classification.confidence,
                    method=classification.method,
                    detected_keyword=classification.detected_keyword,
                )
                for classification in classifications
            ],
            sections={
                section_type: get_pages_for_section(classifications, section_type)
                for section_type in section_types
            },
        )

    def analytics(self, *, company_id: str, days: int = DEFAULT_ANALYTICS_DAYS) -> AnalyticsResponse:
        submissions = self.store.find(
            company_id=company_id,
            created_after=analytics_window_start(days, now=self._clock()),
        )
        return summarize_submissions(submissions, company_id=company_id, period_days=days)


__all__ = ["SubmissionHandle", "SubmissionPackage", "SubmissionService"]
