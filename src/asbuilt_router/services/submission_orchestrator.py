from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from threading import Lock

from asbuilt_router.destinations import (
    DeliveryContext,
    DestinationAdapterRegistry,
    map_delivery_exception,
)
from asbuilt_router.errors import SubmissionBusyError, SubmissionNotFoundError
from asbuilt_router.policy.naming_convention import NamingContext, generate_name_for_type
from asbuilt_router.policy.section_types import (
    NON_DISPATCHED_DESTINATIONS,
    SETTLED_SUBMISSION_STATES,
    AuditAction,
    DeliveryStatus,
    Destination,
    SubmissionStatus,
)
from asbuilt_router.policy.utility_config import UtilityConfig, UtilityConfigProvider
from asbuilt_router.routing import RoutingRuleResolver, TenantContext
from asbuilt_router.schemas import FileReference, Submission, SubmissionSection
from asbuilt_router.services.audit_log import append_audit_entry
from asbuilt_router.services.blob_store import BlobStore, read_blob
from asbuilt_router.services.page_classifier import SectionSpan, classify_pages, group_sections
from asbuilt_router.services.page_extraction import extract_page_texts, split_pages
from asbuilt_router.services.submission_state import (
    is_retry_exhausted,
    mark_section_delivered,
    mark_section_failed,
    refresh_submission_status,
)
from asbuilt_router.services.submission_store import SubmissionStore
from asbuilt_router.telemetry import DeliveryMetrics

LOGGER = logging.getLogger(__name__)


@dataclass
class RetryOutcome:
    submission: Submission
    retried_sections: list[int] = field(default_factory=list)
    exhausted_sections: list[int] = field(default_factory=list)
    reprocess: bool = False


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def section_file_key(submission_id: str, section: SubmissionSection) -> str:
    return f"asbuilt/{submission_id}/{section.section_index}-{section.section_type}.pdf"


class SubmissionOrchestrator:
    """Drives a submission through classify, split, route and deliver.

    ``process_submission`` never raises: section delivery failures are
    recorded on the section, and pipeline failures mark the submission
    ``failed`` with a processing error.

    At most one pipeline run or retry works on a submission at a time in
    this process. Retries are also refused while the stored status shows a
    run in flight elsewhere.
    """

    def __init__(
        self,
        *,
        store: SubmissionStore,
        blob_store: BlobStore,
        config_provider: UtilityConfigProvider,
        resolver: RoutingRuleResolver,
        registry: DestinationAdapterRegistry,
        metrics: DeliveryMetrics | None = None,
        delivery_max_workers: int = 4,
    ) -> None:
        if delivery_max_workers < 1:
            raise ValueError("delivery_max_workers must be >= 1")
        self.store = store
        self.blob_store = blob_store
        self.config_provider = config_provider
        self.resolver = resolver
        self.registry = registry
        self.metrics = metrics or DeliveryMetrics()
        self._delivery_executor = ThreadPoolExecutor(
            max_workers=delivery_max_workers,
            thread_name_prefix="asbuilt-delivery",
        )
        self._active_lock = Lock()
        self._active: set[str] = set()

    def shutdown(self) -> None:
        self._delivery_executor.shutdown(wait=True)

    def _claim(self, submission_id: str) -> bool:
        with self._active_lock:
            if submission_id in self._active:
                return False
            self._active.add(submission_id)
            return True

    def _release(self, submission_id: str) -> None:
        with self._active_lock:
            self._active.discard(submission_id)

    def process_submission(self, submission_id: str) -> Submission | None:
        if not self._claim(submission_id):
            LOGGER.warning("Submission is already being processed", extra={"submission_id": submission_id})
            return None
        try:
            return self._process_claimed(submission_id)
        finally:
            self._release(submission_id)

    def _process_claimed(self, submission_id: str) -> Submission | None:
        submission = self.store.get(submission_id)
        if submission is None:
            LOGGER.warning("Submission not found for processing", extra={"submission_id": submission_id})
            return None

        try:
            return self._run_pipeline(submission)
        except Exception as exc:
            LOGGER.exception(
                "As-built processing failed",
                extra={"submission_id": submission_id},
            )
            submission.status = SubmissionStatus.FAILED
            submission.processing_error = str(exc) or type(exc).__name__
            append_audit_entry(submission, AuditAction.FAILED, submission.processing_error)
            self._finish_timing(submission)
            self._save_quietly(submission)
            return submission

    def retry_failed_sections(self, submission_id: str) -> RetryOutcome:
        """Re-deliver failed sections that still have attempts left.

        A ``failed`` package that never produced sections is reset to
        ``uploaded`` and returned with ``reprocess=True``; the caller
        schedules ``process_submission`` for it.
        """
        if not self._claim(submission_id):
            raise SubmissionBusyError(submission_id)
        try:
            return self._retry_claimed(submission_id)
        finally:
            self._release(submission_id)

    def _retry_claimed(self, submission_id: str) -> RetryOutcome:
        submission = self.store.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        if submission.status not in SETTLED_SUBMISSION_STATES:
            raise SubmissionBusyError(submission_id, submission.status.value)

        if submission.status == SubmissionStatus.FAILED and not submission.sections:
            append_audit_entry(
                submission,
                AuditAction.MANUAL_OVERRIDE,
                "Retry requested for failed package; reprocessing",
            )
            submission.status = SubmissionStatus.UPLOADED
            submission.processing_error = None
            self.store.save(submission)
            return RetryOutcome(submission=submission, reprocess=True)

        failed_indexes = [
            index
            for index, section in enumerate(submission.sections)
            if section.delivery_status == DeliveryStatus.FAILED
        ]
        if not failed_indexes:
            return RetryOutcome(submission=submission)

        eligible: list[int] = []
        exhausted: list[int] = []
        for index in failed_indexes:
            section = submission.sections[index]
            if is_retry_exhausted(section):
                exhausted.append(index)
                section.retry_exhausted = True
            else:
                eligible.append(index)

        if not eligible:
            self.store.save(submission)
            return RetryOutcome(submission=submission, exhausted_sections=exhausted)

        for index in eligible:
            section = submission.sections[index]
            section.delivery_status = DeliveryStatus.QUEUED
            append_audit_entry(
                submission,
                AuditAction.SECTION_RETRIED,
                f"Retrying {section.section_type} (attempt {section.delivery_attempts + 1} of {section.max_retries + 1})",
                section_index=index,
            )
            self.metrics.increment(destination=section.destination.value, event="retry")
        submission.status = SubmissionStatus.ROUTING
        self.store.save(submission)

        source_bytes: bytes | None = None
        if any(submission.sections[index].file is None for index in eligible):
            source_bytes = read_blob(self.blob_store, submission.original_file.key)
        self._deliver_sections(submission, eligible, source_bytes=source_bytes)

        refresh_submission_status(submission)
        append_audit_entry(
            submission,
            AuditAction.COMPLETED,
            f"Retry complete. {submission.routing_summary.delivered_sections}/"
            f"{submission.routing_summary.total_sections} delivered",
        )
        self.store.save(submission)
        return RetryOutcome(
            submission=submission,
            retried_sections=eligible,
            exhausted_sections=exhausted,
        )

    def _run_pipeline(self, submission: Submission) -> Submission:
        submission.status = SubmissionStatus.PROCESSING
        submission.processing_started_at = _utc_now()
        submission.processing_error = None
        append_audit_entry(submission, AuditAction.PROCESSING_STARTED, "Started processing as-built package")
        self.store.save(submission)

        source_bytes = read_blob(self.blob_store, submission.original_file.key)
        package = extract_page_texts(source_bytes)
        config = self.config_provider.find_by_utility_code(submission.utility_code)
        if config is None:
            append_audit_entry(
                submission,
                AuditAction.WARNING,
                f"No utility config for {submission.utility_code}; pages left unclassified",
            )
        definitions = config.page_ranges if config is not None else ()

        spans = group_sections(classify_pages(package.page_texts, definitions))
        submission.original_file.page_count = package.total_pages
        submission.sections = [
            self._build_section(submission, index, span, config) for index, span in enumerate(spans)
        ]
        for section in submission.sections:
            append_audit_entry(
                submission,
                AuditAction.SECTION_CLASSIFIED,
                f"Classified {section.section_type} (pages {section.page_start}-{section.page_end}, "
                f"{section.classification_method})",
                section_index=section.section_index,
                metadata={"confidence": section.classification_confidence},
            )

        if not any(span.confidence > 0 and span.section_type != "other" for span in spans):
            return self._finish_manual_review(submission)

        split_failures = 0
        for section in submission.sections:
            if not self._split_section(submission, section, source_bytes):
                split_failures += 1
        if submission.sections and split_failures == len(submission.sections):
            raise RuntimeError(f"All {split_failures} sections failed to split")

        submission.status = SubmissionStatus.CLASSIFIED
        self.store.save(submission)

        dispatch_indexes: list[int] = []
        for section in submission.sections:
            if section.delivery_status == DeliveryStatus.FAILED:
                continue
            self._route_section(submission, section)
            if section.delivery_status == DeliveryStatus.QUEUED:
                dispatch_indexes.append(section.section_index)

        submission.status = SubmissionStatus.ROUTING
        self.store.save(submission)

        self._deliver_sections(submission, dispatch_indexes, source_bytes=source_bytes)

        refresh_submission_status(submission)
        self._finish_timing(submission)
        append_audit_entry(
            submission,
            AuditAction.COMPLETED,
            f"Processing complete. {submission.routing_summary.delivered_sections}/"
            f"{submission.routing_summary.total_sections} delivered",
        )
        self.store.save(submission)
        LOGGER.info(
            "As-built processing complete",
            extra={
                "submission_id": submission.submission_id,
                "status": submission.status.value,
                "delivered_sections": submission.routing_summary.delivered_sections,
                "total_sections": submission.routing_summary.total_sections,
            },
        )
        return submission

    def _build_section(
        self,
        submission: Submission,
        index: int,
        span: SectionSpan,
        config: UtilityConfig | None,
    ) -> SubmissionSection:
        naming_context = NamingContext(
            pm_number=submission.metadata.pm_number,
            notification_number=submission.metadata.notification_number,
            on_date=submission.created_at,
            sequence=index + 1,
        )
        conventions = config.naming_conventions if config is not None else ()
        return SubmissionSection(
            section_id=f"{submission.submission_id}-S{index:02d}",
            section_index=index,
            section_type=span.section_type,
            page_start=span.page_start,
            page_end=span.page_end,
            document_name=generate_name_for_type(conventions, span.section_type, naming_context),
            extracted_metadata=submission.metadata.as_routing_fields(),
            classification_method=span.method,
            classification_confidence=span.confidence,
        )

    def _finish_manual_review(self, submission: Submission) -> Submission:
        for section in submission.sections:
            section.destination = Destination.MANUAL_REVIEW
            section.delivery_status = DeliveryStatus.SKIPPED
            append_audit_entry(
                submission,
                AuditAction.SECTION_SKIPPED,
                "No confident classification; held for manual review",
                section_index=section.section_index,
            )
        refresh_submission_status(submission)
        submission.status = SubmissionStatus.MANUAL_REVIEW
        self._finish_timing(submission)
        append_audit_entry(submission, AuditAction.COMPLETED, "No recognizable sections; routed to manual review")
        self.store.save(submission)
        return submission

    def _split_section(self, submission: Submission, section: SubmissionSection, source_bytes: bytes) -> bool:
        try:
            document = split_pages(source_bytes, page_start=section.page_start, page_end=section.page_end)
            key = section_file_key(submission.submission_id, section)
            stored = self.blob_store.put(document.content, key, "application/pdf")
        except Exception as exc:
            LOGGER.warning(
                "Section split failed",
                exc_info=True,
                extra={"submission_id": submission.submission_id, "section_index": section.section_index},
            )
            section.file = None
            mark_section_failed(submission, section.section_index, error=f"split_failed: {exc}")
            section.retry_exhausted = False
            append_audit_entry(
                submission,
                AuditAction.SECTION_FAILED,
                f"Failed to split {section.section_type}: {exc}",
                section_index=section.section_index,
            )
            return False

        section.file = FileReference(
            key=stored.key,
            hash=document.sha256,
            size_bytes=stored.size_bytes,
            page_count=document.page_count,
            filename=f"{section.document_name}.pdf" if section.document_name else None,
        )
        append_audit_entry(
            submission,
            AuditAction.SECTION_EXTRACTED,
            f"Split {section.section_type}: pages {section.page_start}-{section.page_end}, "
            f"{stored.size_bytes} bytes, SHA-256: {document.sha256[:16]}...",
            section_index=section.section_index,
        )
        return True

    def _route_section(self, submission: Submission, section: SubmissionSection) -> None:
        decision = self.resolver.resolve(
            section.section_type,
            TenantContext(
                utility_id=submission.utility_id,
                company_id=submission.company_id,
                metadata=submission.metadata.as_routing_fields(),
            ),
        )
        section.destination = decision.destination
        section.routing_rule_name = decision.rule_name
        section.max_retries = decision.max_retries
        section.retry_delay_minutes = decision.retry_delay_minutes
        section.destination_metadata = dict(decision.mapped_metadata)
        if decision.is_default:
            details = f"Routed to {decision.destination.value} (default)"
        else:
            details = f"Routed to {decision.destination.value} via rule: {decision.rule_name}"
        append_audit_entry(
            submission,
            AuditAction.SECTION_ROUTED,
            details,
            section_index=section.section_index,
        )

        if decision.destination in NON_DISPATCHED_DESTINATIONS:
            section.delivery_status = DeliveryStatus.SKIPPED
            self.metrics.increment(destination=decision.destination.value, event="skipped")
            append_audit_entry(
                submission,
                AuditAction.SECTION_SKIPPED,
                f"{section.section_type} held for {decision.destination.value}",
                section_index=section.section_index,
            )
        else:
            section.delivery_status = DeliveryStatus.QUEUED

    def _deliver_sections(
        self,
        submission: Submission,
        indexes: list[int],
        *,
        source_bytes: bytes | None,
    ) -> None:
        if not indexes:
            return
        lock = Lock()
        futures = [
            self._delivery_executor.submit(
                self._deliver_section,
                submission,
                index,
                lock,
                source_bytes,
            )
            for index in indexes
        ]
        for index, future in zip(indexes, futures):
            try:
                future.result()
            except Exception:
                LOGGER.exception(
                    "Section delivery worker crashed",
                    extra={"submission_id": submission.submission_id, "section_index": index},
                )
                with lock:
                    section = submission.sections[index]
                    if section.delivery_status not in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED):
                        mark_section_failed(submission, index, error="delivery_worker_error")

    def _deliver_section(
        self,
        submission: Submission,
        index: int,
        lock: Lock,
        source_bytes: bytes | None,
    ) -> None:
        with lock:
            section = submission.sections[index]
            if section.file is None and source_bytes is not None:
                self._split_section(submission, section, source_bytes)
            if section.destination == Destination.PENDING:
                self._route_section(submission, section)
                if section.delivery_status == DeliveryStatus.SKIPPED:
                    self.store.save(submission)
                    return
            section.delivery_status = DeliveryStatus.SENDING
            section.delivery_attempts += 1
            section.last_attempt_at = _utc_now()
            destination = section.destination
            self.store.save(submission)

        try:
            context = self._delivery_context(submission, section)
            receipt = self.registry.get(destination).deliver(context)
        except Exception as exc:
            error = map_delivery_exception(destination.value, exc)
            with lock:
                mark_section_failed(submission, index, error=f"{error.code}: {error.message}")
                append_audit_entry(
                    submission,
                    AuditAction.SECTION_FAILED,
                    f"Delivery to {destination.value} failed: {error.message}",
                    section_index=index,
                    metadata={"code": error.code, "attempt": section.delivery_attempts},
                )
                self.metrics.increment(destination=destination.value, event="failure")
                self.store.save(submission)
            LOGGER.warning(
                "Section delivery failed",
                extra={
                    "submission_id": submission.submission_id,
                    "section_index": index,
                    "destination": destination.value,
                    "error_code": error.code,
                },
            )
            return

        with lock:
            mark_section_delivered(
                submission,
                index,
                external_reference_id=receipt.external_reference_id,
                delivered_at=receipt.delivered_at,
            )
            append_audit_entry(
                submission,
                AuditAction.SECTION_DELIVERED,
                f"Delivered to {destination.value}: {receipt.external_reference_id}",
                section_index=index,
                metadata={"simulated": receipt.simulated},
            )
            self.metrics.increment(destination=destination.value, event="success")
            self.store.save(submission)

    def _delivery_context(self, submission: Submission, section: SubmissionSection) -> DeliveryContext:
        if section.file is None:
            raise RuntimeError("section_file_missing")
        return DeliveryContext(
            submission_id=submission.submission_id,
            company_id=submission.company_id,
            utility_code=submission.utility_code,
            section_id=section.section_id,
            section_index=section.section_index,
            section_type=section.section_type,
            page_start=section.page_start,
            page_end=section.page_end,
            metadata=submission.metadata.as_routing_fields(),
            extracted_metadata=dict(section.extracted_metadata),
            destination_metadata=dict(section.destination_metadata),
            file_key=section.file.key,
            file_hash=section.file.hash,
            document_name=section.document_name,
            content=read_blob(self.blob_store, section.file.key),
        )

    def _finish_timing(self, submission: Submission) -> None:
        submission.processing_completed_at = _utc_now()
        if submission.processing_started_at is not None:
            elapsed = submission.processing_completed_at - submission.processing_started_at
            submission.processing_duration_ms = int(elapsed.total_seconds() * 1000)

    def _save_quietly(self, submission: Submission) -> None:
        try:
            self.store.save(submission)
        except Exception:
            LOGGER.warning(
                "Unable to persist failed submission state",
                exc_info=True,
                extra={"submission_id": submission.submission_id},
            )


__all__ = ["RetryOutcome", "SubmissionOrchestrator", "section_file_key"]
