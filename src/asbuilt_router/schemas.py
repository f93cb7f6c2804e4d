from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from asbuilt_router.policy.section_types import (
    AuditAction,
    DeliveryStatus,
    Destination,
    SubmissionStatus,
)


ClassificationMethod = Literal[
    "keyword",
    "partial_keyword",
    "continuation",
    "unclassified",
]
IssueCategory = Literal[
    "usability",
    "traceability",
    "verification",
    "accuracy",
    "config_rule",
]


class FileReference(BaseModel):
    key: str
    hash: str | None = None
    size_bytes: int = 0
    page_count: int = 0
    filename: str | None = None
    content_type: str = "application/pdf"


class RoutingSummary(BaseModel):
    total_sections: int = 0
    pending_sections: int = 0
    delivered_sections: int = 0
    failed_sections: int = 0
    skipped_sections: int = 0


class AuditEntry(BaseModel):
    action: AuditAction
    timestamp: datetime
    details: str = ""
    section_index: int | None = None
    user_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SubmissionMetadata(BaseModel):
    pm_number: str | None = None
    job_number: str | None = None
    work_order_number: str | None = None
    notification_number: str | None = None
    circuit_id: str | None = None
    job_type: str | None = None
    work_category: str | None = None
    work_date: str | None = None

    def as_routing_fields(self) -> dict[str, Any]:
        return {key: value for key, value in self.model_dump().items() if value is not None}


class SubmissionSection(BaseModel):
    section_id: str
    section_index: int
    section_type: str
    page_start: int
    page_end: int
    file: FileReference | None = None
    document_name: str | None = None
    extracted_metadata: dict[str, Any] = Field(default_factory=dict)
    destination_metadata: dict[str, Any] = Field(default_factory=dict)
    classification_method: ClassificationMethod = "unclassified"
    classification_confidence: float = 0.0
    destination: Destination = Destination.PENDING
    routing_rule_name: str | None = None
    max_retries: int = 3
    retry_delay_minutes: int = 5
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    delivery_attempts: int = 0
    last_delivery_error: str | None = None
    external_reference_id: str | None = None
    last_attempt_at: datetime | None = None
    delivered_at: datetime | None = None
    retry_exhausted: bool = False

    @property
    def page_count(self) -> int:
        return self.page_end - self.page_start + 1


class Submission(BaseModel):
    submission_id: str
    company_id: str
    job_id: str | None = None
    utility_id: str | None = None
    utility_code: str
    work_type: str | None = None
    submitted_by: str | None = None
    metadata: SubmissionMetadata = Field(default_factory=SubmissionMetadata)
    original_file: FileReference
    sections: list[SubmissionSection] = Field(default_factory=list)
    status: SubmissionStatus = SubmissionStatus.UPLOADED
    routing_summary: RoutingSummary = Field(default_factory=RoutingSummary)
    validation_score: int | None = None
    processing_error: str | None = None
    utility_acknowledged: bool = False
    created_at: datetime
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    processing_duration_ms: int | None = None
    audit_log: list[AuditEntry] = Field(default_factory=list)
    is_deleted: bool = False


class SubmissionDraft(BaseModel):
    utility_code: str = Field(min_length=1, max_length=32)
    work_type: str | None = Field(default=None, max_length=64)
    step_data: dict[str, Any] = Field(default_factory=dict)
    completed_steps: dict[str, bool] = Field(default_factory=dict)


class ValidationContext(BaseModel):
    job: dict[str, Any] | None = None
    photos: list[Any] = Field(default_factory=list)


class ValidationRequest(BaseModel):
    draft: SubmissionDraft
    context: ValidationContext = Field(default_factory=ValidationContext)


class ValidationIssue(BaseModel):
    code: str
    message: str
    category: IssueCategory | None = None


class ValidationCheck(BaseModel):
    category: IssueCategory
    code: str
    description: str
    passed: bool


class DimensionScore(BaseModel):
    score: int = 0
    total: int = 0
    passed: int = 0
    threshold: int = 0
    passing: bool = False


class ValidationResult(BaseModel):
    valid: bool
    score: int
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    checks: list[ValidationCheck] = Field(default_factory=list)
    dimensions: dict[str, DimensionScore] = Field(default_factory=dict)
    total_checks: int = 0
    passed_checks: int = 0


class SubmitAcceptedResponse(BaseModel):
    submission_id: str
    status: SubmissionStatus
    validation_score: int | None = None
    warnings: list[ValidationIssue] = Field(default_factory=list)


class SectionStatusView(BaseModel):
    section_index: int
    section_type: str
    pages: str
    destination: Destination
    routing_rule_name: str | None = None
    status: DeliveryStatus
    delivery_attempts: int
    max_retries: int
    retry_exhausted: bool
    next_retry_at: datetime | None = None
    delivered_at: datetime | None = None
    external_reference_id: str | None = None
    error: str | None = None


class SubmissionStatusResponse(BaseModel):
    submission_id: str
    status: SubmissionStatus
    pm_number: str | None = None
    utility_code: str
    submitted_by: str | None = None
    created_at: datetime
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    processing_duration_ms: int | None = None
    processing_error: str | None = None
    summary: RoutingSummary
    sections: list[SectionStatusView]
    utility_acknowledged: bool
    audit_log: list[AuditEntry]


class RetryResponse(BaseModel):
    submission_id: str
    status: SubmissionStatus
    retried_sections: list[int]
    exhausted_sections: list[int]
    reprocessing: bool = False
    summary: RoutingSummary


class PageClassificationView(BaseModel):
    page_index: int
    section_type: str
    confidence: float
    method: ClassificationMethod
    detected_keyword: str | None = None


class ClassifyPagesResponse(BaseModel):
    utility_code: str
    total_pages: int
    pages: list[PageClassificationView]
    sections: dict[str, list[int]]


class DestinationRollup(BaseModel):
    count: int = 0
    delivered: int = 0
    failed: int = 0


class AnalyticsResponse(BaseModel):
    company_id: str
    period_days: int
    total_submissions: int
    delivered: int
    partially_delivered: int
    failed: int
    manual_review: int
    processing: int
    avg_processing_time_ms: int | None = None
    total_sections: int
    by_destination: dict[str, DestinationRollup]


class ErrorBody(BaseModel):
    code: Literal[
        "VALIDATION_ERROR",
        "UNAUTHORIZED",
        "SUBMISSION_NOT_FOUND",
        "UPLOAD_TOO_LARGE",
        "INTERNAL_ERROR",
    ]
    message: str
    trace_id: str
    policy_reason: str | None = None


class ErrorEnvelope(BaseModel):
    error: ErrorBody
