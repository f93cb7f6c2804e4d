from __future__ import annotations

from enum import Enum


class SectionType(str, Enum):
    EC_TAG = "ec_tag"
    FACE_SHEET = "face_sheet"
    CREW_INSTRUCTIONS = "crew_instructions"
    CREW_MATERIALS = "crew_materials"
    EQUIPMENT_INFO = "equipment_info"
    FEEDBACK_FORM = "feedback_form"
    CONSTRUCTION_SKETCH = "construction_sketch"
    CIRCUIT_MAP = "circuit_map"
    PERMITS = "permits"
    TCP = "tcp"
    JOB_CHECKLIST = "job_checklist"
    BILLING_FORM = "billing_form"
    PAVING_FORM = "paving_form"
    CCSC = "ccsc"
    PHOTOS = "photos"
    OTHER = "other"


class Destination(str, Enum):
    ORACLE_PPM = "oracle_ppm"
    ORACLE_EAM = "oracle_eam"
    ORACLE_PAYABLES = "oracle_payables"
    GIS_ESRI = "gis_esri"
    SHAREPOINT_DO = "sharepoint_do"
    SHAREPOINT_PERMITS = "sharepoint_permits"
    SHAREPOINT_UTCS = "sharepoint_utcs"
    EMAIL_MAPPING = "email_mapping"
    EMAIL_DO = "email_do"
    EMAIL_PERMITS = "email_permits"
    EMAIL_COMPLIANCE = "email_compliance"
    EMAIL_ESTIMATING = "email_estimating"
    REGULATORY_PORTAL = "regulatory_portal"
    ARCHIVE = "archive"
    MANUAL_REVIEW = "manual_review"
    PENDING = "pending"


class SubmissionStatus(str, Enum):
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    CLASSIFIED = "classified"
    ROUTING = "routing"
    PARTIALLY_DELIVERED = "partially_delivered"
    DELIVERED = "delivered"
    FAILED = "failed"
    MANUAL_REVIEW = "manual_review"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    SENDING = "sending"
    DELIVERED = "delivered"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"
    SKIPPED = "skipped"


class AuditAction(str, Enum):
    UPLOADED = "uploaded"
    PROCESSING_STARTED = "processing_started"
    SECTION_EXTRACTED = "section_extracted"
    SECTION_CLASSIFIED = "section_classified"
    SECTION_ROUTED = "section_routed"
    SECTION_DELIVERED = "section_delivered"
    SECTION_FAILED = "section_failed"
    SECTION_SKIPPED = "section_skipped"
    SECTION_RETRIED = "section_retried"
    COMPLETED = "completed"
    FAILED = "failed"
    MANUAL_OVERRIDE = "manual_override"
    WARNING = "warning"


# Delivered for status derivation purposes.
DELIVERED_STATES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.ACKNOWLEDGED})

# Submission statuses with no pipeline run in flight.
SETTLED_SUBMISSION_STATES = frozenset(
    {
        SubmissionStatus.DELIVERED,
        SubmissionStatus.PARTIALLY_DELIVERED,
        SubmissionStatus.FAILED,
        SubmissionStatus.MANUAL_REVIEW,
    }
)

# Destinations that are never dispatched to an adapter.
NON_DISPATCHED_DESTINATIONS = frozenset({Destination.MANUAL_REVIEW, Destination.PENDING})

DEFAULT_DESTINATIONS: dict[SectionType, Destination] = {
    SectionType.FACE_SHEET: Destination.ORACLE_PPM,
    SectionType.CREW_INSTRUCTIONS: Destination.EMAIL_ESTIMATING,
    SectionType.CREW_MATERIALS: Destination.ARCHIVE,
    SectionType.EQUIPMENT_INFO: Destination.ORACLE_EAM,
    SectionType.FEEDBACK_FORM: Destination.EMAIL_ESTIMATING,
    SectionType.CONSTRUCTION_SKETCH: Destination.GIS_ESRI,
    SectionType.CIRCUIT_MAP: Destination.EMAIL_DO,
    SectionType.PERMITS: Destination.SHAREPOINT_PERMITS,
    SectionType.TCP: Destination.SHAREPOINT_UTCS,
    SectionType.JOB_CHECKLIST: Destination.ARCHIVE,
    SectionType.BILLING_FORM: Destination.ORACLE_PAYABLES,
    SectionType.PAVING_FORM: Destination.ARCHIVE,
    SectionType.CCSC: Destination.REGULATORY_PORTAL,
    SectionType.PHOTOS: Destination.ORACLE_EAM,
    SectionType.OTHER: Destination.MANUAL_REVIEW,
}


def normalize_section_type(value: object) -> SectionType | None:
    try:
        return SectionType(str(value).strip().lower())
    except ValueError:
        return None


def default_destination_for(section_type: str | SectionType) -> Destination:
    normalized = normalize_section_type(section_type)
    if normalized is None:
        return Destination.ARCHIVE
    return DEFAULT_DESTINATIONS.get(normalized, Destination.ARCHIVE)


__all__ = [
    "AuditAction",
    "DEFAULT_DESTINATIONS",
    "DELIVERED_STATES",
    "DeliveryStatus",
    "Destination",
    "NON_DISPATCHED_DESTINATIONS",
    "SETTLED_SUBMISSION_STATES",
    "SectionType",
    "SubmissionStatus",
    "default_destination_for",
    "normalize_section_type",
]
