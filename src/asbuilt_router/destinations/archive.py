from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import json
import logging
from typing import TYPE_CHECKING, Any

from asbuilt_router.destinations.base import (
    DEFAULT_RECEIPT_CACHE_SIZE,
    DeliveryContext,
    DeliveryReceipt,
    IdempotentDestinationAdapter,
    utc_now,
)
from asbuilt_router.policy.section_types import Destination
from asbuilt_router.telemetry import DeliveryMetrics

if TYPE_CHECKING:
    from asbuilt_router.services.blob_store import BlobStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionPolicy:
    retention_class: str
    years: int


DEFAULT_RETENTION = RetentionPolicy("OPERATIONAL", 7)

RETENTION_POLICIES: dict[str, RetentionPolicy] = {
    "ccsc": RetentionPolicy("COMPLIANCE", 10),
    "construction_sketch": RetentionPolicy("ASSET", 50),
    "equipment_info": RetentionPolicy("ASSET", 50),
    "permits": RetentionPolicy("REGULATORY", 10),
    "billing_form": RetentionPolicy("FINANCIAL", 7),
    "photos": RetentionPolicy("EVIDENCE", 10),
}


def retention_for(section_type: str) -> RetentionPolicy:
    return RETENTION_POLICIES.get(section_type, DEFAULT_RETENTION)


def _add_years(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # 29 February rolls forward to 28 February in non-leap years.
        return moment.replace(year=moment.year + years, day=28)


class ArchiveAdapter(IdempotentDestinationAdapter):
    """Copies the section into the archive area of the blob store.

    Archiving is the fallback for every unknown destination, so it never
    reports a failure: a storage error is logged and the receipt is still
    issued with ``stored=False``.
    """

    destination = Destination.ARCHIVE
    reference_prefix = "ARC"

    def __init__(
        self,
        *,
        blob_store: BlobStore | None = None,
        metrics: DeliveryMetrics | None = None,
        receipt_cache_size: int = DEFAULT_RECEIPT_CACHE_SIZE,
    ) -> None:
        super().__init__(metrics=metrics, receipt_cache_size=receipt_cache_size)
        self.blob_store = blob_store

    @property
    def is_simulated(self) -> bool:
        return False

    def archive_id(self, context: DeliveryContext) -> str:
        return f"ARC-{context.submission_id}-{context.section_index:02d}-{context.section_type}"

    def build_payload(self, context: DeliveryContext) -> dict[str, Any]:
        archived_at = utc_now()
        retention = retention_for(context.section_type)
        return {
            "archive_id": self.archive_id(context),
            "source_submission": context.submission_id,
            "section_type": context.section_type,
            "page_range": {"start": context.page_start, "end": context.page_end},
            "document": {
                "key": context.file_key,
                "hash": context.file_hash,
                "size": len(context.content),
            },
            "metadata": {
                "pm_number": context.pm_number,
                "job_number": context.metadata.get("job_number"),
                "circuit_id": context.metadata.get("circuit_id"),
                "company_id": context.company_id,
                "utility_code": context.utility_code,
            },
            "retention": {
                "class": retention.retention_class,
                "years": retention.years,
                "expires_at": _add_years(archived_at, retention.years).isoformat(),
            },
            "archived_at": archived_at.isoformat(),
        }

    def _send(self, context: DeliveryContext) -> DeliveryReceipt:
        record = self.build_payload(context)
        archive_key = f"archive/{record['archive_id']}/{context.section_type}.pdf"
        stored = False
        if self.blob_store is not None:
            try:
                self.blob_store.put(context.content, archive_key, "application/pdf")
                self.blob_store.put(
                    json.dumps(record, sort_keys=True).encode("utf-8"),
                    f"archive/{record['archive_id']}/manifest.json",
                    "application/json",
                )
                stored = True
            except Exception:
                LOGGER.warning(
                    "Unable to copy section into archive storage",
                    exc_info=True,
                    extra={"submission_id": context.submission_id, "archive_key": archive_key},
                )

        LOGGER.info(
            "Archived section",
            extra={
                "archive_id": record["archive_id"],
                "retention_class": record["retention"]["class"],
                "stored": stored,
            },
        )
        return DeliveryReceipt(
            destination=self.destination.value,
            external_reference_id=record["archive_id"],
            delivered_at=utc_now(),
            details={
                "archive_key": archive_key,
                "retention": record["retention"],
                "stored": stored,
            },
        )


__all__ = ["ArchiveAdapter", "RETENTION_POLICIES", "RetentionPolicy", "retention_for"]
