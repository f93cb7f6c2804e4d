from __future__ import annotations

from typing import Any

import httpx

from asbuilt_router.destinations.base import (
    DeliveryContext,
    DeliveryError,
    DeliveryReceipt,
    IdempotentDestinationAdapter,
    utc_now,
)
from asbuilt_router.policy.section_types import Destination
from asbuilt_router.telemetry import DeliveryMetrics

_REGULATORY_DOCUMENT_TYPES: dict[str, str] = {
    "ccsc": "CONSTRUCTION_COMPLETION_CHECKLIST",
    "construction_sketch": "AS_BUILT_DRAWING",
    "equipment_info": "EQUIPMENT_RECORD",
    "photos": "FIELD_PHOTOGRAPHY",
    "permits": "PERMIT_COMPLIANCE",
}

COMPLIANCE_STATEMENT = "Work completed in accordance with utility construction standards"


class RegulatoryPortalAdapter(IdempotentDestinationAdapter):
    destination = Destination.REGULATORY_PORTAL
    reference_prefix = "CPUC"

    def __init__(
        self,
        *,
        portal_url: str | None,
        api_token: str | None = None,
        timeout_seconds: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        metrics: DeliveryMetrics | None = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, transport=transport, metrics=metrics)
        self.portal_url = portal_url.rstrip("/") if portal_url else None
        self.api_token = api_token

    @property
    def is_simulated(self) -> bool:
        return not self.portal_url

    def build_payload(self, context: DeliveryContext) -> dict[str, Any]:
        extracted = context.extracted_metadata
        now = utc_now()
        return {
            "SubmissionType": "CONSTRUCTION_COMPLETION",
            "UtilityCode": context.utility_code,
            "ContractorId": context.company_id,
            "ProjectNumber": context.pm_number,
            "WorkOrderNumber": context.metadata.get("work_order_number"),
            "CircuitId": context.metadata.get("circuit_id"),
            "DocumentType": _REGULATORY_DOCUMENT_TYPES.get(
                context.section_type, "GENERAL_DOCUMENTATION"
            ),
            "DocumentCategory": "CCSC",
            "DocumentDate": now.date().isoformat(),
            "Document": {
                "FileName": context.filename,
                "ContentType": "application/pdf",
                "Hash": context.file_hash,
                "HashAlgorithm": "SHA-256",
                "PageCount": context.page_end - context.page_start + 1,
                "SourceDocumentId": context.source_document_id,
            },
            "Attestation": {
                "SubmittedBy": "asbuilt-router automated submission",
                "SubmittedAt": now.isoformat(),
                "ComplianceStatement": COMPLIANCE_STATEMENT,
            },
            "WorkDetails": {
                "CompletionDate": extracted.get("work_date") or context.metadata.get("work_date"),
                "Assets": [
                    *({"type": "POLE", "id": pole_id} for pole_id in extracted.get("pole_ids") or []),
                    *(
                        {"type": "TRANSFORMER", "id": transformer_id}
                        for transformer_id in extracted.get("transformer_ids") or []
                    ),
                ],
                "GPS": list(extracted.get("gps_coordinates") or []),
            },
            **context.destination_metadata,
        }

    def _send(self, context: DeliveryContext) -> DeliveryReceipt:
        headers = self._idempotency_headers(context)
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        with self._client(headers) as client:
            response = client.post(f"{self.portal_url}/submissions", json=self.build_payload(context))
            response.raise_for_status()
            data = response.json()

        confirmation = data.get("confirmationNumber") if isinstance(data, dict) else None
        if not confirmation:
            raise DeliveryError(
                self.destination.value,
                "destination_error",
                "Regulatory portal response missing confirmation number",
            )
        return DeliveryReceipt(
            destination=self.destination.value,
            external_reference_id=str(confirmation),
            delivered_at=utc_now(),
            details={"processing_estimate": data.get("processingEstimate")},
        )


__all__ = ["COMPLIANCE_STATEMENT", "RegulatoryPortalAdapter"]
