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

_MODULE_PATHS: dict[str, str] = {
    "ppm": "/fscmRestApi/resources/latest/projects/documents",
    "eam": "/fscmRestApi/resources/latest/maintenanceWorkOrders/attachments",
    "payables": "/fscmRestApi/resources/latest/invoices/attachments",
}

_DOCUMENT_CATEGORIES: dict[str, str] = {
    "face_sheet": "PROJECT_DOCUMENTATION",
    "equipment_info": "ASSET_RECORD",
    "construction_sketch": "AS_BUILT_DRAWING",
    "billing_form": "INVOICE_BACKUP",
    "ccsc": "COMPLIANCE_RECORD",
    "photos": "FIELD_PHOTOGRAPHY",
}

_MILESTONE_CODES: dict[str, str] = {
    "construction_sketch": "CONSTRUCTION_COMPLETE",
    "ccsc": "QC_APPROVED",
    "billing_form": "BILLING_SUBMITTED",
}


def _asset_object_type(extracted: dict[str, Any]) -> str:
    if extracted.get("pole_ids"):
        return "POLE"
    if extracted.get("transformer_ids"):
        return "TRANSFORMER"
    return "EQUIPMENT"


class OracleAdapter(IdempotentDestinationAdapter):
    reference_prefix = "ORA"

    def __init__(
        self,
        destination: Destination,
        *,
        base_url: str | None,
        api_token: str | None = None,
        timeout_seconds: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        metrics: DeliveryMetrics | None = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, transport=transport, metrics=metrics)
        if destination not in (
            Destination.ORACLE_PPM,
            Destination.ORACLE_EAM,
            Destination.ORACLE_PAYABLES,
        ):
            raise ValueError(f"OracleAdapter cannot deliver to {destination.value}")
        self.destination = destination
        self.module = destination.value.removeprefix("oracle_")
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_token = api_token

    @property
    def is_simulated(self) -> bool:
        return not self.base_url

    def build_payload(self, context: DeliveryContext) -> dict[str, Any]:
        metadata = context.metadata
        extracted = context.extracted_metadata
        payload: dict[str, Any] = {
            "SourceSystem": "asbuilt-router",
            "SourceDocumentId": context.source_document_id,
            "ProjectNumber": context.pm_number,
            "Description": f"As-Built: {context.section_type} for {context.pm_number or 'N/A'}",
            "DocumentDate": utc_now().date().isoformat(),
            "Attachment": {
                "FileName": context.filename,
                "FileType": "application/pdf",
                "Category": _DOCUMENT_CATEGORIES.get(context.section_type, "GENERAL_DOCUMENT"),
                "ContentHash": context.file_hash,
                "SourceUrl": context.file_key,
            },
        }
        if self.module == "ppm":
            payload.update(
                {
                    "ProjectId": context.pm_number,
                    "TaskNumber": "CONSTRUCTION",
                    "DocumentCategory": "AS_BUILT",
                    "MilestoneCode": _MILESTONE_CODES.get(context.section_type, "DOCUMENT_UPLOADED"),
                    "Attribute1": metadata.get("circuit_id"),
                    "Attribute2": extracted.get("work_date") or metadata.get("work_date") or "",
                }
            )
        elif self.module == "eam":
            payload.update(
                {
                    "WorkOrderNumber": metadata.get("work_order_number") or context.pm_number,
                    "AssetGroup": "DISTRIBUTION",
                    "ObjectType": _asset_object_type(extracted),
                    "ObjectIds": list(extracted.get("pole_ids") or []),
                    "DocumentType": "INSTALLATION_RECORD",
                    "Locations": list(extracted.get("gps_coordinates") or []),
                }
            )
        elif self.module == "payables":
            payload.update(
                {
                    "InvoiceType": "CONTRACTOR_BACKUP",
                    "VendorId": context.company_id,
                    "BackupDocumentType": context.section_type,
                    "AmountApplicable": context.section_type == "billing_form",
                }
            )
        payload.update(context.destination_metadata)
        return payload

    def _send(self, context: DeliveryContext) -> DeliveryReceipt:
        headers = self._idempotency_headers(context)
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        endpoint = f"{self.base_url}{_MODULE_PATHS[self.module]}"
        with self._client(headers) as client:
            response = client.post(endpoint, json=self.build_payload(context))
            response.raise_for_status()
            data = response.json()

        document_id = None
        if isinstance(data, dict):
            document_id = data.get("DocumentId") or data.get("documentId")
        if not document_id:
            raise DeliveryError(self.destination.value, "destination_error", "Oracle response missing DocumentId")
        return DeliveryReceipt(
            destination=self.destination.value,
            external_reference_id=str(document_id),
            delivered_at=utc_now(),
            details={"module": self.module},
        )


__all__ = ["OracleAdapter"]
