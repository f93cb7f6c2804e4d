from __future__ import annotations

import json
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


def _object_ids(context: DeliveryContext) -> list[dict[str, Any]]:
    extracted = context.extracted_metadata
    ids = [{"type": "POLE", "id": pole_id} for pole_id in extracted.get("pole_ids") or []]
    ids.extend(
        {"type": "TRANSFORMER", "id": transformer_id}
        for transformer_id in extracted.get("transformer_ids") or []
    )
    if not ids:
        work_order = context.metadata.get("work_order_number") or context.pm_number
        ids.append({"type": "WORK_ORDER", "id": work_order})
    return ids


class GisAdapter(IdempotentDestinationAdapter):
    destination = Destination.GIS_ESRI
    reference_prefix = "GIS-ATT"

    def __init__(
        self,
        *,
        endpoint: str | None,
        api_token: str | None = None,
        feature_layer_id: str = "Distribution_Assets",
        timeout_seconds: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        metrics: DeliveryMetrics | None = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, transport=transport, metrics=metrics)
        self.endpoint = endpoint.rstrip("/") if endpoint else None
        self.api_token = api_token
        self.feature_layer_id = feature_layer_id

    @property
    def is_simulated(self) -> bool:
        return not self.endpoint

    def build_payload(self, context: DeliveryContext) -> dict[str, Any]:
        today = utc_now().date()
        attribute_updates: dict[str, Any] = {
            "LAST_ASBUILT_DATE": today.isoformat(),
            "LAST_ASBUILT_PM": context.pm_number,
            "CONSTRUCTION_COMPLETE": "Y",
            "ASBUILT_DOC_ID": context.source_document_id,
        }
        # Rule metadata mapping targets feature attributes directly.
        attribute_updates.update(context.destination_metadata)
        coordinates = context.extracted_metadata.get("gps_coordinates") or []
        return {
            "FeatureLayerId": self.feature_layer_id,
            "ObjectIds": _object_ids(context),
            "Attachment": {
                "name": context.filename,
                "contentType": "application/pdf",
                "keywords": ",".join(
                    ["as-built", context.section_type, context.pm_number or "", str(today.year)]
                ),
            },
            "AttributeUpdates": attribute_updates,
            "GeometryUpdates": [
                {
                    "x": coordinate.get("longitude"),
                    "y": coordinate.get("latitude"),
                    "spatialReference": {"wkid": 4326},
                }
                for coordinate in coordinates
                if isinstance(coordinate, dict)
            ]
            or None,
            "WorkOrder": context.metadata.get("work_order_number") or context.pm_number,
            "CircuitId": context.metadata.get("circuit_id"),
        }

    def _send(self, context: DeliveryContext) -> DeliveryReceipt:
        headers = self._idempotency_headers(context)
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        payload = self.build_payload(context)
        endpoint = f"{self.endpoint}/{self.feature_layer_id}/FeatureServer/0/addAttachment"
        with self._client(headers) as client:
            response = client.post(
                endpoint,
                data={"f": "json", "attributes": json.dumps(payload)},
                files={"attachment": (context.filename, context.content, "application/pdf")},
            )
            response.raise_for_status()
            data = response.json()

        result = data.get("addAttachmentResult") if isinstance(data, dict) else None
        if not isinstance(result, dict) or not result.get("success"):
            raise DeliveryError(self.destination.value, "destination_error", "GIS attachment was not accepted")
        return DeliveryReceipt(
            destination=self.destination.value,
            external_reference_id=f"GIS-ATT-{result.get('objectId')}",
            delivered_at=utc_now(),
            details={"features_updated": len(payload["ObjectIds"])},
        )


__all__ = ["GisAdapter"]
