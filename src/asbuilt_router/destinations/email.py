from __future__ import annotations

import base64
from dataclasses import dataclass
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


@dataclass(frozen=True)
class EmailRoute:
    department: str
    subject_template: str
    summary: str


EMAIL_ROUTES: dict[Destination, EmailRoute] = {
    Destination.EMAIL_MAPPING: EmailRoute(
        "mapping",
        "As-Built Sketch: {pm_number}",
        "A new as-built sketch is attached. Please update GIS mapping accordingly.",
    ),
    Destination.EMAIL_DO: EmailRoute(
        "do",
        "Circuit Map Update: {pm_number} - {circuit_id}",
        "A circuit map change sheet has been submitted for your district.",
    ),
    Destination.EMAIL_PERMITS: EmailRoute(
        "permits",
        "Permit Completion: {pm_number}",
        "Completed permit documentation is attached.",
    ),
    Destination.EMAIL_COMPLIANCE: EmailRoute(
        "compliance",
        "CCSC Submission: {pm_number}",
        "A construction completion standards checklist is attached for compliance records.",
    ),
    Destination.EMAIL_ESTIMATING: EmailRoute(
        "estimating",
        "Field Redlines/Bluelines: {pm_number} - {section_type}",
        "Review the attached document for redline or blueline markups that change the original design.",
    ),
}


def render_subject(template: str, context: DeliveryContext) -> str:
    return template.format(
        pm_number=context.pm_number or "N/A",
        circuit_id=context.metadata.get("circuit_id") or "N/A",
        section_type=context.section_type,
    )


def render_body(route: EmailRoute, context: DeliveryContext) -> str:
    lines = [
        route.summary,
        "",
        f"PM Number: {context.pm_number or 'N/A'}",
        f"Circuit ID: {context.metadata.get('circuit_id') or 'N/A'}",
        f"Work Order: {context.metadata.get('work_order_number') or 'N/A'}",
        f"Document Type: {context.section_type}",
        f"Pages: {context.page_start} - {context.page_end}",
        f"Contractor: {context.company_id}",
        "",
        f"Submission ID: {context.submission_id}",
    ]
    if context.file_hash:
        lines.append(f"Document Hash: {context.file_hash[:16]}...")
    return "\n".join(lines)


class EmailAdapter(IdempotentDestinationAdapter):
    reference_prefix = "MSG"

    def __init__(
        self,
        destination: Destination,
        *,
        api_url: str | None,
        api_key: str | None = None,
        sender: str,
        recipients: tuple[str, ...],
        timeout_seconds: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        metrics: DeliveryMetrics | None = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, transport=transport, metrics=metrics)
        route = EMAIL_ROUTES.get(destination)
        if route is None:
            raise ValueError(f"EmailAdapter cannot deliver to {destination.value}")
        self.destination = destination
        self.route = route
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.recipients = recipients

    @property
    def is_simulated(self) -> bool:
        return not self.api_url

    def build_payload(self, context: DeliveryContext) -> dict[str, Any]:
        return {
            "from": self.sender,
            "to": list(self.recipients),
            "subject": render_subject(self.route.subject_template, context),
            "text": render_body(self.route, context),
            "attachments": [{"filename": context.filename, "content_type": "application/pdf"}],
        }

    def _send(self, context: DeliveryContext) -> DeliveryReceipt:
        if not self.recipients:
            raise DeliveryError(
                self.destination.value,
                "configuration_error",
                f"No recipients configured for {self.route.department}",
            )
        payload = self.build_payload(context)
        payload["attachments"][0]["content"] = base64.b64encode(context.content).decode("ascii")
        headers = self._idempotency_headers(context)
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        with self._client(headers) as client:
            response = client.post(self.api_url, json=payload)
            response.raise_for_status()
            data = response.json()

        message_id = None
        if isinstance(data, dict):
            message_id = data.get("id") or data.get("messageId")
        if not message_id:
            raise DeliveryError(self.destination.value, "destination_error", "Email API response missing message id")
        return DeliveryReceipt(
            destination=self.destination.value,
            external_reference_id=str(message_id),
            delivered_at=utc_now(),
            details={"recipients": list(self.recipients)},
        )


__all__ = ["EMAIL_ROUTES", "EmailAdapter", "EmailRoute", "render_body", "render_subject"]
