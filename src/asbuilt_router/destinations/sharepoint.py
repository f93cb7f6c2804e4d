from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from threading import Lock
from typing import Any, Callable
from urllib.parse import quote, urlparse

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

LOGGER = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
TOKEN_REFRESH_MARGIN_SECONDS = 300.0


@dataclass(frozen=True)
class SharePointLibrary:
    site_url: str
    library_name: str
    folder_template: str


def default_libraries(
    *,
    do_site: str,
    permits_site: str,
    utcs_site: str,
) -> dict[Destination, SharePointLibrary]:
    return {
        Destination.SHAREPOINT_DO: SharePointLibrary(do_site, "Circuit Maps", "{year}/{circuit_id}"),
        Destination.SHAREPOINT_PERMITS: SharePointLibrary(
            permits_site, "Completed Permits", "{year}/{month}"
        ),
        Destination.SHAREPOINT_UTCS: SharePointLibrary(
            utcs_site, "Traffic Control Plans", "{year}/{pm_number}"
        ),
    }


class SharePointAdapter(IdempotentDestinationAdapter):
    reference_prefix = "SP"

    def __init__(
        self,
        destination: Destination,
        *,
        library: SharePointLibrary,
        tenant_id: str | None,
        client_id: str | None,
        client_secret: str | None,
        timeout_seconds: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        metrics: DeliveryMetrics | None = None,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, transport=transport, metrics=metrics)
        self.destination = destination
        self.library = library
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self._time_fn = time_fn or time.monotonic
        self._token_lock = Lock()
        self._token: str | None = None
        self._token_expires_at = 0.0

    @property
    def is_simulated(self) -> bool:
        return not (self.tenant_id and self.client_id and self.client_secret)

    def folder_path(self, context: DeliveryContext) -> str:
        now = utc_now()
        return self.library.folder_template.format(
            year=now.year,
            month=f"{now.month:02d}",
            pm_number=context.pm_number or "Unknown",
            circuit_id=context.metadata.get("circuit_id") or "Unknown",
        )

    def build_payload(self, context: DeliveryContext) -> dict[str, Any]:
        return {
            "site_url": self.library.site_url,
            "library_name": self.library.library_name,
            "folder_path": self.folder_path(context),
            "filename": context.filename,
            "metadata": {
                "Title": f"{context.pm_number or 'N/A'} - {context.section_type}",
                "PMNumber": context.pm_number,
                "CircuitId": context.metadata.get("circuit_id") or "",
                "WorkOrderNumber": context.metadata.get("work_order_number") or "",
                "DocumentType": context.section_type,
                "SubmissionId": context.submission_id,
                "ContractorId": context.company_id,
                "PageRange": f"{context.page_start}-{context.page_end}",
                "ContentHash": context.file_hash,
                **context.destination_metadata,
            },
        }

    def access_token(self, client: httpx.Client) -> str:
        with self._token_lock:
            now = self._time_fn()
            if self._token and self._token_expires_at > now + TOKEN_REFRESH_MARGIN_SECONDS:
                return self._token

            response = client.post(
                TOKEN_URL_TEMPLATE.format(tenant_id=self.tenant_id),
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": "https://graph.microsoft.com/.default",
                    "grant_type": "client_credentials",
                },
            )
            if response.status_code >= 400:
                raise DeliveryError(
                    self.destination.value,
                    "auth_error",
                    f"SharePoint token request failed ({response.status_code})",
                )
            data = response.json()
            self._token = str(data["access_token"])
            self._token_expires_at = now + float(data.get("expires_in", 3600))
            return self._token

    def _send(self, context: DeliveryContext) -> DeliveryReceipt:
        payload = self.build_payload(context)
        site = urlparse(self.library.site_url)
        with self._client() as client:
            headers = {"Authorization": f"Bearer {self.access_token(client)}"}

            site_response = client.get(f"{GRAPH_BASE_URL}/sites/{site.hostname}:{site.path}", headers=headers)
            site_response.raise_for_status()
            site_id = site_response.json()["id"]

            drives_response = client.get(f"{GRAPH_BASE_URL}/sites/{site_id}/drives", headers=headers)
            drives_response.raise_for_status()
            drive = next(
                (
                    item
                    for item in drives_response.json().get("value", [])
                    if item.get("name") == self.library.library_name
                ),
                None,
            )
            if drive is None:
                raise DeliveryError(
                    self.destination.value,
                    "destination_error",
                    f"Library '{self.library.library_name}' not found",
                )

            upload_path = quote(f"{payload['folder_path']}/{payload['filename']}")
            upload_response = client.put(
                f"{GRAPH_BASE_URL}/drives/{drive['id']}/root:/{upload_path}:/content",
                headers={
                    **headers,
                    **self._idempotency_headers(context),
                    "Content-Type": "application/pdf",
                },
                content=context.content,
            )
            upload_response.raise_for_status()
            item = upload_response.json()

            try:
                client.patch(
                    f"{GRAPH_BASE_URL}/drives/{drive['id']}/items/{item['id']}/listItem/fields",
                    headers=headers,
                    json=payload["metadata"],
                ).raise_for_status()
            except httpx.HTTPError:
                LOGGER.warning(
                    "SharePoint metadata update failed; document was uploaded",
                    exc_info=True,
                    extra={"submission_id": context.submission_id, "item_id": item["id"]},
                )

        return DeliveryReceipt(
            destination=self.destination.value,
            external_reference_id=str(item["id"]),
            delivered_at=utc_now(),
            details={"web_url": item.get("webUrl")},
        )


__all__ = ["SharePointAdapter", "SharePointLibrary", "default_libraries"]
