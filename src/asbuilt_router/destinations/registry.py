from __future__ import annotations

import logging
from threading import Lock
from typing import TYPE_CHECKING, Callable, Mapping

import httpx

from asbuilt_router.destinations.archive import ArchiveAdapter
from asbuilt_router.destinations.base import DestinationAdapter
from asbuilt_router.destinations.email import EMAIL_ROUTES, EmailAdapter
from asbuilt_router.destinations.gis import GisAdapter
from asbuilt_router.destinations.oracle import OracleAdapter
from asbuilt_router.destinations.regulatory import RegulatoryPortalAdapter
from asbuilt_router.destinations.sharepoint import SharePointAdapter, default_libraries
from asbuilt_router.policy.section_types import Destination
from asbuilt_router.settings import Settings
from asbuilt_router.telemetry import DeliveryMetrics

if TYPE_CHECKING:
    from asbuilt_router.services.blob_store import BlobStore

LOGGER = logging.getLogger(__name__)

AdapterFactory = Callable[[], DestinationAdapter]


def _normalize_key(key: Destination | str) -> Destination | None:
    if isinstance(key, Destination):
        return key
    try:
        return Destination(str(key).strip().lower())
    except ValueError:
        return None


class DestinationAdapterRegistry:
    """Process-wide adapter cache keyed by destination.

    Each adapter is constructed once on first use. Keys without a factory
    resolve to the archive adapter.
    """

    def __init__(
        self,
        factories: Mapping[Destination, AdapterFactory],
        *,
        fallback_factory: AdapterFactory | None = None,
    ) -> None:
        self._factories = dict(factories)
        self._fallback_factory = fallback_factory or ArchiveAdapter
        self._lock = Lock()
        self._adapters: dict[Destination, DestinationAdapter] = {}

    def get(self, key: Destination | str) -> DestinationAdapter:
        destination = _normalize_key(key)
        if destination is None or destination not in self._factories:
            destination = Destination.ARCHIVE

        adapter = self._adapters.get(destination)
        if adapter is not None:
            return adapter

        with self._lock:
            adapter = self._adapters.get(destination)
            if adapter is None:
                factory = self._factories.get(destination, self._fallback_factory)
                adapter = factory()
                self._adapters[destination] = adapter
                LOGGER.info("Constructed destination adapter", extra={"destination": destination.value})
        return adapter

    def cached_destinations(self) -> list[str]:
        with self._lock:
            return sorted(destination.value for destination in self._adapters)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        blob_store: BlobStore | None = None,
        metrics: DeliveryMetrics | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> "DestinationAdapterRegistry":
        timeout = settings.delivery_timeout_seconds
        factories: dict[Destination, AdapterFactory] = {}

        for destination in (
            Destination.ORACLE_PPM,
            Destination.ORACLE_EAM,
            Destination.ORACLE_PAYABLES,
        ):
            factories[destination] = (
                lambda destination=destination: OracleAdapter(
                    destination,
                    base_url=settings.oracle_base_url,
                    api_token=settings.oracle_api_token,
                    timeout_seconds=timeout,
                    transport=transport,
                    metrics=metrics,
                )
            )

        factories[Destination.GIS_ESRI] = lambda: GisAdapter(
            endpoint=settings.gis_endpoint,
            api_token=settings.gis_api_token,
            feature_layer_id=settings.gis_feature_layer_id,
            timeout_seconds=timeout,
            transport=transport,
            metrics=metrics,
        )

        libraries = default_libraries(
            do_site=settings.sharepoint_do_site,
            permits_site=settings.sharepoint_permits_site,
            utcs_site=settings.sharepoint_utcs_site,
        )
        for destination, library in libraries.items():
            factories[destination] = (
                lambda destination=destination, library=library: SharePointAdapter(
                    destination,
                    library=library,
                    tenant_id=settings.sharepoint_tenant_id,
                    client_id=settings.sharepoint_client_id,
                    client_secret=settings.sharepoint_client_secret,
                    timeout_seconds=timeout,
                    transport=transport,
                    metrics=metrics,
                )
            )

        for destination, route in EMAIL_ROUTES.items():
            factories[destination] = (
                lambda destination=destination, route=route: EmailAdapter(
                    destination,
                    api_url=settings.email_api_url,
                    api_key=settings.email_api_key,
                    sender=settings.email_from,
                    recipients=settings.email_recipients.get(route.department, ()),
                    timeout_seconds=timeout,
                    transport=transport,
                    metrics=metrics,
                )
            )

        factories[Destination.REGULATORY_PORTAL] = lambda: RegulatoryPortalAdapter(
            portal_url=settings.regulatory_portal_url,
            api_token=settings.regulatory_portal_token,
            timeout_seconds=timeout,
            transport=transport,
            metrics=metrics,
        )

        archive_factory = lambda: ArchiveAdapter(blob_store=blob_store, metrics=metrics)  # noqa: E731
        factories[Destination.ARCHIVE] = archive_factory
        return cls(factories, fallback_factory=archive_factory)


__all__ = ["AdapterFactory", "DestinationAdapterRegistry"]
