from asbuilt_router.destinations.archive import ArchiveAdapter, retention_for
from asbuilt_router.destinations.base import (
    DeliveryContext,
    DeliveryError,
    DeliveryReceipt,
    DestinationAdapter,
    IdempotentDestinationAdapter,
    map_delivery_exception,
)
from asbuilt_router.destinations.email import EmailAdapter
from asbuilt_router.destinations.gis import GisAdapter
from asbuilt_router.destinations.oracle import OracleAdapter
from asbuilt_router.destinations.regulatory import RegulatoryPortalAdapter
from asbuilt_router.destinations.registry import DestinationAdapterRegistry
from asbuilt_router.destinations.sharepoint import SharePointAdapter, SharePointLibrary

__all__ = [
    "ArchiveAdapter",
    "DeliveryContext",
    "DeliveryError",
    "DeliveryReceipt",
    "DestinationAdapter",
    "DestinationAdapterRegistry",
    "EmailAdapter",
    "GisAdapter",
    "IdempotentDestinationAdapter",
    "OracleAdapter",
    "RegulatoryPortalAdapter",
    "SharePointAdapter",
    "SharePointLibrary",
    "map_delivery_exception",
    "retention_for",
]
