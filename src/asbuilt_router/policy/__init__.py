from asbuilt_router.policy.naming_convention import (
    NamingContext,
    generate_document_name,
    generate_name_for_type,
    generate_package_names,
)
from asbuilt_router.policy.section_types import (
    AuditAction,
    DeliveryStatus,
    Destination,
    SectionType,
    SubmissionStatus,
    default_destination_for,
)
from asbuilt_router.policy.utility_config import (
    CatalogUtilityConfigProvider,
    UtilityConfig,
    UtilityConfigProvider,
    load_utility_configs,
)

__all__ = [
    "AuditAction",
    "CatalogUtilityConfigProvider",
    "DeliveryStatus",
    "Destination",
    "NamingContext",
    "SectionType",
    "SubmissionStatus",
    "UtilityConfig",
    "UtilityConfigProvider",
    "default_destination_for",
    "generate_document_name",
    "generate_name_for_type",
    "generate_package_names",
    "load_utility_configs",
]
