from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

from asbuilt_router.policy.section_types import Destination, default_destination_for
from asbuilt_router.routing.conditions import apply_metadata_mapping, evaluate_conditions
from asbuilt_router.routing.rule_store import RoutingRuleStore
from asbuilt_router.routing.rules import DestinationDescriptor

LOGGER = logging.getLogger(__name__)

DEFAULT_RULE_NAME = "default"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MINUTES = 5

_ORACLE_MODULES: dict[str, Destination] = {
    "ppm": Destination.ORACLE_PPM,
    "eam": Destination.ORACLE_EAM,
    "payables": Destination.ORACLE_PAYABLES,
}
_SHAREPOINT_SITES: dict[str, Destination] = {
    "do": Destination.SHAREPOINT_DO,
    "permits": Destination.SHAREPOINT_PERMITS,
    "utcs": Destination.SHAREPOINT_UTCS,
}
_EMAIL_DEPARTMENTS: dict[str, Destination] = {
    "mapping": Destination.EMAIL_MAPPING,
    "do": Destination.EMAIL_DO,
    "permits": Destination.EMAIL_PERMITS,
    "compliance": Destination.EMAIL_COMPLIANCE,
    "estimating": Destination.EMAIL_ESTIMATING,
}


@dataclass(frozen=True)
class TenantContext:
    utility_id: str | None
    company_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RoutingDecision:
    destination: Destination
    rule_name: str = DEFAULT_RULE_NAME
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_minutes: int = DEFAULT_RETRY_DELAY_MINUTES
    mapped_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_default(self) -> bool:
        return self.rule_name == DEFAULT_RULE_NAME


def _normalized_option(descriptor: DestinationDescriptor, group: str, key: str) -> str:
    value = descriptor.option(group, key)
    return str(value).strip().lower() if value is not None else ""


def map_rule_to_destination(descriptor: DestinationDescriptor) -> Destination:
    """Collapse a rule's destination descriptor onto the closed destination enum.

    Pure and total: unrecognized types and options never raise.
    """
    destination_type = (descriptor.type or "").strip().lower()
    if destination_type == "oracle_api":
        module = _normalized_option(descriptor, "oracle", "module")
        return _ORACLE_MODULES.get(module, Destination.ORACLE_PPM)
    if destination_type == "sharepoint":
        site = _normalized_option(descriptor, "sharepoint", "site")
        return _SHAREPOINT_SITES.get(site, Destination.SHAREPOINT_DO)
    if destination_type == "email":
        department = _normalized_option(descriptor, "email", "department")
        return _EMAIL_DEPARTMENTS.get(department, Destination.EMAIL_MAPPING)
    if destination_type == "gis_api":
        return Destination.GIS_ESRI
    if destination_type == "regulatory_portal":
        return Destination.REGULATORY_PORTAL
    return Destination.ARCHIVE


class RoutingRuleResolver:
    def __init__(self, rule_store: RoutingRuleStore) -> None:
        self.rule_store = rule_store

    def resolve(self, section_type: str, tenant: TenantContext) -> RoutingDecision:
        if tenant.utility_id:
            try:
                candidates = self.rule_store.find_applicable(
                    utility_id=tenant.utility_id,
                    company_id=tenant.company_id,
                    section_type=section_type,
                )
            except Exception:
                LOGGER.warning(
                    "Routing rule lookup failed; using default destination",
                    exc_info=True,
                    extra={"utility_id": tenant.utility_id, "section_type": section_type},
                )
                candidates = []

            for rule in candidates:
                if not evaluate_conditions(rule.conditions, tenant.metadata):
                    continue
                return RoutingDecision(
                    destination=map_rule_to_destination(rule.destination),
                    rule_name=rule.name,
                    max_retries=rule.max_retries,
                    retry_delay_minutes=rule.retry_delay_minutes,
                    mapped_metadata=apply_metadata_mapping(rule.metadata_mapping, tenant.metadata),
                )

        return RoutingDecision(destination=default_destination_for(section_type))


__all__ = [
    "DEFAULT_RULE_NAME",
    "RoutingDecision",
    "RoutingRuleResolver",
    "TenantContext",
    "map_rule_to_destination",
]
