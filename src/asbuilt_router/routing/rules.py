from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from asbuilt_router.policy.section_types import normalize_section_type
from asbuilt_router.routing.conditions import (
    CONDITION_OPERATORS,
    METADATA_TRANSFORMS,
    MetadataMapping,
    RuleCondition,
)

DEFAULT_ROUTING_RULES_PACKAGE_PATH = Path(__file__).resolve().with_name("routing_rules.yaml")

DESTINATION_TYPES: tuple[str, ...] = (
    "oracle_api",
    "sharepoint",
    "email",
    "gis_api",
    "regulatory_portal",
    "archive_only",
)

# Structured condition keys accepted alongside field/operator/value triples.
_LEGACY_CONDITION_KEYS: dict[str, tuple[str, str]] = {
    "pm_number_pattern": ("pm_number", "matches"),
    "circuit_id_pattern": ("circuit_id", "matches"),
    "job_type_in": ("job_type", "in"),
    "work_category_in": ("work_category", "in"),
    "work_date_after": ("work_date", "after"),
    "work_date_before": ("work_date", "before"),
}


@dataclass(frozen=True)
class DestinationDescriptor:
    type: str
    config: dict[str, Any] = field(default_factory=dict)

    def option(self, group: str, key: str) -> Any:
        nested = self.config.get(group)
        if isinstance(nested, dict) and key in nested:
            return nested[key]
        return self.config.get(key)


@dataclass(frozen=True)
class RoutingRule:
    name: str
    utility_id: str
    section_type: str
    destination: DestinationDescriptor
    company_id: str | None = None
    description: str = ""
    conditions: tuple[RuleCondition, ...] = ()
    metadata_mapping: tuple[MetadataMapping, ...] = ()
    priority: int = 100
    is_active: bool = True
    max_retries: int = 3
    retry_delay_minutes: int = 5


def _require_string(payload: dict[str, Any], key: str, *, context: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Missing {key} for {context}")
    return value.strip()


def _coerce_nonnegative_int(value: Any, fallback: int, *, key: str, context: str) -> int:
    if value is None:
        return fallback
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer for {context}")
    try:
        coerced = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be an integer for {context}") from exc
    if coerced < 0:
        raise ValueError(f"{key} must be >= 0 for {context}")
    return coerced


def _parse_condition(raw: Any, *, context: str) -> RuleCondition:
    if not isinstance(raw, dict):
        raise ValueError(f"Condition must be an object for {context}")
    operator = _require_string(raw, "operator", context=context).lower()
    if operator not in CONDITION_OPERATORS:
        raise ValueError(f"Unsupported condition operator '{operator}' for {context}")
    if "value" not in raw:
        raise ValueError(f"Missing value for condition in {context}")
    value = raw["value"]
    if operator in ("in", "not_in") and not isinstance(value, list):
        value = [value]
    if isinstance(value, list):
        value = tuple(value)
    return RuleCondition(
        field=_require_string(raw, "field", context=context),
        operator=operator,  # type: ignore[arg-type]
        value=value,
    )


def _parse_conditions(raw: Any, *, context: str) -> tuple[RuleCondition, ...]:
    if raw is None:
        return ()
    if isinstance(raw, list):
        return tuple(_parse_condition(item, context=context) for item in raw)
    if not isinstance(raw, dict):
        raise ValueError(f"conditions must be a list or object for {context}")

    conditions: list[RuleCondition] = []
    for key, value in raw.items():
        mapped = _LEGACY_CONDITION_KEYS.get(str(key))
        if mapped is None:
            raise ValueError(f"Unsupported condition key '{key}' for {context}")
        if value is None or value == [] or value == "":
            continue
        field_name, operator = mapped
        if operator == "in" and not isinstance(value, list):
            value = [value]
        conditions.append(
            RuleCondition(
                field=field_name,
                operator=operator,  # type: ignore[arg-type]
                value=tuple(value) if isinstance(value, list) else value,
            )
        )
    return tuple(conditions)


def _parse_metadata_mapping(raw: Any, *, context: str) -> tuple[MetadataMapping, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValueError(f"metadata_mapping must be a list for {context}")
    mappings: list[MetadataMapping] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError(f"metadata_mapping entries must be objects for {context}")
        transform = item.get("transform")
        if transform is not None and transform not in METADATA_TRANSFORMS:
            raise ValueError(f"Unsupported metadata transform '{transform}' for {context}")
        mappings.append(
            MetadataMapping(
                source_field=_require_string(item, "source_field", context=context),
                destination_field=_require_string(item, "destination_field", context=context),
                transform=transform,
                default_value=item.get("default_value"),
            )
        )
    return tuple(mappings)


def _parse_destination(raw: Any, *, context: str) -> DestinationDescriptor:
    if not isinstance(raw, dict):
        raise ValueError(f"destination must be an object for {context}")
    destination_type = _require_string(raw, "type", context=context).lower()
    if destination_type not in DESTINATION_TYPES:
        raise ValueError(f"Unsupported destination type '{destination_type}' for {context}")
    config = {key: value for key, value in raw.items() if key != "type"}
    return DestinationDescriptor(type=destination_type, config=config)


def parse_routing_rule(raw: dict[str, Any]) -> RoutingRule:
    if not isinstance(raw, dict):
        raise ValueError("Routing rule must be an object")
    name = _require_string(raw, "name", context="routing rule")
    context = f"routing rule '{name}'"
    section_type = normalize_section_type(_require_string(raw, "section_type", context=context))
    if section_type is None:
        raise ValueError(f"Unknown section_type for {context}")
    company_id = raw.get("company_id")
    return RoutingRule(
        name=name,
        description=str(raw.get("description") or ""),
        utility_id=_require_string(raw, "utility_id", context=context),
        company_id=str(company_id).strip() if company_id else None,
        section_type=section_type.value,
        destination=_parse_destination(raw.get("destination"), context=context),
        conditions=_parse_conditions(raw.get("conditions"), context=context),
        metadata_mapping=_parse_metadata_mapping(raw.get("metadata_mapping"), context=context),
        priority=_coerce_nonnegative_int(raw.get("priority"), 100, key="priority", context=context),
        is_active=bool(raw.get("is_active", True)),
        max_retries=_coerce_nonnegative_int(
            raw.get("max_retries"), 3, key="max_retries", context=context
        ),
        retry_delay_minutes=_coerce_nonnegative_int(
            raw.get("retry_delay_minutes"), 5, key="retry_delay_minutes", context=context
        ),
    )


def load_routing_rules(path: str | Path | None = None) -> tuple[RoutingRule, ...]:
    candidate = Path(path) if path is not None else DEFAULT_ROUTING_RULES_PACKAGE_PATH
    if not candidate.exists():
        if path is not None:
            raise FileNotFoundError(f"Routing rules file not found: {candidate}")
        return ()

    payload = yaml.safe_load(candidate.read_text(encoding="utf-8")) or {}
    if not isinstance(payload, dict):
        raise ValueError(f"Routing rules payload must be an object: {candidate}")
    raw_rules = payload.get("rules") or []
    if not isinstance(raw_rules, list):
        raise ValueError("Routing rules 'rules' must be a list")

    rules = tuple(parse_routing_rule(item) for item in raw_rules)
    seen: set[str] = set()
    for rule in rules:
        if rule.name in seen:
            raise ValueError(f"Duplicate routing rule name: {rule.name}")
        seen.add(rule.name)
    return rules


__all__ = [
    "DESTINATION_TYPES",
    "DestinationDescriptor",
    "RoutingRule",
    "load_routing_rules",
    "parse_routing_rule",
]
