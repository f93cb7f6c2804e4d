from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Any, Literal, Protocol

from asbuilt_router.policy.section_types import normalize_section_type

LOGGER = logging.getLogger(__name__)

RuleKind = Literal[
    "required",
    "required_unless",
    "min_count",
    "signature_required",
    "photo_required",
    "gps_required",
]
RuleSeverity = Literal["error", "warning"]

DEFAULT_UTILITY_CONFIG_PACKAGE_PATH = Path(__file__).resolve().with_name("utility_configs.json")

_ALLOWED_RULE_KINDS: tuple[str, ...] = (
    "required",
    "required_unless",
    "min_count",
    "signature_required",
    "photo_required",
    "gps_required",
)

DEFAULT_SCORE_THRESHOLDS: dict[str, int] = {
    "usability": 60,
    "traceability": 70,
    "verification": 70,
    "accuracy": 80,
    "overall": 70,
}


@dataclass(frozen=True)
class PageRangeDefinition:
    section_type: str
    label: str
    start: int
    end: int
    detection_keyword: str | None = None
    detection_keywords_alt: tuple[str, ...] = ()
    variable_length: bool = False

    def keywords(self) -> tuple[str, ...]:
        candidates = (self.detection_keyword, *self.detection_keywords_alt)
        return tuple(keyword for keyword in candidates if keyword)


@dataclass(frozen=True)
class WorkTypeDefinition:
    code: str
    label: str
    required_docs: tuple[str, ...]
    optional_docs: tuple[str, ...] = ()
    requires_sketch_markup: bool = False
    allow_built_as_designed: bool = True


@dataclass(frozen=True)
class ChecklistItem:
    number: int
    text: str
    safety_critical: bool = False


@dataclass(frozen=True)
class ChecklistSection:
    code: str
    label: str
    items: tuple[ChecklistItem, ...]

    def item(self, number: int) -> ChecklistItem | None:
        for item in self.items:
            if item.number == number:
                return item
        return None


@dataclass(frozen=True)
class ChecklistDefinition:
    form_id: str
    form_name: str
    requires_crew_lead_signature: bool
    requires_supervisor_signature: bool
    sections: tuple[ChecklistSection, ...]

    def section(self, code: str) -> ChecklistSection | None:
        for section in self.sections:
            if section.code == code:
                return section
        return None


@dataclass(frozen=True)
class SignatureStep:
    step: str
    code: str
    label: str


@dataclass(frozen=True)
class QualityRule:
    code: str
    target: str
    rule: RuleKind
    severity: RuleSeverity
    description: str
    condition: str | None = None
    min_value: int = 1


@dataclass(frozen=True)
class NamingConventionEntry:
    document_type: str
    pattern: str


@dataclass(frozen=True)
class UtilityConfig:
    utility_code: str
    utility_id: str
    utility_name: str
    procedure_id: str
    is_active: bool
    page_ranges: tuple[PageRangeDefinition, ...]
    work_types: tuple[WorkTypeDefinition, ...]
    checklist: ChecklistDefinition | None
    signature_steps: tuple[SignatureStep, ...]
    validation_rules: tuple[QualityRule, ...]
    naming_conventions: tuple[NamingConventionEntry, ...]
    document_order: tuple[str, ...] = ()
    score_thresholds: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_SCORE_THRESHOLDS))

    def work_type(self, code: str | None) -> WorkTypeDefinition | None:
        if not code:
            return None
        for work_type in self.work_types:
            if work_type.code == code:
                return work_type
        return None


class UtilityConfigProvider(Protocol):
    def find_by_utility_code(self, code: str) -> UtilityConfig | None: ...


def _require_string(
    payload: dict[str, Any], key: str, *, context: str, normalize: bool = False
) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Missing {key} for {context}")
    text = value.strip()
    return text.lower() if normalize else text


def _optional_string(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string when provided")
    text = value.strip()
    return text or None


def _require_int(payload: dict[str, Any], key: str, *, context: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Missing integer {key} for {context}")
    return value


def _string_tuple(value: Any, *, key: str, context: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list for {context}")
    items: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ValueError(f"{key} entries must be non-empty strings for {context}")
        items.append(item.strip())
    return tuple(items)


def _parse_section_type(value: str, *, context: str) -> str:
    section_type = normalize_section_type(value)
    if section_type is None:
        raise ValueError(f"Unknown section_type '{value}' for {context}")
    return section_type.value


def _parse_page_range(payload: dict[str, Any], *, utility_code: str) -> PageRangeDefinition:
    context = f"page range in {utility_code}"
    section_type = _parse_section_type(
        _require_string(payload, "section_type", context=context), context=context
    )
    start = _require_int(payload, "start", context=context)
    end = _require_int(payload, "end", context=context)
    if start < 1 or end < start:
        raise ValueError(f"Invalid page bounds {start}-{end} for {section_type} in {utility_code}")
    return PageRangeDefinition(
        section_type=section_type,
        label=_require_string(payload, "label", context=context),
        start=start,
        end=end,
        detection_keyword=_optional_string(payload, "detection_keyword"),
        detection_keywords_alt=_string_tuple(
            payload.get("detection_keywords_alt"), key="detection_keywords_alt", context=context
        ),
        variable_length=bool(payload.get("variable_length", False)),
    )


def _parse_work_type(payload: dict[str, Any], *, utility_code: str) -> WorkTypeDefinition:
    context = f"work type in {utility_code}"
    required_docs = _string_tuple(payload.get("required_docs"), key="required_docs", context=context)
    for doc in required_docs:
        _parse_section_type(doc, context=context)
    return WorkTypeDefinition(
        code=_require_string(payload, "code", context=context),
        label=_require_string(payload, "label", context=context),
        required_docs=required_docs,
        optional_docs=_string_tuple(payload.get("optional_docs"), key="optional_docs", context=context),
        requires_sketch_markup=bool(payload.get("requires_sketch_markup", False)),
        allow_built_as_designed=bool(payload.get("allow_built_as_designed", True)),
    )


def _parse_checklist(payload: Any, *, utility_code: str) -> ChecklistDefinition | None:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ValueError(f"checklist must be an object for {utility_code}")
    context = f"checklist in {utility_code}"
    sections: list[ChecklistSection] = []
    for raw_section in payload.get("sections") or []:
        section_code = _require_string(raw_section, "code", context=context)
        items = tuple(
            ChecklistItem(
                number=_require_int(raw_item, "number", context=f"{context} section {section_code}"),
                text=_require_string(raw_item, "text", context=f"{context} section {section_code}"),
                safety_critical=bool(raw_item.get("safety_critical", False)),
            )
            for raw_item in raw_section.get("items") or []
        )
        sections.append(
            ChecklistSection(
                code=section_code,
                label=_require_string(raw_section, "label", context=context),
                items=items,
            )
        )
    return ChecklistDefinition(
        form_id=_require_string(payload, "form_id", context=context),
        form_name=_require_string(payload, "form_name", context=context),
        requires_crew_lead_signature=bool(payload.get("requires_crew_lead_signature", False)),
        requires_supervisor_signature=bool(payload.get("requires_supervisor_signature", False)),
        sections=tuple(sections),
    )


def _parse_rule(payload: dict[str, Any], *, utility_code: str) -> QualityRule:
    context = f"validation rule in {utility_code}"
    code = _require_string(payload, "code", context=context)
    rule = _require_string(payload, "rule", context=f"rule {code}", normalize=True)
    if rule not in _ALLOWED_RULE_KINDS:
        raise ValueError(f"Unsupported rule kind '{rule}' for rule {code}")
    severity = _require_string(payload, "severity", context=f"rule {code}", normalize=True)
    if severity not in {"error", "warning"}:
        raise ValueError(f"Invalid severity '{severity}' for rule {code}")
    min_value = payload.get("min_value", 1)
    if isinstance(min_value, bool) or not isinstance(min_value, int):
        raise ValueError(f"min_value must be an integer for rule {code}")
    return QualityRule(
        code=code,
        target=_require_string(payload, "target", context=f"rule {code}"),
        rule=rule,  # type: ignore[arg-type]
        severity=severity,  # type: ignore[arg-type]
        description=_optional_string(payload, "description") or code,
        condition=_optional_string(payload, "condition"),
        min_value=min_value,
    )


def _parse_score_thresholds(payload: Any, *, utility_code: str) -> dict[str, int]:
    thresholds = dict(DEFAULT_SCORE_THRESHOLDS)
    if payload is None:
        return thresholds
    if not isinstance(payload, dict):
        raise ValueError(f"score_thresholds must be an object for {utility_code}")
    for key, value in payload.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"score threshold '{key}' must be an integer for {utility_code}")
        thresholds[str(key)] = value
    return thresholds


def _parse_config(payload: dict[str, Any]) -> UtilityConfig:
    utility_code = _require_string(payload, "utility_code", context="utility config").upper()
    return UtilityConfig(
        utility_code=utility_code,
        utility_id=_require_string(payload, "utility_id", context=utility_code),
        utility_name=_require_string(payload, "utility_name", context=utility_code),
        procedure_id=_require_string(payload, "procedure_id", context=utility_code),
        is_active=bool(payload.get("is_active", True)),
        page_ranges=tuple(
            _parse_page_range(item, utility_code=utility_code)
            for item in payload.get("page_ranges") or []
        ),
        work_types=tuple(
            _parse_work_type(item, utility_code=utility_code)
            for item in payload.get("work_types") or []
        ),
        checklist=_parse_checklist(payload.get("checklist"), utility_code=utility_code),
        signature_steps=tuple(
            SignatureStep(
                step=_require_string(item, "step", context=f"signature step in {utility_code}"),
                code=_require_string(item, "code", context=f"signature step in {utility_code}"),
                label=_require_string(item, "label", context=f"signature step in {utility_code}"),
            )
            for item in payload.get("signature_steps") or []
        ),
        validation_rules=tuple(
            _parse_rule(item, utility_code=utility_code)
            for item in payload.get("validation_rules") or []
        ),
        naming_conventions=tuple(
            NamingConventionEntry(
                document_type=_require_string(
                    item, "document_type", context=f"naming convention in {utility_code}"
                ),
                pattern=_require_string(item, "pattern", context=f"naming convention in {utility_code}"),
            )
            for item in payload.get("naming_conventions") or []
        ),
        document_order=_string_tuple(
            payload.get("document_order"), key="document_order", context=utility_code
        ),
        score_thresholds=_parse_score_thresholds(
            payload.get("score_thresholds"), utility_code=utility_code
        ),
    )


def _validate_uniqueness(configs: tuple[UtilityConfig, ...]) -> None:
    seen_active: set[str] = set()
    for config in configs:
        if not config.is_active:
            continue
        if config.utility_code in seen_active:
            raise ValueError(f"Duplicate active utility config for {config.utility_code}")
        seen_active.add(config.utility_code)

        seen_work_types: set[str] = set()
        for work_type in config.work_types:
            if work_type.code in seen_work_types:
                raise ValueError(
                    f"Duplicate work type '{work_type.code}' for {config.utility_code}"
                )
            seen_work_types.add(work_type.code)


def _candidate_paths(path: str | Path | None) -> list[Path]:
    if path is not None:
        return [Path(path)]
    return [DEFAULT_UTILITY_CONFIG_PACKAGE_PATH]


def _load_payload(path: str | Path | None) -> dict[str, Any]:
    for candidate in _candidate_paths(path):
        if candidate.exists():
            payload = json.loads(candidate.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError(f"Utility config catalog must be an object: {candidate}")
            return payload
    raise FileNotFoundError(f"Utility config catalog not found: {path}")


def parse_utility_configs(payload: dict[str, Any]) -> tuple[UtilityConfig, ...]:
    raw_configs = payload.get("configs")
    if not isinstance(raw_configs, list):
        raise ValueError("Utility config catalog must define a configs list")
    configs = tuple(_parse_config(item) for item in raw_configs)
    _validate_uniqueness(configs)
    return configs


def load_utility_configs(path: str | Path | None = None) -> tuple[UtilityConfig, ...]:
    return parse_utility_configs(_load_payload(path))


class CatalogUtilityConfigProvider:
    def __init__(self, configs: tuple[UtilityConfig, ...] | list[UtilityConfig]) -> None:
        self._configs = {
            config.utility_code: config for config in configs if config.is_active
        }

    @classmethod
    def from_path(cls, path: str | Path | None = None) -> "CatalogUtilityConfigProvider":
        return cls(load_utility_configs(path))

    def find_by_utility_code(self, code: str) -> UtilityConfig | None:
        normalized = (code or "").strip().upper()
        config = self._configs.get(normalized)
        if config is None:
            LOGGER.info("No active utility config found", extra={"utility_code": normalized})
        return config

    def find_by_utility_id(self, utility_id: str) -> UtilityConfig | None:
        for config in self._configs.values():
            if config.utility_id == utility_id:
                return config
        return None


__all__ = [
    "CatalogUtilityConfigProvider",
    "ChecklistDefinition",
    "ChecklistItem",
    "ChecklistSection",
    "DEFAULT_SCORE_THRESHOLDS",
    "NamingConventionEntry",
    "PageRangeDefinition",
    "QualityRule",
    "SignatureStep",
    "UtilityConfig",
    "UtilityConfigProvider",
    "WorkTypeDefinition",
    "load_utility_configs",
    "parse_utility_configs",
]
