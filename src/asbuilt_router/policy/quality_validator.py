from __future__ import annotations

import logging
from typing import Any

from asbuilt_router.policy.utility_config import (
    DEFAULT_SCORE_THRESHOLDS,
    QualityRule,
    UtilityConfig,
    UtilityConfigProvider,
    WorkTypeDefinition,
)
from asbuilt_router.schemas import (
    DimensionScore,
    SubmissionDraft,
    ValidationCheck,
    ValidationContext,
    ValidationIssue,
    ValidationResult,
)

LOGGER = logging.getLogger(__name__)

DIMENSIONS: tuple[str, ...] = ("usability", "traceability", "verification", "accuracy")

_CATEGORY_TO_DIMENSION: dict[str, str] = {
    "usability": "usability",
    "traceability": "traceability",
    "verification": "verification",
    "accuracy": "accuracy",
    "config_rule": "accuracy",
}

# Covered by the dedicated checks; config rules with these codes are not re-evaluated.
_BUILTIN_RULE_CODES = frozenset(
    {
        "SKETCH_MARKUP",
        "CCSC_COMPLETE",
        "CCSC_SIGNED",
        "EC_TAG_SIGNED",
        "COMPLETION_PHOTOS",
        "GPS_PRESENT",
    }
)

_DOC_TO_STEP_KEY: dict[str, str] = {
    "construction_sketch": "sketch",
}

_MARKUP_COUNTERS: tuple[str, ...] = ("strokeCount", "lineCount", "symbolCount")


def doc_to_step_key(doc_type: str) -> str:
    return _DOC_TO_STEP_KEY.get(doc_type, doc_type)


def _humanize(value: str) -> str:
    return value.replace("_", " ")


def _as_mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _positive_count(value: Any) -> bool:
    try:
        return int(value or 0) > 0
    except (TypeError, ValueError):
        return False


class _Collector:
    def __init__(self) -> None:
        self.errors: list[ValidationIssue] = []
        self.warnings: list[ValidationIssue] = []
        self.checks: list[ValidationCheck] = []

    def check(self, *, category: str, code: str, description: str, passed: bool) -> None:
        self.checks.append(
            ValidationCheck(category=category, code=code, description=description, passed=passed)
        )

    def error(self, *, code: str, message: str, category: str | None) -> None:
        self.errors.append(ValidationIssue(code=code, message=message, category=category))

    def warning(self, *, code: str, message: str, category: str | None) -> None:
        self.warnings.append(ValidationIssue(code=code, message=message, category=category))


class QualityValidator:
    """Pre-flight UTVAC scoring of a wizard draft against its utility config.

    The validator never raises for configuration problems: a missing config yields
    a failing result with a single NO_CONFIG error so callers can gate uniformly.
    """

    def __init__(self, config_provider: UtilityConfigProvider) -> None:
        self.config_provider = config_provider

    def validate(
        self,
        draft: SubmissionDraft,
        context: ValidationContext | None = None,
    ) -> ValidationResult:
        context = context or ValidationContext()
        config = self.config_provider.find_by_utility_code(draft.utility_code)
        if config is None:
            return ValidationResult(
                valid=False,
                score=0,
                errors=[
                    ValidationIssue(
                        code="NO_CONFIG",
                        message=f"No utility configuration found for {draft.utility_code}",
                    )
                ],
                dimensions={dimension: DimensionScore() for dimension in DIMENSIONS},
            )

        collector = _Collector()
        work_type = config.work_type(draft.work_type)
        if work_type is None:
            collector.error(
                code="INVALID_WORK_TYPE",
                message=f"Unknown work type: {draft.work_type}",
                category="accuracy",
            )

        self._validate_completeness(draft, work_type, collector)
        self._validate_traceability(draft, context, collector)
        self._validate_signatures(draft, config, collector)
        self._validate_sketch_markup(draft, work_type, collector)
        self._validate_checklist(draft, config, collector)
        self._validate_evidence(draft, context, collector)
        self._run_config_rules(config.validation_rules, draft, context, collector)

        total_checks = len(collector.checks)
        passed_checks = sum(1 for check in collector.checks if check.passed)
        score = round(100 * passed_checks / total_checks) if total_checks else 100

        result = ValidationResult(
            valid=not collector.errors,
            score=score,
            errors=collector.errors,
            warnings=collector.warnings,
            checks=collector.checks,
            dimensions=self._dimension_scores(collector.checks, config),
            total_checks=total_checks,
            passed_checks=passed_checks,
        )
        LOGGER.info(
            "Validated as-built draft",
            extra={
                "utility_code": config.utility_code,
                "work_type": draft.work_type,
                "score": result.score,
                "error_count": len(result.errors),
            },
        )
        return result

    def _validate_completeness(
        self,
        draft: SubmissionDraft,
        work_type: WorkTypeDefinition | None,
        collector: _Collector,
    ) -> None:
        if work_type is None:
            return
        for doc in work_type.required_docs:
            is_complete = bool(draft.completed_steps.get(doc_to_step_key(doc)))
            collector.check(
                category="accuracy",
                code=f"DOC_{doc.upper()}",
                description=f"Required document: {_humanize(doc)}",
                passed=is_complete,
            )
            if not is_complete:
                collector.error(
                    code=f"MISSING_DOC_{doc.upper()}",
                    message=f"Required document not completed: {_humanize(doc)}",
                    category="accuracy",
                )
        collector.check(
            category="accuracy",
            code="WORK_TYPE_CONFIRMED",
            description="Work type confirmed",
            passed=bool(draft.completed_steps.get("work_type")),
        )

    def _validate_traceability(
        self,
        draft: SubmissionDraft,
        context: ValidationContext,
        collector: _Collector,
    ) -> None:
        ec_tag = _as_mapping(draft.step_data.get("ec_tag"))
        job = context.job or {}

        has_identity = bool(ec_tag.get("lanId") or job.get("assignedTo"))
        collector.check(
            category="traceability",
            code="USER_IDENTITY",
            description="Preparer identity (LAN ID) captured",
            passed=has_identity,
        )
        if not has_identity:
            collector.error(
                code="MISSING_IDENTITY",
                message="LAN ID or user identity required for traceability",
                category="traceability",
            )

        has_date = bool(ec_tag.get("completionDate") or ec_tag.get("completedAt"))
        collector.check(
            category="traceability",
            code="COMPLETION_DATE",
            description="Completion date recorded",
            passed=has_date,
        )
        if not has_date:
            collector.warning(
                code="MISSING_DATE",
                message="Completion date not recorded",
                category="traceability",
            )

    def _signature_steps(self, config: UtilityConfig) -> list[tuple[str, str, str]]:
        steps = [(step.step, step.code, step.label) for step in config.signature_steps]
        if config.checklist is not None and config.checklist.requires_crew_lead_signature:
            if not any(step == "ccsc" for step, _, _ in steps):
                steps.append(("ccsc", "CCSC_SIGNATURE", "Checklist crew lead"))
        return steps

    def _validate_signatures(
        self,
        draft: SubmissionDraft,
        config: UtilityConfig,
        collector: _Collector,
    ) -> None:
        for step, code, label in self._signature_steps(config):
            signature = _as_mapping(draft.step_data.get(step)).get("signatureData")
            has_signature = bool(signature)
            collector.check(
                category="verification",
                code=code,
                description=f"{label} signed",
                passed=has_signature,
            )
            if not has_signature and draft.completed_steps.get(step):
                collector.error(
                    code=f"MISSING_{step.upper()}_SIG",
                    message=f"{label} signature required",
                    category="verification",
                )

    def _validate_sketch_markup(
        self,
        draft: SubmissionDraft,
        work_type: WorkTypeDefinition | None,
        collector: _Collector,
    ) -> None:
        if work_type is None or not work_type.requires_sketch_markup:
            return
        sketch = _as_mapping(draft.step_data.get("sketch"))
        built_as_designed = bool(sketch.get("builtAsDesigned")) and work_type.allow_built_as_designed
        has_markup = built_as_designed or any(
            _positive_count(sketch.get(counter)) for counter in _MARKUP_COUNTERS
        )
        collector.check(
            category="accuracy",
            code="SKETCH_MARKUP",
            description='Construction sketch marked up or "Built As Designed"',
            passed=has_markup,
        )
        if not has_markup:
            collector.error(
                code="MISSING_SKETCH_MARKUP",
                message=(
                    "Construction sketch must have redline/blueline markup "
                    'or be marked "Built As Designed"'
                ),
                category="accuracy",
            )
            return

        if not built_as_designed:
            colors_used = {str(color).lower() for color in sketch.get("colorsUsed") or []}
            collector.check(
                category="usability",
                code="SKETCH_COLORS",
                description="Sketch uses red (remove/change) or blue (new/add) markup",
                passed=bool(colors_used & {"red", "blue"}),
            )

    def _validate_checklist(
        self,
        draft: SubmissionDraft,
        config: UtilityConfig,
        collector: _Collector,
    ) -> None:
        ccsc = _as_mapping(draft.step_data.get("ccsc"))
        if not ccsc or config.checklist is None:
            return
        for section_code, section_data in _as_mapping(ccsc.get("sections")).items():
            config_section = config.checklist.section(section_code)
            if config_section is None:
                continue
            items = [
                item for item in _as_mapping(section_data).get("items") or [] if isinstance(item, dict)
            ]
            unchecked = [item for item in items if not item.get("checked")]
            # Safety-critical flags come from config, not from the submitted items.
            safety_missing = []
            for item in unchecked:
                config_item = config_section.item(item.get("number"))
                if config_item is not None and config_item.safety_critical:
                    safety_missing.append(item)

            collector.check(
                category="accuracy",
                code=f"CCSC_{section_code}_COMPLETE",
                description=f"{config_section.label} checklist items all addressed",
                passed=not unchecked,
            )
            if safety_missing:
                collector.error(
                    code=f"CCSC_SAFETY_{section_code}",
                    message=(
                        f"{config_section.label}: {len(safety_missing)} safety-critical "
                        "item(s) not addressed"
                    ),
                    category="accuracy",
                )
            elif unchecked:
                collector.warning(
                    code=f"CCSC_INCOMPLETE_{section_code}",
                    message=f"{config_section.label}: {len(unchecked)} item(s) not checked",
                    category="accuracy",
                )

    def _validate_evidence(
        self,
        draft: SubmissionDraft,
        context: ValidationContext,
        collector: _Collector,
    ) -> None:
        has_photos = bool(context.photos)
        collector.check(
            category="verification",
            code="COMPLETION_PHOTOS",
            description="Completion photo(s) uploaded",
            passed=has_photos,
        )
        if not has_photos:
            collector.warning(
                code="NO_PHOTOS",
                message="Completion photos recommended for verifiability",
                category="verification",
            )

        job = context.job or {}
        has_gps = bool(job.get("address") or job.get("latitude") or draft.step_data.get("gps"))
        collector.check(
            category="verification",
            code="GPS_LOCATION",
            description="GPS/address data captured",
            passed=has_gps,
        )
        if not has_gps:
            collector.warning(
                code="NO_GPS",
                message="GPS coordinates recommended for asset location verification",
                category="verification",
            )

    def _run_config_rules(
        self,
        rules: tuple[QualityRule, ...],
        draft: SubmissionDraft,
        context: ValidationContext,
        collector: _Collector,
    ) -> None:
        for rule in rules:
            if rule.code in _BUILTIN_RULE_CODES:
                continue
            value = resolve_rule_target(rule.target, draft, context)
            if rule.rule == "required_unless":
                passed = bool(value) or bool(resolve_rule_target(rule.condition, draft, context))
            elif rule.rule == "min_count":
                if isinstance(value, (list, tuple)):
                    passed = len(value) >= rule.min_value
                else:
                    try:
                        passed = float(value or 0) >= rule.min_value
                    except (TypeError, ValueError):
                        passed = False
            else:
                passed = bool(value)

            collector.check(
                category="config_rule",
                code=rule.code,
                description=rule.description,
                passed=passed,
            )
            if passed:
                continue
            if rule.severity == "error":
                collector.error(code=rule.code, message=rule.description, category="config_rule")
            else:
                collector.warning(code=rule.code, message=rule.description, category="config_rule")

    def _dimension_scores(
        self,
        checks: list[ValidationCheck],
        config: UtilityConfig,
    ) -> dict[str, DimensionScore]:
        totals = {dimension: [0, 0] for dimension in DIMENSIONS}
        for check in checks:
            dimension = _CATEGORY_TO_DIMENSION.get(check.category, "accuracy")
            totals[dimension][0] += 1
            if check.passed:
                totals[dimension][1] += 1

        dimensions: dict[str, DimensionScore] = {}
        for dimension, (total, passed) in totals.items():
            score = round(100 * passed / total) if total else 100
            threshold = config.score_thresholds.get(
                dimension, DEFAULT_SCORE_THRESHOLDS.get(dimension, 0)
            )
            dimensions[dimension] = DimensionScore(
                score=score,
                total=total,
                passed=passed,
                threshold=threshold,
                passing=score >= threshold,
            )
        return dimensions


def resolve_rule_target(
    target: str | None,
    draft: SubmissionDraft,
    context: ValidationContext,
) -> Any:
    if not target:
        return None
    if target in draft.step_data:
        return draft.step_data[target]
    if target in draft.completed_steps:
        return draft.completed_steps[target]
    parts = target.split(".")
    if len(parts) == 2:
        step = draft.step_data.get(parts[0])
        if isinstance(step, dict):
            return step.get(parts[1])
    if target == "completion_photos":
        return context.photos
    if target == "gps_coordinates":
        job = context.job or {}
        return job.get("latitude") or job.get("address")
    return None


__all__ = [
    "DIMENSIONS",
    "QualityValidator",
    "doc_to_step_key",
    "resolve_rule_target",
]
