from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache
import logging
import re
from typing import Any, Literal

LOGGER = logging.getLogger(__name__)

ConditionOperator = Literal["matches", "in", "not_in", "equals", "after", "before"]
MetadataTransform = Literal["uppercase", "lowercase", "trim", "date_format"]

CONDITION_OPERATORS: tuple[str, ...] = ("matches", "in", "not_in", "equals", "after", "before")
METADATA_TRANSFORMS: tuple[str, ...] = ("uppercase", "lowercase", "trim", "date_format")

MAX_PATTERN_LENGTH = 200
MAX_INPUT_LENGTH = 256

_QUANTIFIER_CHARS = frozenset("*+?{")


@dataclass(frozen=True)
class RuleCondition:
    field: str
    operator: ConditionOperator
    value: Any


@dataclass(frozen=True)
class MetadataMapping:
    source_field: str
    destination_field: str
    transform: MetadataTransform | None = None
    default_value: Any = None


def has_nested_quantifier(pattern: str) -> bool:
    """Detect a quantified group that itself contains a quantifier, e.g. ``(a+)+``.

    Character classes and escaped characters are skipped so ``[+]`` or ``\\+``
    do not count as quantifiers.
    """
    group_stack: list[bool] = []
    index = 0
    length = len(pattern)
    while index < length:
        char = pattern[index]
        if char == "\\":
            index += 2
            continue
        if char == "[":
            index += 1
            if index < length and pattern[index] == "^":
                index += 1
            if index < length and pattern[index] == "]":
                index += 1
            while index < length and pattern[index] != "]":
                if pattern[index] == "\\":
                    index += 1
                index += 1
            index += 1
            continue
        if char == "(":
            group_stack.append(False)
            index += 1
            # (?:...) and friends: the '?' is group syntax, not a quantifier.
            if index < length and pattern[index] == "?":
                index += 1
            continue
        if char == ")":
            inner_quantified = group_stack.pop() if group_stack else False
            index += 1
            if index < length and pattern[index] in "*+{" and inner_quantified:
                return True
            if group_stack and inner_quantified:
                group_stack[-1] = True
            if index < length and pattern[index] in _QUANTIFIER_CHARS and group_stack:
                group_stack[-1] = True
            continue
        if char in _QUANTIFIER_CHARS and group_stack:
            group_stack[-1] = True
        index += 1
    return False


@lru_cache(maxsize=256)
def _compile_safe_pattern(pattern: str) -> re.Pattern[str] | None:
    if len(pattern) > MAX_PATTERN_LENGTH:
        LOGGER.warning("Rejected routing pattern exceeding length cap", extra={"pattern_length": len(pattern)})
        return None
    if has_nested_quantifier(pattern):
        LOGGER.warning("Rejected routing pattern with nested quantifier", extra={"pattern": pattern})
        return None
    try:
        return re.compile(pattern)
    except re.error:
        LOGGER.warning("Rejected invalid routing pattern", extra={"pattern": pattern})
        return None


def safe_regex_match(pattern: str, value: object) -> bool:
    if not isinstance(pattern, str) or not pattern:
        return False
    compiled = _compile_safe_pattern(pattern)
    if compiled is None:
        return False
    text = str(value)
    if len(text) > MAX_INPUT_LENGTH:
        return False
    return compiled.search(text) is not None


def _parse_date(value: object) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _as_collection(value: Any) -> tuple[str, ...]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(str(item) for item in value)
    return (str(value),)


def evaluate_condition(condition: RuleCondition, metadata: dict[str, Any]) -> bool:
    """Evaluate one condition; an absent metadata field leaves the condition unapplied."""
    actual = metadata.get(condition.field)
    if actual is None or actual == "":
        return True

    operator = condition.operator
    if operator == "matches":
        return safe_regex_match(condition.value, actual)
    if operator == "in":
        return str(actual) in _as_collection(condition.value)
    if operator == "not_in":
        return str(actual) not in _as_collection(condition.value)
    if operator == "equals":
        return str(actual) == str(condition.value)
    if operator in ("after", "before"):
        actual_date = _parse_date(actual)
        bound = _parse_date(condition.value)
        if actual_date is None or bound is None:
            return False
        if operator == "after":
            return actual_date >= bound
        return actual_date <= bound
    return False


def evaluate_conditions(
    conditions: tuple[RuleCondition, ...] | list[RuleCondition],
    metadata: dict[str, Any],
) -> bool:
    try:
        return all(evaluate_condition(condition, metadata) for condition in conditions)
    except Exception:
        LOGGER.warning("Routing condition evaluation failed; treating as non-match", exc_info=True)
        return False


def _apply_transform(value: Any, transform: str | None) -> Any:
    if transform is None or value is None:
        return value
    if transform == "uppercase":
        return str(value).upper()
    if transform == "lowercase":
        return str(value).lower()
    if transform == "trim":
        return str(value).strip()
    if transform == "date_format":
        parsed = _parse_date(value)
        return parsed.isoformat() if parsed is not None else value
    return value


def apply_metadata_mapping(
    mappings: tuple[MetadataMapping, ...] | list[MetadataMapping],
    metadata: dict[str, Any],
) -> dict[str, Any]:
    mapped: dict[str, Any] = {}
    for mapping in mappings:
        value = metadata.get(mapping.source_field)
        if value is None or value == "":
            value = mapping.default_value
        value = _apply_transform(value, mapping.transform)
        if value is not None:
            mapped[mapping.destination_field] = value
    return mapped


__all__ = [
    "CONDITION_OPERATORS",
    "METADATA_TRANSFORMS",
    "MetadataMapping",
    "RuleCondition",
    "apply_metadata_mapping",
    "evaluate_condition",
    "evaluate_conditions",
    "has_nested_quantifier",
    "safe_regex_match",
]
