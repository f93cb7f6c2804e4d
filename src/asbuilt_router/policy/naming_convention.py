from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
import re
from typing import Iterable

from asbuilt_router.policy.utility_config import NamingConventionEntry

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_UNDERSCORE_RUNS = re.compile(r"_+")
_MAX_TOKEN_LENGTH = 50


@dataclass(frozen=True)
class NamingContext:
    pm_number: str | None = None
    notification_number: str | None = None
    document_type: str | None = None
    revision: int = 0
    on_date: date | datetime | None = None
    sequence: int = 1
    location: str | int = 1


def sanitize_token(value: object) -> str:
    if value is None:
        return ""
    return _UNSAFE_CHARS.sub("", str(value))[:_MAX_TOKEN_LENGTH]


def _format_date(value: date | datetime | None) -> str:
    resolved = value or date.today()
    return resolved.strftime("%Y%m%d")


def _fallback_name(context: NamingContext) -> str:
    pm = sanitize_token(context.pm_number or "UNKNOWN")
    doc_type = sanitize_token(context.document_type or "DOC")
    return f"{pm}_{doc_type}_{_format_date(context.on_date)}"


def generate_document_name(pattern: str | None, context: NamingContext) -> str:
    if not pattern:
        return _fallback_name(context)

    replacements = {
        "{PM}": sanitize_token(context.pm_number or "UNKNOWN"),
        "{NOTIF}": sanitize_token(context.notification_number or ""),
        "{DOC_TYPE}": sanitize_token(context.document_type or "DOC"),
        "{REV}": f"R{context.revision or 0}",
        "{DATE}": _format_date(context.on_date),
        "{SEQ}": str(context.sequence or 1).zfill(3),
        "{LOC}": sanitize_token(context.location or 1),
    }
    name = pattern
    for placeholder, value in replacements.items():
        name = name.replace(placeholder, value)
    # Empty replacements leave doubled or dangling separators.
    return _UNDERSCORE_RUNS.sub("_", name).strip("_")


def generate_package_names(
    conventions: Iterable[NamingConventionEntry],
    context: NamingContext,
) -> dict[str, str]:
    names: dict[str, str] = {}
    for convention in conventions:
        names[convention.document_type] = generate_document_name(
            convention.pattern,
            _with_document_type(context, convention.document_type),
        )
    return names


def generate_name_for_type(
    conventions: Iterable[NamingConventionEntry],
    document_type: str,
    context: NamingContext,
) -> str:
    typed_context = _with_document_type(context, document_type)
    for convention in conventions:
        if convention.document_type == document_type:
            return generate_document_name(convention.pattern, typed_context)
    return _fallback_name(typed_context)


def _with_document_type(context: NamingContext, document_type: str) -> NamingContext:
    return NamingContext(
        pm_number=context.pm_number,
        notification_number=context.notification_number,
        document_type=document_type,
        revision=context.revision,
        on_date=context.on_date,
        sequence=context.sequence,
        location=context.location,
    )


__all__ = [
    "NamingContext",
    "generate_document_name",
    "generate_name_for_type",
    "generate_package_names",
    "sanitize_token",
]
