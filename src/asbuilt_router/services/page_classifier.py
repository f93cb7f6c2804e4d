from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from collections import Counter
from typing import Sequence

from asbuilt_router.policy.section_types import SectionType
from asbuilt_router.policy.utility_config import PageRangeDefinition

LOGGER = logging.getLogger(__name__)

KEYWORD_CONFIDENCE = 1.0
PARTIAL_KEYWORD_CONFIDENCE = 0.6
CONTINUATION_CONFIDENCE = 0.5
PARTIAL_MATCH_RATIO = 0.75

_WHITESPACE = re.compile(r"\s+")
_SNIPPET_LENGTH = 100


@dataclass(frozen=True)
class PageClassification:
    page_index: int
    section_type: str
    confidence: float
    method: str
    detected_keyword: str | None = None
    text_snippet: str = ""

    @property
    def is_confident(self) -> bool:
        return self.section_type != SectionType.OTHER.value and self.confidence > 0


@dataclass(frozen=True)
class SectionSpan:
    section_type: str
    page_start: int
    page_end: int
    confidence: float
    method: str

    @property
    def page_count(self) -> int:
        return self.page_end - self.page_start + 1


def normalize_page_text(text: str | None) -> str:
    return _WHITESPACE.sub(" ", (text or "").upper()).strip()


def _partial_match(normalized_text: str, keyword: str) -> bool:
    words = [word for word in keyword.split() if len(word) > 3]
    if len(words) < 2:
        return False
    matched = sum(1 for word in words if word in normalized_text)
    return matched / len(words) >= PARTIAL_MATCH_RATIO


def _keyword_match(
    normalized_text: str,
    definitions: Sequence[PageRangeDefinition],
) -> tuple[PageRangeDefinition, str] | None:
    for definition in definitions:
        for keyword in definition.keywords():
            if normalize_page_text(keyword) in normalized_text:
                return definition, keyword
    return None


def _partial_keyword_match(
    normalized_text: str,
    definitions: Sequence[PageRangeDefinition],
) -> tuple[PageRangeDefinition, str] | None:
    for definition in definitions:
        for keyword in definition.keywords():
            if _partial_match(normalized_text, normalize_page_text(keyword)):
                return definition, keyword
    return None


def classify_pages(
    page_texts: Sequence[str],
    definitions: Sequence[PageRangeDefinition],
) -> list[PageClassification]:
    """Assign a section type to every page of a job package.

    Exact keyword matches across all definitions win over partial matches.
    Unmatched pages continue the previous page's section when that section is
    variable length, otherwise they are ``other``.
    """
    by_type = {definition.section_type: definition for definition in definitions}
    results: list[PageClassification] = []

    for page_index, raw_text in enumerate(page_texts):
        snippet = (raw_text or "").strip()[:_SNIPPET_LENGTH]
        normalized = normalize_page_text(raw_text)

        match = _keyword_match(normalized, definitions) if normalized else None
        method = "keyword"
        confidence = KEYWORD_CONFIDENCE
        if match is None and normalized:
            match = _partial_keyword_match(normalized, definitions)
            method = "partial_keyword"
            confidence = PARTIAL_KEYWORD_CONFIDENCE

        if match is not None:
            definition, keyword = match
            results.append(
                PageClassification(
                    page_index=page_index,
                    section_type=definition.section_type,
                    confidence=confidence,
                    method=method,
                    detected_keyword=keyword,
                    text_snippet=snippet,
                )
            )
            continue

        previous = results[-1] if results else None
        previous_definition = by_type.get(previous.section_type) if previous else None
        if previous is not None and previous_definition is not None and previous_definition.variable_length:
            results.append(
                PageClassification(
                    page_index=page_index,
                    section_type=previous.section_type,
                    confidence=CONTINUATION_CONFIDENCE,
                    method="continuation",
                    text_snippet=snippet,
                )
            )
            continue

        results.append(
            PageClassification(
                page_index=page_index,
                section_type=SectionType.OTHER.value,
                confidence=0.0,
                method="unclassified",
                text_snippet=snippet,
            )
        )

    LOGGER.info(
        "Classified job package pages",
        extra={
            "total_pages": len(results),
            "summary": dict(Counter(result.section_type for result in results)),
        },
    )
    return results


def get_pages_for_section(
    classifications: Sequence[PageClassification],
    section_type: str,
) -> list[int]:
    return sorted(
        classification.page_index
        for classification in classifications
        if classification.section_type == section_type
    )


def group_sections(classifications: Sequence[PageClassification]) -> list[SectionSpan]:
    """Collapse contiguous runs of one section type into 1-based page spans."""
    spans: list[SectionSpan] = []
    for classification in classifications:
        page_number = classification.page_index + 1
        last = spans[-1] if spans else None
        if last is not None and last.section_type == classification.section_type and last.page_end == page_number - 1:
            spans[-1] = SectionSpan(
                section_type=last.section_type,
                page_start=last.page_start,
                page_end=page_number,
                confidence=min(last.confidence, classification.confidence),
                method=last.method,
            )
            continue
        spans.append(
            SectionSpan(
                section_type=classification.section_type,
                page_start=page_number,
                page_end=page_number,
                confidence=classification.confidence,
                method=classification.method,
            )
        )
    return spans


__all__ = [
    "CONTINUATION_CONFIDENCE",
    "KEYWORD_CONFIDENCE",
    "PARTIAL_KEYWORD_CONFIDENCE",
    "PageClassification",
    "SectionSpan",
    "classify_pages",
    "get_pages_for_section",
    "group_sections",
    "normalize_page_text",
]
