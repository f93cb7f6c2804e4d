from __future__ import annotations

from datetime import date

from asbuilt_router.policy.naming_convention import (
    NamingContext,
    generate_document_name,
    generate_name_for_type,
    generate_package_names,
    sanitize_token,
)
from asbuilt_router.policy.utility_config import NamingConventionEntry


_CONVENTIONS = (
    NamingConventionEntry(document_type="as_built_package", pattern="{PM}_ASBUILT_{DATE}"),
    NamingConventionEntry(document_type="construction_sketch", pattern="{PM}_SKETCH_{REV}"),
    NamingConventionEntry(document_type="ccsc", pattern="{PM}_CCSC_{LOC}"),
    NamingConventionEntry(document_type="ec_tag", pattern="{NOTIF}_ECTAG"),
    NamingConventionEntry(document_type="photos", pattern="{PM}_PHOTO_{SEQ}"),
)


def test_sanitize_token_strips_unsafe_characters() -> None:
    assert sanitize_token("356/119 81") == "35611981"
    assert sanitize_token(None) == ""
    assert len(sanitize_token("x" * 80)) == 50


def test_generate_document_name_fills_placeholders() -> None:
    context = NamingContext(
        pm_number="35611981",
        revision=2,
        on_date=date(2025, 3, 10),
        sequence=7,
    )

    assert generate_document_name("{PM}_SKETCH_{REV}", context) == "35611981_SKETCH_R2"
    assert generate_document_name("{PM}_ASBUILT_{DATE}", context) == "35611981_ASBUILT_20250310"
    assert generate_document_name("{PM}_PHOTO_{SEQ}", context) == "35611981_PHOTO_007"


def test_generate_document_name_collapses_empty_separators() -> None:
    assert generate_document_name("{NOTIF}_ECTAG", NamingContext()) == "ECTAG"
    assert generate_document_name("{PM}__{NOTIF}_X", NamingContext(pm_number="1")) == "1_X"


def test_generate_document_name_without_pattern_uses_fallback() -> None:
    context = NamingContext(document_type="permits", on_date=date(2025, 3, 10))

    assert generate_document_name(None, context) == "UNKNOWN_permits_20250310"


def test_generate_name_for_type_falls_back_for_unconfigured_type() -> None:
    context = NamingContext(pm_number="35611981", on_date=date(2025, 3, 10))

    assert generate_name_for_type(_CONVENTIONS, "construction_sketch", context) == "35611981_SKETCH_R0"
    assert generate_name_for_type(_CONVENTIONS, "tcp", context) == "35611981_tcp_20250310"


def test_generate_package_names_covers_every_convention() -> None:
    names = generate_package_names(
        _CONVENTIONS,
        NamingContext(pm_number="35611981", notification_number="NOTIF-44", on_date=date(2025, 3, 10)),
    )

    assert names == {
        "as_built_package": "35611981_ASBUILT_20250310",
        "construction_sketch": "35611981_SKETCH_R0",
        "ccsc": "35611981_CCSC_1",
        "ec_tag": "NOTIF-44_ECTAG",
        "photos": "35611981_PHOTO_001",
    }
