from __future__ import annotations

import json
from pathlib import Path

import pytest

from asbuilt_router.policy.utility_config import (
    CatalogUtilityConfigProvider,
    load_utility_configs,
    parse_utility_configs,
)


def _minimal_config(**overrides) -> dict:
    config = {
        "utility_code": "tst",
        "utility_id": "utility-test",
        "utility_name": "Test Utility",
        "procedure_id": "TST-1",
        "page_ranges": [
            {"section_type": "face_sheet", "label": "Face", "start": 1, "end": 1, "detection_keyword": "FACE"}
        ],
    }
    config.update(overrides)
    return config


def test_packaged_catalog_loads_pge_and_sce() -> None:
    configs = load_utility_configs()

    codes = {config.utility_code for config in configs}
    assert {"PGE", "SCE"} <= codes
    pge = next(config for config in configs if config.utility_code == "PGE")
    assert pge.utility_id == "utility-pge"
    assert pge.work_type("estimated") is not None
    assert pge.checklist is not None
    assert pge.checklist.section("OH") is not None
    assert pge.checklist.section("OH").item(1).safety_critical is True


def test_provider_normalizes_utility_code_lookups() -> None:
    provider = CatalogUtilityConfigProvider.from_path()

    assert provider.find_by_utility_code(" pge ").utility_code == "PGE"
    assert provider.find_by_utility_code("UNKNOWN") is None
    assert provider.find_by_utility_id("utility-sce").utility_code == "SCE"


def test_provider_ignores_inactive_configs() -> None:
    provider = CatalogUtilityConfigProvider(
        parse_utility_configs({"configs": [_minimal_config(is_active=False)]})
    )

    assert provider.find_by_utility_code("TST") is None


def test_parse_rejects_duplicate_active_configs() -> None:
    with pytest.raises(ValueError, match="Duplicate active utility config for TST"):
        parse_utility_configs({"configs": [_minimal_config(), _minimal_config()]})


def test_parse_allows_inactive_duplicate_of_active_config() -> None:
    configs = parse_utility_configs(
        {"configs": [_minimal_config(), _minimal_config(is_active=False)]}
    )

    assert len(configs) == 2


def test_parse_rejects_unknown_section_type() -> None:
    payload = _minimal_config(
        page_ranges=[{"section_type": "mystery", "label": "X", "start": 1, "end": 1}]
    )

    with pytest.raises(ValueError, match="Unknown section_type 'mystery'"):
        parse_utility_configs({"configs": [payload]})


def test_parse_rejects_inverted_page_bounds() -> None:
    payload = _minimal_config(
        page_ranges=[{"section_type": "permits", "label": "Permits", "start": 5, "end": 2}]
    )

    with pytest.raises(ValueError, match="Invalid page bounds 5-2"):
        parse_utility_configs({"configs": [payload]})


def test_parse_rejects_unsupported_rule_kind() -> None:
    payload = _minimal_config(
        validation_rules=[
            {"code": "X", "target": "x", "rule": "telepathy", "severity": "error"}
        ]
    )

    with pytest.raises(ValueError, match="Unsupported rule kind 'telepathy'"):
        parse_utility_configs({"configs": [payload]})


def test_load_reads_catalog_from_explicit_path(tmp_path: Path) -> None:
    catalog_path = tmp_path / "configs.json"
    catalog_path.write_text(json.dumps({"configs": [_minimal_config()]}), encoding="utf-8")

    configs = load_utility_configs(catalog_path)

    assert [config.utility_code for config in configs] == ["TST"]
    assert configs[0].score_thresholds["accuracy"] == 80


def test_load_raises_when_explicit_path_missing(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_utility_configs(tmp_path / "missing.json")
