from __future__ import annotations

import pytest

from asbuilt_router.settings import is_hardened_environment, load_settings


_DESTINATION_ENV_VARS = (
    "ORACLE_BASE_URL",
    "GIS_ENDPOINT",
    "SHAREPOINT_TENANT_ID",
    "SHAREPOINT_CLIENT_ID",
    "SHAREPOINT_CLIENT_SECRET",
    "EMAIL_API_URL",
    "REGULATORY_PORTAL_URL",
    "ALLOW_SIMULATED_DELIVERY",
)


def _clear_destination_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _DESTINATION_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _set_hardened_env(
    monkeypatch: pytest.MonkeyPatch,
    environment: str,
) -> None:
    _clear_destination_env(monkeypatch)
    monkeypatch.setenv("ENVIRONMENT", environment)
    monkeypatch.setenv("API_BEARER_TOKEN", "secret-token")
    monkeypatch.setenv("ORACLE_BASE_URL", "https://oracle.example.test")
    monkeypatch.setenv("GIS_ENDPOINT", "https://gis.example.test/arcgis/rest/services")
    monkeypatch.setenv("SHAREPOINT_CLIENT_SECRET", "sp-secret")
    monkeypatch.setenv("EMAIL_API_URL", "https://mail.example.test/send")
    monkeypatch.setenv("REGULATORY_PORTAL_URL", "https://portal.example.test/api")


def test_load_settings_defaults_to_development(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_destination_env(monkeypatch)
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.delenv("API_BEARER_TOKEN", raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("DELIVERY_MAX_WORKERS", raising=False)

    settings = load_settings()

    assert settings.environment == "development"
    assert settings.api_bearer_token is None
    assert settings.redis_url is None
    assert settings.allow_simulated_delivery is True
    assert settings.delivery_max_workers == 4
    assert settings.gis_feature_layer_id == "Distribution_Assets"
    assert settings.email_recipients["compliance"] == ("compliance@utility.example",)


@pytest.mark.parametrize("environment", ["production", "prod", "ci"])
def test_load_settings_requires_bearer_token_in_hardened_environments(
    monkeypatch: pytest.MonkeyPatch,
    environment: str,
) -> None:
    _set_hardened_env(monkeypatch, environment)
    monkeypatch.delenv("API_BEARER_TOKEN", raising=False)

    with pytest.raises(ValueError, match="API_BEARER_TOKEN is required"):
        load_settings()


def test_load_settings_rejects_simulated_delivery_in_production_without_credentials(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _set_hardened_env(monkeypatch, "production")
    monkeypatch.delenv("GIS_ENDPOINT", raising=False)

    with pytest.raises(ValueError, match="GIS_ENDPOINT"):
        load_settings()


def test_load_settings_allows_explicit_simulated_delivery_in_production(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _clear_destination_env(monkeypatch)
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("API_BEARER_TOKEN", "secret-token")
    monkeypatch.setenv("ALLOW_SIMULATED_DELIVERY", "true")

    settings = load_settings()

    assert settings.allow_simulated_delivery is True
    assert settings.oracle_base_url is None


def test_load_settings_accepts_full_destination_credentials_in_production(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _set_hardened_env(monkeypatch, "production")

    settings = load_settings()

    assert settings.allow_simulated_delivery is False
    assert settings.oracle_base_url == "https://oracle.example.test"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("DELIVERY_MAX_WORKERS", "0", "DELIVERY_MAX_WORKERS must be >= 1"),
        ("PROCESSING_MAX_WORKERS", "abc", "PROCESSING_MAX_WORKERS must be an integer"),
        ("UPLOAD_MAX_BYTES", "0", "UPLOAD_MAX_BYTES must be >= 1"),
        ("DELIVERY_TIMEOUT_SECONDS", "-1", "DELIVERY_TIMEOUT_SECONDS must be > 0"),
    ],
)
def test_load_settings_rejects_invalid_numeric_values(
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
    message: str,
) -> None:
    _clear_destination_env(monkeypatch)
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        load_settings()


def test_load_settings_parses_department_recipient_lists(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _clear_destination_env(monkeypatch)
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.setenv("EMAIL_MAPPING_RECIPIENTS", " gis@pge.example , mapping@pge.example ,")

    settings = load_settings()

    assert settings.email_recipients["mapping"] == ("gis@pge.example", "mapping@pge.example")
    assert settings.email_recipients["do"] == ("district-office@utility.example",)


def test_is_hardened_environment_normalizes_case() -> None:
    assert is_hardened_environment(" Production ")
    assert not is_hardened_environment("staging")
