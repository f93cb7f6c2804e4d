from __future__ import annotations

from dataclasses import dataclass
import os

HARDENED_ENVIRONMENTS = frozenset({"production", "prod", "ci"})


@dataclass(frozen=True)
class Settings:
    app_name: str
    environment: str
    api_bearer_token: str | None
    redis_url: str | None
    blob_storage_dir: str | None
    utility_config_path: str | None
    routing_rules_path: str | None
    delivery_max_workers: int
    processing_max_workers: int
    upload_max_bytes: int
    delivery_timeout_seconds: float
    allow_simulated_delivery: bool
    oracle_base_url: str | None
    oracle_api_token: str | None
    gis_endpoint: str | None
    gis_api_token: str | None
    gis_feature_layer_id: str
    sharepoint_tenant_id: str | None
    sharepoint_client_id: str | None
    sharepoint_client_secret: str | None
    sharepoint_do_site: str
    sharepoint_permits_site: str
    sharepoint_utcs_site: str
    email_api_url: str | None
    email_api_key: str | None
    email_from: str
    email_recipients: dict[str, tuple[str, ...]]
    regulatory_portal_url: str | None
    regulatory_portal_token: str | None


def parse_str_env(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip()
    if not normalized:
        return default
    return normalized


def parse_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a numeric value, got {raw!r}") from exc


def parse_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer value, got {raw!r}") from exc


def parse_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    values = tuple(item.strip() for item in raw.split(",") if item.strip())
    if not values:
        return default
    return values


def is_hardened_environment(environment: str) -> bool:
    return environment.strip().lower() in HARDENED_ENVIRONMENTS


_EMAIL_DEPARTMENT_DEFAULTS: dict[str, tuple[str, ...]] = {
    "mapping": ("mapping@utility.example",),
    "do": ("district-office@utility.example",),
    "permits": ("permits@utility.example",),
    "compliance": ("compliance@utility.example",),
    "estimating": ("estimating@utility.example",),
}


def load_settings() -> Settings:
    environment = parse_str_env("ENVIRONMENT", "development") or "development"
    hardened_environment = is_hardened_environment(environment)
    api_bearer_token = parse_str_env("API_BEARER_TOKEN")
    allow_simulated_delivery = parse_bool_env(
        "ALLOW_SIMULATED_DELIVERY",
        not hardened_environment,
    )

    if hardened_environment and not api_bearer_token:
        raise ValueError(
            "API_BEARER_TOKEN is required when ENVIRONMENT is production/prod/ci"
        )

    delivery_max_workers = parse_int_env("DELIVERY_MAX_WORKERS", 4)
    if delivery_max_workers < 1:
        raise ValueError("DELIVERY_MAX_WORKERS must be >= 1")
    processing_max_workers = parse_int_env("PROCESSING_MAX_WORKERS", 2)
    if processing_max_workers < 1:
        raise ValueError("PROCESSING_MAX_WORKERS must be >= 1")
    upload_max_bytes = parse_int_env("UPLOAD_MAX_BYTES", 50 * 1024 * 1024)
    if upload_max_bytes < 1:
        raise ValueError("UPLOAD_MAX_BYTES must be >= 1")
    delivery_timeout_seconds = parse_float_env("DELIVERY_TIMEOUT_SECONDS", 15.0)
    if delivery_timeout_seconds <= 0:
        raise ValueError("DELIVERY_TIMEOUT_SECONDS must be > 0")

    oracle_base_url = parse_str_env("ORACLE_BASE_URL")
    gis_endpoint = parse_str_env("GIS_ENDPOINT")
    sharepoint_tenant_id = parse_str_env("SHAREPOINT_TENANT_ID")
    sharepoint_client_id = parse_str_env("SHAREPOINT_CLIENT_ID")
    sharepoint_client_secret = parse_str_env("SHAREPOINT_CLIENT_SECRET")
    email_api_url = parse_str_env("EMAIL_API_URL")
    regulatory_portal_url = parse_str_env("REGULATORY_PORTAL_URL")

    if hardened_environment and not allow_simulated_delivery:
        missing = [
            name
            for name, value in (
                ("ORACLE_BASE_URL", oracle_base_url),
                ("GIS_ENDPOINT", gis_endpoint),
                ("SHAREPOINT_CLIENT_SECRET", sharepoint_client_secret),
                ("EMAIL_API_URL", email_api_url),
                ("REGULATORY_PORTAL_URL", regulatory_portal_url),
            )
            if not value
        ]
        if missing:
            raise ValueError(
                "Destination credentials are required when ENVIRONMENT is production/prod/ci "
                f"unless ALLOW_SIMULATED_DELIVERY=true; missing: {', '.join(missing)}"
            )

    email_recipients = {
        department: parse_csv_env(f"EMAIL_{department.upper()}_RECIPIENTS", default)
        for department, default in _EMAIL_DEPARTMENT_DEFAULTS.items()
    }

    return Settings(
        app_name=parse_str_env("API_APP_NAME", "As-Built Router API") or "As-Built Router API",
        environment=environment,
        api_bearer_token=api_bearer_token,
        redis_url=parse_str_env("REDIS_URL"),
        blob_storage_dir=parse_str_env("BLOB_STORAGE_DIR"),
        utility_config_path=parse_str_env("UTILITY_CONFIG_PATH"),
        routing_rules_path=parse_str_env("ROUTING_RULES_PATH"),
        delivery_max_workers=delivery_max_workers,
        processing_max_workers=processing_max_workers,
        upload_max_bytes=upload_max_bytes,
        delivery_timeout_seconds=delivery_timeout_seconds,
        allow_simulated_delivery=allow_simulated_delivery,
        oracle_base_url=oracle_base_url,
        oracle_api_token=parse_str_env("ORACLE_API_TOKEN"),
        gis_endpoint=gis_endpoint,
        gis_api_token=parse_str_env("GIS_API_TOKEN"),
        gis_feature_layer_id=parse_str_env("GIS_FEATURE_LAYER_ID", "Distribution_Assets")
        or "Distribution_Assets",
        sharepoint_tenant_id=sharepoint_tenant_id,
        sharepoint_client_id=sharepoint_client_id,
        sharepoint_client_secret=sharepoint_client_secret,
        sharepoint_do_site=parse_str_env(
            "SHAREPOINT_DO_SITE", "https://utility.sharepoint.com/sites/DistrictOperations"
        )
        or "https://utility.sharepoint.com/sites/DistrictOperations",
        sharepoint_permits_site=parse_str_env(
            "SHAREPOINT_PERMITS_SITE", "https://utility.sharepoint.com/sites/Permits"
        )
        or "https://utility.sharepoint.com/sites/Permits",
        sharepoint_utcs_site=parse_str_env(
            "SHAREPOINT_UTCS_SITE", "https://utility.sharepoint.com/sites/UTCS"
        )
        or "https://utility.sharepoint.com/sites/UTCS",
        email_api_url=email_api_url,
        email_api_key=parse_str_env("EMAIL_API_KEY"),
        email_from=parse_str_env("EMAIL_FROM", "noreply@asbuilt-router.example")
        or "noreply@asbuilt-router.example",
        email_recipients=email_recipients,
        regulatory_portal_url=regulatory_portal_url,
        regulatory_portal_token=parse_str_env("REGULATORY_PORTAL_TOKEN"),
    )
