"""Application configuration loaded via python-decouple with typed helpers."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final, Protocol, cast

from decouple import (
    Config as DecoupleConfig,
    RepositoryEmpty,
    RepositoryEnv,
)

_DOTENV_PATH: Final[Path] = Path(".env")


def _build_decouple_config() -> DecoupleConfig:
    # Gracefully handle missing .env (e.g., in CI/tests) by falling back to an empty repository.
    try:
        return DecoupleConfig(RepositoryEnv(str(_DOTENV_PATH)))
    except FileNotFoundError:
        return DecoupleConfig(RepositoryEmpty())


_decouple_config: Final[DecoupleConfig] = _build_decouple_config()


@dataclass(slots=True, frozen=True)
class AzureSettings:
    """Azure Resource Manager (deployment-control) settings."""

    subscription_id: str
    resource_group: str
    location: str
    arm_base_url: str
    swa_api_version: str
    zipdeploy_api_version: str
    swa_sku_name: str
    swa_sku_tier: str


@dataclass(slots=True, frozen=True)
class StorageSettings:
    """Blob storage used for temporary deploy artifacts."""

    account: str
    container: str
    api_version: str
    endpoint: str
    temp_prefix: str
    # Validity of both the user delegation key and the SAS derived from it
    sas_ttl_seconds: int


@dataclass(slots=True, frozen=True)
class Settings:
    """Top-level application settings."""

    environment: str
    azure: AzureSettings
    storage: StorageSettings
    swa_slug: str
    deployment_provider: str
    http_timeout_seconds: float
    # Static credentials; normally minted by the device-code login flow
    arm_token: str
    storage_token: str
    # Logging
    log_level: str
    log_json_enabled: bool
    log_rich_enabled: bool


def _bool(value: str, *, default: bool) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y"}:
        return True
    if normalized in {"0", "false", "f", "no", "n"}:
        return False
    return default


def _int(value: str, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _float(value: str, *, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    environment = _decouple_config("APP_ENVIRONMENT", default="development")

    azure_settings = AzureSettings(
        subscription_id=_decouple_config("DEPLOY_AGENT_SUBSCRIPTION_ID", default="PLACEHOLDER_SUBSCRIPTION_ID"),
        resource_group=_decouple_config("DEPLOY_AGENT_RESOURCE_GROUP", default="rg-published-apps"),
        location=_decouple_config("DEPLOY_AGENT_LOCATION", default="westeurope"),
        arm_base_url=_decouple_config("DEPLOY_AGENT_ARM_BASE_URL", default="https://management.azure.com").rstrip("/"),
        swa_api_version=_decouple_config("DEPLOY_AGENT_SWA_API_VERSION", default="2022-09-01"),
        zipdeploy_api_version=_decouple_config("DEPLOY_AGENT_ZIPDEPLOY_API_VERSION", default="2024-04-01"),
        swa_sku_name="Free",
        swa_sku_tier="Free",
    )

    account = _decouple_config("DEPLOY_AGENT_STORAGE_ACCOUNT", default="").strip()
    endpoint = _decouple_config("DEPLOY_AGENT_STORAGE_ENDPOINT", default="").strip().rstrip("/")
    storage_settings = StorageSettings(
        account=account,
        container=_decouple_config("DEPLOY_AGENT_CONTAINER_NAME", default="app-content"),
        api_version=_decouple_config("DEPLOY_AGENT_STORAGE_API_VERSION", default="2024-11-04"),
        endpoint=endpoint or f"https://{account}.blob.core.windows.net",
        temp_prefix=_decouple_config("DEPLOY_AGENT_TEMP_PREFIX", default="_deploy-temp").strip("/"),
        sas_ttl_seconds=_int(_decouple_config("DEPLOY_AGENT_SAS_TTL_SECONDS", default="3600"), default=3600),
    )

    return Settings(
        environment=environment,
        azure=azure_settings,
        storage=storage_settings,
        swa_slug=_decouple_config("DEPLOY_AGENT_SWA_SLUG", default="ai-apps"),
        deployment_provider=_decouple_config("DEPLOY_AGENT_DEPLOYMENT_PROVIDER", default="DeployAgent"),
        http_timeout_seconds=_float(_decouple_config("DEPLOY_AGENT_HTTP_TIMEOUT_SECONDS", default="120"), default=120.0),
        arm_token=_decouple_config("DEPLOY_AGENT_ARM_TOKEN", default="").strip(),
        storage_token=_decouple_config("DEPLOY_AGENT_STORAGE_TOKEN", default="").strip(),
        log_level=_decouple_config("LOG_LEVEL", default="INFO"),
        log_json_enabled=_bool(_decouple_config("LOG_JSON_ENABLED", default="false"), default=False),
        log_rich_enabled=_bool(_decouple_config("LOG_RICH_ENABLED", default="true"), default=True),
    )


class _CacheClearable(Protocol):
    def cache_clear(self) -> None: ...


def clear_settings_cache() -> None:
    """Clear the lru_cache for get_settings in a type-checker-friendly way."""
    cache_clear = getattr(cast(_CacheClearable, get_settings), "cache_clear", None)
    if callable(cache_clear):
        cache_clear()
