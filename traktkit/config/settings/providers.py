from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from traktkit.backend.common.errors import ConfigError
from traktkit.backend.common.logging import get_logger

from .paths import expand_env, get_provider_settings_path, read_json

log = get_logger(__name__)

_DEFAULT_BASE_URL = "https://api-v2launch.trakt.tv/"
_DEFAULT_OAUTH_BASE_URL = "https://trakt.tv/"
_DEFAULT_TIMEOUT = 20


def load_provider_settings() -> Dict[str, Any]:
    data = read_json(get_provider_settings_path())

    return expand_env(data)


try:  # pragma: no cover - guard against missing files at import time
    PROVIDER_SETTINGS: Dict[str, Any] = load_provider_settings()
except (OSError, ValueError) as exc:
    log.warning("Provider settings unavailable (%s); using built-in defaults", exc)
    PROVIDER_SETTINGS = {}


def _provider_settings() -> Dict[str, Any]:
    return PROVIDER_SETTINGS.get("providers", {}) if PROVIDER_SETTINGS else {}


def get_service_config(service: str) -> Optional[Dict[str, Any]]:
    providers = _provider_settings()
    if not providers:
        return None

    return providers.get(service)


def get_default_headers(service: str) -> Dict[str, str]:
    cfg = get_service_config(service) or {}
    headers = cfg.get("default_headers", {}) or {}

    return {k: expand_env(v) for k, v in headers.items()} if headers else {}


def get_base_url(service: str = "trakt") -> str:
    cfg = get_service_config(service) or {}

    return cfg.get("base_url") or _DEFAULT_BASE_URL


def get_oauth_base_url(service: str = "trakt") -> str:
    cfg = get_service_config(service) or {}

    return cfg.get("oauth_base_url") or _DEFAULT_OAUTH_BASE_URL


def get_timeout(service: str = "trakt") -> int:
    cfg = get_service_config(service) or {}
    try:
        return int(cfg.get("timeout") or _DEFAULT_TIMEOUT)
    except (TypeError, ValueError):
        return _DEFAULT_TIMEOUT


def get_trakt_keys() -> Dict[str, Optional[str]]:
    """Return the OAuth client configuration; blank values become ``None``."""

    cfg = get_service_config("trakt") or {}

    return {
        "client_id": cfg.get("client_id") or None,
        "client_secret": cfg.get("client_secret") or None,
        "redirect_uri": cfg.get("redirect_uri") or None,
    }


def get_provider_endpoints(service: str = "trakt") -> Mapping[str, Any]:
    cfg = get_service_config(service) or {}

    return cfg.get("endpoints", {}) or {}


def get_endpoint(group: str, name: str, service: str = "trakt") -> str:
    """Resolve ``endpoints[group][name]`` or raise ``ConfigError``."""

    endpoints = get_provider_endpoints(service)
    try:
        return endpoints[group][name]
    except (KeyError, TypeError) as exc:
        raise ConfigError(f"Unknown endpoint '{group}.{name}' for service '{service}'") from exc


__all__ = [
    "PROVIDER_SETTINGS",
    "get_base_url",
    "get_default_headers",
    "get_endpoint",
    "get_oauth_base_url",
    "get_provider_endpoints",
    "get_service_config",
    "get_timeout",
    "get_trakt_keys",
    "load_provider_settings",
]
