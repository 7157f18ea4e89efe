from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Any

__all__ = [
    "PATHS",
    "PROVIDER_SETTINGS",
    "paths",
    "providers",
    "get_base_url",
    "get_database_path",
    "get_default_headers",
    "get_endpoint",
    "get_oauth_base_url",
    "get_provider_endpoints",
    "get_provider_settings_path",
    "get_service_config",
    "get_timeout",
    "get_tokens_dir",
    "get_trakt_keys",
    "load_config_paths",
    "load_provider_settings",
]

_MODULE_EXPORTS = {
    "paths": {
        "PATHS",
        "get_database_path",
        "get_provider_settings_path",
        "get_tokens_dir",
        "load_config_paths",
    },
    "providers": {
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
    },
}

_SUBMODULE_NAMES = {"paths", "providers"}

if TYPE_CHECKING:  # pragma: no cover - only for static analysis
    from . import paths, providers
    from .paths import (
        PATHS,
        get_database_path,
        get_provider_settings_path,
        get_tokens_dir,
        load_config_paths,
    )
    from .providers import (
        PROVIDER_SETTINGS,
        get_base_url,
        get_default_headers,
        get_endpoint,
        get_oauth_base_url,
        get_provider_endpoints,
        get_service_config,
        get_timeout,
        get_trakt_keys,
        load_provider_settings,
    )


def __getattr__(name: str) -> Any:
    if name in _SUBMODULE_NAMES:
        module = importlib.import_module(f"{__name__}.{name}")
        globals()[name] = module
        return module

    for module_name, symbols in _MODULE_EXPORTS.items():
        if name in symbols:
            module = importlib.import_module(f"{__name__}.{module_name}")
            value = getattr(module, name)
            globals()[name] = value
            return value

    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def __dir__() -> list[str]:
    exported = set(__all__)
    exported.update(_SUBMODULE_NAMES)
    for symbols in _MODULE_EXPORTS.values():
        exported.update(symbols)
    exported.update(globals().keys())
    return sorted(exported)
