"""Backend public interfaces with lazy loading to avoid circular imports."""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Any

__all__ = [
    "AuthState",
    "Credential",
    "ErrorDetail",
    "ErrorKind",
    "Failure",
    "FileSecretStore",
    "MemorySecretStore",
    "MemorySettingsStore",
    "RequestBuilder",
    "RequestHandle",
    "ResponseDispatcher",
    "SqliteSettingsStore",
    "Success",
    "TraktManager",
]

_MODULE_EXPORTS = {
    "common.types": {
        "ErrorDetail",
        "ErrorKind",
        "Failure",
        "Success",
    },
    "common.tasks": {
        "RequestHandle",
    },
    "persistence": {
        "FileSecretStore",
        "MemorySecretStore",
        "MemorySettingsStore",
        "SqliteSettingsStore",
    },
    "network_handlers.url_manager": {
        "RequestBuilder",
    },
    "information_handlers.dispatch": {
        "ResponseDispatcher",
    },
    "information_handlers.trakt_manager": {
        "AuthState",
        "Credential",
        "TraktManager",
    },
}

if TYPE_CHECKING:  # pragma: no cover - for static analysis only
    from .common.tasks import RequestHandle
    from .common.types import ErrorDetail, ErrorKind, Failure, Success
    from .information_handlers.dispatch import ResponseDispatcher
    from .information_handlers.trakt_manager import AuthState, Credential, TraktManager
    from .network_handlers.url_manager import RequestBuilder
    from .persistence import (
        FileSecretStore,
        MemorySecretStore,
        MemorySettingsStore,
        SqliteSettingsStore,
    )


def __getattr__(name: str) -> Any:
    for module_name, symbols in _MODULE_EXPORTS.items():
        if name in symbols:
            module = importlib.import_module(f"{__name__}.{module_name}")
            value = getattr(module, name)
            globals()[name] = value
            return value
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def __dir__() -> list[str]:
    exported = set(__all__)
    for symbols in _MODULE_EXPORTS.values():
        exported.update(symbols)
    exported.update(globals().keys())
    return sorted(exported)
