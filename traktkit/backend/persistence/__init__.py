"""Credential and settings persistence for traktkit."""

from .secrets import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    FileSecretStore,
    MemorySecretStore,
    SecretStore,
    read_text_secret,
)
from .sqlite import (
    ACCESS_TOKEN_EXPIRATION_KEY,
    MemorySettingsStore,
    SettingsStore,
    SqliteSettingsStore,
    connect,
    connection,
    delete_setting,
    get_setting,
    migrate,
    set_setting,
)

__all__ = [
    "ACCESS_TOKEN_EXPIRATION_KEY",
    "ACCESS_TOKEN_KEY",
    "REFRESH_TOKEN_KEY",
    "FileSecretStore",
    "MemorySecretStore",
    "MemorySettingsStore",
    "SecretStore",
    "SettingsStore",
    "SqliteSettingsStore",
    "connect",
    "connection",
    "delete_setting",
    "get_setting",
    "migrate",
    "read_text_secret",
    "set_setting",
]
