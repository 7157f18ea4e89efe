"""Credential storage used for the OAuth access and refresh tokens."""

from __future__ import annotations

import base64
import json
import os
import threading
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, runtime_checkable

from traktkit.backend.common.logging import get_logger
from traktkit.config import settings

log = get_logger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"

_SECRETS_FILENAME = "trakt_secrets.json"


@runtime_checkable
class SecretStore(Protocol):
    def get_secret(self, name: str) -> Optional[bytes]: ...

    def set_secret(self, name: str, value: bytes) -> bool: ...

    def delete_secret(self, name: str) -> None: ...


def read_text_secret(store: SecretStore, name: str) -> Optional[str]:
    data = store.get_secret(name)
    if data is None:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        log.warning("Stored secret %s is not valid UTF-8; ignoring", name)
        return None


class MemorySecretStore:
    """Process-local secret store; contents vanish with the process."""

    def __init__(self, initial: Optional[Mapping[str, bytes]] = None) -> None:
        self._lock = threading.Lock()
        self._values: Dict[str, bytes] = dict(initial or {})

    def get_secret(self, name: str) -> Optional[bytes]:
        with self._lock:
            return self._values.get(name)

    def set_secret(self, name: str, value: bytes) -> bool:
        with self._lock:
            self._values[name] = bytes(value)
        return True

    def delete_secret(self, name: str) -> None:
        with self._lock:
            self._values.pop(name, None)


class FileSecretStore:
    """Secrets persisted as a JSON document readable only by the owner."""

    def __init__(self, directory: Optional[Path] = None) -> None:
        tokens_dir = Path(directory or settings.get_tokens_dir())
        tokens_dir.mkdir(parents=True, exist_ok=True)
        self._path = tokens_dir / _SECRETS_FILENAME
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get_secret(self, name: str) -> Optional[bytes]:
        with self._lock:
            encoded = self._load().get(name)
        if encoded is None:
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (ValueError, TypeError):
            log.warning("Stored secret %s is corrupt; ignoring", name)
            return None

    def set_secret(self, name: str, value: bytes) -> bool:
        with self._lock:
            data = self._load()
            data[name] = base64.b64encode(bytes(value)).decode("ascii")
            return self._write(data)

    def delete_secret(self, name: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(name, None) is not None:
                self._write(data)

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            log.warning("Failed to read Trakt secret store at %s; treating as empty", self._path)
            return {}
        if not isinstance(data, Mapping):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: Mapping[str, str]) -> bool:
        tmp_path = self._path.with_suffix(".tmp")
        try:
            fd = os.open(str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(dict(data), fh, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        except OSError as exc:
            log.error("Failed to write Trakt secret store at %s: %s", self._path, exc)
            return False
        return True


__all__ = [
    "ACCESS_TOKEN_KEY",
    "REFRESH_TOKEN_KEY",
    "FileSecretStore",
    "MemorySecretStore",
    "SecretStore",
    "read_text_secret",
]
