"""SQLite connection helpers and the persisted settings area."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Protocol, runtime_checkable

from traktkit.backend.common.logging import get_logger
from traktkit.config.settings import get_database_path

log = get_logger(__name__)

ACCESS_TOKEN_EXPIRATION_KEY = "accessTokenExpirationDate"


def _resolve_path(path: Optional[Path]) -> Path:
    db_path = Path(path or get_database_path())
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


def connect(path: Optional[Path] = None, *, apply_migrations: bool = True) -> sqlite3.Connection:
    """Create a SQLite connection and ensure the schema exists."""

    db_path = _resolve_path(path)
    connection = sqlite3.connect(str(db_path))
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA journal_mode = WAL")
    if apply_migrations:
        migrate(connection)
    return connection


@contextmanager
def connection(path: Optional[Path] = None) -> Iterator[sqlite3.Connection]:
    conn = connect(path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def migrate(connection: sqlite3.Connection) -> None:
    """Create required tables if they are missing."""

    connection.executescript(
        """
        CREATE TABLE IF NOT EXISTS settings (
            k TEXT PRIMARY KEY,
            v TEXT NOT NULL
        );
        """
    )


def get_setting(connection: sqlite3.Connection, key: str) -> Optional[str]:
    row = connection.execute("SELECT v FROM settings WHERE k = ?", (key,)).fetchone()
    return None if row is None else str(row["v"])


def set_setting(connection: sqlite3.Connection, key: str, value: str) -> None:
    connection.execute(
        """
        INSERT INTO settings(k, v) VALUES (?, ?)
        ON CONFLICT(k) DO UPDATE SET v = excluded.v
        """,
        (key, value),
    )


def delete_setting(connection: sqlite3.Connection, key: str) -> None:
    connection.execute("DELETE FROM settings WHERE k = ?", (key,))


@runtime_checkable
class SettingsStore(Protocol):
    def get_value(self, key: str) -> Optional[str]: ...

    def set_value(self, key: str, value: str) -> None: ...

    def delete_value(self, key: str) -> None: ...


class SqliteSettingsStore:
    """Settings area backed by the ``settings`` table."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = _resolve_path(path)
        with connection(self._path):
            pass

    def get_value(self, key: str) -> Optional[str]:
        with connection(self._path) as conn:
            return get_setting(conn, key)

    def set_value(self, key: str, value: str) -> None:
        with connection(self._path) as conn:
            set_setting(conn, key, value)

    def delete_value(self, key: str) -> None:
        with connection(self._path) as conn:
            delete_setting(conn, key)


class MemorySettingsStore:
    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._lock = threading.Lock()
        self._values: Dict[str, str] = dict(initial or {})

    def get_value(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set_value(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete_value(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)
