"""Durable on-device key-value storage for client-side timestamps."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

from forked.utils.config import Settings, get_settings


class LocalKeyValueStore:
    """Synchronous timestamp storage that survives process restarts."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._path = Path(self._settings.local_store_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS KeyValue (
                    key TEXT PRIMARY KEY,
                    value REAL NOT NULL
                );
                """
            )
            conn.commit()

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._path)
        connection.row_factory = sqlite3.Row
        return connection

    def get_timestamp(self, key: str) -> Optional[float]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM KeyValue WHERE key = ?;", (key,)).fetchone()
            if row is None:
                return None
            return float(row["value"])

    def set_timestamp(self, key: str, value: float) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO KeyValue (key, value)
                VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value;
                """,
                (key, value),
            )
            conn.commit()
