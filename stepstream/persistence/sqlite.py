"""SQLite implementation of the session store."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any

from .repository import SessionStore

SESSION_ID_KEY = "session_id"


class SQLiteSessionStore(SessionStore):
    """Persist the session id in a small SQLite settings table."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS client_settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    # ------------------------------------------------------------------
    # Store API
    async def get_session_id(self) -> str | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT value FROM client_settings WHERE key = ?",
            SESSION_ID_KEY,
        )
        return row["value"] if row else None

    async def set_session_id(self, session_id: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO client_settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            SESSION_ID_KEY,
            session_id,
        )

    async def clear(self) -> None:
        await asyncio.to_thread(
            self._execute, "DELETE FROM client_settings WHERE key = ?", SESSION_ID_KEY
        )

    def close(self) -> None:
        self._conn.close()
