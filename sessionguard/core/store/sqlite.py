from __future__ import annotations

import contextlib
import json
import os
import sqlite3
from typing import Any, Iterator, Optional, Sequence

from sessionguard.core.errors import StoreUnavailableError
from sessionguard.core.sessions.models import (
    DeleteSession,
    PostAction,
    SessionRecord,
    SetSession,
    UpdateProgress,
    UserSessionData,
)
from sessionguard.core.sessions.timeutil import format_instant, utc_now
from sessionguard.core.store.base import SessionStore


class SqliteSessionStore(SessionStore):
    """
    Durable store on a local SQLite file (WAL). Each batch runs inside one
    ``BEGIN IMMEDIATE`` transaction, which serializes writers across
    processes sharing the file.
    """

    name = "sqlite"

    def __init__(self, *, path: str, timeout_seconds: float = 5.0):
        self.path = path
        self.timeout_seconds = float(timeout_seconds)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._init()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.timeout_seconds, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._conn()
        except sqlite3.Error as e:
            raise StoreUnavailableError(error=str(e), backend=self.name) from e
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise StoreUnavailableError(error=str(e), backend=self.name) from e
        finally:
            conn.close()

    def _init(self) -> None:
        with self._transaction() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                  user_id TEXT NOT NULL,
                  session_id TEXT NOT NULL,
                  started_at TEXT,
                  timestamp TEXT,
                  hit_counter INTEGER NOT NULL DEFAULT 0,
                  PRIMARY KEY (user_id, session_id)
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS progress (
                  user_id TEXT NOT NULL,
                  asset_id TEXT NOT NULL,
                  json TEXT NOT NULL,
                  updated_at TEXT NOT NULL,
                  PRIMARY KEY (user_id, asset_id)
                )
                """
            )

    def fetch_user_session_data(self, user_id: str) -> UserSessionData:
        sessions = {}
        try:
            conn = self._conn()
            try:
                rows = conn.execute(
                    "SELECT session_id, started_at, timestamp, hit_counter FROM sessions WHERE user_id = ? ORDER BY rowid",
                    (str(user_id),),
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreUnavailableError(error=str(e), backend=self.name) from e
        for session_id, started_at, timestamp, hit_counter in rows:
            sessions[session_id] = SessionRecord.from_dict({"started_at": started_at, "timestamp": timestamp, "hit_counter": hit_counter})
        return UserSessionData(sessions=sessions)

    def apply_batch(self, user_id: str, actions: Sequence[PostAction]) -> None:
        with self._transaction() as c:
            for action in actions:
                if isinstance(action, SetSession):
                    row = action.record.to_dict()
                    c.execute(
                        """
                        INSERT INTO sessions(user_id, session_id, started_at, timestamp, hit_counter)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT(user_id, session_id) DO UPDATE SET
                          started_at = excluded.started_at,
                          timestamp = excluded.timestamp,
                          hit_counter = excluded.hit_counter
                        """,
                        (str(user_id), action.session_id, row["started_at"], row["timestamp"], row["hit_counter"]),
                    )
                elif isinstance(action, DeleteSession):
                    c.execute("DELETE FROM sessions WHERE user_id = ? AND session_id = ?", (str(user_id), action.session_id))
                elif isinstance(action, UpdateProgress):
                    c.execute(
                        "INSERT OR REPLACE INTO progress(user_id, asset_id, json, updated_at) VALUES (?, ?, ?, ?)",
                        (str(user_id), str(action.asset_id or ""), json.dumps(action.progress, ensure_ascii=False), format_instant(utc_now())),
                    )

    def get_progress(self, user_id: str, asset_id: Optional[str]) -> Any:
        try:
            conn = self._conn()
            try:
                row = conn.execute(
                    "SELECT json FROM progress WHERE user_id = ? AND asset_id = ?",
                    (str(user_id), str(asset_id or "")),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreUnavailableError(error=str(e), backend=self.name) from e
        return json.loads(row[0]) if row else None

    def count_sessions(self, user_id: Optional[str] = None) -> int:
        conn = self._conn()
        try:
            if user_id is None:
                row = conn.execute("SELECT COUNT(1) FROM sessions").fetchone()
            else:
                row = conn.execute("SELECT COUNT(1) FROM sessions WHERE user_id = ?", (str(user_id),)).fetchone()
        finally:
            conn.close()
        return int(row[0] if row else 0)
