from __future__ import annotations

import copy
import threading
from typing import Any, Dict, Optional, Sequence, Tuple

from sessionguard.core.sessions.models import (
    DeleteSession,
    PostAction,
    SessionRecord,
    SetSession,
    UpdateProgress,
    UserSessionData,
)
from sessionguard.core.store.base import SessionStore


class MemorySessionStore(SessionStore):
    """
    In-process store. Suitable for a single worker and for tests; state is
    lost on restart.

    Users share a fixed pool of striped locks, so lock memory stays bounded
    however many users are seen.
    """

    name = "memory"

    def __init__(self, *, lock_stripes: int = 64) -> None:
        self._locks: Tuple[threading.Lock, ...] = tuple(threading.Lock() for _ in range(max(1, int(lock_stripes))))
        self._sessions: Dict[str, Dict[str, SessionRecord]] = {}
        self._progress: Dict[Tuple[str, Optional[str]], Any] = {}

    def _user_lock(self, user_id: str) -> threading.Lock:
        return self._locks[hash(user_id) % len(self._locks)]

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    def fetch_user_session_data(self, user_id: str) -> UserSessionData:
        with self._user_lock(user_id):
            return UserSessionData(sessions=dict(self._sessions.get(user_id) or {}))

    def apply_batch(self, user_id: str, actions: Sequence[PostAction]) -> None:
        with self._user_lock(user_id):
            sessions = self._sessions.setdefault(user_id, {})
            for action in actions:
                if isinstance(action, SetSession):
                    sessions[action.session_id] = action.record
                elif isinstance(action, DeleteSession):
                    sessions.pop(action.session_id, None)
                elif isinstance(action, UpdateProgress):
                    self._progress[(user_id, action.asset_id)] = copy.deepcopy(action.progress)
            if not sessions:
                self._sessions.pop(user_id, None)

    def get_progress(self, user_id: str, asset_id: Optional[str]) -> Any:
        return copy.deepcopy(self._progress.get((user_id, asset_id)))

    def seed(self, user_id: str, sessions: Dict[str, SessionRecord]) -> None:
        with self._user_lock(user_id):
            self._sessions[user_id] = dict(sessions)
