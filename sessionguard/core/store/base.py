from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from sessionguard.core.errors import StoreUnavailableError
from sessionguard.core.sessions.models import (
    DeleteSession,
    PostAction,
    SessionRecord,
    SetSession,
    UpdateProgress,
    UserSessionData,
)


class SessionStore(ABC):
    """
    Per-user session index. Backends must apply one batch for one user
    atomically so a delete and a set for the same id never interleave with
    another request's batch.
    """

    name: str = "abstract"

    @abstractmethod
    def fetch_user_session_data(self, user_id: str) -> UserSessionData:
        """Snapshot of the user's sessions. Raises StoreUnavailableError."""

    @abstractmethod
    def apply_batch(self, user_id: str, actions: Sequence[PostAction]) -> None:
        """Apply actions for one user together. Raises StoreUnavailableError."""

    @abstractmethod
    def get_progress(self, user_id: str, asset_id: Optional[str]) -> Any:
        ...


def post_action_from_args(kind: str, user_id: str, *args: Any) -> PostAction:
    if kind == "setSession":
        session_id, record = args
        if isinstance(record, dict):
            record = SessionRecord.from_dict(record)
        return SetSession(user_id=user_id, session_id=str(session_id), record=record)
    if kind == "deleteSession":
        (session_id,) = args
        return DeleteSession(user_id=user_id, session_id=str(session_id))
    if kind == "updateProgress":
        asset_id, progress = args
        return UpdateProgress(user_id=user_id, asset_id=asset_id, progress=progress)
    raise ValueError(f"Unknown post action kind: {kind!r}")


class PostActionQueue:
    """
    Mutations deferred until the response is known. One queue per request;
    ``execute_post_actions`` flushes everything as per-user batches.
    """

    def __init__(self, store: SessionStore, *, logger: Optional[logging.Logger] = None):
        self.store = store
        self.logger = logger or logging.getLogger("sessionguard.store")
        self._pending: List[PostAction] = []

    @property
    def pending(self) -> List[PostAction]:
        return list(self._pending)

    def add_post_action(self, kind: str, user_id: str, *args: Any) -> None:
        self._pending.append(post_action_from_args(kind, user_id, *args))

    def extend(self, actions: Sequence[PostAction]) -> None:
        self._pending.extend(actions)

    def execute_post_actions(self) -> int:
        actions, self._pending = self._pending, []
        by_user: Dict[str, List[PostAction]] = {}
        for action in actions:
            by_user.setdefault(action.user_id, []).append(action)
        for user_id, batch in by_user.items():
            try:
                self.store.apply_batch(user_id, batch)
            except StoreUnavailableError:
                raise
            except Exception as e:  # noqa: BLE001
                raise StoreUnavailableError(error=str(e), backend=self.store.name) from e
            self.logger.debug("Applied %d post action(s) for %s", len(batch), user_id)
        return len(actions)
