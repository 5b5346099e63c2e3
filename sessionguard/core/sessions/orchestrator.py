from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sessionguard.core.crypto import decode_token, encode_token
from sessionguard.core.errors import InvalidTokenError, LimitExceededError, SessionGuardError
from sessionguard.core.events import EventLogger
from sessionguard.core.sessions.engine import evaluate_heartbeat
from sessionguard.core.sessions.models import Decision
from sessionguard.core.sessions.timeutil import utc_now
from sessionguard.core.store.base import PostActionQueue, SessionStore
from sessionguard.core.trace import resolve_trace_id


class HeartbeatStage(str, Enum):
    RECEIVED = "RECEIVED"
    DECODED = "DECODED"
    SNAPSHOT_FETCHED = "SNAPSHOT_FETCHED"
    EVALUATED = "EVALUATED"
    TOKEN_ISSUED = "TOKEN_ISSUED"
    MUTATIONS_FLUSHED = "MUTATIONS_FLUSHED"
    RESPONDED = "RESPONDED"


@dataclass
class HeartbeatResult:
    status: int
    body: Dict[str, Any]
    stages: List[HeartbeatStage] = field(default_factory=list)
    decision: Optional[Decision] = None
    error: Optional[SessionGuardError] = None


def _error_result(err: SessionGuardError, status: int, stages: List[HeartbeatStage], decision: Optional[Decision] = None) -> HeartbeatResult:
    return HeartbeatResult(status=status, body={"error": err.user_message}, stages=stages, decision=decision, error=err)


class HeartbeatOrchestrator:
    """
    One heartbeat request, start to finish:
    decode -> fetch snapshot -> evaluate -> issue token -> flush post actions.

    Store failures (StoreUnavailableError) propagate to the caller; the
    orchestrator does not retry.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        shared_key: str,
        logger: Optional[logging.Logger] = None,
        event_logger: Optional[EventLogger] = None,
        now_fn: Callable[[], datetime] = utc_now,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.store = store
        self._shared_key = shared_key
        self.logger = logger or logging.getLogger("sessionguard.heartbeat")
        self.event_logger = event_logger
        self._now = now_fn
        self._id_factory = id_factory

    def _event(self, trace_id: str, event: str, details: Dict[str, Any]) -> None:
        if self.event_logger is not None:
            self.event_logger.log(trace_id, event, details)

    def process(self, token: Any, progress: Any = None, *, trace_id: Optional[str] = None) -> HeartbeatResult:
        trace_id = resolve_trace_id(trace_id)
        stages = [HeartbeatStage.RECEIVED]

        try:
            claims = decode_token(token, self._shared_key)
        except InvalidTokenError as e:
            self.logger.info("Rejected heartbeat with invalid token (%s)", e.context.get("reason", "unknown"))
            self._event(trace_id, "heartbeat.invalid_token", {"reason": e.context.get("reason")})
            stages.append(HeartbeatStage.RESPONDED)
            return _error_result(e, 406, stages)
        stages.append(HeartbeatStage.DECODED)

        queue = PostActionQueue(self.store, logger=self.logger)
        snapshot = self.store.fetch_user_session_data(claims.user_id)
        stages.append(HeartbeatStage.SNAPSHOT_FETCHED)

        kwargs: Dict[str, Any] = {"progress": progress}
        if self._id_factory is not None:
            kwargs["id_factory"] = self._id_factory
        decision = evaluate_heartbeat(claims, snapshot.sessions, self._now(), **kwargs)
        queue.extend(decision.actions)
        stages.append(HeartbeatStage.EVALUATED)

        details = {
            "user_id": claims.user_id,
            "session_id": decision.session_id,
            "new_session": decision.new_session,
            "pruned": decision.pruned,
            "active_sessions": len(decision.active_sessions),
        }

        if decision.rejected:
            queue.execute_post_actions()
            stages.append(HeartbeatStage.MUTATIONS_FLUSHED)
            err = LimitExceededError(
                user_id=claims.user_id,
                sessions_edge_exceeded=decision.limit.sessions_edge_exceeded,
                session_over_limit=decision.limit.session_over_limit,
            )
            self.logger.info("Session limit exceeded for user %s", claims.user_id)
            self._event(
                trace_id,
                "heartbeat.rejected",
                {
                    **details,
                    "sessions_edge_exceeded": decision.limit.sessions_edge_exceeded,
                    "session_over_limit": decision.limit.session_over_limit,
                },
            )
            stages.append(HeartbeatStage.RESPONDED)
            return _error_result(err, 412, stages, decision)

        new_token = encode_token(decision.claims, self._shared_key)
        stages.append(HeartbeatStage.TOKEN_ISSUED)

        queue.execute_post_actions()
        stages.append(HeartbeatStage.MUTATIONS_FLUSHED)

        self.logger.debug("Accepted heartbeat for user %s session %s", claims.user_id, decision.session_id)
        self._event(trace_id, "heartbeat.accepted", {**details, "hit_counter": decision.record.hit_counter})
        stages.append(HeartbeatStage.RESPONDED)
        return HeartbeatResult(status=200, body={"heartbeat_token": new_token}, stages=stages, decision=decision)
