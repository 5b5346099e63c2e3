from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from sessionguard.core.logger import get_logger
from sessionguard.core.sessions.models import (
    Decision,
    DeleteSession,
    HeartbeatClaims,
    LimitVerdict,
    NewSessionReasons,
    PostAction,
    RejectStrategy,
    SessionRecord,
    SetSession,
    UpdateProgress,
    UserSessionMap,
)

log = get_logger("sessions.engine")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _seconds_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds()


def session_expired(record: SessionRecord, claims: HeartbeatClaims, now: datetime) -> bool:
    """
    True when the record has been silent longer than
    ``heartbeat_cycle + cycle_upper_tolerance``. Without a cycle nothing
    expires; a record without a timestamp always does. A window too large
    for the calendar never closes.
    """
    cycle = claims.cycle_seconds
    if cycle is None:
        return False
    if record.timestamp is None:
        return True
    window = cycle + claims.upper_tolerance
    if math.isnan(window):
        return False
    try:
        deadline = record.timestamp + timedelta(seconds=window)
    except OverflowError:
        return window < 0
    return deadline < now


def prune_sessions(
    claims: HeartbeatClaims, sessions: Optional[Mapping[str, SessionRecord]], now: datetime
) -> Tuple[UserSessionMap, List[DeleteSession]]:
    active: UserSessionMap = {}
    deletes: List[DeleteSession] = []
    for session_id, record in (sessions or {}).items():
        if session_expired(record, claims, now):
            deletes.append(DeleteSession(user_id=claims.user_id, session_id=session_id))
        else:
            active[session_id] = record
    return active, deletes


def new_session_reasons(claims: HeartbeatClaims, active: Mapping[str, SessionRecord], now: datetime) -> NewSessionReasons:
    record = active.get(claims.session_id) if claims.session_id is not None else None

    not_expected = False
    too_early = False
    if record is not None:
        # the presented token must carry exactly the last recorded timestamp
        not_expected = record.timestamp is None or claims.timestamp is None or record.timestamp != claims.timestamp
        cycle = claims.cycle_seconds
        if record.timestamp is not None and cycle is not None:
            delta = _seconds_between(now, record.timestamp)
            too_early = delta < cycle - claims.lower_tolerance
            if too_early:
                log.debug("Heartbeat received too early (delta=%.3fs)", delta)

    return NewSessionReasons(
        from_backend=claims.session_id is None,
        session_missing=record is None,
        not_expected=not_expected,
        too_early=too_early,
    )


def needs_new_session(claims: HeartbeatClaims, active: Mapping[str, SessionRecord], now: datetime) -> bool:
    return new_session_reasons(claims, active, now).any()


def order_by_started_at(session_ids: List[str], sessions: Mapping[str, SessionRecord], strategy: RejectStrategy) -> List[str]:
    """
    MOST_RECENT puts the oldest first so the newest sessions fall past the
    limit; LEAST_RECENT and the default put the newest first. Ties keep their
    input order.
    """

    def started(session_id: str) -> datetime:
        return sessions[session_id].started_at or _EPOCH

    return sorted(session_ids, key=started, reverse=strategy is not RejectStrategy.MOST_RECENT)


def evaluate_limit(
    claims: HeartbeatClaims,
    active: Mapping[str, SessionRecord],
    current_session_id: str,
    current_record: SessionRecord,
) -> LimitVerdict:
    candidates: Dict[str, SessionRecord] = dict(active)
    candidates[current_session_id] = current_record

    threshold = claims.checking_threshold
    eligible = [] if threshold is None else [sid for sid, r in candidates.items() if int(r.hit_counter) >= threshold]
    ordered = order_by_started_at(eligible, candidates, claims.strategy)

    edge_exceeded = claims.sessions_edge is not None and len(candidates) > claims.sessions_edge
    over_limit = False
    if claims.session_limit is not None and current_session_id in ordered:
        over_limit = ordered.index(current_session_id) >= claims.session_limit

    return LimitVerdict(sessions_edge_exceeded=edge_exceeded, session_over_limit=over_limit, ordered_eligible=tuple(ordered))


def _new_session_id() -> str:
    return str(uuid.uuid4())


def evaluate_heartbeat(
    claims: HeartbeatClaims,
    sessions: Optional[Mapping[str, SessionRecord]],
    now: datetime,
    *,
    progress: Any = None,
    id_factory: Callable[[], str] = _new_session_id,
) -> Decision:
    """
    Decide one heartbeat against a snapshot of the user's sessions.

    Steps: prune silent sessions, work out whether the heartbeat needs a fresh
    session id, evaluate the limit with the current session included, and on
    acceptance produce the refreshed record. The snapshot is never mutated;
    every store change is returned in ``Decision.actions``.
    """
    active, deletes = prune_sessions(claims, sessions, now)
    if log.isEnabledFor(logging.DEBUG):
        log.debug("Active sessions for %s: %s", claims.user_id, {k: v.to_dict() for k, v in active.items()})

    reasons = new_session_reasons(claims, active, now)
    if reasons.any():
        session_id = id_factory()
        current = SessionRecord(started_at=now, timestamp=now, hit_counter=0)
        log.debug("Creating new session %s: %s", session_id, reasons.to_dict())
    else:
        session_id = str(claims.session_id)
        current = active[session_id]

    verdict = evaluate_limit(claims, active, session_id, current)

    started_at = current.started_at or claims.started_at or now
    record = SessionRecord(started_at=started_at, timestamp=now, hit_counter=int(current.hit_counter) + 1)
    new_claims = claims.evolve(session_id=session_id, started_at=started_at, timestamp=now)

    actions: List[PostAction] = list(deletes)
    if verdict.exceeded:
        log.debug(
            "Session limit exceeded for %s: sessions_edge_exceeded=%s session_over_limit=%s",
            claims.user_id,
            verdict.sessions_edge_exceeded,
            verdict.session_over_limit,
        )
    else:
        actions.append(SetSession(user_id=claims.user_id, session_id=session_id, record=record))
        if progress is not None:
            actions.append(UpdateProgress(user_id=claims.user_id, asset_id=claims.asset_id, progress=progress))

    return Decision(
        session_id=session_id,
        new_session=reasons.any(),
        reasons=reasons,
        active_sessions=active,
        limit=verdict,
        record=record,
        claims=new_claims,
        actions=actions,
    )
