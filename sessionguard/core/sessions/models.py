from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from sessionguard.core.sessions.timeutil import format_instant, parse_instant


class RejectStrategy(str, Enum):
    """
    Which end of the ``started_at`` ordering is penalized when over limit.

    MOST_RECENT rejects the newest sessions, LEAST_RECENT rejects the oldest.
    Anything else behaves like LEAST_RECENT.
    """

    MOST_RECENT = "MOST_RECENT"
    LEAST_RECENT = "LEAST_RECENT"
    DEFAULT = "DEFAULT"

    @classmethod
    def parse(cls, value: Any) -> "RejectStrategy":
        s = str(value or "").strip().upper()
        if s == cls.MOST_RECENT.value:
            return cls.MOST_RECENT
        if s == cls.LEAST_RECENT.value:
            return cls.LEAST_RECENT
        return cls.DEFAULT


def _number(value: Any) -> Optional[Union[int, float]]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    s = str(value).strip()
    if not s:
        return None
    try:
        return int(s)
    except ValueError:
        pass
    try:
        f = float(s)
    except ValueError:
        return None
    return f if math.isfinite(f) else None


def _integer(value: Any) -> Optional[int]:
    n = _number(value)
    return None if n is None else int(n)


def _seconds(value: Any) -> float:
    # ints beyond float range saturate to +-inf
    try:
        return float(value or 0)
    except OverflowError:
        return math.inf if value > 0 else -math.inf


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value)
    return s if s else None


# Emission order of token payload fields.
CLAIM_FIELDS: Tuple[str, ...] = (
    "user_id",
    "session_id",
    "asset_id",
    "heartbeat_cycle",
    "reject_strategy",
    "cycle_lower_tolerance",
    "cycle_upper_tolerance",
    "session_limit",
    "checking_threshold",
    "sessions_edge",
    "started_at",
    "timestamp",
)


@dataclass(frozen=True)
class HeartbeatClaims:
    """
    Decoded content of a heartbeat token.

    Numeric fields are parsed permissively; a missing or malformed value is
    None, which the engine reads as "no constraint".
    """

    user_id: str
    session_id: Optional[str] = None
    asset_id: Optional[str] = None
    heartbeat_cycle: Optional[Union[int, float]] = None
    cycle_lower_tolerance: Optional[Union[int, float]] = None
    cycle_upper_tolerance: Optional[Union[int, float]] = None
    reject_strategy: Optional[str] = None
    session_limit: Optional[Union[int, float]] = None
    checking_threshold: Optional[Union[int, float]] = None
    sessions_edge: Optional[Union[int, float]] = None
    started_at: Optional[datetime] = None
    timestamp: Optional[datetime] = None

    @property
    def strategy(self) -> RejectStrategy:
        return RejectStrategy.parse(self.reject_strategy)

    @property
    def cycle_seconds(self) -> Optional[float]:
        return None if self.heartbeat_cycle is None else _seconds(self.heartbeat_cycle)

    @property
    def lower_tolerance(self) -> float:
        return _seconds(self.cycle_lower_tolerance)

    @property
    def upper_tolerance(self) -> float:
        return _seconds(self.cycle_upper_tolerance)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "HeartbeatClaims":
        user_id = _text(payload.get("user_id"))
        if not user_id:
            raise ValueError("user_id is required")
        return cls(
            user_id=user_id,
            session_id=_text(payload.get("session_id")),
            asset_id=_text(payload.get("asset_id")),
            heartbeat_cycle=_number(payload.get("heartbeat_cycle")),
            cycle_lower_tolerance=_number(payload.get("cycle_lower_tolerance")),
            cycle_upper_tolerance=_number(payload.get("cycle_upper_tolerance")),
            reject_strategy=_text(payload.get("reject_strategy")),
            session_limit=_number(payload.get("session_limit")),
            checking_threshold=_number(payload.get("checking_threshold")),
            sessions_edge=_number(payload.get("sessions_edge")),
            started_at=parse_instant(payload.get("started_at")),
            timestamp=parse_instant(payload.get("timestamp")),
        )

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name in CLAIM_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            out[name] = format_instant(value) if isinstance(value, datetime) else value
        return out

    def evolve(self, **changes: Any) -> "HeartbeatClaims":
        return replace(self, **changes)


@dataclass(frozen=True)
class SessionRecord:
    started_at: Optional[datetime]
    timestamp: Optional[datetime]
    hit_counter: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionRecord":
        return cls(
            started_at=parse_instant(data.get("started_at")),
            timestamp=parse_instant(data.get("timestamp")),
            hit_counter=_integer(data.get("hit_counter")) or 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": format_instant(self.started_at) if self.started_at else None,
            "timestamp": format_instant(self.timestamp) if self.timestamp else None,
            "hit_counter": int(self.hit_counter),
        }


UserSessionMap = Dict[str, SessionRecord]


@dataclass(frozen=True)
class UserSessionData:
    sessions: UserSessionMap = field(default_factory=dict)


# ---- Mutation intents (post actions) ----
@dataclass(frozen=True)
class SetSession:
    user_id: str
    session_id: str
    record: SessionRecord
    kind: str = "setSession"


@dataclass(frozen=True)
class DeleteSession:
    user_id: str
    session_id: str
    kind: str = "deleteSession"


@dataclass(frozen=True)
class UpdateProgress:
    user_id: str
    asset_id: Optional[str]
    progress: Any
    kind: str = "updateProgress"


PostAction = Union[SetSession, DeleteSession, UpdateProgress]


@dataclass(frozen=True)
class NewSessionReasons:
    from_backend: bool = False
    session_missing: bool = False
    not_expected: bool = False
    too_early: bool = False

    def any(self) -> bool:
        return self.from_backend or self.session_missing or self.not_expected or self.too_early

    def to_dict(self) -> Dict[str, bool]:
        return {
            "heartbeat_data_from_backend": self.from_backend,
            "session_missing": self.session_missing,
            "heartbeat_not_expected": self.not_expected,
            "heartbeat_received_too_early": self.too_early,
        }


@dataclass(frozen=True)
class LimitVerdict:
    sessions_edge_exceeded: bool
    session_over_limit: bool
    ordered_eligible: Tuple[str, ...] = ()

    @property
    def exceeded(self) -> bool:
        return self.sessions_edge_exceeded or self.session_over_limit


@dataclass(frozen=True)
class Decision:
    """
    Outcome of one heartbeat evaluation. ``actions`` is the ordered batch of
    post actions the orchestrator applies; on rejection it only holds the
    prune deletes.
    """

    session_id: str
    new_session: bool
    reasons: NewSessionReasons
    active_sessions: UserSessionMap
    limit: LimitVerdict
    record: SessionRecord
    claims: HeartbeatClaims
    actions: List[PostAction] = field(default_factory=list)

    @property
    def rejected(self) -> bool:
        return self.limit.exceeded

    @property
    def pruned(self) -> List[str]:
        return [a.session_id for a in self.actions if isinstance(a, DeleteSession)]
