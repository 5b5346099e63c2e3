from __future__ import annotations

from datetime import datetime
from typing import Optional

from sessionguard.core.crypto import encode_token
from sessionguard.core.sessions.models import HeartbeatClaims, RejectStrategy
from sessionguard.core.sessions.timeutil import utc_now


def backend_claims(
    user_id: str,
    *,
    asset_id: Optional[str] = None,
    heartbeat_cycle: float = 30,
    cycle_lower_tolerance: float = 5,
    cycle_upper_tolerance: float = 10,
    reject_strategy: RejectStrategy = RejectStrategy.MOST_RECENT,
    session_limit: int = 1,
    checking_threshold: int = 1,
    sessions_edge: int = 10,
    now: Optional[datetime] = None,
) -> HeartbeatClaims:
    """
    Claims for the first heartbeat of a playback, as the content backend
    hands them out. There is no session_id yet; the service assigns one.
    """
    if not user_id:
        raise ValueError("user_id is required")
    ts = now or utc_now()
    return HeartbeatClaims(
        user_id=str(user_id),
        asset_id=asset_id,
        heartbeat_cycle=heartbeat_cycle,
        cycle_lower_tolerance=cycle_lower_tolerance,
        cycle_upper_tolerance=cycle_upper_tolerance,
        reject_strategy=RejectStrategy(reject_strategy).value,
        session_limit=int(session_limit),
        checking_threshold=int(checking_threshold),
        sessions_edge=int(sessions_edge),
        started_at=ts,
        timestamp=ts,
    )


def issue_backend_token(user_id: str, secret: str, **kwargs) -> str:  # noqa: ANN003
    return encode_token(backend_claims(user_id, **kwargs), secret)
