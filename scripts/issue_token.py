from __future__ import annotations

import argparse

from sessionguard.core.config import load_config
from sessionguard.core.sessions.issuer import issue_backend_token
from sessionguard.core.sessions.models import RejectStrategy


def main() -> int:
    ap = argparse.ArgumentParser(description="Issue a backend-originated heartbeat token")
    ap.add_argument("user_id")
    ap.add_argument("--asset-id", default=None)
    ap.add_argument("--heartbeat-cycle", type=float, default=30)
    ap.add_argument("--lower-tolerance", type=float, default=5)
    ap.add_argument("--upper-tolerance", type=float, default=10)
    ap.add_argument("--reject-strategy", default=RejectStrategy.MOST_RECENT.value, choices=[s.value for s in RejectStrategy])
    ap.add_argument("--session-limit", type=int, default=1)
    ap.add_argument("--checking-threshold", type=int, default=1)
    ap.add_argument("--sessions-edge", type=int, default=10)
    ap.add_argument("--root", default=".", help="Directory containing config/app.json (for the shared key).")
    args = ap.parse_args()

    cfg = load_config(args.root)
    token = issue_backend_token(
        args.user_id,
        cfg.security.shared_key.get_secret_value(),
        asset_id=args.asset_id,
        heartbeat_cycle=args.heartbeat_cycle,
        cycle_lower_tolerance=args.lower_tolerance,
        cycle_upper_tolerance=args.upper_tolerance,
        reject_strategy=RejectStrategy(args.reject_strategy),
        session_limit=args.session_limit,
        checking_threshold=args.checking_threshold,
        sessions_edge=args.sessions_edge,
    )
    print(token)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
