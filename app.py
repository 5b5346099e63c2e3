from __future__ import annotations

import argparse
import os
import sys
from typing import Optional

import uvicorn

from sessionguard.core.config import ConfigManager, ServiceConfig
from sessionguard.core.config.paths import ConfigFsPaths
from sessionguard.core.crypto import key_id_from_secret
from sessionguard.core.error_reporter import ErrorReporter, ErrorReporterConfig
from sessionguard.core.errors import ConfigError
from sessionguard.core.events import EventLogger
from sessionguard.core.logger import setup_logging
from sessionguard.core.sessions.orchestrator import HeartbeatOrchestrator
from sessionguard.core.store import build_store


def build_app(cfg: ServiceConfig, logger):  # noqa: ANN001
    from sessionguard.web.api import create_app

    log_dir = cfg.logging.log_dir
    event_logger = EventLogger(os.path.join(log_dir, "events.jsonl"))
    reporter = ErrorReporter(
        path=os.path.join(log_dir, "errors.jsonl"),
        cfg=ErrorReporterConfig(include_tracebacks=cfg.logging.include_tracebacks),
    )
    store = build_store(cfg.storage, logger=logger)
    orchestrator = HeartbeatOrchestrator(
        store=store,
        shared_key=cfg.security.shared_key.get_secret_value(),
        logger=logger.getChild("heartbeat"),
        event_logger=event_logger,
    )
    return create_app(
        orchestrator,
        logger=logger.getChild("web"),
        event_logger=event_logger,
        error_reporter=reporter,
        max_request_bytes=cfg.server.max_request_bytes,
    )


def main(argv: Optional[list[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="sessionguard: concurrent session limit heartbeat service")
    ap.add_argument("--root", default=".", help="Directory containing config/app.json.")
    ap.add_argument("--config", default=None, help="Explicit config file path (overrides --root).")
    ap.add_argument("--host", default=None, help="Bind host (overrides config).")
    ap.add_argument("--port", type=int, default=None, help="Bind port (overrides config).")
    ap.add_argument("--check-config", action="store_true", help="Validate configuration and exit.")
    args = ap.parse_args(argv)

    try:
        cfg = ConfigManager(fs=ConfigFsPaths(args.root), path=args.config).load()
    except ConfigError as e:
        print(f"Configuration error: {e.user_message} {e.to_dict().get('context')}", file=sys.stderr)
        raise SystemExit(2)

    logger = setup_logging(cfg.logging.log_dir, cfg.logging.level)
    if cfg.security.uses_default_key():
        logger.warning("SHARED_KEY not set; using the default shared key. Do not run like this in production.")
    logger.info(
        f"Config loaded: storage={cfg.storage.backend or 'memory (default)'} key_id={key_id_from_secret(cfg.security.shared_key.get_secret_value())}"
    )
    if args.check_config:
        return

    app = build_app(cfg, logger)
    host = args.host or cfg.server.host
    port = int(args.port or cfg.server.port)
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level=cfg.logging.level.lower()))
    logger.info(f"Heartbeat service listening on http://{host}:{port}")
    server.run()


if __name__ == "__main__":
    main()
