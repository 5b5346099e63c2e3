from __future__ import annotations

import json
import os
import threading
import time
import traceback
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sessionguard.core.events import redact
from sessionguard.core.errors import ConfigError, SessionGuardError, StoreUnavailableError


@dataclass
class ErrorReporterConfig:
    include_tracebacks: bool = False


class ErrorReporter:
    def __init__(self, *, path: str = os.path.join("logs", "errors.jsonl"), cfg: Optional[ErrorReporterConfig] = None):
        self.path = path
        self.cfg = cfg or ErrorReporterConfig()
        self._lock = threading.Lock()
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def report_exception(self, exc: BaseException, *, trace_id: str, subsystem: str, context: Optional[Dict[str, Any]] = None) -> SessionGuardError:
        err = normalize_exception(exc, subsystem=subsystem, context=context or {})
        self.write_error(err, trace_id=trace_id, subsystem=subsystem, internal_exc=exc)
        return err

    def write_error(self, err: SessionGuardError, *, trace_id: str, subsystem: str, internal_exc: Optional[BaseException] = None) -> None:
        entry: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "trace_id": trace_id,
            "subsystem": subsystem,
            "error_code": err.code,
            "severity": err.severity.value,
            "recoverable": bool(err.recoverable),
            "user_message": err.user_message,
            "safe_context": redact(err.context or {}),
        }
        if self.cfg.include_tracebacks and internal_exc is not None:
            entry["internal_context"] = {
                "traceback": "".join(traceback.format_exception(type(internal_exc), internal_exc, internal_exc.__traceback__, limit=30))
            }
        line = json.dumps(entry, ensure_ascii=False, default=str)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def tail(self, n: int = 20) -> list[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            lines = f.readlines()
        out = []
        for line in lines[-max(1, int(n)) :]:
            try:
                out.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return out


def normalize_exception(exc: BaseException, *, subsystem: str, context: Dict[str, Any]) -> SessionGuardError:
    # Passthrough
    if isinstance(exc, SessionGuardError):
        return exc

    msg = str(exc)
    ctx = dict(context or {})

    if subsystem == "config":
        return ConfigError("Configuration error.", error=msg, **ctx)
    if subsystem == "store":
        return StoreUnavailableError(error=msg, **ctx)

    # Generic safe error
    return SessionGuardError(code="unknown_error", user_message="Something went wrong.", context=ctx)
