from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from sessionguard.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class SessionGuardError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- Core types ----
class ConfigError(SessionGuardError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class InvalidTokenError(SessionGuardError):
    def __init__(self, user_message: str = "Heartbeat token is not valid.", **ctx: Any):
        super().__init__("invalid_token", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class LimitExceededError(SessionGuardError):
    def __init__(self, user_message: str = "You have exceeded the maximum allowed number of devices.", **ctx: Any):
        super().__init__("limit_exceeded", user_message, severity=Severity.INFO, recoverable=True, context=ctx)


class StoreUnavailableError(SessionGuardError):
    def __init__(self, user_message: str = "Session store is unavailable.", **ctx: Any):
        super().__init__("store_unavailable", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


# HTTP status per error code; anything else is a 500.
HTTP_STATUS_BY_CODE: Dict[str, int] = {
    "invalid_token": 406,
    "limit_exceeded": 412,
    "store_unavailable": 503,
}


def http_status_for(err: SessionGuardError) -> int:
    return HTTP_STATUS_BY_CODE.get(err.code, 500)
