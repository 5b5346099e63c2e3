from __future__ import annotations

import contextvars
import uuid
from typing import Optional

_TRACE_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("sessionguard.trace_id", default=None)


def new_trace_id() -> str:
    return uuid.uuid4().hex


def current_trace_id(default: Optional[str] = None) -> Optional[str]:
    trace_id = _TRACE_ID.get()
    return trace_id if trace_id else default


def set_trace_id(trace_id: Optional[str]) -> contextvars.Token:
    return _TRACE_ID.set(str(trace_id) if trace_id else None)


def reset_trace_id(token: contextvars.Token) -> None:
    try:
        _TRACE_ID.reset(token)
    except ValueError:
        # token created in another context
        pass


def resolve_trace_id(trace_id: Optional[str] = None) -> str:
    if trace_id:
        return str(trace_id)
    existing = current_trace_id()
    if existing:
        return existing
    return new_trace_id()

