from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class HeartbeatRequest(BaseModel):
    heartbeat_token: str = Field(min_length=1, max_length=8192)
    progress: Optional[Any] = None


class HeartbeatResponse(BaseModel):
    heartbeat_token: str


class ErrorResponse(BaseModel):
    error: str
