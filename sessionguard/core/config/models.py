from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    max_request_bytes: int = Field(default=16384, ge=256, le=1_048_576)


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    # None: not configured, falls back to the in-memory store with a warning
    backend: Optional[Literal["memory", "sqlite"]] = None
    sqlite_path: str = "data/sessions.sqlite3"
    sqlite_timeout_seconds: float = Field(default=5.0, gt=0, le=60)


DEFAULT_SHARED_KEY = "SHAREDKEY"


class SecurityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    shared_key: SecretStr = SecretStr(DEFAULT_SHARED_KEY)

    def uses_default_key(self) -> bool:
        return self.shared_key.get_secret_value() == DEFAULT_SHARED_KEY


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    log_dir: str = "logs"
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    include_tracebacks: bool = False


class ServiceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
