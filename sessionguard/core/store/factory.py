from __future__ import annotations

import logging
from typing import Optional

from sessionguard.core.config.models import StorageConfig
from sessionguard.core.errors import ConfigError
from sessionguard.core.store.base import SessionStore
from sessionguard.core.store.memory import MemorySessionStore
from sessionguard.core.store.sqlite import SqliteSessionStore


def build_store(cfg: StorageConfig, *, logger: Optional[logging.Logger] = None) -> SessionStore:
    backend = cfg.backend
    if backend is None:
        if logger is not None:
            logger.warning("Storage not set (STORAGE=memory|sqlite). Using in-memory storage; sessions are lost on restart.")
        return MemorySessionStore()
    if backend == "memory":
        return MemorySessionStore()
    if backend == "sqlite":
        return SqliteSessionStore(path=cfg.sqlite_path, timeout_seconds=cfg.sqlite_timeout_seconds)
    raise ConfigError("Unknown storage backend.", backend=backend)
