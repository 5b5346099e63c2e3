from sessionguard.core.store.base import PostActionQueue, SessionStore
from sessionguard.core.store.factory import build_store
from sessionguard.core.store.memory import MemorySessionStore
from sessionguard.core.store.sqlite import SqliteSessionStore

__all__ = ["MemorySessionStore", "PostActionQueue", "SessionStore", "SqliteSessionStore", "build_store"]
