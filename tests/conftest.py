from __future__ import annotations

import pytest

from sessionguard.core.events import EventLogger
from sessionguard.core.sessions.orchestrator import HeartbeatOrchestrator

from .helpers.fakes import FakeClock, RecordingStore, SequentialIds

SHARED_KEY = "test-shared-key"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def event_logger(tmp_path):
    return EventLogger(str(tmp_path / "events.jsonl"))


@pytest.fixture
def orchestrator(store, clock, event_logger):
    return HeartbeatOrchestrator(
        store=store,
        shared_key=SHARED_KEY,
        event_logger=event_logger,
        now_fn=clock.now,
        id_factory=SequentialIds(),
    )
