from __future__ import annotations

from pathlib import Path

import pytest

from sessionguard.core.crypto import decode_token, encode_token
from sessionguard.core.errors import StoreUnavailableError
from sessionguard.core.sessions.models import DeleteSession, SessionRecord, SetSession, UpdateProgress
from sessionguard.core.sessions.orchestrator import HeartbeatOrchestrator, HeartbeatStage

from .conftest import SHARED_KEY
from .helpers.fakes import FailingStore, make_claims, make_record


def _token(**overrides):
    return encode_token(make_claims(**overrides), SHARED_KEY)


def test_invalid_token_returns_406_without_store_calls(orchestrator, store, event_logger):
    result = orchestrator.process("v1.not-a-token")
    assert result.status == 406
    assert result.body == {"error": "Heartbeat token is not valid."}
    assert store.fetches == []
    assert store.batches == []
    assert result.stages == [HeartbeatStage.RECEIVED, HeartbeatStage.RESPONDED]
    assert [e["event"] for e in event_logger.read_all()] == ["heartbeat.invalid_token"]


def test_first_heartbeat_creates_session_and_issues_token(orchestrator, store, clock):
    result = orchestrator.process(_token(), progress={"position": 42})
    assert result.status == 200
    claims = decode_token(result.body["heartbeat_token"], SHARED_KEY)
    assert claims.session_id == "s1"
    assert claims.timestamp == clock.now()
    assert claims.started_at == clock.now()
    assert store.fetch_user_session_data("u1").sessions["s1"] == SessionRecord(started_at=clock.now(), timestamp=clock.now(), hit_counter=1)
    assert store.get_progress("u1", "asset-1") == {"position": 42}
    assert result.stages == list(HeartbeatStage)


def test_heartbeat_chain_increments_hit_counter(orchestrator, store, clock):
    token = orchestrator.process(_token()).body["heartbeat_token"]
    for expected_hits in (2, 3):
        clock.advance(30)
        result = orchestrator.process(token)
        assert result.status == 200
        token = result.body["heartbeat_token"]
        assert decode_token(token, SHARED_KEY).session_id == "s1"
        assert store.fetch_user_session_data("u1").sessions["s1"].hit_counter == expected_hits


def test_replayed_token_gets_new_session(orchestrator, store, clock):
    first = orchestrator.process(_token()).body["heartbeat_token"]
    clock.advance(30)
    orchestrator.process(first)
    clock.advance(30)
    replay = orchestrator.process(first)
    assert replay.status == 200
    assert replay.decision.reasons.not_expected is True
    assert decode_token(replay.body["heartbeat_token"], SHARED_KEY).session_id == "s2"


def test_heartbeat_too_early_scenario(orchestrator, clock):
    token = orchestrator.process(_token(heartbeat_cycle=30, cycle_lower_tolerance=5)).body["heartbeat_token"]
    clock.advance(5)
    result = orchestrator.process(token)
    assert result.status == 200
    assert result.decision.reasons.too_early is True
    assert decode_token(result.body["heartbeat_token"], SHARED_KEY).session_id == "s2"


def test_limit_exceeded_returns_412_and_still_flushes_prunes(orchestrator, store, clock, event_logger):
    store.seed(
        "u1",
        {
            "old": make_record(-300, -30, hits=5),
            "mid": make_record(-200, -30, hits=5),
            "new": make_record(-100, -30, hits=5),
            "stale": make_record(-900, -600, hits=5),
        },
    )
    token = _token(session_id="new", timestamp=make_record(-100, -30).timestamp, session_limit=2, reject_strategy="MOST_RECENT")
    result = orchestrator.process(token, progress=10)
    assert result.status == 412
    assert result.body == {"error": "You have exceeded the maximum allowed number of devices."}
    assert store.applied == [DeleteSession(user_id="u1", session_id="stale")]
    sessions = store.fetch_user_session_data("u1").sessions
    assert set(sessions) == {"old", "mid", "new"}
    assert sessions["new"].hit_counter == 5
    assert store.get_progress("u1", "asset-1") is None
    assert HeartbeatStage.TOKEN_ISSUED not in result.stages
    assert HeartbeatStage.MUTATIONS_FLUSHED in result.stages
    rejected = [e for e in event_logger.read_all() if e["event"] == "heartbeat.rejected"]
    assert rejected and rejected[0]["details"]["session_over_limit"] is True


def test_accepted_flush_is_one_batch_per_request(orchestrator, store):
    store.seed("u1", {"stale": make_record(-900, -600, hits=1)})
    orchestrator.process(_token(), progress=1)
    assert len(store.batches) == 1
    user_id, batch = store.batches[0]
    assert user_id == "u1"
    assert [type(a) for a in batch] == [DeleteSession, SetSession, UpdateProgress]


def test_store_fetch_failure_propagates(clock):
    orch = HeartbeatOrchestrator(store=FailingStore(fail_fetch=True), shared_key=SHARED_KEY, now_fn=clock.now)
    with pytest.raises(StoreUnavailableError):
        orch.process(_token())


def test_store_flush_failure_is_normalized(clock):
    orch = HeartbeatOrchestrator(store=FailingStore(fail_apply=True), shared_key=SHARED_KEY, now_fn=clock.now)
    with pytest.raises(StoreUnavailableError):
        orch.process(_token())


def test_event_log_never_contains_tokens(orchestrator, event_logger):
    token = _token()
    orchestrator.process(token)
    orchestrator.process("garbage")
    text = Path(event_logger.path).read_text(encoding="utf-8")
    assert token not in text
