from __future__ import annotations

import json
import logging

import pytest
from fastapi.testclient import TestClient

from app import build_app
from sessionguard.core.config import load_config
from sessionguard.core.crypto import decode_token, encode_token
from sessionguard.core.error_reporter import ErrorReporter
from sessionguard.core.sessions.orchestrator import HeartbeatOrchestrator
from sessionguard.core.store import MemorySessionStore
from sessionguard.web.api import create_app
from sessionguard.web.middleware import TRACE_HEADER

from .conftest import SHARED_KEY
from .helpers.fakes import FailingStore, make_claims, make_record


@pytest.fixture
def client(orchestrator, event_logger, tmp_path):
    app = create_app(
        orchestrator,
        event_logger=event_logger,
        error_reporter=ErrorReporter(path=str(tmp_path / "errors.jsonl")),
        max_request_bytes=2048,
    )
    return TestClient(app)


def test_healthcheck_is_empty_200(client):
    r = client.get("/healthcheck")
    assert r.status_code == 200
    assert r.content == b""
    assert r.headers.get(TRACE_HEADER)


def test_heartbeat_accepted(client, store):
    token = encode_token(make_claims(), SHARED_KEY)
    r = client.post("/heartbeat", json={"heartbeat_token": token, "progress": {"pos": 5}})
    assert r.status_code == 200
    new_token = r.json()["heartbeat_token"]
    assert decode_token(new_token, SHARED_KEY).session_id == "s1"
    assert store.get_progress("u1", "asset-1") == {"pos": 5}


@pytest.mark.parametrize(
    "body",
    [
        {"heartbeat_token": "v1.tampered"},
        {"heartbeat_token": ""},
        {},
        {"heartbeat_token": 123},
    ],
)
def test_invalid_token_is_406(client, store, body):
    r = client.post("/heartbeat", json=body)
    assert r.status_code == 406
    assert r.json() == {"error": "Heartbeat token is not valid."}
    assert store.batches == []


def test_non_json_body_is_406(client):
    r = client.post("/heartbeat", content=b"not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 406


def test_limit_exceeded_is_412(client, store):
    store.seed(
        "u1",
        {
            "a": make_record(-300, -30, hits=3),
            "b": make_record(-200, -30, hits=3),
            "c": make_record(-100, -30, hits=3),
        },
    )
    claims = make_claims(session_id="c", timestamp=make_record(-100, -30).timestamp, session_limit=2, checking_threshold=2)
    r = client.post("/heartbeat", json={"heartbeat_token": encode_token(claims, SHARED_KEY)})
    assert r.status_code == 412
    assert r.json() == {"error": "You have exceeded the maximum allowed number of devices."}


def test_oversized_body_rejected(client):
    r = client.post("/heartbeat", json={"heartbeat_token": "x" * 4096})
    assert r.status_code == 413


def test_store_unavailable_is_503(clock, tmp_path):
    orch = HeartbeatOrchestrator(store=FailingStore(fail_fetch=True), shared_key=SHARED_KEY, now_fn=clock.now)
    errors = tmp_path / "errors.jsonl"
    c = TestClient(create_app(orch, error_reporter=ErrorReporter(path=str(errors))))
    r = c.post("/heartbeat", json={"heartbeat_token": encode_token(make_claims(), SHARED_KEY)})
    assert r.status_code == 503
    assert "error" in r.json()
    entry = json.loads(errors.read_text(encoding="utf-8").splitlines()[-1])
    assert entry["error_code"] == "store_unavailable"


def test_request_events_written(client, event_logger):
    client.get("/healthcheck")
    events = [e["event"] for e in event_logger.read_all()]
    assert events == ["web.request", "web.response"]


def test_build_app_end_to_end(tmp_path):
    cfg = load_config(
        str(tmp_path),
        env={"SHARED_KEY": "prod-key", "STORAGE": "sqlite", "SESSIONGUARD_SQLITE_PATH": str(tmp_path / "s.db"), "SESSIONGUARD_LOG_DIR": str(tmp_path / "logs")},
    )
    c = TestClient(build_app(cfg, logging.getLogger("sessionguard.test")))
    token = encode_token(make_claims(user_id="e2e"), "prod-key")
    r = c.post("/heartbeat", json={"heartbeat_token": token})
    assert r.status_code == 200
    assert decode_token(r.json()["heartbeat_token"], "prod-key").session_id
    assert (tmp_path / "logs" / "events.jsonl").exists()


class _BrokenStore(MemorySessionStore):
    def fetch_user_session_data(self, user_id):
        raise RuntimeError("backend exploded")


def test_unexpected_error_is_json_500_and_reported(clock, tmp_path):
    orch = HeartbeatOrchestrator(store=_BrokenStore(), shared_key=SHARED_KEY, now_fn=clock.now)
    errors = tmp_path / "errors.jsonl"
    c = TestClient(create_app(orch, error_reporter=ErrorReporter(path=str(errors))), raise_server_exceptions=False)
    r = c.post("/heartbeat", json={"heartbeat_token": encode_token(make_claims(), SHARED_KEY)})
    assert r.status_code == 500
    assert r.json() == {"error": "Something went wrong."}
    entry = json.loads(errors.read_text(encoding="utf-8").splitlines()[-1])
    assert entry["error_code"] == "unknown_error"
    assert entry["subsystem"] == "web"


def test_huge_heartbeat_cycle_is_accepted(client, store):
    record = make_record(-300, -30, hits=3)
    store.seed("u1", {"s": record})
    claims = make_claims(session_id="s", timestamp=record.timestamp, heartbeat_cycle=1e300)
    r = client.post("/heartbeat", json={"heartbeat_token": encode_token(claims, SHARED_KEY)})
    assert r.status_code == 200
    assert set(store.fetch_user_session_data("u1").sessions) == {"s", "s1"}
