from __future__ import annotations

import json

from sessionguard.core.error_reporter import ErrorReporter, normalize_exception
from sessionguard.core.errors import (
    InvalidTokenError,
    LimitExceededError,
    SessionGuardError,
    StoreUnavailableError,
    http_status_for,
)


def test_error_codes_map_to_http_status():
    assert http_status_for(InvalidTokenError()) == 406
    assert http_status_for(LimitExceededError()) == 412
    assert http_status_for(StoreUnavailableError()) == 503
    assert http_status_for(SessionGuardError(code="other", user_message="x")) == 500


def test_to_dict_redacts_context():
    err = InvalidTokenError(heartbeat_token="v1.secret", reason="InvalidTag")
    d = err.to_dict()
    assert d["code"] == "invalid_token"
    assert d["context"]["heartbeat_token"] == "***REDACTED***"
    assert d["context"]["reason"] == "InvalidTag"


def test_unknown_exception_normalized_and_redacted(tmp_path):
    p = tmp_path / "errors.jsonl"
    r = ErrorReporter(path=str(p))
    try:
        raise RuntimeError("boom")
    except RuntimeError as e:
        err = r.report_exception(e, trace_id="t1", subsystem="web", context={"shared_key": "SECRET", "x": 1})
        assert err.code == "unknown_error"
    obj = json.loads(p.read_text(encoding="utf-8").splitlines()[-1])
    assert obj["trace_id"] == "t1"
    assert obj["subsystem"] == "web"
    assert "SECRET" not in json.dumps(obj)


def test_store_subsystem_normalizes_to_store_unavailable():
    err = normalize_exception(OSError("disk gone"), subsystem="store", context={})
    assert isinstance(err, StoreUnavailableError)
    assert err.context["error"] == "disk gone"


def test_tail_returns_last_entries(tmp_path):
    r = ErrorReporter(path=str(tmp_path / "errors.jsonl"))
    for i in range(3):
        r.write_error(LimitExceededError(n=i), trace_id=f"t{i}", subsystem="heartbeat")
    assert [e["trace_id"] for e in r.tail(2)] == ["t1", "t2"]
