from __future__ import annotations

import json

import pytest

from sessionguard.core.config import ConfigManager, load_config
from sessionguard.core.config.paths import ConfigFsPaths
from sessionguard.core.errors import ConfigError


def _write_app_json(tmp_path, data) -> None:
    d = tmp_path / "config"
    d.mkdir(parents=True, exist_ok=True)
    (d / "app.json").write_text(json.dumps(data), encoding="utf-8")


def test_defaults_without_file_or_env(tmp_path):
    cfg = load_config(str(tmp_path), env={})
    assert cfg.server.port == 8000
    assert cfg.storage.backend is None
    assert cfg.security.uses_default_key()


def test_file_values_are_used(tmp_path):
    _write_app_json(tmp_path, {"server": {"port": 9001}, "storage": {"backend": "sqlite", "sqlite_path": "x.db"}})
    cfg = load_config(str(tmp_path), env={})
    assert cfg.server.port == 9001
    assert cfg.storage.backend == "sqlite"
    assert cfg.storage.sqlite_path == "x.db"


def test_env_overrides_file(tmp_path):
    _write_app_json(tmp_path, {"storage": {"backend": "sqlite"}, "logging": {"level": "INFO"}})
    env = {"SHARED_KEY": "s3cret", "STORAGE": "memory", "SESSIONGUARD_PORT": "8123", "SESSIONGUARD_LOG_LEVEL": "debug", "SESSIONGUARD_HOST": ""}
    cfg = load_config(str(tmp_path), env=env)
    assert cfg.security.shared_key.get_secret_value() == "s3cret"
    assert not cfg.security.uses_default_key()
    assert cfg.storage.backend == "memory"
    assert cfg.server.port == 8123
    assert cfg.server.host == "127.0.0.1"
    assert cfg.logging.level == "DEBUG"


def test_shared_key_not_in_repr(tmp_path):
    cfg = load_config(str(tmp_path), env={"SHARED_KEY": "s3cret"})
    assert "s3cret" not in repr(cfg)


@pytest.mark.parametrize(
    "data,env",
    [
        ({"storage": {"backend": "redis"}}, {}),
        ({}, {"STORAGE": "mongo"}),
        ({"server": {"port": 0}}, {}),
        ({"unknown_section": {}}, {}),
    ],
)
def test_invalid_config_raises(tmp_path, data, env):
    _write_app_json(tmp_path, data)
    with pytest.raises(ConfigError) as ei:
        load_config(str(tmp_path), env=env)
    assert ei.value.code == "config_error"


def test_corrupt_file_raises(tmp_path):
    d = tmp_path / "config"
    d.mkdir()
    (d / "app.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(tmp_path), env={})


def test_get_before_load_raises(tmp_path):
    with pytest.raises(ConfigError):
        ConfigManager(fs=ConfigFsPaths(str(tmp_path)), env={}).get()
