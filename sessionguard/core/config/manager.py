from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from sessionguard.core.config.io import read_json_file
from sessionguard.core.config.models import ServiceConfig
from sessionguard.core.config.paths import ConfigFsPaths
from sessionguard.core.errors import ConfigError

# env var -> (section, field)
ENV_OVERRIDES: Dict[str, tuple[str, str]] = {
    "SHARED_KEY": ("security", "shared_key"),
    "STORAGE": ("storage", "backend"),
    "SESSIONGUARD_SQLITE_PATH": ("storage", "sqlite_path"),
    "SESSIONGUARD_HOST": ("server", "host"),
    "SESSIONGUARD_PORT": ("server", "port"),
    "SESSIONGUARD_LOG_DIR": ("logging", "log_dir"),
    "SESSIONGUARD_LOG_LEVEL": ("logging", "level"),
}


class ConfigManager:
    """
    Loads ``config/app.json`` (optional) and applies environment overrides.
    Environment wins over the file; empty env values are ignored.
    """

    def __init__(
        self,
        *,
        fs: Optional[ConfigFsPaths] = None,
        path: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.fs = fs or ConfigFsPaths(".")
        self.path = path or self.fs.app
        self.env = os.environ if env is None else env
        self.logger = logger
        self._cfg: Optional[ServiceConfig] = None

    def _read_file(self) -> Dict[str, Any]:
        rr = read_json_file(self.path)
        if rr.ok:
            return rr.data
        if rr.error == "missing":
            return {}
        raise ConfigError("Configuration file could not be read.", path=self.path, error=rr.error)

    def _apply_env(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in raw.items()}
        for var, (section, field) in ENV_OVERRIDES.items():
            value = self.env.get(var)
            if value is None or str(value).strip() == "":
                continue
            block = merged.get(section)
            if not isinstance(block, dict):
                block = {}
            block[field] = value.strip().upper() if field == "level" else value.strip()
            merged[section] = block
        return merged

    def load(self) -> ServiceConfig:
        raw = self._apply_env(self._read_file())
        try:
            cfg = ServiceConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigError("Invalid configuration.", path=self.path, errors=e.errors(include_url=False)) from e
        if cfg.security.uses_default_key() and self.logger:
            self.logger.warning("SHARED_KEY not set; using the default shared key. Do not run like this in production.")
        self._cfg = cfg
        return cfg

    def get(self) -> ServiceConfig:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg


def load_config(root: str = ".", *, path: Optional[str] = None, env: Optional[Mapping[str, str]] = None, logger=None) -> ServiceConfig:  # noqa: ANN001
    return ConfigManager(fs=ConfigFsPaths(root), path=path, env=env, logger=logger).load()
