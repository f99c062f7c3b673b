from __future__ import annotations

import copy
import errno
import logging
import os
import threading
from pathlib import Path
from typing import Any, Mapping

import yaml

from stridecal.models import AppConfig, default_app_config


logger = logging.getLogger(__name__)

# (environment variable, config section, key)
ENV_OVERRIDES = [
    ("STRAVA_CLIENT_ID", "strava", "client_id"),
    ("STRAVA_CLIENT_SECRET", "strava", "client_secret"),
    ("STRAVA_VERIFY_TOKEN", "strava", "verify_token"),
    ("GOOGLE_CLIENT_ID", "google", "client_id"),
    ("GOOGLE_CLIENT_SECRET", "google", "client_secret"),
    ("STRIDECAL_USERS_DB", "storage", "users_db_path"),
    ("STRIDECAL_ADMIN_TOKEN", "server", "admin_token"),
    ("LOG_LEVEL", "logging", "level"),
]

SECRET_FIELDS = [
    ("strava", "client_secret"),
    ("strava", "verify_token"),
    ("google", "client_secret"),
    ("server", "admin_token"),
]


def _apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    merged = copy.deepcopy(data)
    for env_name, section, key in ENV_OVERRIDES:
        value = environ.get(env_name)
        if value is None or not value.strip():
            continue
        if not isinstance(merged.get(section), dict):
            merged[section] = {}
        merged[section][key] = value.strip()
    return merged


class ConfigManager:
    def __init__(self, config_path: str | os.PathLike[str], environ: Mapping[str, str] | None = None) -> None:
        self.config_path = Path(config_path)
        self.environ = os.environ if environ is None else environ
        self._lock = threading.RLock()
        self._ensure_exists()

    def _ensure_exists(self) -> None:
        if self.config_path.exists():
            return
        logger.info("Writing default config to %s", self.config_path)
        self.save(default_app_config())

    def load(self) -> AppConfig:
        with self._lock:
            with self.config_path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config root in {self.config_path} must be a mapping.")
            return AppConfig.from_dict(_apply_env_overrides(data, self.environ))

    def save(self, config: AppConfig) -> None:
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            config_dict = config.to_dict()
            tmp_path = self.config_path.with_suffix(self.config_path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(config_dict, handle, sort_keys=False, default_flow_style=False)
            try:
                tmp_path.replace(self.config_path)
            except OSError as exc:
                # Bind-mounted single files cannot be replaced atomically.
                if exc.errno != errno.EBUSY:
                    raise
                with self.config_path.open("w", encoding="utf-8") as handle:
                    yaml.safe_dump(config_dict, handle, sort_keys=False, default_flow_style=False)
                tmp_path.unlink(missing_ok=True)

    def masked(self) -> dict[str, Any]:
        config = self.load().to_dict()
        for section, key in SECRET_FIELDS:
            if config.get(section, {}).get(key):
                config[section][key] = "***"
        return config
