from __future__ import annotations

import copy
import errno
import logging
import os
import threading
from pathlib import Path
from typing import Any, Mapping

import yaml

from calsync.models import AppConfig, default_app_config


logger = logging.getLogger(__name__)

ENV_OVERRIDES = {
    "ICS_URL": ("feed", "url"),
    "GOOGLE_CLIENT_ID": ("google", "client_id"),
    "GOOGLE_CLIENT_SECRET": ("google", "client_secret"),
    "GOOGLE_REFRESH_TOKEN": ("google", "refresh_token"),
    "CALENDAR_ID": ("calendar", "calendar_id"),
    "CALENDAR_NAME": ("calendar", "name"),
}
SECRET_FIELDS = (("google", "client_secret"), ("google", "refresh_token"))
MASK = "***"


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect the non-empty environment values that shadow the config file."""
    overrides: dict[str, Any] = {}
    for env_key, (section, field_name) in ENV_OVERRIDES.items():
        value = str(environ.get(env_key, "") or "").strip()
        if value:
            overrides.setdefault(section, {})[field_name] = value
    interval_ms = str(environ.get("SYNC_INTERVAL_MS", "") or "").strip()
    if interval_ms:
        try:
            overrides.setdefault("sync", {})["interval_seconds"] = int(interval_ms) // 1000
        except ValueError:
            logger.warning("Ignoring non-numeric SYNC_INTERVAL_MS=%r", interval_ms)
    return overrides


def _write_yaml(path: Path, data: dict[str, Any]) -> None:
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, sort_keys=False, allow_unicode=True, default_flow_style=False)


class ConfigManager:
    def __init__(self, config_path: str | os.PathLike[str], environ: Mapping[str, str] | None = None) -> None:
        self.config_path = Path(config_path)
        self.environ = os.environ if environ is None else environ
        self._lock = threading.RLock()
        if not self.config_path.exists():
            logger.info("Writing default config to %s", self.config_path)
            self.save(default_app_config())

    def _read_file(self) -> dict[str, Any]:
        with self.config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        return data if isinstance(data, dict) else {}

    def load(self) -> AppConfig:
        with self._lock:
            return AppConfig.from_dict(_deep_merge(self._read_file(), env_overrides(self.environ)))

    def save(self, config: AppConfig) -> None:
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            data = config.to_dict()
            staged = self.config_path.with_name(self.config_path.name + ".tmp")
            _write_yaml(staged, data)
            try:
                staged.replace(self.config_path)
            except OSError as exc:
                # Bind-mounted single files cannot be replaced atomically.
                if exc.errno != errno.EBUSY:
                    raise
                _write_yaml(self.config_path, data)
                staged.unlink(missing_ok=True)

    def update(self, payload: dict[str, Any]) -> AppConfig:
        # Only the file contents are merged and saved, so env values stay out of it.
        with self._lock:
            stored = AppConfig.from_dict(self._read_file()).to_dict()
            self.save(AppConfig.from_dict(_deep_merge(stored, payload)))
            return self.load()

    def masked(self) -> dict[str, Any]:
        data = self.load().to_dict()
        for section, field_name in SECRET_FIELDS:
            if data.get(section, {}).get(field_name):
                data[section][field_name] = MASK
        return data
