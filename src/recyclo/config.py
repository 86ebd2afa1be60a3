"""Configuration helpers for recyclo."""

from __future__ import annotations

import os
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from .fs.atomic import atomic_write_text

DEFAULT_CONFIG: dict[str, Any] = {
    "recyclo": {
        "data_home": None,
    },
    "trash": {
        "home_fallback": False,
        "max_name_attempts": 100,
        "refuse_system_paths": True,
        "verify_copies": True,
    },
    "list": {
        "sort": "original_path",
    },
    "logging": {
        "level": "WARNING",
        "events": True,
    },
}

SORT_KEYS = ("original_path", "deleted_at", "trash")


def read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise RuntimeError(f"讀取設定檔失敗：{path}") from exc
    if not isinstance(data, dict):
        raise RuntimeError(f"設定檔格式錯誤（需為對應表）：{path}")
    return data


def write_yaml(path: Path, data: dict[str, Any]) -> None:
    try:
        atomic_write_text(path, yaml.safe_dump(data, allow_unicode=True, sort_keys=False), encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(f"寫入設定檔失敗：{path}") from exc


def set_config_value(config: dict[str, Any], key_path: str, value: Any) -> dict[str, Any]:
    parts = key_path.split(".")
    cursor = config
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
    return config


def get_config_value(config: dict[str, Any], key_path: str) -> Any:
    cursor: Any = config
    for part in key_path.split("."):
        if not isinstance(cursor, dict) or part not in cursor:
            raise KeyError(f"找不到設定鍵：{key_path}")
        cursor = cursor[part]
    return cursor


def _assign_sources(value: Any, source: str) -> Any:
    if isinstance(value, dict):
        return {key: _assign_sources(val, source) for key, val in value.items()}
    return source


def _merge_with_sources(
    base: dict[str, Any],
    sources: dict[str, Any],
    updates: Mapping[str, Any],
    source: str,
) -> None:
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict) and isinstance(sources.get(key), dict):
            _merge_with_sources(base[key], sources[key], value, source)
        else:
            base[key] = value
            sources[key] = _assign_sources(value, source)


def annotate_config(effective: Any, sources: Any) -> Any:
    if isinstance(effective, dict) and isinstance(sources, dict):
        return {key: annotate_config(effective[key], sources.get(key)) for key in effective}
    return {"value": effective, "source": sources}


@dataclass
class ConfigResolution:
    effective: dict[str, Any]
    sources: dict[str, Any]

    def annotated(self) -> dict[str, Any]:
        return annotate_config(self.effective, self.sources)


class ConfigLoader:
    def __init__(self, config_dir: Path | None = None) -> None:
        self.config_dir = config_dir or resolve_config_dir()

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.yaml"

    def load_global(self) -> dict[str, Any]:
        return read_yaml(self.config_path)

    def resolve(self, cli_overrides: Mapping[str, Any] | None = None) -> ConfigResolution:
        effective = deepcopy(DEFAULT_CONFIG)
        sources = _assign_sources(DEFAULT_CONFIG, "default")

        _merge_with_sources(effective, sources, self.load_global(), "global")

        if cli_overrides:
            _merge_with_sources(effective, sources, cli_overrides, "cli")

        _validate(effective, self.config_path)
        return ConfigResolution(effective=effective, sources=sources)

    def set_value(self, key_path: str, value: Any) -> None:
        config = self.load_global()
        set_config_value(config, key_path, value)
        write_yaml(self.config_path, config)


def _validate(config: dict[str, Any], origin: Path) -> None:
    sort = (config.get("list") or {}).get("sort")
    if sort not in SORT_KEYS:
        raise RuntimeError(f"設定值無效：list.sort 必須是 {'、'.join(SORT_KEYS)} 之一（{origin}）")
    attempts = (config.get("trash") or {}).get("max_name_attempts")
    if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
        raise RuntimeError(f"設定值無效：trash.max_name_attempts 必須是正整數（{origin}）")


def _env_dir(name: str) -> Path | None:
    # XDG base directories must be absolute; relative values are ignored
    value = os.environ.get(name)
    if value and os.path.isabs(value):
        return Path(value)
    return None


def resolve_config_dir() -> Path:
    env_path = os.environ.get("RECYCLO_HOME")
    if env_path:
        return Path(env_path).expanduser()
    base = _env_dir("XDG_CONFIG_HOME") or Path("~/.config").expanduser()
    return base / "recyclo"


def resolve_state_dir() -> Path:
    env_path = os.environ.get("RECYCLO_HOME")
    if env_path:
        return Path(env_path).expanduser()
    base = _env_dir("XDG_STATE_HOME") or Path("~/.local/state").expanduser()
    return base / "recyclo"


def resolve_data_home(config: Mapping[str, Any] | None = None) -> bytes:
    """Return ``$XDG_DATA_HOME`` (or its override) as raw bytes."""
    override = None
    if isinstance(config, Mapping):
        override = (config.get("recyclo") or {}).get("data_home")
    if override:
        return os.fsencode(os.path.abspath(os.path.expanduser(str(override))))
    data_home = _env_dir("XDG_DATA_HOME") or Path("~/.local/share").expanduser()
    return os.fsencode(os.path.abspath(data_home))
