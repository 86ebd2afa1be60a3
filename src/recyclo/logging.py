"""JSONL audit events for recyclo."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

from .config import resolve_state_dir
from .fs.atomic import append_jsonl

_LOGGER = logging.getLogger("recyclo.logging")


def log_event(event: dict[str, Any]) -> None:
    payload = _build_payload(event)
    try:
        append_jsonl(_log_path("events.log"), payload)
    except OSError as exc:
        # the trash operation already happened; a missing audit line is not fatal
        _LOGGER.warning("寫入事件紀錄失敗：%s", exc)


def _build_payload(source: dict[str, Any]) -> dict[str, Any]:
    payload = {key: _jsonable(value) for key, value in source.items()}
    payload.setdefault("ts", _now_iso())
    payload.setdefault("level", "INFO")
    payload.setdefault("pid", os.getpid())
    return payload


def _jsonable(value: Any) -> Any:
    # undecodable path bytes are kept as \x escapes so the line stays valid UTF-8
    if isinstance(value, bytes):
        return value.decode("utf-8", "backslashreplace")
    if isinstance(value, str):
        return os.fsencode(value).decode("utf-8", "backslashreplace")
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _log_path(filename: str) -> Path:
    return resolve_state_dir() / "logs" / filename


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")
