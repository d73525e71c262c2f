"""Simple JSON-based config store."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

API_KEY_ENV = "DASHSCOPE_API_KEY"
DEFAULT_HOTKEY = "Key.alt_l"
DEFAULT_FALLBACK_TIMEOUT_S = 2.0
DEFAULT_MODEL = "paraformer-realtime-v2"


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "voice_notes" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        data = self._read_all()
        key = str(data.get("api_key", ""))
        return key or os.getenv(API_KEY_ENV, "")

    def set_api_key(self, key: str) -> None:
        data = self._read_all()
        data["api_key"] = key
        self._write_all(data)

    def get_hotkey(self) -> str:
        data = self._read_all()
        return str(data.get("hotkey", DEFAULT_HOTKEY))

    def set_hotkey(self, hotkey: str) -> None:
        data = self._read_all()
        data["hotkey"] = hotkey
        self._write_all(data)

    def get_fallback_timeout_s(self) -> float:
        data = self._read_all()
        try:
            value = float(data.get("fallback_timeout_s", DEFAULT_FALLBACK_TIMEOUT_S))
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid fallback_timeout_s in %s", self._path)
            return DEFAULT_FALLBACK_TIMEOUT_S
        return value if value > 0 else DEFAULT_FALLBACK_TIMEOUT_S

    def set_fallback_timeout_s(self, seconds: float) -> None:
        data = self._read_all()
        data["fallback_timeout_s"] = seconds
        self._write_all(data)

    def get_model(self) -> str:
        data = self._read_all()
        return str(data.get("model", DEFAULT_MODEL))

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Config at %s is unreadable, using defaults", self._path)
            return {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
