"""Desktop permission checks for microphone and speech recognition."""

from __future__ import annotations

import logging

from interfaces import ConfigStore
from models import SpeechAuthorization

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class DesktopPermissionProvider:
    """Desktop stand-in for the mobile permission prompts.

    There is no OS dialog to show here. The microphone counts as granted when
    the host exposes a default input device. Speech recognition counts as
    authorized once a recognition API key is configured.
    """

    def __init__(self, config_store: ConfigStore, device: int | str | None = None) -> None:
        self._config_store = config_store
        self._device = device

    def request_microphone_permission(self) -> bool:
        if sd is None:
            logger.warning("sounddevice is not installed, microphone unavailable")
            return False
        try:
            info = sd.query_devices(self._device, kind="input")
        except Exception as exc:
            logger.info("No usable input device: %s", exc)
            return False
        return int(info.get("max_input_channels", 0)) > 0

    def request_speech_permission(self) -> SpeechAuthorization:
        if dashscope is None:
            return SpeechAuthorization.RESTRICTED
        if not self._config_store.get_api_key():
            return SpeechAuthorization.NOT_DETERMINED
        return SpeechAuthorization.AUTHORIZED
