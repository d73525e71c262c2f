"""Protocol interfaces used by TranscriptionSession and NoteCapture."""

from __future__ import annotations

from queue import Queue
from typing import Callable, Optional, Protocol

from models import AudioFrame, PasteResult, RecognitionEvent, SpeechAuthorization

AvailabilityHandler = Callable[[bool], None]


class PermissionProvider(Protocol):
    def request_microphone_permission(self) -> bool: ...

    def request_speech_permission(self) -> SpeechAuthorization: ...


class AudioCapture(Protocol):
    @property
    def is_open(self) -> bool: ...

    def activate(self) -> None: ...

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None: ...

    def stop(self) -> None: ...

    def deactivate(self) -> None: ...


class SpeechRecognizer(Protocol):
    @property
    def is_available(self) -> bool: ...

    def set_availability_handler(self, handler: Optional[AvailabilityHandler]) -> None: ...

    def start(
        self,
        audio_queue: Queue[AudioFrame | None],
        on_event: Callable[[RecognitionEvent], None],
    ) -> None: ...

    def end_audio(self) -> None: ...

    def cancel(self) -> None: ...


class PasteService(Protocol):
    def paste_text(self, text: str) -> PasteResult: ...


class ConfigStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...

    def get_hotkey(self) -> str: ...

    def set_hotkey(self, hotkey: str) -> None: ...

    def get_fallback_timeout_s(self) -> float: ...

    def get_model(self) -> str: ...
