"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class StateKind(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class RecordingState:
    """The session's only observable state.

    ``text`` is set for COMPLETED and ``message`` for ERROR; the other kinds
    always carry empty payloads, so dataclass equality compares them by kind.
    """

    kind: StateKind
    text: str = ""
    message: str = ""

    @classmethod
    def idle(cls) -> RecordingState:
        return cls(StateKind.IDLE)

    @classmethod
    def recording(cls) -> RecordingState:
        return cls(StateKind.RECORDING)

    @classmethod
    def processing(cls) -> RecordingState:
        return cls(StateKind.PROCESSING)

    @classmethod
    def completed(cls, text: str) -> RecordingState:
        return cls(StateKind.COMPLETED, text=text)

    @classmethod
    def error(cls, message: str) -> RecordingState:
        return cls(StateKind.ERROR, message=message)

    @property
    def is_terminal(self) -> bool:
        return self.kind in (StateKind.COMPLETED, StateKind.ERROR)

    @property
    def is_active(self) -> bool:
        return self.kind in (StateKind.RECORDING, StateKind.PROCESSING)

    def __str__(self) -> str:
        if self.kind == StateKind.COMPLETED:
            return f"COMPLETED({self.text!r})"
        if self.kind == StateKind.ERROR:
            return f"ERROR({self.message!r})"
        return self.kind.value


class SpeechAuthorization(str, Enum):
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"
    NOT_DETERMINED = "not_determined"


class RecognitionKind(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass
class RecognitionEvent:
    kind: str
    text: str = ""
    code: str = ""
    message: str = ""
    retryable: bool = False

    @property
    def is_final(self) -> bool:
        return self.kind == RecognitionKind.FINAL.value


@dataclass
class PasteResult:
    success: bool
    reason: str
    clipboard_restored: bool
