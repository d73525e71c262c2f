"""Shared error codes and user-facing messages."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
NOT_AVAILABLE = "NOT_AVAILABLE"
SETUP_FAILED = "SETUP_FAILED"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
NO_SPEECH = "NO_SPEECH"
NO_ACTIVE_TARGET = "NO_ACTIVE_TARGET"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Microphone and speech recognition permissions are required",
    NOT_AVAILABLE: "Speech recognition not available",
    SETUP_FAILED: "Failed to start recording",
    NETWORK_ERROR: "Network failed, please retry.",
    AUTH_FAILED: "API key is invalid.",
    NO_SPEECH: "No speech detected",
    NO_ACTIVE_TARGET: "No active input target, result kept in clipboard.",
    ASR_PROTOCOL_ERROR: "Recognition failed",
}

BECAME_UNAVAILABLE_MESSAGE = "Speech recognition became unavailable"

# Recognizer errors containing these are an expected outcome of short or
# silent recordings, not a malfunction.
_BENIGN_MARKERS = ("no speech", "no audio")


class SetupError(RuntimeError):
    """Audio capture or recognition could not be configured or started."""


def is_benign_recognition_error(message: str) -> bool:
    low = message.lower()
    return any(marker in low for marker in _BENIGN_MARKERS)


def setup_failed_message(reason: object) -> str:
    return f"{ERROR_MESSAGES[SETUP_FAILED]}: {reason}"


def recognition_failed_message(reason: str) -> str:
    return f"{ERROR_MESSAGES[ASR_PROTOCOL_ERROR]}: {reason}"
