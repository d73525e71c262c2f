from __future__ import annotations

import time
from queue import Queue
from typing import Callable

import pytest

from errors import SetupError
from models import (
    AudioFrame,
    RecognitionEvent,
    RecognitionKind,
    RecordingState,
    SpeechAuthorization,
    StateKind,
)
from transcription_service import DEFAULT_FALLBACK_TIMEOUT_S, TranscriptionSession


class FakePermissions:
    def __init__(
        self,
        microphone: bool = True,
        speech: SpeechAuthorization = SpeechAuthorization.AUTHORIZED,
    ) -> None:
        self.microphone = microphone
        self.speech = speech
        self.calls = 0

    def request_microphone_permission(self) -> bool:
        self.calls += 1
        return self.microphone

    def request_speech_permission(self) -> SpeechAuthorization:
        return self.speech


class FakeRecorder:
    def __init__(self, fail_on_start: bool = False) -> None:
        self.fail_on_start = fail_on_start
        self.open_streams = 0
        self.max_open_streams = 0
        self.starts = 0
        self.stops = 0
        self.deactivations = 0
        self.queue: Queue[AudioFrame | None] | None = None

    @property
    def is_open(self) -> bool:
        return self.open_streams > 0

    def activate(self) -> None:
        pass

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        if self.fail_on_start:
            raise SetupError("device busy")
        self.starts += 1
        self.queue = audio_queue
        self.open_streams += 1
        self.max_open_streams = max(self.max_open_streams, self.open_streams)

    def stop(self) -> None:
        if self.open_streams:
            self.stops += 1
            self.open_streams -= 1

    def deactivate(self) -> None:
        self.deactivations += 1
        self.open_streams = 0


class FakeRecognizer:
    def __init__(self, available: bool = True) -> None:
        self.is_available = available
        self.availability_handler: Callable[[bool], None] | None = None
        self.callbacks: list[Callable[[RecognitionEvent], None]] = []
        self.end_audio_calls = 0
        self.cancel_calls = 0

    def set_availability_handler(self, handler) -> None:  # noqa: ANN001
        self.availability_handler = handler

    def start(self, audio_queue, on_event) -> None:  # noqa: ANN001
        self.callbacks.append(on_event)

    def end_audio(self) -> None:
        self.end_audio_calls += 1

    def cancel(self) -> None:
        self.cancel_calls += 1

    def emit(self, event: RecognitionEvent, session_index: int = -1) -> None:
        self.callbacks[session_index](event)

    def partial(self, text: str) -> None:
        self.emit(RecognitionEvent(kind=RecognitionKind.PARTIAL.value, text=text))

    def final(self, text: str) -> None:
        self.emit(RecognitionEvent(kind=RecognitionKind.FINAL.value, text=text))

    def error(self, message: str) -> None:
        self.emit(RecognitionEvent(kind=RecognitionKind.ERROR.value, message=message))

    def set_available(self, available: bool) -> None:
        self.is_available = available
        assert self.availability_handler is not None
        self.availability_handler(available)


def _wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _make_session(
    permissions: FakePermissions | None = None,
    recorder: FakeRecorder | None = None,
    recognizer: FakeRecognizer | None = None,
    fallback_timeout_s: float = 0.1,
    transitions: list[tuple[RecordingState, RecordingState]] | None = None,
    partials: list[str] | None = None,
) -> TranscriptionSession:
    return TranscriptionSession(
        permissions=permissions or FakePermissions(),
        recorder=recorder or FakeRecorder(),
        recognizer=recognizer or FakeRecognizer(),
        fallback_timeout_s=fallback_timeout_s,
        on_state_change=(lambda f, t: transitions.append((f, t))) if transitions is not None else None,
        on_partial=partials.append if partials is not None else None,
    )


def _recording_session(**kwargs) -> TranscriptionSession:  # noqa: ANN003
    session = _make_session(**kwargs)
    assert session.request_permissions() is True
    session.start()
    assert session.state == RecordingState.recording()
    return session


# ---------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------

def test_request_permissions_granted_when_both_allowed() -> None:
    session = _make_session()

    assert session.request_permissions() is True
    assert session.has_permission is True
    assert session.state == RecordingState.idle()


@pytest.mark.parametrize(
    "microphone,speech",
    [
        (False, SpeechAuthorization.AUTHORIZED),
        (True, SpeechAuthorization.DENIED),
        (True, SpeechAuthorization.RESTRICTED),
        (True, SpeechAuthorization.NOT_DETERMINED),
    ],
)
def test_request_permissions_denied(microphone: bool, speech: SpeechAuthorization) -> None:
    session = _make_session(permissions=FakePermissions(microphone=microphone, speech=speech))

    assert session.request_permissions() is False
    assert session.has_permission is False
    assert session.state.kind == StateKind.ERROR
    assert "permissions are required" in session.state.message


def test_start_without_permission_requests_and_reports_error() -> None:
    permissions = FakePermissions(microphone=False)
    recorder = FakeRecorder()
    session = _make_session(permissions=permissions, recorder=recorder)

    session.start()

    assert permissions.calls == 1
    assert session.state.kind == StateKind.ERROR
    assert "permissions are required" in session.state.message
    assert recorder.starts == 0


def test_permission_revoked_during_recording_keeps_recording() -> None:
    permissions = FakePermissions()
    session = _recording_session(permissions=permissions)

    permissions.microphone = False
    session.request_permissions()

    assert session.has_permission is False
    assert session.state == RecordingState.recording()
    session.cancel()


def test_request_permissions_is_idempotent() -> None:
    session = _make_session()
    session.request_permissions()
    session.request_permissions()

    assert session.has_permission is True
    assert session.state == RecordingState.idle()


# ---------------------------------------------------------------
# Start
# ---------------------------------------------------------------

def test_start_when_recognizer_unavailable() -> None:
    recorder = FakeRecorder()
    session = _make_session(recorder=recorder, recognizer=FakeRecognizer(available=False))
    session.request_permissions()

    session.start()

    assert session.state == RecordingState.error("Speech recognition not available")
    assert recorder.starts == 0


def test_setup_failure_leaves_no_stream_open() -> None:
    recorder = FakeRecorder(fail_on_start=True)
    recognizer = FakeRecognizer()
    session = _make_session(recorder=recorder, recognizer=recognizer)
    session.request_permissions()

    session.start()

    assert session.state.kind == StateKind.ERROR
    assert session.state.message.startswith("Failed to start recording")
    assert "device busy" in session.state.message
    assert recorder.is_open is False
    assert recognizer.cancel_calls == 1


def test_start_clears_cached_partial_text() -> None:
    recognizer = FakeRecognizer()
    session = _recording_session(recognizer=recognizer)
    recognizer.partial("left over")
    assert session.latest_partial_text == "left over"

    session.start()

    assert session.latest_partial_text == ""
    session.cancel()


def test_restart_while_recording_keeps_single_stream() -> None:
    recorder = FakeRecorder()
    recognizer = FakeRecognizer()
    session = _recording_session(recorder=recorder, recognizer=recognizer)

    session.start()

    assert recorder.starts == 2
    assert recorder.stops == 1
    assert recorder.max_open_streams == 1
    assert recorder.open_streams == 1
    assert recognizer.end_audio_calls == 1
    assert recognizer.cancel_calls == 1
    assert session.state == RecordingState.recording()
    session.cancel()


def test_events_from_replaced_session_are_ignored() -> None:
    recognizer = FakeRecognizer()
    session = _recording_session(recognizer=recognizer)
    session.start()
    session.stop()

    recognizer.emit(
        RecognitionEvent(kind=RecognitionKind.FINAL.value, text="old"),
        session_index=0,
    )

    assert session.state == RecordingState.processing()
    assert session.latest_partial_text == ""
    session.cancel()


# ---------------------------------------------------------------
# Stop / final results
# ---------------------------------------------------------------

def test_happy_path_completes_with_final_text() -> None:
    recorder = FakeRecorder()
    recognizer = FakeRecognizer()
    transitions: list[tuple[RecordingState, RecordingState]] = []
    partials: list[str] = []
    session = _recording_session(
        recorder=recorder,
        recognizer=recognizer,
        transitions=transitions,
        partials=partials,
    )

    recognizer.partial("hello")
    recognizer.partial("hello wor")
    session.stop()
    assert session.state == RecordingState.processing()
    recognizer.final("hello world")

    assert session.state == RecordingState.completed("hello world")
    assert partials == ["hello", "hello wor"]
    assert recorder.is_open is False
    assert recognizer.end_audio_calls == 1
    assert recognizer.cancel_calls == 1
    assert recorder.deactivations >= 1
    assert (RecordingState.recording(), RecordingState.processing()) in transitions
    assert (RecordingState.processing(), RecordingState.completed("hello world")) in transitions


def test_stop_does_not_cancel_recognition() -> None:
    recognizer = FakeRecognizer()
    session = _recording_session(recognizer=recognizer, fallback_timeout_s=5.0)

    session.stop()

    assert recognizer.cancel_calls == 0
    assert recognizer.end_audio_calls == 1
    session.cancel()


def test_stop_when_idle_is_noop() -> None:
    recognizer = FakeRecognizer()
    session = _make_session(recognizer=recognizer)

    session.stop()

    assert session.state == RecordingState.idle()
    assert recognizer.end_audio_calls == 0


def test_fallback_completes_with_empty_text_when_recognizer_is_silent() -> None:
    session = _recording_session(fallback_timeout_s=0.05)

    session.stop()

    assert _wait_for(lambda: session.state.kind == StateKind.COMPLETED)
    assert session.state == RecordingState.completed("")


def test_fallback_uses_trimmed_latest_partial() -> None:
    recognizer = FakeRecognizer()
    session = _recording_session(recognizer=recognizer, fallback_timeout_s=0.05)
    recognizer.partial("  lift heavy  ")
    recognizer.partial("")

    session.stop()

    assert _wait_for(lambda: session.state.kind == StateKind.COMPLETED)
    assert session.state == RecordingState.completed("lift heavy")
    assert recognizer.cancel_calls == 1


def test_fallback_waits_for_timeout() -> None:
    session = _recording_session(fallback_timeout_s=0.3)

    started = time.time()
    session.stop()
    time.sleep(0.1)
    assert session.state == RecordingState.processing()

    assert _wait_for(lambda: session.state.kind == StateKind.COMPLETED, timeout=2.0)
    assert time.time() - started >= 0.3


def test_default_fallback_timeout_is_two_seconds() -> None:
    assert DEFAULT_FALLBACK_TIMEOUT_S == 2.0


def test_final_while_recording_does_not_complete() -> None:
    recognizer = FakeRecognizer()
    session = _recording_session(recognizer=recognizer, fallback_timeout_s=0.05)

    recognizer.final("squats done")

    assert session.state == RecordingState.recording()
    assert session.latest_partial_text == "squats done"

    session.stop()
    assert _wait_for(lambda: session.state.kind == StateKind.COMPLETED)
    assert session.state == RecordingState.completed("squats done")


def test_exactly_one_terminal_outcome() -> None:
    recognizer = FakeRecognizer()
    transitions: list[tuple[RecordingState, RecordingState]] = []
    session = _recording_session(
        recognizer=recognizer,
        transitions=transitions,
        fallback_timeout_s=0.05,
    )

    recognizer.partial("bench")
    session.stop()
    recognizer.final("bench press")
    time.sleep(0.15)  # past the fallback deadline
    recognizer.error("connection reset")

    terminal = [t for _, t in transitions if t.is_terminal]
    assert terminal == [RecordingState.completed("bench press")]


# ---------------------------------------------------------------
# Errors
# ---------------------------------------------------------------

@pytest.mark.parametrize("message", ["No speech detected", "NO AUDIO in request"])
def test_no_speech_error_completes_with_cached_text(message: str) -> None:
    recognizer = FakeRecognizer()
    session = _recording_session(recognizer=recognizer, fallback_timeout_s=5.0)
    recognizer.partial("three sets ")
    session.stop()

    recognizer.error(message)

    assert session.state == RecordingState.completed("three sets")
    assert recognizer.cancel_calls == 1


def test_no_speech_error_without_partials_completes_empty() -> None:
    recognizer = FakeRecognizer()
    session = _recording_session(recognizer=recognizer, fallback_timeout_s=5.0)
    session.stop()

    recognizer.error("No speech detected")

    assert session.state == RecordingState.completed("")


def test_recognition_error_moves_to_error_and_cleans_up() -> None:
    recorder = FakeRecorder()
    recognizer = FakeRecognizer()
    session = _recording_session(recorder=recorder, recognizer=recognizer)

    recognizer.error("boom")

    assert session.state == RecordingState.error("Recognition failed: boom")
    assert recorder.is_open is False
    assert recognizer.cancel_calls == 1


def test_stale_callbacks_after_completion_are_ignored() -> None:
    recognizer = FakeRecognizer()
    transitions: list[tuple[RecordingState, RecordingState]] = []
    session = _recording_session(recognizer=recognizer, transitions=transitions)
    session.stop()
    recognizer.final("done")
    seen = list(transitions)

    recognizer.error("late failure")
    recognizer.final("something else")

    assert session.state == RecordingState.completed("done")
    assert transitions == seen


def test_error_after_error_keeps_first_message() -> None:
    recognizer = FakeRecognizer()
    transitions: list[tuple[RecordingState, RecordingState]] = []
    session = _recording_session(recognizer=recognizer, transitions=transitions)
    recognizer.error("boom")
    seen = list(transitions)

    recognizer.error("second failure")

    assert session.state == RecordingState.error("Recognition failed: boom")
    assert transitions == seen


def test_stale_error_after_cancel_is_ignored() -> None:
    recognizer = FakeRecognizer()
    session = _recording_session(recognizer=recognizer)
    session.cancel()

    recognizer.error("late failure")

    assert session.state == RecordingState.idle()


def test_recognizer_becoming_unavailable_while_recording() -> None:
    recorder = FakeRecorder()
    recognizer = FakeRecognizer()
    session = _recording_session(recorder=recorder, recognizer=recognizer)

    recognizer.set_available(False)

    assert session.state == RecordingState.error("Speech recognition became unavailable")
    assert recorder.is_open is False


def test_availability_change_when_idle_is_ignored() -> None:
    recognizer = FakeRecognizer()
    session = _make_session(recognizer=recognizer)

    recognizer.set_available(False)

    assert session.state == RecordingState.idle()


# ---------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------

def test_cancel_discards_transcript() -> None:
    recognizer = FakeRecognizer()
    recorder = FakeRecorder()
    session = _recording_session(recorder=recorder, recognizer=recognizer, fallback_timeout_s=0.05)
    recognizer.partial("keep this?")

    session.cancel()

    assert session.state == RecordingState.idle()
    assert session.latest_partial_text == ""
    assert recorder.is_open is False
    time.sleep(0.15)  # the disarmed fallback must not complete
    assert session.state == RecordingState.idle()


def test_cancel_after_completion_resets_to_idle() -> None:
    recognizer = FakeRecognizer()
    session = _recording_session(recognizer=recognizer)
    session.stop()
    recognizer.final("notes")

    session.cancel()

    assert session.state == RecordingState.idle()


def test_cancel_from_idle_is_noop() -> None:
    transitions: list[tuple[RecordingState, RecordingState]] = []
    session = _make_session(transitions=transitions)

    session.cancel()

    assert session.state == RecordingState.idle()
    assert transitions == []


# ---------------------------------------------------------------
# Reset after completion
# ---------------------------------------------------------------

def test_reset_completed_returns_to_idle() -> None:
    recognizer = FakeRecognizer()
    session = _recording_session(recognizer=recognizer)
    session.stop()
    recognizer.final("done")

    assert session.reset_completed(session.generation) is True
    assert session.state == RecordingState.idle()
    assert session.latest_partial_text == ""


def test_reset_completed_leaves_newer_recording_alone() -> None:
    recorder = FakeRecorder()
    recognizer = FakeRecognizer()
    session = _recording_session(recorder=recorder, recognizer=recognizer)
    session.stop()
    recognizer.final("set one")
    finished_generation = session.generation

    session.start()
    recognizer.partial("set two")

    assert session.reset_completed(finished_generation) is False
    assert session.state == RecordingState.recording()
    assert recorder.is_open is True
    assert session.latest_partial_text == "set two"
    session.cancel()


def test_reset_completed_ignores_non_completed_state() -> None:
    recognizer = FakeRecognizer()
    session = _recording_session(recognizer=recognizer)
    recognizer.error("boom")

    assert session.reset_completed(session.generation) is False
    assert session.state == RecordingState.error("Recognition failed: boom")
