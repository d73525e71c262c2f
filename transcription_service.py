"""State-machine based transcription session.

One session covers a single capture + recognition cycle:

    IDLE -> RECORDING -> PROCESSING -> COMPLETED(text) | ERROR(message)

``cancel()`` forces IDLE from anywhere. Every mutation goes through one
re-entrant lock, so the recognizer thread, the availability notifier and the
fallback timer never race the caller. Callbacks from an older session are
recognised by their generation number and dropped.
"""

from __future__ import annotations

import logging
import threading
from queue import Queue
from typing import Callable, Optional

from errors import (
    BECAME_UNAVAILABLE_MESSAGE,
    ERROR_MESSAGES,
    NOT_AVAILABLE,
    PERMISSION_DENIED,
    is_benign_recognition_error,
    recognition_failed_message,
    setup_failed_message,
)
from interfaces import AudioCapture, PermissionProvider, SpeechRecognizer
from models import (
    AudioFrame,
    RecognitionEvent,
    RecognitionKind,
    RecordingState,
    SpeechAuthorization,
    StateKind,
)

logger = logging.getLogger(__name__)

StateCallback = Callable[[RecordingState, RecordingState], None]
PartialCallback = Callable[[str], None]

DEFAULT_FALLBACK_TIMEOUT_S = 2.0


class TranscriptionSession:
    def __init__(
        self,
        permissions: PermissionProvider,
        recorder: AudioCapture,
        recognizer: SpeechRecognizer,
        fallback_timeout_s: float = DEFAULT_FALLBACK_TIMEOUT_S,
        queue_maxsize: int = 50,
        on_state_change: Optional[StateCallback] = None,
        on_partial: Optional[PartialCallback] = None,
    ) -> None:
        self._permissions = permissions
        self._recorder = recorder
        self._recognizer = recognizer
        self._fallback_timeout_s = fallback_timeout_s
        self._queue_maxsize = queue_maxsize
        self._on_state_change = on_state_change
        self._on_partial = on_partial

        self._lock = threading.RLock()
        self._state = RecordingState.idle()
        self._has_permission = False
        self._generation = 0
        self._latest_partial_text = ""
        self._audio_queue: Optional[Queue[AudioFrame | None]] = None
        self._recognition_active = False
        self._fallback_timer: Optional[threading.Timer] = None

        self._recognizer.set_availability_handler(self._handle_availability_change)

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def has_permission(self) -> bool:
        return self._has_permission

    @property
    def latest_partial_text(self) -> str:
        return self._latest_partial_text

    @property
    def generation(self) -> int:
        return self._generation

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def request_permissions(self) -> bool:
        # Platform prompts can block, so ask outside the lock.
        speech_status = self._permissions.request_speech_permission()
        microphone_granted = self._permissions.request_microphone_permission()
        granted = bool(microphone_granted) and speech_status == SpeechAuthorization.AUTHORIZED

        with self._lock:
            self._has_permission = granted
            if not granted:
                logger.info(
                    "Permissions denied (microphone=%s, speech=%s)",
                    microphone_granted,
                    speech_status.value,
                )
                if not self._state.is_active:
                    self._transition(RecordingState.error(ERROR_MESSAGES[PERMISSION_DENIED]))
            return granted

    def start(self) -> None:
        if not self._has_permission:
            self.request_permissions()
            return

        with self._lock:
            if not self._recognizer.is_available:
                self._transition(RecordingState.error(ERROR_MESSAGES[NOT_AVAILABLE]))
                return

            if self._recorder.is_open or self._recognition_active:
                logger.debug("Tearing down previous session before restart")
                self._teardown_capture()
                self._finalize()
            self._cancel_fallback()

            self._generation += 1
            generation = self._generation
            self._latest_partial_text = ""
            self._audio_queue = Queue(maxsize=self._queue_maxsize)

            try:
                self._recorder.activate()
                self._recognition_active = True
                self._recognizer.start(
                    self._audio_queue,
                    lambda event: self._handle_recognition_event(generation, event),
                )
                self._recorder.start(self._audio_queue)
            except Exception as exc:
                logger.warning("Failed to start recording: %s", exc)
                self._finalize()
                self._transition(RecordingState.error(setup_failed_message(exc)))
                return

            self._transition(RecordingState.recording())

    def stop(self) -> None:
        with self._lock:
            if self._state.kind != StateKind.RECORDING:
                return
            self._transition(RecordingState.processing())
            # Keep recognition running so it can flush buffered audio.
            self._teardown_capture()
            self._arm_fallback(self._generation)

    def cancel(self) -> None:
        with self._lock:
            self.stop()
            self._cancel_fallback()
            self._finalize()
            self._latest_partial_text = ""
            self._transition(RecordingState.idle())

    def reset_completed(self, generation: int) -> bool:
        """Return to IDLE if session ``generation`` is still sitting in COMPLETED.

        Returns False, and leaves the state alone, once a newer session has
        started or the state has moved on.
        """
        with self._lock:
            if generation != self._generation or self._state.kind != StateKind.COMPLETED:
                logger.debug("Skipping reset of session %d, state is %s", generation, self._state)
                return False
            self._finalize()
            self._latest_partial_text = ""
            self._transition(RecordingState.idle())
            return True

    # ------------------------------------------------------------------
    # Asynchronous inputs
    # ------------------------------------------------------------------

    def _handle_recognition_event(self, generation: int, event: RecognitionEvent) -> None:
        with self._lock:
            if generation != self._generation:
                logger.debug("Dropping %s event from an earlier session", event.kind)
                return

            if event.kind == RecognitionKind.ERROR.value:
                self._handle_recognition_error(event)
                return

            text = event.text.strip()
            if text:
                self._latest_partial_text = text
                if self._on_partial and self._state.kind == StateKind.RECORDING:
                    self._on_partial(text)

            if not event.is_final:
                return
            if self._state.kind == StateKind.PROCESSING:
                self._transition(RecordingState.completed(text))
            elif self._state.kind == StateKind.RECORDING:
                logger.debug("Final result while still recording; waiting for stop()")
            self._finalize()

    def _handle_recognition_error(self, event: RecognitionEvent) -> None:
        # ERROR counts as terminal too: a second error must not replace the first.
        if self._state.is_terminal or self._state.kind == StateKind.IDLE:
            logger.debug("Ignoring stale recognition error: %s", event.message)
            self._finalize()
            return

        if is_benign_recognition_error(event.message):
            logger.info("Recognizer reported no speech, completing with cached text")
            self._transition(RecordingState.completed(self._latest_partial_text.strip()))
        else:
            logger.warning("Recognition failed: %s", event.message)
            self._transition(RecordingState.error(recognition_failed_message(event.message)))
        self._finalize()

    def _handle_availability_change(self, available: bool) -> None:
        with self._lock:
            if available or self._state.kind != StateKind.RECORDING:
                return
            self._transition(RecordingState.error(BECAME_UNAVAILABLE_MESSAGE))
            self._finalize()

    def _on_fallback_timeout(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state.kind != StateKind.PROCESSING:
                return
            logger.info(
                "No final result within %.1fs, completing with latest partial",
                self._fallback_timeout_s,
            )
            self._transition(RecordingState.completed(self._latest_partial_text.strip()))
            self._finalize()

    # ------------------------------------------------------------------
    # Resource handling
    # ------------------------------------------------------------------

    def _teardown_capture(self) -> None:
        self._safe_call(self._recorder.stop, "close capture stream")
        if self._recognition_active:
            self._safe_call(self._recognizer.end_audio, "signal end of audio")

    def _finalize(self) -> None:
        self._cancel_fallback()
        if self._recognition_active:
            self._recognition_active = False
            self._safe_call(self._recognizer.cancel, "cancel recognition")
        self._audio_queue = None
        self._safe_call(self._recorder.deactivate, "deactivate audio session")

    def _arm_fallback(self, generation: int) -> None:
        self._cancel_fallback()
        timer = threading.Timer(self._fallback_timeout_s, self._on_fallback_timeout, args=(generation,))
        timer.daemon = True
        self._fallback_timer = timer
        timer.start()

    def _cancel_fallback(self) -> None:
        timer = self._fallback_timer
        self._fallback_timer = None
        if timer is not None:
            timer.cancel()

    def _safe_call(self, fn: Callable[[], None], action: str) -> None:
        try:
            fn()
        except Exception as exc:
            logger.warning("Failed to %s: %s", action, exc)

    def _transition(self, to_state: RecordingState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug("State %s -> %s", from_state, to_state)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
