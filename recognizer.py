"""ASR recognizer adapter using DashScope realtime speech recognition.

Audio frames are drained from the session queue by a worker thread and pushed
into a ``dashscope.audio.asr.Recognition`` stream as they arrive, so partial
transcripts flow back through ``on_event`` while the user is still talking.
A ``None`` sentinel on the queue marks end of input: the worker then stops the
stream, which flushes the remaining sentences and delivers a single FINAL.
"""

from __future__ import annotations

import logging
import os
import threading
from queue import Empty, Full, Queue
from typing import Callable, Optional

from errors import (
    ASR_PROTOCOL_ERROR,
    AUTH_FAILED,
    ERROR_MESSAGES,
    NETWORK_ERROR,
    NO_SPEECH,
    is_benign_recognition_error,
)
from interfaces import AvailabilityHandler
from models import AudioFrame, RecognitionEvent, RecognitionKind

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)

EventCallback = Callable[[RecognitionEvent], None]


def _is_sentence_end(sentence: dict) -> bool:
    if "sentence_end" in sentence:
        return bool(sentence["sentence_end"])
    return sentence.get("end_time") is not None


def to_error_event(message: str) -> RecognitionEvent:
    """Map an SDK/network failure message to a standard error event."""
    low = message.lower()
    if is_benign_recognition_error(message) or "no_valid_audio" in low:
        code = NO_SPEECH
        retryable = False
        message = f"{ERROR_MESSAGES[NO_SPEECH]}: {message}"
    elif "401" in low or "auth" in low or "api key" in low:
        code = AUTH_FAILED
        retryable = False
    elif "timeout" in low or "network" in low or "connection" in low:
        code = NETWORK_ERROR
        retryable = True
    else:
        code = ASR_PROTOCOL_ERROR
        retryable = True
    return RecognitionEvent(
        kind=RecognitionKind.ERROR.value,
        code=code,
        message=message,
        retryable=retryable,
    )


class RecognitionTask:
    """One streaming recognition run.

    Also serves as the DashScope callback object. Emits zero or more PARTIAL
    events followed by exactly one FINAL or ERROR, and nothing after
    ``cancel()``.
    """

    def __init__(
        self,
        audio_queue: Queue[AudioFrame | None],
        on_event: EventCallback,
        api_key: str,
        model: str,
        sentence_separator: str = " ",
    ) -> None:
        self._audio_queue = audio_queue
        self._on_event = on_event
        self._api_key = api_key
        self._model = model
        self._separator = sentence_separator
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._terminal_sent = False
        self._sentences: list[str] = []
        self._current = ""
        self._thread = threading.Thread(target=self._worker, daemon=True)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()

    def end_audio(self) -> None:
        try:
            self._audio_queue.put_nowait(None)
            return
        except Full:
            pass
        # Full queue: give up the oldest frame so the marker still gets through.
        try:
            self._audio_queue.get_nowait()
            self._audio_queue.put_nowait(None)
            logger.warning("Audio queue full, dropped a frame to deliver end-of-input")
        except (Empty, Full):
            logger.warning("Audio queue full, end-of-input marker not delivered")

    def cancel(self) -> None:
        self._cancelled.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    # ------------------------------------------------------------------
    # DashScope callback interface
    # ------------------------------------------------------------------

    def on_open(self) -> None:
        logger.debug("Recognition stream opened")

    def on_close(self) -> None:
        logger.debug("Recognition stream closed")

    def on_event(self, result: object) -> None:
        get_sentence = getattr(result, "get_sentence", None)
        sentence = get_sentence() if callable(get_sentence) else None
        sentences = sentence if isinstance(sentence, list) else [sentence]
        changed = False
        for item in sentences:
            if not isinstance(item, dict):
                continue
            text = str(item.get("text", "")).strip()
            with self._lock:
                if _is_sentence_end(item):
                    if text:
                        self._sentences.append(text)
                    self._current = ""
                else:
                    self._current = text
            changed = True
        if changed:
            self._emit(RecognitionEvent(kind=RecognitionKind.PARTIAL.value, text=self.transcript))

    def on_complete(self) -> None:
        self._emit_terminal(RecognitionEvent(kind=RecognitionKind.FINAL.value, text=self.transcript))

    def on_error(self, result: object) -> None:
        message = str(getattr(result, "message", "") or result)
        self._emit_terminal(to_error_event(message))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @property
    def transcript(self) -> str:
        with self._lock:
            parts = list(self._sentences)
            if self._current:
                parts.append(self._current)
        return self._separator.join(parts).strip()

    def _emit(self, event: RecognitionEvent) -> None:
        with self._lock:
            if self._cancelled.is_set() or self._terminal_sent:
                return
        self._on_event(event)

    def _emit_terminal(self, event: RecognitionEvent) -> None:
        with self._lock:
            if self._cancelled.is_set() or self._terminal_sent:
                return
            self._terminal_sent = True
        self._on_event(event)

    def _open_stream(self, sample_rate: int) -> object:
        dashscope.api_key = self._api_key
        recognition = dashscope.audio.asr.Recognition(
            model=self._model,
            format="pcm",
            sample_rate=sample_rate,
            callback=self,
        )
        recognition.start()
        return recognition

    def _worker(self) -> None:  # noqa: C901
        """Feed frames into the stream until the sentinel, then flush."""
        if dashscope is None:
            self._emit_terminal(
                RecognitionEvent(
                    kind=RecognitionKind.ERROR.value,
                    code=ASR_PROTOCOL_ERROR,
                    message="dashscope is not installed",
                    retryable=False,
                )
            )
            return
        if not self._api_key:
            self._emit_terminal(
                RecognitionEvent(
                    kind=RecognitionKind.ERROR.value,
                    code=AUTH_FAILED,
                    message="No API key configured",
                    retryable=False,
                )
            )
            return

        recognition = None
        try:
            while not self._cancelled.is_set():
                try:
                    frame = self._audio_queue.get(timeout=0.2)
                except Empty:
                    continue
                if frame is None:  # Sentinel
                    break
                if recognition is None:
                    recognition = self._open_stream(frame.sample_rate)
                recognition.send_audio_frame(frame.pcm16_bytes)

            if self._cancelled.is_set():
                return
            if recognition is None:
                self._emit_terminal(to_error_event("no audio captured"))
                return
            stream, recognition = recognition, None
            stream.stop()
            # stop() waits for the server to finish; emit FINAL ourselves if
            # the completion callback did not.
            self.on_complete()
        except Exception as exc:
            logger.warning("Recognition stream failed: %s", exc)
            self._emit_terminal(to_error_event(str(exc)))
        finally:
            if recognition is not None:
                try:
                    recognition.stop()
                except Exception as exc:
                    logger.debug("Ignoring error while closing cancelled stream: %s", exc)


class DashscopeRecognizerAdapter:
    def __init__(
        self,
        api_key: str,
        model: str = "paraformer-realtime-v2",
        sentence_separator: str = " ",
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._sentence_separator = sentence_separator
        self._task: Optional[RecognitionTask] = None
        self._availability_handler: Optional[AvailabilityHandler] = None

    @property
    def is_available(self) -> bool:
        return dashscope is not None and bool(self._resolve_api_key())

    def set_availability_handler(self, handler: Optional[AvailabilityHandler]) -> None:
        self._availability_handler = handler

    def update_api_key(self, key: str) -> None:
        """Swap credentials; later sessions use the new key."""
        was_available = self.is_available
        self._api_key = key
        now_available = self.is_available
        if was_available != now_available:
            logger.info("Speech recognition availability changed: %s", now_available)
            handler = self._availability_handler
            if handler is not None:
                handler(now_available)

    def start(
        self,
        audio_queue: Queue[AudioFrame | None],
        on_event: EventCallback,
    ) -> RecognitionTask:
        previous = self._task
        if previous is not None and not previous.cancelled:
            logger.debug("Cancelling previous recognition task before restart")
            previous.cancel()
        task = RecognitionTask(
            audio_queue,
            on_event,
            api_key=self._resolve_api_key(),
            model=self._model,
            sentence_separator=self._sentence_separator,
        )
        self._task = task
        task.start()
        return task

    def end_audio(self) -> None:
        task = self._task
        if task is not None:
            task.end_audio()

    def cancel(self) -> None:
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()

    def _resolve_api_key(self) -> str:
        return self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
