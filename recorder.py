"""Microphone recorder adapter."""

from __future__ import annotations

import logging
import threading
import time
from queue import Full, Queue
from typing import Any

from errors import SetupError
from models import AudioFrame

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class SoundDeviceRecorder:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        device: int | str | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.device = device
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self.dropped_chunks = 0
        self._audio_queue: Queue[AudioFrame | None] | None = None

    @property
    def is_open(self) -> bool:
        return self._running

    def activate(self) -> None:
        """Check that the input device accepts our capture format."""
        with self._lock:
            if sd is None:
                raise SetupError("sounddevice is not installed")
            try:
                sd.check_input_settings(
                    device=self.device,
                    channels=self.channels,
                    dtype="int16",
                    samplerate=self.sample_rate,
                )
            except Exception as exc:
                raise SetupError(f"input device unavailable: {exc}") from exc

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise SetupError("sounddevice is not installed")
            self._audio_queue = audio_queue
            self.dropped_chunks = 0
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            try:
                self._stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="int16",
                    blocksize=blocksize,
                    device=self.device,
                    callback=self._on_audio,
                )
                self._running = True
                self._stream.start()
            except Exception as exc:
                self._close_stream()
                raise SetupError(f"could not open input stream: {exc}") from exc
            logger.debug("Input stream opened (%d Hz, %d ch)", self.sample_rate, self.channels)

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._close_stream()
            if self.dropped_chunks:
                logger.warning("Dropped %d audio chunks on a full queue", self.dropped_chunks)
            logger.debug("Input stream closed")

    def deactivate(self) -> None:
        with self._lock:
            self._close_stream()
            self._audio_queue = None

    def _close_stream(self) -> None:
        self._running = False
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        audio_queue = self._audio_queue
        if not self._running or audio_queue is None:
            return
        if np is None:
            return
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        frame = AudioFrame(
            pcm16_bytes=payload,
            sample_rate=self.sample_rate,
            channels=self.channels,
            timestamp_ms=int(time.time() * 1000),
        )
        try:
            audio_queue.put_nowait(frame)
        except Full:
            self.dropped_chunks += 1
