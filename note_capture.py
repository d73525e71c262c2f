"""Turns finished transcription sessions into text notes."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from errors import NO_ACTIVE_TARGET
from interfaces import PasteService
from models import RecordingState, StateKind
from transcription_service import TranscriptionSession

logger = logging.getLogger(__name__)

NoteCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str], None]


def append_transcript(draft: str, text: str) -> str:
    """Append ``text`` to ``draft`` separated by a single space."""
    text = text.strip()
    if not text:
        return draft
    if not draft:
        return text
    return f"{draft} {text}"


class NoteCapture:
    """Drives a session from push-to-talk and collects completed text.

    The caller owns the session; pass this object's ``handle_state_change``
    as the session's ``on_state_change`` callback.
    """

    def __init__(
        self,
        paste_service: Optional[PasteService] = None,
        on_note: Optional[NoteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._session: Optional[TranscriptionSession] = None
        self._paste_service = paste_service
        self._on_note = on_note
        self._on_error = on_error
        self._draft = ""
        self._lock = threading.Lock()

    def bind(self, session: TranscriptionSession) -> None:
        self._session = session

    @property
    def draft(self) -> str:
        return self._draft

    def clear_draft(self) -> None:
        with self._lock:
            self._draft = ""

    def begin(self) -> None:
        session = self._require_session()
        if not session.has_permission and not session.request_permissions():
            return
        session.start()

    def finish(self) -> None:
        self._require_session().stop()

    def discard(self) -> None:
        self._require_session().cancel()

    def handle_state_change(self, from_state: RecordingState, to_state: RecordingState) -> None:
        if to_state.kind == StateKind.COMPLETED:
            # Called under the session lock: paste and reset on another thread.
            session = self._require_session()
            threading.Thread(
                target=self._complete,
                args=(to_state.text, session.generation),
                daemon=True,
            ).start()
        elif to_state.kind == StateKind.ERROR:
            logger.warning("Transcription error: %s", to_state.message)
            if self._on_error:
                self._on_error(to_state.kind.value, to_state.message)

    def _complete(self, text: str, generation: int) -> None:
        try:
            self._deliver(text)
        finally:
            self._require_session().reset_completed(generation)

    def _deliver(self, text: str) -> None:
        if not text.strip():
            logger.info("Empty transcript, nothing to add")
            return
        with self._lock:
            self._draft = append_transcript(self._draft, text)
        if self._on_note:
            self._on_note(text)
        if self._paste_service is None:
            return
        result = self._paste_service.paste_text(text)
        if not result.success:
            logger.warning("Could not paste note: %s", result.reason)
            if self._on_error:
                self._on_error(NO_ACTIVE_TARGET, result.reason)

    def _require_session(self) -> TranscriptionSession:
        if self._session is None:
            raise RuntimeError("NoteCapture is not bound to a session")
        return self._session
