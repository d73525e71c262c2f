"""Delivers finished notes into the focused window through the clipboard."""

from __future__ import annotations

import logging
import sys
import time

from errors import NO_ACTIVE_TARGET
from models import PasteResult

try:
    import pyperclip
except Exception:  # pragma: no cover
    pyperclip = None  # type: ignore

try:
    from pynput.keyboard import Controller, Key
except Exception:  # pragma: no cover
    Controller = None  # type: ignore
    Key = None  # type: ignore

logger = logging.getLogger(__name__)


def _paste_modifier() -> object:
    return Key.cmd if sys.platform == "darwin" else Key.ctrl


class ClipboardPasteService:
    def __init__(self, restore_delay_s: float = 0.1, restore_clipboard: bool = True) -> None:
        self._restore_delay_s = restore_delay_s
        self._restore_clipboard = restore_clipboard

    def paste_text(self, text: str) -> PasteResult:
        if not text.strip():
            return PasteResult(success=False, reason="empty text", clipboard_restored=True)
        if pyperclip is None or Controller is None or Key is None:
            return PasteResult(
                success=False,
                reason="clipboard/keyboard dependency missing",
                clipboard_restored=False,
            )

        previous: str | None = None
        try:
            previous = pyperclip.paste()
            pyperclip.copy(text)
            keyboard = Controller()
            with keyboard.pressed(_paste_modifier()):
                keyboard.press("v")
                keyboard.release("v")
            if not self._restore_clipboard:
                return PasteResult(success=True, reason="ok", clipboard_restored=False)
            time.sleep(self._restore_delay_s)
            pyperclip.copy(previous)
            return PasteResult(success=True, reason="ok", clipboard_restored=True)
        except Exception as exc:
            logger.warning("Paste failed: %s", exc)
            # Leave the note on the clipboard so it is not lost.
            return PasteResult(
                success=False,
                reason=f"{NO_ACTIVE_TARGET}: {exc}",
                clipboard_restored=False,
            )
