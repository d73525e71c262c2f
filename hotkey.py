"""Push-to-talk hotkey adapter based on pynput."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)

CANCEL_KEY_NAME = "Key.esc"


class PushToTalkHotkey:
    """Calls ``on_press`` when the hotkey goes down and ``on_release`` when it
    comes back up. Pressing Esc while held calls ``on_cancel`` instead of
    ``on_release``.
    """

    def __init__(self, hotkey_name: str = "Key.alt_l") -> None:
        self._hotkey_name = hotkey_name
        self._listener: Optional[object] = None
        self._pressed = False
        self._cancelled = False
        self._lock = threading.Lock()
        self._on_press: Optional[Callable[[], None]] = None
        self._on_release: Optional[Callable[[], None]] = None
        self._on_cancel: Optional[Callable[[], None]] = None

    def start(
        self,
        on_press: Callable[[], None],
        on_release: Callable[[], None],
        on_cancel: Optional[Callable[[], None]] = None,
    ) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        self._on_press = on_press
        self._on_release = on_release
        self._on_cancel = on_cancel
        self._listener = keyboard.Listener(on_press=self.key_down, on_release=self.key_up)
        self._listener.start()
        logger.info("Push-to-talk bound to %s", self._hotkey_name)

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None

    def key_down(self, key: object) -> None:
        name = str(key)
        if name == CANCEL_KEY_NAME:
            with self._lock:
                if not self._pressed or self._cancelled:
                    return
                self._cancelled = True
            if self._on_cancel:
                self._on_cancel()
            return
        if name != self._hotkey_name:
            return
        with self._lock:
            if self._pressed:
                return
            self._pressed = True
            self._cancelled = False
        if self._on_press:
            self._on_press()

    def key_up(self, key: object) -> None:
        if str(key) != self._hotkey_name:
            return
        with self._lock:
            if not self._pressed:
                return
            self._pressed = False
            cancelled = self._cancelled
        if not cancelled and self._on_release:
            self._on_release()
