"""Application entrypoint."""

from __future__ import annotations

import argparse
import logging
import threading

from auto_paste import ClipboardPasteService
from config import JsonConfigStore
from hotkey import PushToTalkHotkey
from models import RecordingState
from note_capture import NoteCapture
from permissions import DesktopPermissionProvider
from recognizer import DashscopeRecognizerAdapter
from recorder import SoundDeviceRecorder
from transcription_service import TranscriptionSession

logger = logging.getLogger("voice_notes")


class App:
    def __init__(self, config_store: JsonConfigStore, paste: bool = True) -> None:
        self.config_store = config_store
        self.recognizer = DashscopeRecognizerAdapter(
            api_key=config_store.get_api_key(),
            model=config_store.get_model(),
        )
        self.notes = NoteCapture(
            paste_service=ClipboardPasteService() if paste else None,
            on_note=self._on_note,
            on_error=self._on_error,
        )
        self.session = TranscriptionSession(
            permissions=DesktopPermissionProvider(config_store),
            recorder=SoundDeviceRecorder(),
            recognizer=self.recognizer,
            fallback_timeout_s=config_store.get_fallback_timeout_s(),
            on_state_change=self._on_state_change,
            on_partial=self._on_partial,
        )
        self.notes.bind(self.session)
        self.hotkey = PushToTalkHotkey(hotkey_name=config_store.get_hotkey())
        self._done = threading.Event()

    # ------------------------------------------------------------------
    # Session callbacks (run on recognizer / timer threads)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: RecordingState, to_state: RecordingState) -> None:
        logger.info("%s -> %s", from_state, to_state)
        self.notes.handle_state_change(from_state, to_state)

    def _on_partial(self, text: str) -> None:
        print(f"\r… {text}", end="", flush=True)

    def _on_note(self, text: str) -> None:
        print(f"\r✔ {text}", flush=True)

    def _on_error(self, code: str, message: str) -> None:
        print(f"\r⚠ {code}: {message}", flush=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        if not self.session.request_permissions():
            logger.error("%s", self.session.state.message)
            return 1
        # Stop can wait on the recognizer; keep the key listener responsive.
        try:
            self.hotkey.start(
                on_press=self.notes.begin,
                on_release=lambda: threading.Thread(target=self.notes.finish, daemon=True).start(),
                on_cancel=self.notes.discard,
            )
        except RuntimeError as exc:
            logger.error("Hotkey disabled: %s", exc)
            return 1
        print("Hold the hotkey to dictate a note, Esc while holding to discard, Ctrl+C to quit.")
        try:
            self._done.wait()
        except KeyboardInterrupt:
            pass
        finally:
            self.quit()
        return 0

    def quit(self) -> None:
        self.hotkey.stop()
        self.session.cancel()
        self._done.set()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Push-to-talk voice notes")
    parser.add_argument("--api-key", help="store a DashScope API key and exit")
    parser.add_argument("--no-paste", action="store_true", help="print notes instead of pasting them")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config_store = JsonConfigStore()
    if args.api_key is not None:
        config_store.set_api_key(args.api_key)
        print("API key saved.")
        return 0

    return App(config_store, paste=not args.no_paste).run()


if __name__ == "__main__":
    raise SystemExit(main())
