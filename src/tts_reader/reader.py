"""Reads assistant messages aloud.

The host feeds message events in (the MCP server's ``message_event``
tool, or direct calls when embedding the reader);
the reader keeps track of the latest message, cleans markdown out of it
and hands it to the engine, never speaking the same message twice.

Two modes:
    message  speak each assistant message as soon as it completes
    idle     speak only the last message once the session goes idle

``/tts``, ``/tts on``, ``/tts:off`` style commands toggle reading.
"""

from __future__ import annotations

import re
import threading
from typing import TYPE_CHECKING, Optional

from .coordinator import DISABLED, EMPTY, FAILED, NOT_READY
from .errors import TtsError
from .logging import get_logger, log_context

if TYPE_CHECKING:
    from .config import TtsConfig
    from .engine import TtsEngine

_log = get_logger("tts-reader.reader")

DUPLICATE = "duplicate"

_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
_MARKDOWN_RE = re.compile(r"[#*_`]")


def clean_text(text: str) -> str:
    """Replace fenced code with a spoken placeholder and drop markdown marks."""
    text = _CODE_BLOCK_RE.sub(" code block ", text)
    return _MARKDOWN_RE.sub("", text).strip()


def parse_tts_command(text: str) -> Optional[str]:
    """Return the arguments of a ``/tts`` command, or None if it isn't one.

    >>> parse_tts_command("/tts on")
    'on'
    >>> parse_tts_command("/tts:off")
    'off'
    >>> parse_tts_command("hello") is None
    True
    """
    trimmed = text.strip()
    if not trimmed.startswith("/tts"):
        return None
    tail = trimmed[4:].strip()
    if tail.startswith(":"):
        return tail[1:].strip()
    return tail


class Reader:
    def __init__(self, config: "TtsConfig", engine: "TtsEngine"):
        self.config = config
        self.engine = engine
        self.latest_message_id: Optional[str] = None
        self.latest_message_text: Optional[str] = None
        self.last_spoken_id: Optional[str] = None
        self._lock = threading.Lock()

    # ─── Host events ────────────────────────────────────────────────

    def on_message_updated(self, message_id: str, text: str) -> None:
        """Record the newest text of a streaming assistant message."""
        self.latest_message_id = message_id
        self.latest_message_text = text
        _log.debug("event: part updated %s (%d chars)", message_id, len(text))

    def on_message_completed(self, message_id: str) -> Optional[str]:
        if self.config.speak_on != "message":
            return None
        if message_id != self.latest_message_id or not self.latest_message_text:
            return None
        return self.speak_message(message_id, self.latest_message_text)

    def on_idle(self) -> Optional[str]:
        if self.config.speak_on != "idle":
            return None
        if not self.latest_message_id or not self.latest_message_text:
            return None
        return self.speak_message(self.latest_message_id, self.latest_message_text)

    # ─── Speaking ───────────────────────────────────────────────────

    def speak_message(self, message_id: str, text: str) -> str:
        """Clean and speak one message. Blocks until playback ends.

        Errors are logged, never raised: the host should not crash
        because the speakers are unplugged.
        """
        with self._lock:
            if self.last_spoken_id == message_id:
                _log.debug("speak: skip duplicate message %s", message_id)
                return DUPLICATE
            if not self.config.enabled:
                _log.info("speak: disabled at message %s", message_id)
                self.engine.cancel(self.config)
                return DISABLED
            if not self.engine.is_ready(self.config):
                _log.info("speak: backend not ready for %s", message_id)
                return NOT_READY
            self.last_spoken_id = message_id

        cleaned = clean_text(text)
        if not cleaned:
            _log.info("speak: empty text for %s", message_id)
            return EMPTY

        _log.info("speak: start %s (%d chars)", message_id, len(cleaned),
                  extra={"context": log_context(text_preview=cleaned)})
        try:
            outcome = self.engine.speak(cleaned, self.config)
        except TtsError as e:
            _log.error("speak: error %s: %s", message_id, e, exc_info=True)
            return FAILED
        _log.info("speak: %s %s", outcome, message_id)
        return outcome

    def speak_message_async(self, message_id: str, text: str) -> None:
        """Speak in a background thread."""
        threading.Thread(target=self.speak_message, args=(message_id, text),
                         name="tts-speak", daemon=True).start()

    # ─── Commands ───────────────────────────────────────────────────

    def apply_command(self, args: str, source: str = "command") -> bool:
        """Handle ``/tts`` arguments. Returns the new enabled state.

        "on"/"enable" and "off"/"disable" set the state, anything else
        toggles it.  Turning reading on speaks the latest message if it
        has not been spoken yet.
        """
        words = set(args.lower().replace(":", " ").split())
        if words & {"on", "enable"}:
            self.config.enabled = True
        elif words & {"off", "disable"}:
            self.config.enabled = False
        else:
            self.config.enabled = not self.config.enabled

        if not self.config.enabled:
            self.engine.cancel(self.config)

        status = "enabled" if self.config.enabled else "disabled"
        _log.info("command: tts %s (%s) from %s", status, args or "toggle", source)

        if self.config.enabled:
            ready = self.engine.init(self.config)
            _log.info("command: tts init %s", "ready" if ready else "failed")
            if (ready and self.latest_message_id and self.latest_message_text
                    and self.last_spoken_id != self.latest_message_id):
                self.speak_message_async(self.latest_message_id, self.latest_message_text)

        self.engine.notify("TTS Reader", f"TTS {status}",
                            "success" if self.config.enabled else "warning", "tts_toggled")
        return self.config.enabled
