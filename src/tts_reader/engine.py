"""Routes TTS requests to the local or HTTP backend.

Both backends share one :class:`PlayerFallbackEngine`, so the cached
working player survives a backend switch.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .coordinator import StreamingPlaybackCoordinator
from .http_backend import HttpBackend
from .logging import get_logger
from .players import PlayerFallbackEngine

if TYPE_CHECKING:
    from .config import TtsConfig
    from .notifications import Notifier

_log = get_logger("tts-reader.engine")

INSTALL_HINT = "Failed to load TTS. Run: pip install 'tts-reader[local]'"
SERVER_HINT = ("Cannot reach {url}. Start server: docker run -d --gpus all -p 8880:8880 "
               "ghcr.io/remsky/kokoro-fastapi-gpu:latest")


class TtsEngine:
    def __init__(self, notifier: Optional["Notifier"] = None,
                 player: Optional[PlayerFallbackEngine] = None,
                 local: Optional[StreamingPlaybackCoordinator] = None,
                 http: Optional[HttpBackend] = None):
        self.notifier = notifier
        self.player = player or PlayerFallbackEngine(notifier=notifier)
        self.local = local or StreamingPlaybackCoordinator(player=self.player)
        self.http = http or HttpBackend(player=self.player)

    def notify(self, title: str, message: str, variant: str, event_type: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(title, message, variant, event_type=event_type)
        except Exception as e:
            _log.debug("notification failed: %s", e)

    def init(self, config: "TtsConfig") -> bool:
        """Load (local) or probe (http) the backend and report the result."""
        if config.backend == "http":
            ok = self.http.check_server(config)
            label = "HTTP (GPU)"
        else:
            ok = self.local.init(config)
            label = "Local (CPU)"
        mode = "per-message" if config.speak_on == "message" else "on-idle"

        if ok:
            _log.info("tts ready (%s, %s)", label, mode)
            self.notify("TTS Reader", f"{label} backend ready ({mode})", "success", "backend_ready")
        else:
            _log.warning("tts init failed (%s)", label)
            hint = SERVER_HINT.format(url=config.http_url) if config.backend == "http" else INSTALL_HINT
            self.notify("TTS Reader", hint, "warning", "backend_unavailable")
        return ok

    def speak(self, text: str, config: "TtsConfig") -> str:
        if config.backend == "http":
            return self.http.speak(text, config)
        return self.local.speak(text, config)

    def is_ready(self, config: "TtsConfig") -> bool:
        if config.backend == "http":
            return self.http.ready
        return self.local.is_ready()

    def cancel(self, config: "TtsConfig") -> None:
        if config.backend == "http":
            self.http.interrupt()
            return
        self.local.cancel()

    def interrupt(self, config: "TtsConfig") -> None:
        if config.backend == "http":
            self.http.interrupt()
            return
        self.local.interrupt()
