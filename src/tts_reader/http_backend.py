"""HTTP backend: synthesis on a Kokoro-FastAPI server (OpenAI-compatible).

Useful when a GPU box is around::

    docker run -d --gpus all -p 8880:8880 ghcr.io/remsky/kokoro-fastapi-gpu:latest

The whole text goes out in one request; the returned audio is written to
a temp file and played through the same player fallback engine as the
local backend.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import TYPE_CHECKING, Callable, Optional

from .coordinator import DISABLED, EMPTY, FAILED, COMPLETED, NOT_READY
from .errors import GenerationFailure
from .logging import get_logger, log_context
from .players import PlayerFallbackEngine
from .wav import remove_file, wrap_pcm16, write_temp_audio

if TYPE_CHECKING:
    from .config import TtsConfig

_log = get_logger("tts-reader.http")

HTTP_MODEL = "kokoro"
CHECK_TIMEOUT = 3
SPEECH_TIMEOUT = 120


class HttpBackend:
    """Client for ``/v1/models`` and ``/v1/audio/speech``.

    Reachability is checked once and cached until :meth:`reset`.
    """

    def __init__(self, player: Optional[PlayerFallbackEngine] = None,
                 urlopen: Callable = urllib.request.urlopen):
        self.player = player or PlayerFallbackEngine()
        self._urlopen = urlopen
        self._available = False
        self._checked = False

    @property
    def ready(self) -> bool:
        return self._available

    def reset(self) -> None:
        self._checked = False
        self._available = False

    def check_server(self, config: "TtsConfig") -> bool:
        if self._checked:
            return self._available
        req = urllib.request.Request(f"{config.http_url}/v1/models", method="GET")
        try:
            with self._urlopen(req, timeout=CHECK_TIMEOUT) as resp:
                self._available = 200 <= resp.status < 300
        except (urllib.error.URLError, OSError, ValueError) as e:
            _log.info("http: %s unreachable: %s", config.http_url, e)
            self._available = False
        self._checked = True
        return self._available

    def synthesize(self, text: str, config: "TtsConfig") -> bytes:
        """POST *text* and return the audio body. Raises GenerationFailure."""
        body = json.dumps({
            "model": HTTP_MODEL,
            "voice": config.voice,
            "input": text,
            "speed": config.speed,
            "response_format": config.http_format,
        }).encode()
        req = urllib.request.Request(
            f"{config.http_url}/v1/audio/speech",
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with self._urlopen(req, timeout=SPEECH_TIMEOUT) as resp:
                return resp.read()
        except urllib.error.HTTPError as e:
            raise GenerationFailure(0, text, RuntimeError(f"HTTP {e.code}")) from e
        except (urllib.error.URLError, OSError) as e:
            raise GenerationFailure(0, text, e) from e

    def speak(self, text: str, config: "TtsConfig") -> str:
        if not config.enabled:
            return DISABLED
        trimmed = text.strip()
        if not trimmed:
            return EMPTY
        if not self.check_server(config):
            return NOT_READY

        try:
            audio = self.synthesize(trimmed, config)
        except GenerationFailure as e:
            _log.warning("http: %s", e, extra={"context": log_context(text_preview=trimmed)})
            return FAILED
        if not audio:
            return FAILED

        if config.http_format == "pcm":
            audio, ext = wrap_pcm16(audio), "wav"
        else:
            ext = config.http_format
        path = write_temp_audio(audio, ext)
        try:
            if not config.enabled:
                return DISABLED
            self.player.play(path)
        finally:
            remove_file(path)
        return COMPLETED

    def interrupt(self) -> None:
        self.player.cancel()
