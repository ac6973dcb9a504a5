"""Play audio files through whichever system player works.

Each platform has an ordered list of candidate players, OS-bundled tools
first and heavier third-party tools after.  The first one that exits 0
wins and is remembered, so later files go straight to it.  If the
remembered player stops working the cache is dropped and the full list
is walked again.

When nothing works the user gets one actionable message naming the
package to install.
"""

from __future__ import annotations

import sys
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Protocol, Sequence

from .errors import PlaybackFailure
from .logging import get_logger, log_context
from .subprocess_manager import ProcessRunner

if TYPE_CHECKING:
    from .notifications import Notifier

_log = get_logger("tts-reader.players")

_FFPLAY = ("ffplay", "-autoexit", "-nodisp", "-loglevel", "quiet")


@dataclass(frozen=True)
class PlayerCandidate:
    name: str
    command: tuple[str, ...]


class Runner(Protocol):
    """What the engine needs from a process runner (faked in tests)."""

    @property
    def generation(self) -> int:
        ...

    def run(self, cmd: Sequence[str], name: str = "",
            generation: Optional[int] = None) -> int:
        ...

    def cancel(self) -> bool:
        ...


def player_candidates(platform: str, path: str) -> list[PlayerCandidate]:
    """Ordered candidate players for *platform* (a ``sys.platform`` value)."""
    if platform == "darwin":
        return [
            PlayerCandidate("afplay", ("afplay", path)),
            PlayerCandidate("ffplay", _FFPLAY + (path,)),
        ]
    if platform == "win32":
        return [
            PlayerCandidate(
                "Media.SoundPlayer",
                ("powershell", "-c", f"(New-Object Media.SoundPlayer '{path}').PlaySync()"),
            ),
            PlayerCandidate("ffplay", _FFPLAY + (path,)),
            PlayerCandidate("Windows Media Player", ("wmplayer", "/close", "/prefetch:1", path)),
        ]
    return [
        PlayerCandidate("paplay", ("paplay", path)),
        PlayerCandidate("aplay", ("aplay", path)),
        PlayerCandidate("mpv", ("mpv", "--no-video", "--no-terminal", path)),
        PlayerCandidate("ffplay", _FFPLAY + (path,)),
    ]


def install_help(platform: str, failed: Sequence[str]) -> str:
    """Tell the user what to install after every player in *failed* broke."""
    if platform == "darwin":
        if "ffplay" in failed:
            return "TTS audio failed. Install ffmpeg: brew install ffmpeg"
        return "TTS audio playback failed. Try: brew install ffmpeg"
    if platform == "win32":
        if "ffplay" in failed:
            return "TTS audio failed. Install ffmpeg: winget install ffmpeg"
        return "TTS audio playback failed. Try: winget install ffmpeg.Gyan"
    if platform.startswith("linux"):
        if "paplay" in failed and "aplay" in failed:
            return "TTS audio failed. Install: sudo apt install pulseaudio-utils alsa-utils"
        if "ffplay" in failed and "mpv" in failed:
            return "TTS audio failed. Install: sudo apt install ffmpeg"
        return "TTS audio playback failed. Install: sudo apt install pulseaudio-utils alsa-utils ffmpeg"
    return "TTS audio playback failed. Install ffmpeg or a system audio player"


class PlayerFallbackEngine:
    """Plays one file at a time with a cached fast path.

    ``last_working`` holds the name of the player that last succeeded.
    It lives as long as the engine; one engine is shared by every speak
    call in the process.
    """

    def __init__(self, runner: Optional[Runner] = None,
                 platform: Optional[str] = None,
                 notifier: Optional["Notifier"] = None):
        self._runner = runner if runner is not None else ProcessRunner()
        self._platform = platform or sys.platform
        self._notifier = notifier
        self._cache_lock = threading.Lock()
        self._cancels = 0
        self.last_working: Optional[str] = None

    @property
    def platform(self) -> str:
        return self._platform

    def candidates(self, path: str) -> list[PlayerCandidate]:
        return player_candidates(self._platform, path)

    @property
    def generation(self) -> int:
        """Cancel count. Capture it before a stop check and pass it to :meth:`play`."""
        with self._cache_lock:
            return self._cancels

    def _attempt(self, player: PlayerCandidate, generation: int) -> bool:
        with self._cache_lock:
            if self._cancels != generation:
                return False
            since = self._runner.generation
        status = self._runner.run(player.command, name=player.name, generation=since)
        if status != 0:
            _log.debug("player %s exited %s", player.name, status)
        return status == 0

    def play(self, path: str, generation: Optional[int] = None) -> Optional[str]:
        """Play *path* to completion. Returns the name of the player used.

        A :meth:`cancel` while a player runs ends the call without trying
        further candidates; the cache is left alone since the player was
        killed rather than broken.  *generation*, taken from
        :attr:`generation` before the caller's own stop check, makes a
        cancel that lands in between count too: nothing is started and
        None is returned.

        Raises :class:`PlaybackFailure` when every candidate fails.
        """
        players = self.candidates(path)

        with self._cache_lock:
            cached_name = self.last_working
            if generation is None:
                generation = self._cancels
            if self._cancels != generation:
                return None
        if cached_name:
            cached = next((p for p in players if p.name == cached_name), None)
            if cached is not None:
                if self._attempt(cached, generation) or self._cancelled_since(generation):
                    return cached.name
                _log.info("cached player %s failed, retrying all players", cached.name)
                with self._cache_lock:
                    self.last_working = None

        failed: list[str] = []
        for player in players:
            if self._attempt(player, generation):
                with self._cache_lock:
                    self.last_working = player.name
                return player.name
            if self._cancelled_since(generation):
                return player.name
            failed.append(player.name)

        message = install_help(self._platform, failed)
        _log.error(
            "all audio players failed", extra={"context": log_context(
                platform=self._platform, attempted=failed, path=path,
            )},
        )
        self._notify_failure(message)
        raise PlaybackFailure(failed, message)

    def _notify_failure(self, message: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify("TTS Audio Playback Failed", message, "error",
                                  event_type="playback_failed")
        except Exception as e:
            _log.debug("playback failure notification failed: %s", e)

    def _cancelled_since(self, generation: int) -> bool:
        with self._cache_lock:
            return self._cancels != generation

    def cancel(self) -> None:
        """Stop whatever is playing right now. Safe to call at any time."""
        with self._cache_lock:
            self._cancels += 1
            killed = self._runner.cancel()
        if killed:
            _log.info("playback cancelled")
