"""Exceptions raised by the synthesis and playback pipeline.

Only :class:`PlaybackFailure` is meant to reach the caller of ``speak``.
Backend readiness, empty text, supersession and disablement are ordinary
outcomes and are reported as strings (see ``coordinator``), not raised.
"""

from __future__ import annotations


class TtsError(Exception):
    """Base class for tts-reader errors."""


class BackendNotReady(TtsError):
    """The synthesis backend could not be loaded or reached."""


class GenerationFailure(TtsError):
    """A worker or the local synthesizer failed on one chunk."""

    def __init__(self, index: int, text: str, cause: BaseException | None = None):
        self.index = index
        self.text = text
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"generation failed for chunk {index}{detail}")


class PoolShutdown(TtsError):
    """The worker pool was shut down before the task ran."""


class PlaybackFailure(TtsError):
    """Every candidate audio player failed for one file."""

    def __init__(self, attempted: list[str], help_message: str = ""):
        self.attempted = list(attempted)
        self.help_message = help_message
        super().__init__(f"All audio players failed: {', '.join(self.attempted)}")
