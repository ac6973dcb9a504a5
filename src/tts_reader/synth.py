"""In-process speech synthesis.

The default synthesizer runs Kokoro-82M on the CPU through the ``kokoro``
package (``pip install tts-reader[local]``).  The import is deferred to
``load()`` so the rest of the package works without torch installed; a
missing package simply makes the local backend report "not ready".
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional, Protocol, Sequence

from .logging import get_logger

_log = get_logger("tts-reader.synth")

KOKORO_REPO_ID = "hexgrad/Kokoro-82M"
KOKORO_SAMPLE_RATE = 24000


class Synthesizer(Protocol):
    """Turns text into float samples. Implementations need not be thread-safe."""

    def load(self) -> None:
        """Load the model. Raises on failure."""
        ...

    def generate(self, text: str, voice: str, speed: float) -> tuple[Sequence[float], int]:
        """Return ``(samples, sample_rate)`` for *text*."""
        ...


SynthesizerFactory = Callable[[], Synthesizer]


def _lang_code(voice: str) -> str:
    # Kokoro voice names start with their language code: af_heart -> "a", bf_emma -> "b"
    return voice[:1] if voice else "a"


def _to_floats(audio: Any) -> list[float]:
    if hasattr(audio, "cpu"):
        audio = audio.cpu()
    if hasattr(audio, "tolist"):
        return audio.tolist()
    return [float(s) for s in audio]


class KokoroSynthesizer:
    """Kokoro-82M via ``kokoro.KPipeline``, one pipeline per language code."""

    def __init__(self, repo_id: str = KOKORO_REPO_ID, device: str = "cpu"):
        self._repo_id = repo_id
        self._device = device
        self._kokoro: Any = None
        self._pipelines: dict[str, Any] = {}

    def load(self) -> None:
        import kokoro

        self._kokoro = kokoro
        self._pipeline("a")

    def _pipeline(self, lang_code: str) -> Any:
        if lang_code not in self._pipelines:
            _log.info("initializing Kokoro pipeline for language %s", lang_code)
            self._pipelines[lang_code] = self._kokoro.KPipeline(
                lang_code=lang_code, repo_id=self._repo_id, device=self._device,
            )
        return self._pipelines[lang_code]

    def generate(self, text: str, voice: str, speed: float) -> tuple[list[float], int]:
        if self._kokoro is None:
            self.load()
        pipeline = self._pipeline(_lang_code(voice))
        samples: list[float] = []
        for result in pipeline(text, voice=voice, speed=speed):
            if result.audio is not None:
                samples.extend(_to_floats(result.audio))
        return samples, KOKORO_SAMPLE_RATE


class LocalSynthesizerHolder:
    """The single in-process synthesizer used when the pool is disabled.

    ``ensure_ready`` loads it once; concurrent callers wait on the same
    load.  A failed load is not cached, so the next call retries.
    """

    def __init__(self, factory: SynthesizerFactory = KokoroSynthesizer):
        self._factory = factory
        self._synth: Optional[Synthesizer] = None
        self._lock = threading.Lock()

    @property
    def synthesizer(self) -> Optional[Synthesizer]:
        return self._synth

    @property
    def ready(self) -> bool:
        return self._synth is not None

    def ensure_ready(self) -> bool:
        with self._lock:
            if self._synth is not None:
                return True
            _log.info("local: initializing model in main thread")
            try:
                synth = self._factory()
                synth.load()
            except Exception as e:
                _log.warning("local synthesizer failed to load: %s", e, exc_info=True)
                return False
            self._synth = synth
            return True
