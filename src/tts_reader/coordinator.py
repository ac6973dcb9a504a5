"""Streaming synthesis and playback for the local backend.

``speak`` splits text into chunks, hands all of them to the worker pool
at once and then plays the results strictly in chunk order.  Chunk 0 is
usually one short sentence, so audio starts while later chunks are still
generating.  With ``max_workers == 0`` a single in-process synthesizer
generates and plays one chunk at a time instead.

Cancellation is cooperative.  Every ``speak`` bumps the shared token and
every call re-checks its captured token (and ``config.enabled``) before
waiting on a chunk and before playing it.  A superseded call stops
consuming; work it no longer needs is cancelled if still queued, and
files from tasks that finish later are deleted as they land.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from typing import TYPE_CHECKING, Optional

from .cancellation import CancellationController, CancelScope
from .chunker import Chunk, chunk_text
from .errors import BackendNotReady, GenerationFailure, PoolShutdown
from .logging import get_logger, log_context
from .players import PlayerFallbackEngine
from .pool import PoolHolder, SynthesisResult, SynthesisWorkerPool
from .synth import LocalSynthesizerHolder
from .wav import cleanup_files, remove_file, write_temp_wav

if TYPE_CHECKING:
    from .config import TtsConfig

_log = get_logger("tts-reader.coordinator")

# speak() outcomes
COMPLETED = "completed"
NOT_READY = "not_ready"
EMPTY = "empty"
SUPERSEDED = "superseded"
DISABLED = "disabled"
FAILED = "failed"


def _remove_result_file(fut: Future) -> None:
    if fut.cancelled() or fut.exception() is not None:
        return
    remove_file(fut.result().path)


class StreamingPlaybackCoordinator:
    """Owns the pool, the local synthesizer, the player and the cancel token."""

    def __init__(
        self,
        player: Optional[PlayerFallbackEngine] = None,
        pools: Optional[PoolHolder] = None,
        local: Optional[LocalSynthesizerHolder] = None,
        cancellation: Optional[CancellationController] = None,
        ready_timeout: Optional[float] = None,
        poll_interval: float = 0.1,
    ):
        self.player = player or PlayerFallbackEngine()
        self.pools = pools or PoolHolder()
        self.local = local or LocalSynthesizerHolder()
        self.cancellation = cancellation or CancellationController()
        self._ready_timeout = ready_timeout
        self._poll_interval = poll_interval
        self._play_lock = threading.Lock()

    # ─── Backend lifecycle ───────────────────────────────────────────

    def init(self, config: "TtsConfig") -> bool:
        """Load the backend for *config*. Returns readiness."""
        if config.max_workers <= 0:
            return self.local.ensure_ready()
        return self.pools.ensure_ready(config.max_workers, self._ready_timeout)

    def is_ready(self) -> bool:
        return self.local.ready or self.pools.ready

    def cancel(self) -> None:
        """Supersede every speak call, stop audio and shut the pool down."""
        self.cancellation.bump()
        self.player.cancel()
        self.pools.shutdown()

    def interrupt(self) -> None:
        """Supersede every speak call and stop audio, keeping the pool warm."""
        self.cancellation.bump()
        self.player.cancel()

    # ─── Speaking ───────────────────────────────────────────────────

    def speak(self, text: str, config: "TtsConfig") -> str:
        """Speak *text*; returns one of the outcome constants.

        Raises :class:`PlaybackFailure` if no audio player works.  Every
        temp file produced for this call is deleted before returning.
        """
        if not config.enabled:
            return DISABLED
        trimmed = text.strip()
        if not trimmed:
            return EMPTY

        self.cancellation.bump()
        scope = self.cancellation.capture()

        if not self.init(config):
            if scope.cancelled:
                return SUPERSEDED
            _log.warning("local: backend not ready")
            return NOT_READY
        if scope.cancelled:
            return SUPERSEDED

        chunks = chunk_text(trimmed, config.chunk_max_length)
        if not chunks:
            _log.info("local: no chunks after split")
            return EMPTY
        _log.info("local: %d chunks queued", len(chunks),
                  extra={"context": log_context(text_preview=trimmed)})

        if config.max_workers <= 0:
            return self._play_direct(chunks, config, scope)

        pool = self.pools.current
        if pool is None or scope.cancelled:
            return SUPERSEDED
        return self._play_from_pool(pool, chunks, config, scope)

    def _stop_reason(self, config: "TtsConfig", scope: CancelScope) -> Optional[str]:
        if scope.cancelled:
            return SUPERSEDED
        if not config.enabled:
            return DISABLED
        return None

    def _play(self, path: str, chunk: Chunk, config: "TtsConfig",
              scope: CancelScope) -> Optional[str]:
        with self._play_lock:
            # interrupt() bumps the token before cancelling the player, so a
            # cancel after this capture is either seen below or by play()
            generation = self.player.generation
            reason = self._stop_reason(config, scope)
            if reason:
                _log.info("local: stopped before play (%s)", reason)
                return reason
            _log.debug("local: playing chunk %d", chunk.index)
            if self.player.play(path, generation=generation) is None:
                return self._stop_reason(config, scope) or SUPERSEDED
            _log.debug("local: played chunk %d", chunk.index)
        return None

    def _wait_result(self, fut: Future, config: "TtsConfig",
                     scope: CancelScope) -> Optional[SynthesisResult]:
        while True:
            try:
                return fut.result(timeout=self._poll_interval)
            except FutureTimeout:
                if self._stop_reason(config, scope):
                    return None

    def _play_from_pool(self, pool: SynthesisWorkerPool, chunks: list[Chunk],
                        config: "TtsConfig", scope: CancelScope) -> str:
        futures = [pool.enqueue(chunk, config.voice, config.speed) for chunk in chunks]
        files: list[str] = []
        consumed: set[int] = set()
        try:
            for chunk, fut in zip(chunks, futures):
                reason = self._stop_reason(config, scope)
                if reason:
                    _log.info("local: stopped during worker playback (%s)", reason)
                    return reason

                _log.debug("local: await chunk %d", chunk.index)
                try:
                    result = self._wait_result(fut, config, scope)
                except GenerationFailure as e:
                    consumed.add(chunk.index)
                    _log.warning("local: skipping chunk %d: %s", chunk.index, e)
                    continue
                except PoolShutdown:
                    _log.info("local: pool shut down during playback")
                    return SUPERSEDED
                except BackendNotReady:
                    return NOT_READY
                if result is None:
                    return self._stop_reason(config, scope) or SUPERSEDED

                consumed.add(chunk.index)
                files.append(result.path)
                reason = self._play(result.path, chunk, config, scope)
                if reason:
                    return reason
            return COMPLETED
        finally:
            cleanup_files(files)
            self._discard(f for chunk, f in zip(chunks, futures) if chunk.index not in consumed)

    def _discard(self, futures) -> None:
        """Drop results nobody will play, deleting their files when they land."""
        for fut in futures:
            fut.cancel()
            fut.add_done_callback(_remove_result_file)

    def _play_direct(self, chunks: list[Chunk], config: "TtsConfig",
                     scope: CancelScope) -> str:
        synth = self.local.synthesizer
        files: list[str] = []
        try:
            for chunk in chunks:
                reason = self._stop_reason(config, scope)
                if reason:
                    _log.info("local: stopped during direct playback (%s)", reason)
                    return reason

                _log.debug("local: generate chunk %d", chunk.index)
                try:
                    samples, sample_rate = synth.generate(chunk.text, config.voice, config.speed)
                    path = write_temp_wav(samples, sample_rate, chunk.index)
                except Exception as e:
                    _log.warning(
                        "local: skipping chunk %d: %s", chunk.index, e,
                        extra={"context": log_context(chunk_index=chunk.index, text_preview=chunk.text)},
                    )
                    continue

                files.append(path)
                reason = self._play(path, chunk, config, scope)
                if reason:
                    return reason
            return COMPLETED
        finally:
            cleanup_files(files)
