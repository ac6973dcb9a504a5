"""Bounded pool of synthesis workers.

Each worker is a daemon thread that owns its own synthesizer (model
instances are not shared between threads).  Tasks go into one shared
FIFO queue, so whichever worker is idle picks up the next chunk and a
slow chunk never holds up unrelated ones.

Lifecycle::

    pool = SynthesisWorkerPool(2, KokoroSynthesizer)   # never raises
    if pool.wait_ready():                               # all workers loaded
        fut = pool.enqueue(Chunk(0, "Hello."), "af_heart", 1.0)
        fut.result().path                               # temp WAV
    pool.shutdown()                                     # idempotent

Only one pool is live per process; :class:`PoolHolder` owns it.
"""

from __future__ import annotations

import queue
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .chunker import Chunk
from .errors import BackendNotReady, GenerationFailure, PoolShutdown
from .logging import get_logger, log_context
from .synth import KokoroSynthesizer, SynthesizerFactory
from .wav import remove_file, write_temp_wav

_log = get_logger("tts-reader.pool")

WavWriter = Callable[[Sequence[float], int, int], str]


@dataclass(frozen=True)
class SynthesisResult:
    index: int
    path: str


def _fail(fut: Future, exc: BaseException) -> None:
    """Fail a queued future unless the consumer already cancelled it."""
    if fut.set_running_or_notify_cancel():
        fut.set_exception(exc)


class SynthesisWorkerPool:
    """Fixed-size set of worker threads generating audio for chunks."""

    def __init__(self, worker_count: int,
                 synthesizer_factory: SynthesizerFactory = KokoroSynthesizer,
                 writer: WavWriter = write_temp_wav):
        self.worker_count = max(1, worker_count)
        self.ready: Future = Future()
        self._factory = synthesizer_factory
        self._writer = writer
        self._tasks: queue.Queue = queue.Queue()
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._loaded = 0
        self._workers: list[threading.Thread] = []

        for i in range(self.worker_count):
            t = threading.Thread(target=self._run, args=(i,),
                                 name=f"tts-worker-{i}", daemon=True)
            try:
                t.start()
            except RuntimeError as e:
                _log.error("could not start worker %d: %s", i, e)
                self._mark_loaded(False)
                break
            self._workers.append(t)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def pending(self) -> int:
        return self._tasks.qsize()

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until every worker loaded (True) or one failed (False)."""
        try:
            return bool(self.ready.result(timeout))
        except FutureTimeout:
            return False

    def _mark_loaded(self, ok: bool) -> None:
        with self._lock:
            if self.ready.done():
                return
            if not ok:
                self.ready.set_result(False)
                return
            self._loaded += 1
            if self._loaded == self.worker_count:
                self.ready.set_result(True)

    def _run(self, worker_id: int) -> None:
        try:
            synth = self._factory()
            synth.load()
        except Exception as e:
            _log.warning("worker %d failed to load synthesizer: %s", worker_id, e, exc_info=True)
            self._mark_loaded(False)
            return
        self._mark_loaded(True)
        _log.debug("worker %d ready", worker_id)

        while True:
            task = self._tasks.get()
            if task is None:
                return
            chunk, voice, speed, fut = task
            if self._closed.is_set():
                _fail(fut, PoolShutdown())
                return
            if not fut.set_running_or_notify_cancel():
                continue

            try:
                samples, sample_rate = synth.generate(chunk.text, voice, speed)
                path = self._writer(samples, sample_rate, chunk.index)
            except Exception as e:
                _log.warning(
                    "worker %d failed on chunk %d: %s", worker_id, chunk.index, e,
                    extra={"context": log_context(chunk_index=chunk.index, text_preview=chunk.text)},
                )
                fut.set_exception(GenerationFailure(chunk.index, chunk.text, e))
                continue

            if self._closed.is_set():
                remove_file(path)
                fut.set_exception(PoolShutdown())
                return
            fut.set_result(SynthesisResult(chunk.index, path))

    def enqueue(self, chunk: Chunk, voice: str, speed: float) -> Future:
        """Queue one chunk. The future resolves to a :class:`SynthesisResult`."""
        fut: Future = Future()
        if self.ready.done() and not self.ready.result():
            fut.set_exception(BackendNotReady("synthesis workers failed to load"))
            return fut
        with self._lock:
            if self._closed.is_set():
                fut.set_exception(PoolShutdown())
                return fut
            self._tasks.put((chunk, voice, speed, fut))
        return fut

    def shutdown(self) -> None:
        """Stop all workers and fail every queued task. Idempotent."""
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()

        while True:
            try:
                task = self._tasks.get_nowait()
            except queue.Empty:
                break
            if task is not None:
                _fail(task[3], PoolShutdown())

        for _ in self._workers:
            self._tasks.put(None)
        with self._lock:
            if not self.ready.done():
                self.ready.set_result(False)
        _log.info("pool shutdown")


PoolFactory = Callable[[int, SynthesizerFactory], SynthesisWorkerPool]


class PoolHolder:
    """Owns the single live worker pool.

    Creation and shutdown happen under one lock, so a speak call that
    arrives while the old pool is being torn down gets a fresh pool and
    two pools are never in use together.
    """

    def __init__(self, synthesizer_factory: SynthesizerFactory = KokoroSynthesizer,
                 pool_factory: PoolFactory = SynthesisWorkerPool):
        self._synth_factory = synthesizer_factory
        self._pool_factory = pool_factory
        self._pool: Optional[SynthesisWorkerPool] = None
        self._lock = threading.Lock()

    @property
    def current(self) -> Optional[SynthesisWorkerPool]:
        return self._pool

    @property
    def ready(self) -> bool:
        pool = self._pool
        return pool is not None and pool.ready.done() and bool(pool.ready.result())

    def ensure_ready(self, worker_count: int, timeout: Optional[float] = None) -> bool:
        """Create the pool on first use and wait until it is ready."""
        with self._lock:
            pool = self._pool
            if pool is None or pool.closed:
                _log.info("local: creating worker pool (%d workers)", worker_count)
                pool = self._pool_factory(worker_count, self._synth_factory)
                self._pool = pool

        ok = pool.wait_ready(timeout)
        if not ok:
            with self._lock:
                if self._pool is pool:
                    self._pool = None
            pool.shutdown()
        return ok

    def shutdown(self) -> None:
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown()
