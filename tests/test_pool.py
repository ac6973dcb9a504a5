"""Tests for the synthesis worker pool.

Covers:
- readiness resolves True once every worker loaded, False on any failure
- enqueue resolves to a SynthesisResult with a written file
- generation errors become GenerationFailure for that chunk only
- cancelled tasks are skipped by workers
- shutdown fails queued work, deletes late results and is idempotent
- PoolHolder creates one pool, drops failed ones and recreates after shutdown
"""

from __future__ import annotations

import os
import threading

import pytest

from tts_reader.chunker import Chunk
from tts_reader.errors import BackendNotReady, GenerationFailure, PoolShutdown
from tts_reader.pool import PoolHolder, SynthesisResult, SynthesisWorkerPool

TIMEOUT = 5


class FakeSynth:
    """Returns one sample per character; optional failure and gating."""

    def __init__(self, fail_load=False, fail_on=(), gate=None, log=None):
        self.fail_load = fail_load
        self.fail_on = set(fail_on)
        self.gate = gate
        self.log = log if log is not None else []

    def load(self):
        if self.fail_load:
            raise RuntimeError("no model")

    def generate(self, text, voice, speed):
        self.log.append(text)
        if self.gate is not None:
            self.gate.wait(TIMEOUT)
        if text in self.fail_on:
            raise RuntimeError(f"cannot say {text}")
        return [0.0] * len(text), 24000


@pytest.fixture
def writer(tmp_path):
    counter = iter(range(10_000))

    def write(samples, sample_rate, index):
        path = tmp_path / f"{index}-{next(counter)}.wav"
        path.write_bytes(b"RIFF" + bytes(len(samples)))
        return str(path)

    return write


@pytest.fixture
def pools():
    created = []
    yield created
    for pool in created:
        pool.shutdown()


def _pool(pools, workers, factory, writer):
    pool = SynthesisWorkerPool(workers, factory, writer)
    pools.append(pool)
    return pool


class TestReadiness:

    def test_ready_when_all_workers_load(self, pools, writer):
        loads = []

        def factory():
            loads.append(1)
            return FakeSynth()

        pool = _pool(pools, 3, factory, writer)
        assert pool.wait_ready(TIMEOUT) is True
        assert len(loads) == 3

    def test_any_load_failure_means_not_ready(self, pools, writer):
        calls = iter([False, True, False])
        lock = threading.Lock()

        def factory():
            with lock:
                return FakeSynth(fail_load=next(calls))

        pool = _pool(pools, 3, factory, writer)
        assert pool.wait_ready(TIMEOUT) is False

    def test_enqueue_on_failed_pool(self, pools, writer):
        pool = _pool(pools, 1, lambda: FakeSynth(fail_load=True), writer)
        assert pool.wait_ready(TIMEOUT) is False
        fut = pool.enqueue(Chunk(0, "hi"), "af_heart", 1.0)
        with pytest.raises(BackendNotReady):
            fut.result(TIMEOUT)

    def test_worker_count_at_least_one(self, pools, writer):
        pool = _pool(pools, 0, FakeSynth, writer)
        assert pool.worker_count == 1
        assert pool.wait_ready(TIMEOUT)


class TestEnqueue:

    def test_result_has_index_and_file(self, pools, writer):
        pool = _pool(pools, 2, FakeSynth, writer)
        assert pool.wait_ready(TIMEOUT)
        futs = [pool.enqueue(Chunk(i, t), "af_heart", 1.0)
                for i, t in enumerate(["Hello.", "World!"])]
        results = [f.result(TIMEOUT) for f in futs]
        assert [r.index for r in results] == [0, 1]
        assert all(isinstance(r, SynthesisResult) for r in results)
        assert all(os.path.exists(r.path) for r in results)

    def test_generation_failure_is_per_chunk(self, pools, writer):
        pool = _pool(pools, 1, lambda: FakeSynth(fail_on={"bad"}), writer)
        assert pool.wait_ready(TIMEOUT)
        bad = pool.enqueue(Chunk(0, "bad"), "af_heart", 1.0)
        good = pool.enqueue(Chunk(1, "good"), "af_heart", 1.0)
        with pytest.raises(GenerationFailure) as exc_info:
            bad.result(TIMEOUT)
        assert exc_info.value.index == 0
        assert good.result(TIMEOUT).index == 1

    def test_writer_failure_is_generation_failure(self, pools):
        def broken_writer(samples, rate, index):
            raise OSError("disk full")

        pool = _pool(pools, 1, FakeSynth, broken_writer)
        assert pool.wait_ready(TIMEOUT)
        with pytest.raises(GenerationFailure):
            pool.enqueue(Chunk(0, "x"), "af_heart", 1.0).result(TIMEOUT)

    def test_cancelled_task_is_skipped(self, pools, writer):
        gate = threading.Event()
        log: list[str] = []
        pool = _pool(pools, 1, lambda: FakeSynth(gate=gate, log=log), writer)
        assert pool.wait_ready(TIMEOUT)

        first = pool.enqueue(Chunk(0, "first"), "af_heart", 1.0)
        second = pool.enqueue(Chunk(1, "second"), "af_heart", 1.0)
        third = pool.enqueue(Chunk(2, "third"), "af_heart", 1.0)
        assert second.cancel() is True
        gate.set()

        first.result(TIMEOUT)
        third.result(TIMEOUT)
        assert "second" not in log

    def test_passes_voice_and_speed(self, pools, writer):
        seen = []

        class Recording(FakeSynth):
            def generate(self, text, voice, speed):
                seen.append((voice, speed))
                return super().generate(text, voice, speed)

        pool = _pool(pools, 1, Recording, writer)
        assert pool.wait_ready(TIMEOUT)
        pool.enqueue(Chunk(0, "x"), "bf_emma", 1.3).result(TIMEOUT)
        assert seen == [("bf_emma", 1.3)]


class TestShutdown:

    def test_fails_queued_tasks_and_deletes_late_result(self, pools, writer, tmp_path):
        gate = threading.Event()
        log: list[str] = []
        pool = _pool(pools, 1, lambda: FakeSynth(gate=gate, log=log), writer)
        assert pool.wait_ready(TIMEOUT)

        running = pool.enqueue(Chunk(0, "running"), "af_heart", 1.0)
        queued = [pool.enqueue(Chunk(i, f"q{i}"), "af_heart", 1.0) for i in (1, 2)]
        while not log:
            gate.wait(0.01)

        pool.shutdown()
        for fut in queued:
            with pytest.raises(PoolShutdown):
                fut.result(TIMEOUT)

        gate.set()
        with pytest.raises(PoolShutdown):
            running.result(TIMEOUT)
        assert log == ["running"]
        assert list(tmp_path.iterdir()) == []

    def test_idempotent(self, pools, writer):
        pool = _pool(pools, 2, FakeSynth, writer)
        pool.wait_ready(TIMEOUT)
        pool.shutdown()
        pool.shutdown()
        assert pool.closed

    def test_enqueue_after_shutdown(self, pools, writer):
        pool = _pool(pools, 1, FakeSynth, writer)
        pool.wait_ready(TIMEOUT)
        pool.shutdown()
        with pytest.raises(PoolShutdown):
            pool.enqueue(Chunk(0, "late"), "af_heart", 1.0).result(TIMEOUT)

    def test_shutdown_before_ready_resolves_not_ready(self, pools, writer):
        gate = threading.Event()

        class SlowLoad(FakeSynth):
            def load(self):
                gate.wait(TIMEOUT)

        pool = _pool(pools, 1, SlowLoad, writer)
        pool.shutdown()
        assert pool.wait_ready(TIMEOUT) is False
        gate.set()


class TestPoolHolder:

    def test_creates_pool_once(self, writer):
        made = []

        def pool_factory(count, synth_factory):
            pool = SynthesisWorkerPool(count, synth_factory, writer)
            made.append(pool)
            return pool

        holder = PoolHolder(FakeSynth, pool_factory)
        try:
            assert holder.ensure_ready(2, TIMEOUT) is True
            assert holder.ensure_ready(2, TIMEOUT) is True
            assert len(made) == 1
            assert holder.ready
            assert holder.current is made[0]
        finally:
            holder.shutdown()

    def test_failed_pool_is_dropped(self, writer):
        holder = PoolHolder(lambda: FakeSynth(fail_load=True),
                            lambda n, f: SynthesisWorkerPool(n, f, writer))
        assert holder.ensure_ready(1, TIMEOUT) is False
        assert holder.current is None
        assert holder.ready is False

    def test_recreates_after_shutdown(self, writer):
        holder = PoolHolder(FakeSynth, lambda n, f: SynthesisWorkerPool(n, f, writer))
        try:
            assert holder.ensure_ready(1, TIMEOUT)
            first = holder.current
            holder.shutdown()
            assert holder.current is None
            assert first.closed
            assert holder.ensure_ready(1, TIMEOUT)
            assert holder.current is not first
        finally:
            holder.shutdown()

    def test_shutdown_without_pool(self):
        PoolHolder().shutdown()
