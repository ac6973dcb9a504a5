"""Tests for the cancellation token."""

from __future__ import annotations

import threading

from tts_reader.cancellation import CancellationController


class TestCancellationController:

    def test_starts_at_zero(self):
        assert CancellationController().current == 0

    def test_bump_is_monotonic(self):
        c = CancellationController()
        values = [c.bump() for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]
        assert c.current == 5

    def test_scope_is_live_until_bumped(self):
        c = CancellationController()
        scope = c.capture()
        assert scope.cancelled is False
        c.bump()
        assert scope.cancelled is True

    def test_new_scope_after_bump_is_live(self):
        c = CancellationController()
        old = c.capture()
        c.bump()
        new = c.capture()
        assert old.cancelled
        assert not new.cancelled

    def test_concurrent_bumps_are_not_lost(self):
        c = CancellationController()

        def bump_many():
            for _ in range(1000):
                c.bump()

        threads = [threading.Thread(target=bump_many) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert c.current == 4000
