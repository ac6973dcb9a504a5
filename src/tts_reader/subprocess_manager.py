"""Player process tracking.

Audio players are run one at a time through :class:`ProcessRunner`.  The
runner remembers the process that is currently playing so another thread
can kill it (``cancel``), and always forgets it once the process exits so
a later cancel never hits a stale handle.

On POSIX each player gets its own process group (``os.setsid``) and is
killed through it, which also takes down helper children some players
spawn (ffplay, powershell wrappers, mpv).
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from typing import Optional, Sequence

_POSIX = os.name == "posix"


class TrackedProcess:
    """A running player process plus how to kill it."""

    __slots__ = ("proc", "name", "use_pgid")

    def __init__(self, proc: subprocess.Popen, name: str = "",
                 use_pgid: bool = _POSIX):
        self.proc = proc
        self.name = name
        self.use_pgid = use_pgid

    @property
    def alive(self) -> bool:
        return self.proc.poll() is None

    def kill(self) -> None:
        """Kill this process (and its process group if use_pgid is set)."""
        if not self.alive:
            return
        if self.use_pgid:
            try:
                os.killpg(os.getpgid(self.proc.pid), signal.SIGKILL)
                return
            except (OSError, ProcessLookupError):
                pass
        try:
            self.proc.kill()
        except (OSError, ProcessLookupError):
            pass


class ProcessRunner:
    """Run a command to completion while keeping it cancellable.

    ``run`` blocks until the process exits and returns its exit status.
    A command that cannot be started (missing binary, permission error)
    is reported as status 127 instead of raising, since for a player it
    just means "this candidate failed".

    Every ``cancel`` bumps :attr:`generation`.  A caller that checked for
    cancellation before calling ``run`` passes the generation it saw; a
    cancel landing after that check kills the process as soon as it is
    tracked (or stops it from being spawned at all).
    """

    SPAWN_FAILED = 127
    # status of a run cancelled before its process was started
    CANCELLED = -9

    def __init__(self, env: Optional[dict] = None) -> None:
        self._env = env
        self._current: Optional[TrackedProcess] = None
        self._cancels = 0
        self._lock = threading.Lock()

    @property
    def current(self) -> Optional[TrackedProcess]:
        return self._current

    @property
    def generation(self) -> int:
        with self._lock:
            return self._cancels

    def run(self, cmd: Sequence[str], name: str = "",
            generation: Optional[int] = None) -> int:
        with self._lock:
            if generation is None:
                generation = self._cancels
            elif generation != self._cancels:
                return self.CANCELLED

        popen_kwargs = dict(
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            stdin=subprocess.DEVNULL,
            env=self._env,
        )
        if _POSIX:
            popen_kwargs["preexec_fn"] = os.setsid
        try:
            proc = subprocess.Popen(list(cmd), **popen_kwargs)
        except (OSError, ValueError):
            return self.SPAWN_FAILED

        tracked = TrackedProcess(proc, name=name)
        with self._lock:
            cancelled = generation != self._cancels
            if not cancelled:
                self._current = tracked
        if cancelled:
            tracked.kill()
        try:
            return proc.wait()
        finally:
            with self._lock:
                if self._current is tracked:
                    self._current = None

    def cancel(self) -> bool:
        """Kill the process that is currently playing, if any.

        Idempotent. Returns True if a process was killed.
        """
        with self._lock:
            self._cancels += 1
            tracked = self._current
            self._current = None
        if tracked is None:
            return False
        tracked.kill()
        return True
