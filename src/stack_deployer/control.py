"""Run control: overall deadline, deferred cancellation, and the state lock."""

from __future__ import annotations

import os
import signal
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, TextIO

from .errors import CancelledError, CollaboratorTimeout, StateLockedError
from .utils.logging import get_logger

logger = get_logger(__name__)


if os.name == "nt":
    import msvcrt

    def _try_lock(handle: TextIO) -> bool:
        handle.seek(0)
        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _unlock(handle: TextIO) -> None:
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _try_lock(handle: TextIO) -> bool:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _unlock(handle: TextIO) -> None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class Deadline:
    """Overall time budget shared by every collaborator call in one run."""

    def __init__(self, timeout_seconds: Optional[float] = None, clock=time.monotonic) -> None:
        self._clock = clock
        self.timeout_seconds = timeout_seconds
        self._started = clock()

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when the run is unbounded."""
        if self.timeout_seconds is None:
            return None
        return max(self.timeout_seconds - (self._clock() - self._started), 0.0)

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0


class CancellationToken:
    """
    Records operator interrupts.

    Outside a `deferred()` block an interrupt behaves as usual
    (KeyboardInterrupt). Inside one, the interrupt is only recorded; the
    pipeline checks `raise_if_cancelled` before starting its next phase.
    """

    def __init__(self) -> None:
        self._requested = False
        self._deferring = False

    @property
    def requested(self) -> bool:
        return self._requested

    def cancel(self) -> None:
        self._requested = True

    def raise_if_cancelled(self, before: str) -> None:
        if self._requested:
            raise CancelledError(before)

    @contextmanager
    def deferred(self) -> Iterator[None]:
        """Hold SIGINT until the enclosed (mutating) call returns."""
        if threading.current_thread() is not threading.main_thread() or self._deferring:
            yield
            return

        def _record(signum, frame) -> None:
            logger.warning("⚠️  Interrupt received; waiting for the in-flight operation to return")
            self._requested = True

        previous = signal.signal(signal.SIGINT, _record)
        self._deferring = True
        try:
            yield
        finally:
            self._deferring = False
            signal.signal(signal.SIGINT, previous)


class StateLock:
    """Advisory single-writer lock around the local state artifacts."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._handle: Optional[TextIO] = None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+", encoding="utf-8")
        if not _try_lock(handle):
            try:
                handle.seek(0)
                holder = handle.read().strip() or "another process"
            except OSError:
                holder = "another process"
            handle.close()
            raise StateLockedError(
                f"state is locked by {holder}",
                remediation=(
                    "Wait for the other stack-deployer run to finish. "
                    f"If none is running, remove {self.path}."
                ),
            )
        handle.seek(0)
        handle.truncate()
        handle.write(f"pid {os.getpid()}\n")
        handle.flush()
        self._handle = handle

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            self._handle.seek(0)
            self._handle.truncate()
            _unlock(self._handle)
        finally:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "StateLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class RunControl:
    """Deadline and cancellation handed to every stage of one run."""

    def __init__(
        self,
        deadline: Optional[Deadline] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        self.deadline = deadline or Deadline()
        self.cancellation = cancellation or CancellationToken()

    def remaining(self) -> Optional[float]:
        return self.deadline.remaining()

    def budget(self, what: str) -> Optional[float]:
        """Time left for the next call; raises if the deadline already passed."""
        if self.deadline.expired:
            raise CollaboratorTimeout([what], self.deadline.timeout_seconds or 0)
        return self.deadline.remaining()

    @contextmanager
    def mutating(self) -> Iterator[None]:
        """Wrap a call that mutates remote state: interrupts wait for it."""
        with self.cancellation.deferred():
            yield
