"""Cross-process locking of the local state file."""

from __future__ import annotations

import logging
import os
import sys
import time
from pathlib import Path
from typing import IO, TYPE_CHECKING

from arm_provisioner.engine.errors import StateLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class StateLock:
    """Exclusive lock on ``<state>.lock``, held for the lifetime of the context.

    With ``timeout=None`` the lock blocks until acquired; otherwise acquisition
    is retried until ``timeout`` seconds have passed, then fails with
    :class:`StateLockError`. The holder's pid is written into the lock file to
    make stuck locks easier to diagnose.
    """

    def __init__(
        self, state_path: Path, *, timeout: float | None = None, poll_interval: float = 0.1
    ) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._file: IO[str] | None = None

    @property
    def path(self) -> Path:
        return self._lock_path

    def __enter__(self) -> StateLock:
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire_with_timeout()
        except Exception as e:
            try:
                self._file.close()
            finally:
                self._file = None
            if isinstance(e, StateLockError):
                raise
            raise StateLockError(str(e)) from e

        self._file.seek(0)
        self._file.truncate()
        self._file.write(f"{os.getpid()}\n")
        self._file.flush()
        logger.debug("Acquired state lock %s", self._lock_path)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._file is None:
            return
        try:
            self._release()
        finally:
            self._file.close()
            self._file = None
            logger.debug("Released state lock %s", self._lock_path)

    def _acquire_with_timeout(self) -> None:
        if self._timeout is None:
            self._acquire(blocking=True)
            return
        deadline = time.monotonic() + self._timeout
        while not self._acquire(blocking=False):
            if time.monotonic() >= deadline:
                raise StateLockError(
                    f"State is locked by another process ({self._lock_path}); "
                    f"gave up after {self._timeout:g}s"
                )
            time.sleep(self._poll_interval)

    def _acquire(self, *, blocking: bool) -> bool:
        if self._file is None:
            raise StateLockError("Lock file is not open")

        if fcntl is not None:
            flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
            try:
                fcntl.flock(self._file.fileno(), flags)
            except BlockingIOError:
                return False
            return True

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            mode = msvcrt.LK_LOCK if blocking else msvcrt.LK_NBLCK
            try:
                msvcrt.locking(self._file.fileno(), mode, 1)
            except OSError:
                if blocking:
                    raise
                return False
            return True

        raise StateLockError("State locking is not supported on this platform")

    def _release(self) -> None:
        if self._file is None:
            return

        if fcntl is not None:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
            return

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            self._file.seek(0)
            msvcrt.locking(self._file.fileno(), msvcrt.LK_UNLCK, 1)
