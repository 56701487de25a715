"""Advisory sentinel-file lock for domain files.

A lock is a ``<file>.lock`` created with ``O_CREAT | O_EXCL``: whoever creates
it holds the domain. Other writers poll until it disappears or the wait runs
out. A lock older than ``stale_after`` seconds is treated as abandoned by a
crashed process. Breaking it renames the file aside first, so a waiter can
never delete a lock that another writer created in the meantime, and a
holder only removes the lock file it created itself.
"""

import os
import time
import uuid
from pathlib import Path

import structlog
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from .errors import LockTimeoutError, StorageIOError

logger = structlog.get_logger()

LOCK_SUFFIX = ".lock"
DEFAULT_TIMEOUT = 5.0
DEFAULT_RETRY_INTERVAL = 0.05
DEFAULT_STALE_AFTER = 30.0


class LockBusy(Exception):
    """Lock file exists and is still fresh."""


def lock_path_for(target: str | Path) -> Path:
    target = Path(target)
    return target.with_name(target.name + LOCK_SUFFIX)


class FileLock:
    """Cross-process lock over one file, usable as a context manager.

    Not reentrant: acquiring twice from the same process times out like any
    other contention.
    """

    def __init__(
        self,
        target: str | Path,
        timeout: float = DEFAULT_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        stale_after: float = DEFAULT_STALE_AFTER,
    ):
        self.target = Path(target)
        self.path = lock_path_for(self.target)
        self.timeout = timeout
        self.retry_interval = retry_interval
        self.stale_after = stale_after
        self._held = False
        self._identity: tuple[int, int] | None = None
        self._token = f"{os.getpid()}\n{uuid.uuid4().hex}\n"

    @property
    def held(self) -> bool:
        return self._held

    def is_stale(self) -> bool:
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        return age > self.stale_after

    def _break_stale(self) -> None:
        """Remove the current lock file if it is older than ``stale_after``."""
        try:
            seen = self.path.stat()
        except FileNotFoundError:
            return
        if time.time() - seen.st_mtime <= self.stale_after:
            return

        aside = self.path.with_name(f"{self.path.name}.{uuid.uuid4().hex[:12]}.stale")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            # Another waiter broke it first
            return
        except OSError as e:
            raise StorageIOError(f"Cannot break lock {self.path}: {e}", path=str(self.path)) from e

        try:
            moved = aside.stat()
            if (moved.st_ino, moved.st_dev) != (seen.st_ino, seen.st_dev):
                # A new holder replaced the stale file between stat and rename: put its lock back.
                try:
                    os.link(aside, self.path)
                except FileExistsError:
                    logger.warning("lock_restore_conflict", lock=str(self.path))
                return
            logger.warning("stale_lock_removed", lock=str(self.path))
        except OSError as e:
            raise StorageIOError(f"Cannot break lock {self.path}: {e}", path=str(self.path)) from e
        finally:
            aside.unlink(missing_ok=True)

    def _try_acquire(self) -> None:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            self._break_stale()
            raise LockBusy(str(self.path))
        except OSError as e:
            raise StorageIOError(f"Cannot create lock {self.path}: {e}", path=str(self.path)) from e
        try:
            st = os.fstat(fd)
            self._identity = (st.st_ino, st.st_dev)
            os.write(fd, self._token.encode())
        finally:
            os.close(fd)

    def owns_lock_file(self) -> bool:
        """True while the lock file on disk is the one this lock created."""
        if self._identity is None:
            return False
        try:
            st = self.path.stat()
            content = self.path.read_text()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageIOError(f"Cannot read lock {self.path}: {e}", path=str(self.path)) from e
        # Inode numbers can be reused once a broken lock is gone; the token cannot.
        return (st.st_ino, st.st_dev) == self._identity and content == self._token

    def acquire(self) -> None:
        retrying = Retrying(
            stop=stop_after_delay(self.timeout),
            wait=wait_fixed(self.retry_interval),
            retry=retry_if_exception_type(LockBusy),
        )
        try:
            retrying(self._try_acquire)
        except RetryError:
            logger.warning("lock_timeout", lock=str(self.path), timeout=self.timeout)
            raise LockTimeoutError(str(self.path), self.timeout) from None
        self._held = True

    def release(self) -> None:
        if not self._held:
            return
        if self.owns_lock_file():
            self.path.unlink(missing_ok=True)
        else:
            logger.warning("lock_lost_before_release", lock=str(self.path))
        self._held = False
        self._identity = None

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
