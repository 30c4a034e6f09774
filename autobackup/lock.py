"""
Single-run lock based on an OS advisory lock.

The lock is held on an open file descriptor, so the kernel drops it
when the holding process exits for any reason. A crashed run never
leaves a stale lock behind.
"""

import os
import fcntl
import logging
from typing import Optional

from autobackup.errors import AlreadyRunning


logger = logging.getLogger(__name__)


class LockGuard:
    """
    Exclusive, non-blocking lock on a well-known path.

    Usage:
        with LockGuard('/var/run/autobackup.lock'):
            ...
    """

    def __init__(self, path: str):
        """
        Args:
            path: Lock file location; its parent directory is created if needed
        """
        self.path = path
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self):
        """
        Take the lock without blocking.

        Raises:
            AlreadyRunning: If another process (or descriptor) holds it
            OSError: If the lock file cannot be opened
        """
        if self._fd is not None:
            return

        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise AlreadyRunning(self.path)
        except OSError:
            os.close(fd)
            raise

        # Record the holder for operators; the lock itself is the flock
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug(f"Acquired lock {self.path}")

    def release(self):
        """Release the lock. Safe to call more than once."""
        if self._fd is None:
            return

        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug(f"Released lock {self.path}")

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


def is_locked(path: str) -> bool:
    """Return True if some process currently holds the lock at path."""
    if not os.path.exists(path):
        return False

    fd = os.open(path, os.O_RDONLY)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return True
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)
        return False
    finally:
        os.close(fd)
