"""
Per-project lock for Ralf.

An exclusive flock on .ralf/ralf.lock serializes starting, advancing and
driving a loop. flock belongs to the open file description, so the lock
must not be taken twice in one process: the inner open would block on the
outer one.

file_lock is the same mechanism for any lock file; the loop state store uses
it around its read-modify-write and delete.
"""

import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path

from ralf.lib.constants import LOCK_FILE
from ralf.lib.errors import EXIT_LOCKED, RalfError

POLL_INTERVAL = 0.2


class LockTimeout(RalfError):
    """Lock acquisition timed out."""
    exit_code = EXIT_LOCKED


def is_locked(project_dir: Path) -> bool:
    """True if some process currently holds the project lock."""
    lock_file = project_dir / LOCK_FILE
    try:
        with open(lock_file) as fd:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return True
            fcntl.flock(fd, fcntl.LOCK_UN)
    except FileNotFoundError:
        pass
    return False


@contextmanager
def file_lock(lock_file: Path, timeout: float, what: str):
    """
    Hold an exclusive flock on lock_file for the body of the with-block.

    The lock file is left in place on release. Deleting it would let a
    waiter and a newcomer lock two different inodes under the same path.

    Raises:
        LockTimeout: If another process keeps the lock for timeout seconds
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_file, "w") as fd:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise LockTimeout(f"Could not acquire {what} within {timeout}s") from None
                time.sleep(POLL_INTERVAL)

        try:
            fd.write(f"{os.getpid()}\n")
            fd.flush()
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)


@contextmanager
def project_lock(project_dir: Path, timeout: float = 10):
    """Hold the per-project lock (.ralf/ralf.lock)."""
    with file_lock(project_dir / LOCK_FILE, timeout, f"lock for {project_dir}"):
        yield
