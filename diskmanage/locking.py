"""Node-wide lock serialising destructive disk operations."""

import errno
import fcntl
import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, TypeVar

from .config import DEFAULT_CONFIG, DiskConfig
from .errors import LockTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar('T')

POLL_INTERVAL = 0.1

# lock files held by the current thread, with nesting depth
_held = threading.local()


@contextmanager
def disk_lock(lock_file: str = DEFAULT_CONFIG.lock_file,
              timeout: float = DEFAULT_CONFIG.lock_timeout) -> Iterator[None]:
    """
    Hold an exclusive flock on lock_file for the duration of the block.

    The file only serves as a mutex, its content is never touched. Nested
    use from the thread already holding the lock runs the block directly.

    Raises:
        LockTimeoutError: If the lock is still held by someone else after timeout seconds
    """
    depth = getattr(_held, 'depth', None)
    if depth is None:
        depth = _held.depth = {}
    if depth.get(lock_file):
        depth[lock_file] += 1
        try:
            yield
        finally:
            depth[lock_file] -= 1
        return

    fd = os.open(lock_file, os.O_CREAT | os.O_RDWR, 0o600)
    try:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError as e:
                if e.errno not in (errno.EAGAIN, errno.EACCES):
                    raise
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(f"can't lock file '{lock_file}' - got timeout") from e
                time.sleep(POLL_INTERVAL)

        logger.debug(f"Acquired disk lock {lock_file}")
        depth[lock_file] = 1
        try:
            yield
        finally:
            depth.pop(lock_file, None)
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug(f"Released disk lock {lock_file}")
    finally:
        os.close(fd)


def locked_disk_action(action: Callable[..., T], *args: Any,
                       config: Optional[DiskConfig] = None, **kwargs: Any) -> T:
    """
    Run action(*args, **kwargs) while holding the node-wide disk lock.

    Failures of the action propagate unchanged after the lock is released.
    """
    config = config or DEFAULT_CONFIG
    with disk_lock(config.lock_file, config.lock_timeout):
        return action(*args, **kwargs)
