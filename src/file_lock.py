"""
OS advisory file locking with jittered retry.
"""

import fcntl
from contextlib import contextmanager
from typing import BinaryIO, Iterator

import structlog

from utils import jittered_backoff

logger = structlog.get_logger()

RETRY_MIN_S = 0.0
RETRY_MAX_S = 0.1


def lock_exclusive(handle: BinaryIO, retry_min_s: float = RETRY_MIN_S, retry_max_s: float = RETRY_MAX_S) -> int:
    """
    Take an exclusive flock on an open handle, retrying until it is free.

    Returns the number of retries. Errors other than contention propagate.
    """
    attempts = 0
    while True:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            attempts += 1
            jittered_backoff(retry_min_s, retry_max_s)

    if attempts:
        logger.debug("file_lock_contended", path=getattr(handle, "name", None), retries=attempts)
    return attempts


def unlock(handle: BinaryIO) -> None:
    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


@contextmanager
def locked(handle: BinaryIO, retry_min_s: float = RETRY_MIN_S, retry_max_s: float = RETRY_MAX_S) -> Iterator[BinaryIO]:
    lock_exclusive(handle, retry_min_s, retry_max_s)
    try:
        yield handle
    finally:
        unlock(handle)
