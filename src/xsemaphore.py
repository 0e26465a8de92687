"""
Binlog Cross-Process Semaphore
TTL-bounded mutual exclusion over a shared expiring key/value store.

Usage:
    mutex = CrossProcessMutex(store, "sql-log")
    ticket = mutex.acquire()
    ... do some action ...
    mutex.release(ticket)
"""

import secrets
import time
from contextlib import contextmanager
from typing import Iterator

import structlog

from kv_store import KeyValueStore
from utils import jittered_backoff

logger = structlog.get_logger()

POLL_MIN_S = 0.01
POLL_MAX_S = 0.2


def new_ticket() -> str:
    """High-resolution clock reading plus random bits."""
    return f"{time.perf_counter_ns()}-{time.time_ns()}-{secrets.token_hex(8)}"


class CrossProcessMutex:
    """
    Named mutex shared by every process that talks to the same store.

    No fairness: any waiter may win next. A crashed holder blocks others for
    at most ``ttl_seconds``, after which the store drops its ticket.
    """

    def __init__(
        self,
        store: KeyValueStore,
        resource_id: str,
        ttl_seconds: float = 300,
        poll_min_s: float = POLL_MIN_S,
        poll_max_s: float = POLL_MAX_S,
    ):
        self.store = store
        self.name = f"semaphore-{resource_id}"
        self.ttl_seconds = ttl_seconds
        self.poll_min_s = poll_min_s
        self.poll_max_s = poll_max_s

    def _wait_until_free(self) -> int:
        waits = 0
        while self.store.exists(self.name):
            jittered_backoff(self.poll_min_s, self.poll_max_s)
            waits += 1
        return waits

    def acquire(self) -> str:
        """Block until the semaphore is held; return the ticket."""
        ticket = new_ticket()
        set_if_absent = getattr(self.store, "set_if_absent", None)
        waits = 0

        while True:
            waits += self._wait_until_free()
            if set_if_absent is not None:
                if set_if_absent(self.name, ticket, self.ttl_seconds):
                    break
            else:
                self.store.set_with_expiry(self.name, ticket, self.ttl_seconds)
                # another writer may have landed between the two calls
                if self.store.get(self.name) == ticket:
                    break
            logger.debug("semaphore_race_lost", name=self.name)

        if waits:
            logger.debug("semaphore_acquired_after_wait", name=self.name, waits=waits)
        return ticket

    def release(self, ticket: str) -> None:
        """Free the semaphore if ``ticket`` still owns it."""
        delete_if_equals = getattr(self.store, "delete_if_equals", None)
        if delete_if_equals is not None:
            if delete_if_equals(self.name, ticket):
                return
            current = self.store.get(self.name)
        else:
            current = self.store.get(self.name)
            if current == ticket:
                # a new holder may slip in between these calls
                self.store.delete(self.name)
                return
        # expired and possibly reassigned; the new holder keeps it
        logger.warning(
            "semaphore_release_mismatch",
            name=self.name,
            ticket=ticket,
            current_holder=current,
        )

    @contextmanager
    def hold(self) -> Iterator[str]:
        ticket = self.acquire()
        try:
            yield ticket
        finally:
            self.release(ticket)
