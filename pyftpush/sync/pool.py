"""Bounded pool of lazily created FTP sessions.

The pool holds a fixed number of slots. A slot builds its session on first
use, so creating the pool never touches the network. ``lease()`` blocks
while every slot is checked out; this is the only backpressure mechanism
for background transfers.
"""

import logging
import queue
import threading
from typing import Any, Callable, Generic, Optional, TypeVar

from ..exceptions import PoolDisposalError, PoolError

logger = logging.getLogger(__name__)

SessionT = TypeVar("SessionT")


class _LazySlot(Generic[SessionT]):
    """A pool slot whose session is built on first access."""

    def __init__(self, factory: Callable[[], SessionT], index: int):
        self._factory = factory
        self._lock = threading.Lock()
        self._session: Optional[SessionT] = None
        self.index = index

    def get(self) -> SessionT:
        # Construction failures are not cached; the next access tries again.
        with self._lock:
            if self._session is None:
                logger.debug("Creating pooled session #%d", self.index)
                self._session = self._factory()
            return self._session

    def peek(self) -> Optional[SessionT]:
        return self._session


class ConnectionLease(Generic[SessionT]):
    """Exclusive ownership of one pooled session until released.

    Releasing is idempotent, so it is safe to call ``release()`` from both
    a normal path and a cleanup path.

    Examples:
        >>> with pool.lease() as lease:
        ...     lease.session.delete_file("old.txt")
    """

    def __init__(
        self,
        slot: _LazySlot[SessionT],
        release: Callable[[_LazySlot[SessionT]], None],
    ):
        self._slot = slot
        self._release = release
        self._lock = threading.Lock()
        self._released = False

    @property
    def session(self) -> SessionT:
        """The leased session, built on first access.

        Raises:
            PoolError: If the lease was already released
        """
        if self._released:
            raise PoolError("Cannot use a session after its lease was released")
        return self._slot.get()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Return the session to the pool (only the first call has an effect)."""
        with self._lock:
            if self._released:
                return
            self._released = True
        self._release(self._slot)

    def __enter__(self) -> "ConnectionLease[SessionT]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()


class ConnectionPool(Generic[SessionT]):
    """Fixed-capacity pool handing out exclusive session leases.

    Invariant: at most ``capacity`` leases are outstanding at any time.
    Every lease must be released before the pool is disposed.
    """

    def __init__(self, factory: Callable[[], SessionT], capacity: int):
        """Initialize the pool.

        Args:
            factory: Zero-argument callable building a connected session
            capacity: Maximum number of sessions (must be at least 1)
        """
        if capacity < 1:
            raise ValueError(f"Pool capacity must be at least 1, got {capacity}")

        self.capacity = capacity
        self._slots = [_LazySlot(factory, index) for index in range(capacity)]
        self._available: "queue.LifoQueue[_LazySlot[SessionT]]" = queue.LifoQueue(
            maxsize=capacity
        )
        for slot in reversed(self._slots):
            self._available.put_nowait(slot)
        self._disposed = False

    @property
    def outstanding(self) -> int:
        """Number of leases currently checked out."""
        return self.capacity - self._available.qsize()

    def lease(self, timeout: Optional[float] = None) -> ConnectionLease[SessionT]:
        """Take a session lease, blocking until one is available.

        Args:
            timeout: Optional maximum wait in seconds (blocks forever if None)

        Returns:
            ConnectionLease wrapping one pooled session

        Raises:
            PoolError: If the pool was disposed or the timeout expired
        """
        if self._disposed:
            raise PoolError("Cannot lease from a disposed pool")
        try:
            slot = self._available.get(timeout=timeout)
        except queue.Empty as e:
            raise PoolError(
                f"No pooled session became available within {timeout}s"
            ) from e
        logger.debug("Leased session #%d", slot.index)
        return ConnectionLease(slot, self._release)

    def _release(self, slot: _LazySlot[SessionT]) -> None:
        if self._disposed:
            self._close_late(slot)
            return
        try:
            self._available.put_nowait(slot)
        except queue.Full as e:
            raise PoolError("More sessions were released than were leased") from e
        logger.debug("Released session #%d", slot.index)

    def dispose(self) -> None:
        """Close every idle session that was created.

        Idle sessions are closed before outstanding leases are reported.
        A session still held by a lease is closed when that lease is released.

        Raises:
            PoolDisposalError: If leases are still outstanding, or if closing
                one or more sessions failed (all failures are collected)
        """
        if self._disposed:
            return
        self._disposed = True

        idle: list[_LazySlot[SessionT]] = []
        while True:
            try:
                idle.append(self._available.get_nowait())
            except queue.Empty:
                break
        outstanding = self.capacity - len(idle)

        errors: list[Exception] = []
        for slot in sorted(idle, key=lambda s: s.index):
            session: Any = slot.peek()
            if session is None:
                continue
            try:
                session.close()
            except Exception as e:
                errors.append(e)

        if outstanding:
            raise PoolDisposalError(
                f"{outstanding} session lease(s) were not released before disposal",
                errors,
            )
        if errors:
            raise PoolDisposalError("Failed to close pooled sessions", errors)

    def _close_late(self, slot: _LazySlot[SessionT]) -> None:
        """Close a session whose lease outlived the pool."""
        session: Any = slot.peek()
        if session is None:
            return
        logger.debug("Closing session #%d released after disposal", slot.index)
        try:
            session.close()
        except Exception as e:
            logger.debug("Closing session #%d failed: %s", slot.index, e)

    def __enter__(self) -> "ConnectionPool[SessionT]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.dispose()
