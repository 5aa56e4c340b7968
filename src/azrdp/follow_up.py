"""Deferred follow-up tasks.

A follow-up is a callback that runs once after a delay ("check the IP again
in 10 seconds"). Each scheduled follow-up returns a handle that can cancel
it; the scheduler tracks pending handles so they can all be cancelled at
shutdown.

Follow-ups run on timer threads, so the caller keeps handling commands while
one is pending. Exceptions raised by a callback are logged and dropped.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class FollowUpHandle:
    """Cancellation handle for one scheduled follow-up."""

    def __init__(
        self,
        name: str,
        timer: threading.Timer,
        on_settled: Callable[["FollowUpHandle"], None] | None = None,
    ) -> None:
        self.name = name
        self._timer = timer
        self._on_settled = on_settled
        self._state_lock = threading.Lock()
        self._started = False
        self._cancelled = False
        self._done = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        """True once the callback has finished or the follow-up was cancelled."""
        return self._done.is_set()

    def cancel(self) -> bool:
        """Cancel the follow-up if it has not started yet.

        Returns:
            True if the callback will not run because of this call
        """
        with self._state_lock:
            if self._started or self._cancelled:
                return False
            self._cancelled = True
        self._timer.cancel()
        self._settle()
        logger.debug(f"Cancelled follow-up {self.name}")
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the follow-up is done. Returns False on timeout."""
        return self._done.wait(timeout)

    def _mark_started(self) -> bool:
        with self._state_lock:
            if self._cancelled:
                return False
            self._started = True
            return True

    def _settle(self) -> None:
        # deregister before waking waiters
        if self._on_settled is not None:
            self._on_settled(self)
        self._done.set()


class FollowUpScheduler:
    """Schedule one-shot delayed callbacks with cancellation handles."""

    def __init__(self) -> None:
        self._pending: set[FollowUpHandle] = set()
        self._lock = threading.Lock()
        self._closed = False

    def schedule(
        self, delay: float, callback: Callable[..., Any], *args: Any, name: str | None = None
    ) -> FollowUpHandle:
        """Run callback(*args) once after delay seconds.

        Raises:
            RuntimeError: If the scheduler has been shut down
        """
        label = name or getattr(callback, "__name__", "follow-up")
        handle_box: list[FollowUpHandle] = []

        def _fire() -> None:
            handle = handle_box[0]
            if not handle._mark_started():
                return
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Follow-up {label} failed: {e}")
            finally:
                handle._settle()

        timer = threading.Timer(delay, _fire)
        timer.daemon = True
        handle = FollowUpHandle(label, timer, on_settled=self._discard)
        handle_box.append(handle)

        with self._lock:
            if self._closed:
                raise RuntimeError("FollowUpScheduler is shut down")
            self._pending.add(handle)

        timer.start()
        logger.debug(f"Scheduled follow-up {label} in {delay}s")
        return handle

    def _discard(self, handle: FollowUpHandle) -> None:
        with self._lock:
            self._pending.discard(handle)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def cancel_all(self) -> int:
        """Cancel every pending follow-up. Returns how many were cancelled."""
        with self._lock:
            handles = list(self._pending)
            self._pending.clear()
        return sum(1 for handle in handles if handle.cancel())

    def shutdown(self) -> None:
        """Cancel pending follow-ups and refuse new ones."""
        with self._lock:
            self._closed = True
        cancelled = self.cancel_all()
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending follow-ups")


__all__ = ["FollowUpHandle", "FollowUpScheduler"]
