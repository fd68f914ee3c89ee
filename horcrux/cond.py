"""A broadcast-only condition variable whose waits can time out."""

from __future__ import annotations

import threading


class Cond:
    """Condition variable supporting broadcast and timed waits."""

    def __init__(self, lock):
        self.lock = lock
        self._swap = threading.Lock()
        self._event = threading.Event()

    def notify_event(self) -> threading.Event:
        """Return the event that the next broadcast will set."""
        with self._swap:
            return self._event

    def wait(self) -> None:
        """Release the lock, wait for a broadcast, then re-acquire the lock."""
        event = self.notify_event()
        self.lock.release()
        try:
            event.wait()
        finally:
            self.lock.acquire()

    def wait_with_timeout(self, timeout: float) -> None:
        """Like wait, but give up after timeout seconds."""
        event = self.notify_event()
        self.lock.release()
        try:
            event.wait(timeout)
        finally:
            self.lock.acquire()

    def broadcast(self) -> None:
        """Wake every waiter."""
        with self._swap:
            old, self._event = self._event, threading.Event()
        old.set()