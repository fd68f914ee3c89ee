"""Round-trip tracking of remote cosigners, used to pick the fastest peers."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from .cosigner import Cosigner, Leader

PING_INTERVAL = 1.0
PING_TIMEOUT = 1.0
UNHEALTHY = -1


class CosignerHealth:
    """Measures peer round-trip times while this node is the leader.

    Cosigners that offer a ``ping(timeout=...)`` method are measured; the
    others keep whatever round-trip time was last recorded for them.
    """

    def __init__(self, cosigners: Sequence[Cosigner], leader: Leader, logger: logging.Logger | None = None):
        self.cosigners = list(cosigners)
        self.leader = leader
        self.logger = logger or logging.getLogger(__name__)
        self._rtt: dict[int, float] = {}
        self._lock = threading.Lock()

    def _update_rtt(self, cosigner) -> None:
        rtt: float = UNHEALTHY
        start = time.monotonic()
        try:
            cosigner.ping(timeout=PING_TIMEOUT)
        except Exception as err:  # any transport failure marks the peer unhealthy
            self.logger.error("Failed to ping cosigner %s: %s", cosigner.id, err)
        else:
            rtt = time.monotonic() - start
        finally:
            self.record_rtt(cosigner.id, rtt)

    def reconcile(self) -> None:
        """Ping every pingable cosigner concurrently, if this node leads."""
        if not self.leader.is_leader():
            return
        pingable = [c for c in self.cosigners if callable(getattr(c, "ping", None))]
        if not pingable:
            return
        with ThreadPoolExecutor(max_workers=len(pingable)) as pool:
            list(pool.map(self._update_rtt, pingable))

    def start(self, stop_event: threading.Event) -> None:
        """Reconcile once per ping interval until stop_event is set."""
        while True:
            self.reconcile()
            if stop_event.wait(PING_INTERVAL):
                return

    def mark_unhealthy(self, cosigner: Cosigner) -> None:
        """Record a cosigner as unreachable."""
        self.record_rtt(cosigner.id, UNHEALTHY)

    def record_rtt(self, cosigner_id: int, rtt: float) -> None:
        """Store a round-trip time for a cosigner; a negative value means unhealthy."""
        with self._lock:
            self._rtt[cosigner_id] = rtt

    def get_fastest(self) -> list[Cosigner]:
        """Return all cosigners, fastest first, unknown and unhealthy ones last."""
        with self._lock:
            rtts = dict(self._rtt)

        def key(cosigner):
            rtt = rtts.get(cosigner.id)
            healthy = rtt is not None and rtt != UNHEALTHY
            return (not healthy, rtt if healthy else 0)

        return sorted(self.cosigners, key=key)