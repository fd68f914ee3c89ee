"""Leader-side cache of pre-fetched cosigner nonces, sized to keep up with demand."""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Protocol

from .cosigner import Cosigner, CosignerNonce, CosignerUUIDNonces, Leader

DEFAULT_GET_NONCES_INTERVAL = 3.0
DEFAULT_GET_NONCES_TIMEOUT = 4.0
DEFAULT_NONCE_EXPIRATION = 10.0  # half of the local cosigner cache expiration
NONCE_OVERALLOCATION = 1.5


class NoNoncesError(LookupError):
    """No cached nonce set involves all of the requested cosigners."""


@dataclass
class _MovingAverageItem:
    time_since_last_reconcile: float
    nonces_per_minute: float


class MovingAverage:
    """Time-weighted average of nonce consumption over a trailing period (seconds)."""

    def __init__(self, period: float):
        self.period = period
        self.items: list[_MovingAverageItem] = []

    def add(self, time_since_last_reconcile: float, nonces_per_minute: float) -> None:
        """Record a new sample, dropping samples that fall outside the period."""
        duration = time_since_last_reconcile
        keep = len(self.items) - 1
        for i, item in enumerate(self.items):
            duration += item.time_since_last_reconcile
            if duration >= self.period:
                keep = i
                break
        self.items = [_MovingAverageItem(time_since_last_reconcile, nonces_per_minute)] + self.items[: keep + 1]

    def average(self) -> float:
        """Return the weighted average; NaN when no time has been recorded."""
        duration = sum(e.time_since_last_reconcile for e in self.items)
        if duration == 0:
            return math.nan
        weighted = sum(e.nonces_per_minute * e.time_since_last_reconcile for e in self.items)
        return weighted / duration


@dataclass
class CosignerNoncesRel:
    """The nonces one cosigner produced for a cached signing round."""

    cosigner: Cosigner
    nonces: list[CosignerNonce] = field(default_factory=list)


@dataclass
class CachedNonce:
    """A set of nonces, from at least threshold cosigners, ready to sign with."""

    uuid: uuid.UUID
    expiration: float
    nonces: list[CosignerNoncesRel] = field(default_factory=list)


class NoncePruner(Protocol):
    def prune_nonces(self) -> int: ...


class NonceCache:
    """Thread-safe list of cached nonces, oldest first."""

    def __init__(self, nonces: Sequence[CachedNonce] | None = None, clock: Callable[[], float] = time.monotonic):
        self._nonces: list[CachedNonce] = list(nonces or ())
        self._lock = threading.Lock()
        self._clock = clock

    def __len__(self) -> int:
        return self.size()

    def __iter__(self):
        with self._lock:
            return iter(list(self._nonces))

    def size(self) -> int:
        with self._lock:
            return len(self._nonces)

    def add(self, nonce: CachedNonce) -> None:
        with self._lock:
            self._nonces.append(nonce)

    def delete(self, index: int) -> None:
        with self._lock:
            del self._nonces[index]

    def prune_nonces(self) -> int:
        """Drop every nonce before the first unexpired one and return how many were dropped."""
        with self._lock:
            now = self._clock()
            first_live = next((i for i, n in enumerate(self._nonces) if now < n.expiration), None)
            if first_live is None:
                count = len(self._nonces)
                self._nonces = []
            else:
                count = first_live
                del self._nonces[:first_live]
            return count


class CosignerNonceCache:
    """Keeps enough nonces loaded from the cosigners to meet the signing rate."""

    def __init__(
        self,
        cosigners: Sequence[Cosigner],
        leader: Leader,
        threshold: int,
        *,
        get_nonces_interval: float = DEFAULT_GET_NONCES_INTERVAL,
        get_nonces_timeout: float = DEFAULT_GET_NONCES_TIMEOUT,
        nonce_expiration: float = DEFAULT_NONCE_EXPIRATION,
        pruner: NoncePruner | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cosigners = list(cosigners)
        self.leader = leader
        self.threshold = threshold
        self.get_nonces_interval = get_nonces_interval
        self.get_nonces_timeout = get_nonces_timeout
        self.nonce_expiration = nonce_expiration
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self.cache = NonceCache(clock=clock)
        self.pruner = pruner if pruner is not None else self.cache
        self.moving_average = MovingAverage(4 * get_nonces_interval)
        self._counter_lock = threading.Lock()
        self.last_reconcile_nonces = 0
        self.last_reconcile_time = clock()
        self._wake = threading.Event()

    def target(self, nonces_per_minute: float) -> int:
        """Number of nonces to keep ready for the given consumption rate; at least one."""
        value = (nonces_per_minute / 60) * (
            self.get_nonces_interval * NONCE_OVERALLOCATION + self.get_nonces_timeout
        )
        if not math.isfinite(value) or value < 1:
            return 1
        return int(value)

    def reconcile(self) -> None:
        """Prune expired nonces and, when leading, load more to meet demand."""
        pruned = self.pruner.prune_nonces()
        if not self.leader.is_leader():
            return
        remaining = self.cache.size()
        elapsed = self._clock() - self.last_reconcile_time
        with self._counter_lock:
            last_nonces = self.last_reconcile_nonces
        per_min = (last_nonces - remaining - pruned) / (elapsed / 60) if elapsed > 0 else 0.0
        per_min = max(per_min, 0.0)

        self.moving_average.add(elapsed, per_min)
        avg = self.moving_average.average()
        target = self.target(avg)
        additional = target - remaining
        try:
            if additional <= 0:
                additional = 0
                self.logger.debug(
                    "Cosigner nonce cache ahead of demand: target=%d remaining=%d "
                    "nonces_per_min=%s avg_nonces_per_min=%s",
                    target, remaining, per_min, avg,
                )
                return
            self.logger.debug(
                "Loading additional nonces to meet demand: target=%d remaining=%d additional=%d "
                "nonces_per_min=%s avg_nonces_per_min=%s",
                target, remaining, additional, per_min, avg,
            )
            self.load_n(additional)
        finally:
            with self._counter_lock:
                self.last_reconcile_nonces = remaining + additional
            self.last_reconcile_time = self._clock()

    def _fetch(self, cosigner: Cosigner, uuids: list[uuid.UUID]) -> list[CosignerUUIDNonces]:
        return cosigner.get_nonces(uuids)

    def load_n(self, n: int) -> None:
        """Fetch n nonce sets from all cosigners and cache those at least threshold of them supplied."""
        if n <= 0:
            return
        uuids = [uuid.uuid4() for _ in range(n)]
        expiration = self._clock() + self.nonce_expiration

        fetched: list[tuple[Cosigner, list[CosignerUUIDNonces]]] = []
        if self.cosigners:
            pool = ThreadPoolExecutor(max_workers=len(self.cosigners))
            try:
                futures = [(c, pool.submit(self._fetch, c, uuids)) for c in self.cosigners]
                wait([f for _, f in futures], timeout=self.get_nonces_timeout)
                for cosigner, future in futures:
                    if not future.done():
                        future.cancel()
                        self.logger.error("Failed to get nonces from peer %s: timed out", cosigner.id)
                        continue
                    err = future.exception()
                    if err is not None:
                        self.logger.error("Failed to get nonces from peer %s: %s", cosigner.id, err)
                        continue
                    fetched.append((cosigner, future.result()))
            finally:
                pool.shutdown(wait=False)

        added = 0
        for i, nonce_uuid in enumerate(uuids):
            rels = [CosignerNoncesRel(cosigner, list(result[i].nonces)) for cosigner, result in fetched]
            if len(rels) >= self.threshold:
                self.cache.add(CachedNonce(uuid=nonce_uuid, expiration=expiration, nonces=rels))
                added += 1
        self.logger.debug("Loaded nonces: desired=%d added=%d", n, added)

    def start(self, stop_event: threading.Event) -> None:
        """Reconcile every interval, or sooner when the cache runs dry, until stop_event is set."""
        with self._counter_lock:
            self.last_reconcile_nonces = self.cache.size()
        self.last_reconcile_time = self._clock()

        def relay_stop() -> None:
            stop_event.wait()
            self._wake.set()

        threading.Thread(target=relay_stop, daemon=True).start()
        while True:
            self._wake.wait(self.get_nonces_interval)
            self._wake.clear()
            if stop_event.is_set():
                return
            self.reconcile()

    def get_nonces(self, fastest_peers: Sequence[Cosigner]) -> CosignerUUIDNonces:
        """Take the oldest cached nonce set that involves every given peer."""
        cache = self.cache
        with cache._lock:
            for index, cached in enumerate(cache._nonces):
                collected: list[CosignerNonce] = []
                for peer in fastest_peers:
                    rel = next((r for r in cached.nonces if r.cosigner.id == peer.id), None)
                    if rel is None:
                        break
                    collected.extend(rel.nonces)
                else:
                    del cache._nonces[index]
                    if not cache._nonces and not self._wake.is_set():
                        self.logger.debug("Nonce cache is empty, triggering reload")
                        self._wake.set()
                    return CosignerUUIDNonces(uuid=cached.uuid, nonces=collected)

        # counted so the burn rate at the next reconciliation accounts for it
        with self._counter_lock:
            self.last_reconcile_nonces += 1
        ids = " ".join(str(p.id) for p in fastest_peers)
        raise NoNoncesError(f"no nonces found involving cosigners [{ids}]")

    def clear_nonces(self, cosigner: Cosigner) -> None:
        """Remove a cosigner from every cached set, dropping sets that fall below threshold."""
        cache = self.cache
        with cache._lock:
            kept: list[CachedNonce] = []
            for cached in cache._nonces:
                position = next(
                    (j for j, rel in enumerate(cached.nonces) if rel.cosigner.id == cosigner.id), None
                )
                if position is None:
                    kept.append(cached)
                elif len(cached.nonces) - 1 >= self.threshold:
                    del cached.nonces[position]
                    kept.append(cached)
            cache._nonces = kept