import threading
import time
import uuid
from datetime import datetime

import pytest

from horcrux.cosigner import (
    Cosigner,
    CosignerNonce,
    CosignerSignResponse,
    CosignerUUIDNonces,
    Leader,
)
from horcrux.nonce_cache import (
    CachedNonce,
    CosignerNonceCache,
    CosignerNoncesRel,
    MovingAverage,
    NonceCache,
    NoNoncesError,
)


class FakeCosigner(Cosigner):
    def __init__(self, cosigner_id, total=3, fail=False):
        self._id = cosigner_id
        self.total = total
        self.fail = fail

    @property
    def id(self):
        return self._id

    @property
    def address(self):
        return f"tcp://127.0.0.1:{2221 + self._id}"

    def get_pub_key(self, chain_id):
        return b""

    def verify_signature(self, chain_id, payload, signature):
        return False

    def get_nonces(self, uuids):
        if self.fail:
            raise ConnectionError("unreachable")
        return [
            CosignerUUIDNonces(
                uuid=u,
                nonces=[CosignerNonce(source_id=self._id, destination_id=d) for d in range(1, self.total + 1)],
            )
            for u in uuids
        ]

    def set_nonces_and_sign(self, request):
        return CosignerSignResponse(timestamp=datetime.now())


class FakeLeader(Leader):
    def __init__(self, leading=True):
        self.leading = leading

    def is_leader(self):
        return self.leading


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class CountingPruner:
    def __init__(self):
        self.cache = None
        self.count = 0
        self.pruned = 0

    def prune_nonces(self):
        pruned = self.cache.prune_nonces()
        self.count += 1
        self.pruned += pruned
        return pruned


@pytest.fixture
def cosigners():
    return [FakeCosigner(i) for i in (1, 2, 3)]


def test_nonce_cache_add_delete():
    nc = NonceCache()
    ids = [uuid.uuid4() for _ in range(10)]
    for u in ids:
        nc.add(CachedNonce(uuid=u, expiration=time.monotonic() + 1))
    nc.delete(nc.size() - 1)
    nc.delete(0)
    assert nc.size() == 8
    assert [n.uuid for n in nc] == ids[1:9]


def test_moving_average():
    ma = MovingAverage(12.0)

    ma.add(3.0, 500)
    assert len(ma.items) == 1
    assert ma.average() == 500.0

    ma.add(3.0, 100)
    assert len(ma.items) == 2
    assert ma.average() == 300.0

    ma.add(6.0, 600)
    assert len(ma.items) == 3
    assert ma.average() == 450.0

    ma.add(3.0, 500)
    assert len(ma.items) == 3
    assert ma.average() == 450.0

    ma.add(6.0, 500)
    assert len(ma.items) == 3
    assert ma.average() == 540.0

    for _ in range(5):
        ma.add(2.5, 1000)
    assert len(ma.items) == 5
    assert ma.average() == 1000.0


def test_clear_nonces(cosigners):
    cnc = CosignerNonceCache(cosigners, FakeLeader(), 2)
    for _ in range(10):
        cnc.cache.add(CachedNonce(
            uuid=uuid.uuid4(),
            expiration=time.monotonic() + 1,
            nonces=[CosignerNoncesRel(cosigners[0]), CosignerNoncesRel(cosigners[1])],
        ))
        cnc.cache.add(CachedNonce(
            uuid=uuid.uuid4(),
            expiration=time.monotonic() + 1,
            nonces=[CosignerNoncesRel(c) for c in cosigners],
        ))
    assert cnc.cache.size() == 20

    cnc.clear_nonces(cosigners[0])
    assert cnc.cache.size() == 10
    for cached in cnc.cache:
        assert [rel.cosigner for rel in cached.nonces] == [cosigners[1], cosigners[2]]

    cnc.clear_nonces(cosigners[1])
    assert cnc.cache.size() == 0


_UUIDS = [
    uuid.UUID("d6ef381f-6234-432d-b204-d8957fe60360"),
    uuid.UUID("cdc3673d-7946-459a-b458-cbbde0eecd04"),
    uuid.UUID("38c6a201-0b8b-46eb-ab69-c7b2716d408e"),
    uuid.UUID("5caf5ab2-d460-430f-87fa-8ed2983ae8fb"),
]


@pytest.mark.parametrize(
    "offsets, expected_remaining",
    [
        ([], []),
        ([1, 2, 3, 4], [0, 1, 2, 3]),
        ([-1, 2, 3, 4], [1, 2, 3]),
        ([-1, -1, -1, 4], [3]),
        ([-1, -1, -1, -1], []),
    ],
)
def test_nonce_cache_prune(offsets, expected_remaining):
    clock = FakeClock()
    nonces = [CachedNonce(uuid=u, expiration=clock.now + off) for u, off in zip(_UUIDS, offsets)]
    nc = NonceCache(nonces, clock=clock)
    pruned = nc.prune_nonces()
    assert pruned == len(offsets) - len(expected_remaining)
    assert [n.uuid for n in nc] == [_UUIDS[i] for i in expected_remaining]


def test_target():
    cnc = CosignerNonceCache([], FakeLeader(), 2, get_nonces_interval=3.0, get_nonces_timeout=4.0)
    assert cnc.target(0) == 1
    assert cnc.target(float("nan")) == 1
    assert cnc.target(600) == 85


def test_load_n_and_get_nonces(cosigners):
    cnc = CosignerNonceCache(cosigners, FakeLeader(), 2)
    cnc.load_n(5)
    assert cnc.cache.size() == 5
    first = next(iter(cnc.cache))
    result = cnc.get_nonces([cosigners[0], cosigners[1]])
    assert result.uuid == first.uuid
    assert [(n.source_id, n.destination_id) for n in result.nonces] == [
        (1, 1), (1, 2), (1, 3), (2, 1), (2, 2), (2, 3),
    ]
    assert cnc.cache.size() == 4


def test_load_zero_is_noop(cosigners):
    cnc = CosignerNonceCache(cosigners, FakeLeader(), 2)
    cnc.load_n(0)
    assert cnc.cache.size() == 0


def test_load_n_with_one_failing_cosigner():
    peers = [FakeCosigner(1), FakeCosigner(2, fail=True), FakeCosigner(3)]
    cnc = CosignerNonceCache(peers, FakeLeader(), 2)
    cnc.load_n(3)
    assert cnc.cache.size() == 3
    for cached in cnc.cache:
        assert [rel.cosigner.id for rel in cached.nonces] == [1, 3]
    with pytest.raises(NoNoncesError):
        cnc.get_nonces([peers[0], peers[1]])


def test_load_n_below_threshold_adds_nothing():
    peers = [FakeCosigner(1), FakeCosigner(2, fail=True), FakeCosigner(3, fail=True)]
    cnc = CosignerNonceCache(peers, FakeLeader(), 2)
    cnc.load_n(4)
    assert cnc.cache.size() == 0


def test_get_nonces_empty_raises(cosigners):
    cnc = CosignerNonceCache(cosigners, FakeLeader(), 2)
    with pytest.raises(NoNoncesError, match=r"no nonces found involving cosigners \[1 2\]"):
        cnc.get_nonces([cosigners[0], cosigners[1]])
    assert cnc.last_reconcile_nonces == 1


def test_reconcile_not_leader_only_prunes(cosigners):
    pruner = CountingPruner()
    cnc = CosignerNonceCache(cosigners, FakeLeader(False), 2, pruner=pruner)
    pruner.cache = cnc.cache
    cnc.reconcile()
    assert pruner.count == 1
    assert cnc.cache.size() == 0


def test_reconcile_as_leader_loads_target(cosigners):
    clock = FakeClock()
    cnc = CosignerNonceCache(cosigners, FakeLeader(), 2, clock=clock)
    clock.now += 1.0
    cnc.reconcile()
    assert cnc.cache.size() == 1
    assert cnc.last_reconcile_nonces == 1


def test_expired_nonces_are_pruned(cosigners):
    clock = FakeClock()
    pruner = CountingPruner()
    cnc = CosignerNonceCache(cosigners, FakeLeader(False), 2, nonce_expiration=1.0, pruner=pruner, clock=clock)
    pruner.cache = cnc.cache
    cnc.load_n(100)
    clock.now += 0.5
    cnc.load_n(100)
    clock.now += 0.6
    cnc.reconcile()
    assert pruner.pruned == 100
    assert cnc.cache.size() == 100


def test_start_reloads_when_empty(cosigners):
    cnc = CosignerNonceCache(cosigners, FakeLeader(), 2, get_nonces_interval=30.0)
    cnc.load_n(1)
    stop = threading.Event()
    worker = threading.Thread(target=cnc.start, args=(stop,), daemon=True)
    worker.start()
    time.sleep(0.05)
    cnc.get_nonces([cosigners[0], cosigners[1]])
    deadline = time.monotonic() + 5
    while cnc.cache.size() == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    stop.set()
    worker.join(timeout=5)
    assert cnc.cache.size() > 0
    assert not worker.is_alive()