import uuid

import pytest

from horcrux.cosigner import (
    Cosigner,
    CosignerNonce,
    CosignerSecurity,
    CosignerUUIDNonces,
    Leader,
    cosigner_by_id,
)


class FakeCosigner(Cosigner):
    def __init__(self, cosigner_id, address=""):
        self._id = cosigner_id
        self._address = address

    @property
    def id(self):
        return self._id

    @property
    def address(self):
        return self._address

    def get_pub_key(self, chain_id):
        return b"\x01" * 32

    def verify_signature(self, chain_id, payload, signature):
        return payload == signature

    def get_nonces(self, uuids):
        return [CosignerUUIDNonces(uuid=u) for u in uuids]

    def set_nonces_and_sign(self, request):
        raise RuntimeError("unused")


def test_cosigner_by_id_finds_matching():
    cosigners = [FakeCosigner(1, "tcp://a:1"), FakeCosigner(2, "tcp://b:2"), FakeCosigner(3, "tcp://c:3")]
    found = cosigner_by_id(cosigners, 2)
    assert found is cosigners[1]
    assert found.address == "tcp://b:2"


def test_cosigner_by_id_missing_returns_none():
    assert cosigner_by_id([FakeCosigner(1), FakeCosigner(2)], 7) is None


def test_cosigner_by_id_empty():
    assert cosigner_by_id([], 1) is None


def test_for_id_filters_by_destination():
    u = uuid.uuid4()
    nonces = CosignerUUIDNonces(
        uuid=u,
        nonces=[
            CosignerNonce(source_id=1, destination_id=2, share=b"a"),
            CosignerNonce(source_id=1, destination_id=3, share=b"b"),
            CosignerNonce(source_id=2, destination_id=2, share=b"c"),
        ],
    )
    result = nonces.for_id(2)
    assert result.uuid == u
    assert [n.share for n in result.nonces] == [b"a", b"c"]
    assert all(n.destination_id == 2 for n in result.nonces)
    assert len(nonces.nonces) == 3


def test_for_id_no_match_keeps_uuid():
    u = uuid.uuid4()
    nonces = CosignerUUIDNonces(uuid=u, nonces=[CosignerNonce(source_id=1, destination_id=2)])
    result = nonces.for_id(9)
    assert result.uuid == u
    assert result.nonces == []


def test_abstract_interfaces_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Cosigner()
    with pytest.raises(TypeError):
        CosignerSecurity()
    with pytest.raises(TypeError):
        Leader()


def test_cosigner_by_id_returns_first_of_duplicates():
    first = FakeCosigner(4, "tcp://first:1")
    second = FakeCosigner(4, "tcp://second:1")
    found = cosigner_by_id([FakeCosigner(1), first, second], 4)
    assert found is first
    assert found.address == "tcp://first:1"