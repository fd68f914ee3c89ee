"""Cosigner interfaces and the nonce and signature records they exchange."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class CosignerNonce:
    """A nonce share sent from one cosigner to another."""

    source_id: int
    destination_id: int
    pub_key: bytes = b""
    share: bytes = b""
    signature: bytes = b""


@dataclass
class CosignerUUIDNonces:
    """The nonces that belong to one signing round, identified by a UUID."""

    uuid: uuid.UUID
    nonces: list[CosignerNonce] = field(default_factory=list)

    def for_id(self, cosigner_id: int) -> "CosignerUUIDNonces":
        """Return the nonces addressed to the given cosigner."""
        return CosignerUUIDNonces(
            uuid=self.uuid,
            nonces=[n for n in self.nonces if n.destination_id == cosigner_id],
        )


@dataclass
class CosignerSignRequest:
    """Asks a cosigner for its signature share over sign bytes."""

    chain_id: str
    sign_bytes: bytes
    uuid: uuid.UUID
    vote_extension_sign_bytes: bytes = b""
    vote_ext_uuid: uuid.UUID | None = None


@dataclass
class CosignerSignResponse:
    """A cosigner's signature share and the public nonce used for it."""

    timestamp: datetime
    nonce_public: bytes = b""
    signature: bytes = b""
    vote_extension_nonce_public: bytes = b""
    vote_extension_signature: bytes = b""


@dataclass
class CosignerSignBlockResponse:
    """A complete signature over a block and, if any, its vote extension."""

    signature: bytes = b""
    vote_extension_signature: bytes = b""


class Cosigner(ABC):
    """One party of an m-of-n threshold signature."""

    @property
    @abstractmethod
    def id(self) -> int:
        """The shard index, starting at 1."""

    @property
    @abstractmethod
    def address(self) -> str:
        """The p2p URL used for gRPC and raft."""

    @abstractmethod
    def get_pub_key(self, chain_id: str) -> bytes:
        """Return the combined public key for a chain."""

    @abstractmethod
    def verify_signature(self, chain_id: str, payload: bytes, signature: bytes) -> bool:
        """Check a signature against the combined public key."""

    @abstractmethod
    def get_nonces(self, uuids: Sequence[uuid.UUID]) -> list[CosignerUUIDNonces]:
        """Return nonces for every cosigner shard, one set per UUID."""

    @abstractmethod
    def set_nonces_and_sign(self, request) -> CosignerSignResponse:
        """Accept nonces from the other cosigners and sign the requested bytes."""


class CosignerSecurity(ABC):
    """Encryption and authentication of nonces between cosigners."""

    @property
    @abstractmethod
    def id(self) -> int:
        """The ID of this cosigner."""

    @abstractmethod
    def encrypt_and_sign(self, cosigner_id: int, nonce_pub: bytes, nonce_share: bytes) -> CosignerNonce:
        """Encrypt a nonce for the given cosigner and sign it."""

    @abstractmethod
    def decrypt_and_verify(
        self,
        cosigner_id: int,
        encrypted_nonce_pub: bytes,
        encrypted_nonce_share: bytes,
        signature: bytes,
    ) -> tuple[bytes, bytes]:
        """Decrypt a nonce and check that the source cosigner signed it."""


class Leader(ABC):
    """Tells whether this node currently leads the cluster."""

    @abstractmethod
    def is_leader(self) -> bool:
        """Return True when this node is the leader."""


def cosigner_by_id(cosigners: Iterable[Cosigner], cosigner_id: int) -> Cosigner | None:
    """Return the cosigner with the given ID, or None."""
    return next((c for c in cosigners if c.id == cosigner_id), None)