"""Ed25519 key shards of a threshold signer and their JSON file format."""

from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass

ED25519_PUBKEY_SIZE = 32
_AMINO_ED25519_PREFIX = bytes.fromhex("1624de64")


class KeyDecodeError(ValueError):
    """A key file or public key encoding that could not be decoded."""


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise KeyDecodeError("unexpected end of data")
        if shift >= 64:
            raise KeyDecodeError("integer overflow")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7


def encode_pubkey_proto(pubkey: bytes) -> bytes:
    """Encode an ed25519 public key as a protobuf PublicKey message."""
    return b"\x0a" + _encode_varint(len(pubkey)) + bytes(pubkey)


def _decode_proto(data: bytes) -> bytes:
    pos = 0
    ed25519: bytes | None = None
    while pos < len(data):
        tag, pos = _read_varint(data, pos)
        field_number, wire_type = tag >> 3, tag & 0x7
        if field_number == 0:
            raise KeyDecodeError("illegal tag 0")
        if field_number in (1, 2) and wire_type != 2:
            raise KeyDecodeError(f"wrong wireType = {wire_type} for field {field_number}")
        if wire_type == 0:
            _, pos = _read_varint(data, pos)
        elif wire_type == 1:
            pos += 8
        elif wire_type == 5:
            pos += 4
        elif wire_type == 2:
            length, pos = _read_varint(data, pos)
            end = pos + length
            if end > len(data):
                raise KeyDecodeError("unexpected end of data")
            if field_number == 1:
                ed25519 = data[pos:end]
            elif field_number == 2:
                ed25519 = None
            pos = end
        else:
            raise KeyDecodeError(f"illegal wireType {wire_type}")
        if pos > len(data):
            raise KeyDecodeError("unexpected end of data")
    if ed25519 is None:
        raise KeyDecodeError("fromproto: key type is not supported")
    if len(ed25519) != ED25519_PUBKEY_SIZE:
        raise KeyDecodeError(
            f"invalid size for PubKeyEd25519. Got {len(ed25519)}, expected {ED25519_PUBKEY_SIZE}"
        )
    return bytes(ed25519)


def _decode_amino(data: bytes) -> bytes:
    if not data.startswith(_AMINO_ED25519_PREFIX):
        raise KeyDecodeError("unrecognized amino prefix")
    length, pos = _read_varint(data, len(_AMINO_ED25519_PREFIX))
    if length != ED25519_PUBKEY_SIZE or pos + length != len(data):
        raise KeyDecodeError("invalid amino ed25519 public key")
    return bytes(data[pos:])


def decode_pubkey(data: bytes) -> bytes:
    """Decode an ed25519 public key from protobuf, falling back to legacy amino."""
    try:
        return _decode_proto(data)
    except KeyDecodeError as proto_err:
        try:
            return _decode_amino(data)
        except KeyDecodeError:
            raise proto_err from None


def _b64decode(value, name: str) -> bytes:
    if value is None:
        return b""
    if not isinstance(value, str):
        raise KeyDecodeError(f"{name} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as err:
        raise KeyDecodeError(f"invalid base64 in {name}: {err}") from err


@dataclass
class CosignerEd25519Key:
    """One shard of an ed25519 key for an m-of-n threshold signer."""

    pub_key: bytes
    private_shard: bytes
    id: int

    def to_json(self) -> str:
        """Serialise to the compact JSON stored in shard files."""
        return json.dumps(
            {
                "pubKey": base64.b64encode(encode_pubkey_proto(self.pub_key)).decode("ascii"),
                "privateShard": base64.b64encode(self.private_shard).decode("ascii"),
                "id": self.id,
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> "CosignerEd25519Key":
        """Parse a shard file's JSON."""
        data = json.loads(text)
        if not isinstance(data, dict):
            raise KeyDecodeError("key file must hold a JSON object")
        key_id = data.get("id") or 0
        if not isinstance(key_id, int) or isinstance(key_id, bool):
            raise KeyDecodeError("id must be an integer")
        return cls(
            pub_key=decode_pubkey(_b64decode(data.get("pubKey"), "pubKey")),
            private_shard=_b64decode(data.get("privateShard"), "privateShard"),
            id=key_id,
        )


def load_cosigner_ed25519_key(path: str) -> CosignerEd25519Key:
    """Read a shard from a file."""
    with open(path, "rb") as fh:
        return CosignerEd25519Key.from_json(fh.read())


def write_cosigner_ed25519_shard_file(key: CosignerEd25519Key, path: str) -> None:
    """Write a shard to a file readable only by its owner."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(key.to_json())