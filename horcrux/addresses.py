"""Helpers that turn cosigner p2p URLs into dialable addresses."""

from __future__ import annotations

from collections.abc import Iterable

from .parsing import parse_url


def sanitize_address(address: str) -> str:
    """Return the host[:port] part of a URL."""
    return parse_url(address).host


def multi_address(addresses: Iterable[str]) -> str:
    """Join the hosts of several URLs into one multi:/// address."""
    return "multi:///" + ",".join(sanitize_address(a) for a in addresses)