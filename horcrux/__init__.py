"""Configuration, cosigner records, nonce caching and key shard files for a threshold remote signer."""

__version__ = "3.0.0"

__all__ = [
    "addresses",
    "cli",
    "cond",
    "config",
    "cosigner",
    "cosigner_key",
    "health",
    "nonce_cache",
    "parsing",
]