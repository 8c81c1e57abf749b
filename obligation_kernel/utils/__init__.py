"""Utility functions for the obligation kernel."""

from obligation_kernel.utils.hashing import (
    canonicalize_json,
    hash_payload,
    lineage_hash,
)

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "lineage_hash",
]
