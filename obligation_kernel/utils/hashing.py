"""
Deterministic hashing utilities.

All hashing in the obligation kernel must be deterministic and reproducible.
This module provides the canonical hashing functions used throughout.
"""

import hashlib
import json
from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

# Separator that cannot occur in a person id passed through str()
_PATH_SEPARATOR = "\x1f"


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize so 10.50 and 10.5 hash identically
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Decimal, datetime, UUID)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(data: dict | list | Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of ``data``."""
    return hashlib.sha256(canonicalize_json(data).encode("utf-8")).hexdigest()


def lineage_hash(path: Sequence[str]) -> str:
    """
    SHA-256 hex digest identifying one root-to-descendant path.

    Two routes that reach the same descendant at the same generation (for
    example through two parents who share an ancestor) get different hashes,
    so each route keeps its own obligation record.

    Example:
        lineage_hash(["root", "child", "grandchild"])
    """
    joined = _PATH_SEPARATOR.join(str(p) for p in path)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()
