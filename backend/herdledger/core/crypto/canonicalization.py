"""Canonicalization helpers for stable cross-platform hashing/signing.

Audit payloads arrive from many domain handlers (animals, treatments, sales,
lab tests) and routinely contain ``datetime``, ``Decimal`` and ``UUID`` values.
They are coerced to JSON-native types here, then serialized with RFC 8785
(JCS) so that structurally equal payloads always produce identical bytes.
"""

from __future__ import annotations

import base64
import hashlib
import math
from collections.abc import Mapping
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

import rfc8785

CANONICALIZATION_RFC8785 = "rfc8785"
SHA256_ALGORITHM = "sha-256"
# Largest integer JSON numbers carry exactly; rfc8785 rejects ints beyond it.
MAX_SAFE_INTEGER = 2**53 - 1


class CanonicalizationError(ValueError):
    """Raised when a value cannot be represented in canonical JSON."""


def format_timestamp(value: datetime) -> str:
    """Render a datetime as UTC ISO 8601 with microseconds and a ``Z`` suffix.

    Naive datetimes are interpreted as UTC (SQLite drops the offset on read).
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    rendered = value.astimezone(UTC).isoformat(timespec="microseconds")
    return rendered.replace("+00:00", "Z")


def normalize_for_hashing(value: Any) -> Any:
    """Coerce ``value`` recursively into JSON-native types.

    Raises
    ------
    CanonicalizationError
        If a value has no canonical representation.
    """
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, Enum):
        return normalize_for_hashing(value.value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CanonicalizationError(f"Non-finite float {value!r} cannot be canonicalized")
        if value.is_integer() and abs(value) <= MAX_SAFE_INTEGER:
            return int(value)
        return value
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise CanonicalizationError(f"Non-finite decimal {value!r} cannot be canonicalized")
        if value == value.to_integral_value() and abs(value) <= MAX_SAFE_INTEGER:
            return int(value)
        return float(value)
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Mapping):
        return {str(key): normalize_for_hashing(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_for_hashing(item) for item in value]
    if isinstance(value, (set, frozenset)):
        items = [normalize_for_hashing(item) for item in value]
        return sorted(items, key=canonicalize_jcs_bytes)
    raise CanonicalizationError(f"Unsupported type for canonical JSON: {type(value).__name__}")


def canonicalize_jcs_bytes(data: Any) -> bytes:
    """Return RFC 8785 (JCS) canonical bytes."""
    try:
        canonical = rfc8785.dumps(normalize_for_hashing(data))
    except CanonicalizationError:
        raise
    except (TypeError, ValueError) as exc:
        raise CanonicalizationError(str(exc)) from exc
    if isinstance(canonical, bytes):
        return canonical
    return str(canonical).encode("utf-8")


def sha256_hex_jcs(data: Any) -> str:
    """Compute SHA-256 hex digest over RFC 8785 canonical bytes."""
    return hashlib.sha256(canonicalize_jcs_bytes(data)).hexdigest()
