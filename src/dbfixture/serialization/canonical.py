"""
Canonical value rendering and content fingerprints.

Two concerns live here:
- canonical_value(): the single place where a driver value becomes the
  textual Value stored in a Snapshot. Engines call it once, at capture.
- canonicalize()/fingerprint(): stable JSON and SHA-256 over snapshot and
  fixture documents. Keys are sorted recursively, unicode is NFC-normalized,
  whitespace is compact. List order is kept, so operation order is part of
  a fixture's fingerprint.
"""

import hashlib
import json
import unicodedata
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional


def canonical_value(value: Any) -> Optional[str]:
    """
    Render a database value as its canonical string.

    None stays None (SQL NULL). Booleans become "1"/"0" so that engines
    storing them as integers compare equal.
    """
    if value is None:
        return None

    if isinstance(value, str):
        return value

    if isinstance(value, bool):
        # Handle bool before int (bool is subclass of int)
        return "1" if value else "0"

    if isinstance(value, int):
        return str(value)

    if isinstance(value, float):
        return repr(value)

    if isinstance(value, Decimal):
        return str(value)

    if isinstance(value, datetime):
        return value.isoformat(sep=" ")

    if isinstance(value, (date, time)):
        return value.isoformat()

    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()

    if isinstance(value, uuid.UUID):
        return str(value)

    return str(value)


def canonicalize(obj: Any) -> str:
    """
    Canonicalize a JSON-compatible object to a stable JSON string.

    Args:
        obj: The object to canonicalize

    Returns:
        Canonical JSON string
    """
    return json.dumps(
        _normalize_for_canonical(obj),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
    )


def _normalize_for_canonical(obj: Any) -> Any:
    """Recursively NFC-normalize strings inside dicts and lists."""
    if obj is None:
        return None

    if isinstance(obj, str):
        return unicodedata.normalize("NFC", obj)

    if isinstance(obj, bool):
        return obj

    if isinstance(obj, (int, float)):
        return obj

    if isinstance(obj, dict):
        return {
            _normalize_for_canonical(k): _normalize_for_canonical(v)
            for k, v in obj.items()
        }

    if isinstance(obj, (list, tuple)):
        return [_normalize_for_canonical(item) for item in obj]

    return unicodedata.normalize("NFC", str(obj))


def fingerprint(obj: Any) -> str:
    """
    Compute the SHA-256 of an object's canonical JSON.

    Args:
        obj: A snapshot/fixture document (``to_dict()`` output) or part of one

    Returns:
        Hex-encoded SHA256 hash string
    """
    return hashlib.sha256(canonicalize(obj).encode("utf-8")).hexdigest()


def snapshot_fingerprint(snapshot) -> str:
    """Fingerprint of a snapshot's tables; ``captured_at`` is excluded."""
    return fingerprint(snapshot.to_dict()["tables"])
