"""
Canonical value rendering and content fingerprints.
"""

from .canonical import canonical_value, canonicalize, fingerprint, snapshot_fingerprint

__all__ = ["canonical_value", "canonicalize", "fingerprint", "snapshot_fingerprint"]
