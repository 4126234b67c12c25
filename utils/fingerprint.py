"""Content fingerprinting for uploaded image payloads."""

import hashlib


def fingerprint_bytes(content: bytes) -> str:
    """Return the SHA-256 hex digest of the given bytes."""
    return hashlib.sha256(content).hexdigest()
