from __future__ import annotations

import hashlib

HASH_ALGORITHM = "sha256"
DIGEST_LENGTH = 64


def fingerprint(data: bytes) -> str:
    """Hex digest of raw image bytes. Traceability aid only, never a uniqueness key."""
    return hashlib.new(HASH_ALGORITHM, data).hexdigest()
