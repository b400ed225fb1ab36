from __future__ import annotations

import base64
import hashlib
import os


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def short_nonce(nonce: str) -> str:
    """Log-safe prefix of a nonce."""
    return (nonce or "")[:8]
