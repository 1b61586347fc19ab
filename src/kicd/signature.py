"""HMAC signing and verification of webhook bodies.

Signatures use the ``<algorithm>=<hex digest>`` form sent in GitHub's
``X-Hub-Signature`` header. Verification accepts a list of keys, newest
first, so an old and a new key can both be honoured while a rotation is
rolling out.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Sequence

DEFAULT_ALGORITHM = "sha1"

SUPPORTED_ALGORITHMS: dict[str, str] = {
    "sha1": "sha1",
    "sha256": "sha256",
}


def create_signature(message: bytes, key: bytes, algorithm: str = DEFAULT_ALGORITHM) -> bytes:
    """Return the raw HMAC digest of *message* under *key*."""
    return hmac.new(key, message, getattr(hashlib, SUPPORTED_ALGORITHMS[algorithm])).digest()


def signature_hash(signature: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Format a raw digest as ``<algorithm>=<hex>``."""
    return f"{algorithm}={signature.hex()}"


def sign(message: bytes, key: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Return the header value a sender would attach to *message*."""
    return signature_hash(create_signature(message, key, algorithm), algorithm)


def derive_repository_key(master_key: bytes, repository: str) -> bytes:
    """Derive the signing key for one repository from a master key."""
    return create_signature(repository.encode(), master_key)


def _normalize(provided: str) -> tuple[str, str] | None:
    """Split a header value into ``(algorithm, "<algorithm>=<hex>")``, lower-cased."""
    prefix, sep, digest = provided.partition("=")
    if not sep:
        return None
    algorithm = prefix.strip().lower()
    if algorithm not in SUPPORTED_ALGORITHMS:
        return None
    return algorithm, f"{algorithm}={digest.strip().lower()}"


def verify_signature(body: bytes, provided: str | None, keys: Sequence[bytes]) -> bool:
    """Check *provided* against the signature of *body* under every key.

    Each candidate is compared in constant time and all candidates are
    compared even after a match, so the response time does not reveal
    which key (if any) matched.
    """
    if not provided or not keys:
        return False

    normalized = _normalize(provided)
    if normalized is None:
        return False

    algorithm, provided_form = normalized
    provided_bytes = provided_form.encode()
    matches = [
        hmac.compare_digest(provided_bytes, sign(body, key, algorithm).encode()) for key in keys
    ]
    return any(matches)
