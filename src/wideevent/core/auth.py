"""Bearer credential helpers.

Only the SHA-256 digest of a key and a short display prefix are ever stored.
"""

import hashlib
import uuid

KEY_PREFIX = "we_"
DISPLAY_PREFIX_LENGTH = 8


def generate_api_key() -> str:
    """Return a new opaque bearer token."""
    return KEY_PREFIX + uuid.uuid4().hex


def hash_api_key(key: str) -> str:
    """Return the SHA-256 hex digest used to look a key up."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def display_prefix(key: str) -> str:
    """Return the non-secret prefix shown in listings."""
    return key[:DISPLAY_PREFIX_LENGTH]


def parse_bearer(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None
