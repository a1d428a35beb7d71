"""User handle derivation and challenge generation.

Scheme
------
* A username is accepted as-is (no case folding); blank or over-long names are rejected.
* The WebAuthn user handle is SHA-256 over a domain-separation prefix and the UTF-8
  username. It is stable across restarts and backends, fits the 64-byte ``user.id``
  limit, and does not hand the username itself to authenticators.
* Challenges come straight from the OS CSPRNG via :mod:`secrets`.
"""

from __future__ import annotations

import secrets

from cryptography.hazmat.primitives import hashes

from keyceremony.ceremony.errors import UsernameRequired

MAX_USERNAME_LENGTH = 255
MIN_CHALLENGE_BYTES = 16

# Domain separation for user handles. Changing it orphans every stored credential.
_HANDLE_DOMAIN = b"keyceremony:user-handle:v1\x00"


def normalize_username(username: object) -> str:
    """Return *username* if usable, else raise UsernameRequired."""
    if not isinstance(username, str) or not username.strip():
        raise UsernameRequired("username is missing or blank")
    if len(username) > MAX_USERNAME_LENGTH:
        raise UsernameRequired(f"username exceeds {MAX_USERNAME_LENGTH} characters")
    try:
        username.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise UsernameRequired("username is not valid UTF-8") from exc
    return username


def derive_user_handle(username: str) -> bytes:
    """Derive the 32-byte opaque user handle for *username*."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(_HANDLE_DOMAIN)
    digest.update(username.encode("utf-8"))
    return digest.finalize()


def new_challenge(nbytes: int = 32) -> bytes:
    """Return a fresh random challenge of *nbytes* (at least 16)."""
    if nbytes < MIN_CHALLENGE_BYTES:
        raise ValueError(f"challenges must be at least {MIN_CHALLENGE_BYTES} bytes")
    return secrets.token_bytes(nbytes)
