"""
auth/passwords.py -- Password hashing and verification.

bcrypt is used directly (no passlib wrapper). The work factor comes from
Settings.bcrypt_rounds (BCRYPT_ROUNDS, default 12) and is read once at module
load. Each +1 doubles hashing cost, so tests run with BCRYPT_ROUNDS=4.

bcrypt is CPU bound. Callers on the request path are synchronous FastAPI
handlers, which FastAPI runs on its worker thread pool, so a slow hash never
stalls the event loop.

Never log the plaintext or the digest.

Layer rule: no imports from api/, policies/, or appsettings/. Import from
core/ is allowed.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

MIN_PASSWORD_LENGTH = 8
# bcrypt rejects input longer than this (bcrypt 5 raises ValueError).
MAX_PASSWORD_BYTES = 72

_ROUNDS: int = get_settings().bcrypt_rounds


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt digest of plain.

    plain must be at most MAX_PASSWORD_BYTES once UTF-8 encoded; new
    passwords are checked against that limit by check_new_password().
    """
    salt = bcrypt.gensalt(rounds=rounds or _ROUNDS)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, digest: str) -> bool:
    """Return True if plain matches digest. Malformed digests return False."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), digest.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization: login verifies against this digest when the email is
# unknown, so response time does not reveal which emails have accounts.
# Computed once at module load so the first login is not measurably slower.
DUMMY_HASH: str = hash_password("securewatch_timing_dummy")
