"""Argon2 password hashing for local accounts."""

from __future__ import annotations

from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError as Argon2VerificationError

from core.env import env_int

_ARGON_TIME_COST = env_int("CHOOSER_ARGON2_TIME_COST", 3, minimum=1)
_ARGON_MEMORY_COST = env_int("CHOOSER_ARGON2_MEMORY_COST", 65536, minimum=8192)
_ARGON_PARALLELISM = env_int("CHOOSER_ARGON2_PARALLELISM", 1, minimum=1)

_PASSWORD_HASHER = PasswordHasher(
    time_cost=_ARGON_TIME_COST,
    memory_cost=_ARGON_MEMORY_COST,
    parallelism=_ARGON_PARALLELISM,
)


def hash_password(password: str) -> str:
    return _PASSWORD_HASHER.hash(password)


def verify_password(password_hash: Optional[str], password: Optional[str]) -> bool:
    if not password_hash or password is None:
        return False
    try:
        return _PASSWORD_HASHER.verify(password_hash, password)
    except (Argon2VerificationError, InvalidHashError):
        return False


__all__ = ["hash_password", "verify_password"]
