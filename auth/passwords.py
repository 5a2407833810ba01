"""
auth/passwords.py -- Password hashing and password strength policy.

Hashing: bcrypt used directly (no passlib wrapper). bcrypt is salted per hash
and the salt is embedded in the digest, so no separate salt column exists.
checkpw compares in constant time. The cost factor is injected so tests can
run at the minimum cost (4) while production keeps 12.

bcrypt only considers the first 72 bytes of input, and bcrypt 4.x+ raises on
longer input. The strength policy rejects such passwords up front so hash()
never sees one.

The dummy digest backs timing equalization in the login flow: when the email
is unknown the engine still runs verify() against it, so response time does
not reveal whether an account exists.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import re

import bcrypt

_MAX_BCRYPT_BYTES = 72
_MIN_LENGTH = 8

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_SPECIAL = re.compile(r"[@$!%*?&#]")

# Compared case-insensitively.
_COMMON_PASSWORDS = frozenset(
    {
        "password",
        "password123",
        "12345678",
        "qwerty",
        "abc123",
        "monkey",
        "1234567890",
        "letmein",
        "trustno1",
        "dragon",
        "baseball",
        "iloveyou",
        "master",
        "sunshine",
        "ashley",
        "bailey",
        "passw0rd",
        "shadow",
        "123123",
        "654321",
    }
)


class PasswordHasher:
    """One-way salted hash and constant-time verify."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("identity_timing_dummy")

    def hash(self, plain: str) -> str:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, digest: str) -> bool:
        """Return True if plain matches digest. Malformed digests verify False."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            return False

    def burn(self, plain: str) -> None:
        """Spend one verify's worth of time against the dummy digest."""
        self.verify(plain, self._dummy_hash)


def password_policy_errors(password: str) -> list[str]:
    """Return every strength rule the password violates (empty list = acceptable)."""
    if not password or not password.strip():
        return ["Password is required"]

    errors: list[str] = []
    if len(password) < _MIN_LENGTH:
        errors.append(f"Password must be at least {_MIN_LENGTH} characters long")
    if len(password.encode("utf-8")) > _MAX_BCRYPT_BYTES:
        errors.append(f"Password must not exceed {_MAX_BCRYPT_BYTES} bytes")
    if not _UPPER.search(password):
        errors.append("Password must contain at least one uppercase letter")
    if not _LOWER.search(password):
        errors.append("Password must contain at least one lowercase letter")
    if not _DIGIT.search(password):
        errors.append("Password must contain at least one digit")
    if not _SPECIAL.search(password):
        errors.append("Password must contain at least one special character (@$!%*?&#)")
    if password.lower() in _COMMON_PASSWORDS:
        errors.append("This password is too common. Please choose a more secure password")
    return errors
