"""
auth/passwords.py -- Password strength policy and bcrypt hashing.

Security design decisions:
  Policy first: check_strength() runs before any hashing so a weak password
      is rejected without paying bcrypt's work factor.

  bcrypt directly (no passlib wrapper): the salt is generated per call by
      bcrypt.gensalt() and embedded in the 60-char digest, so verification
      needs no separate salt column. Cost factor defaults to 12.

  72-byte limit: bcrypt only looks at the first 72 bytes and current releases
      refuse longer input outright. The policy rejects such passwords at
      registration, and verify() answers False for them instead of letting
      bcrypt's ValueError be mistaken for a corrupt digest.

  verify() returns False on mismatch and raises CorruptDigestError only when
      the stored digest itself is malformed.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import re

import bcrypt

from auth.errors import CorruptDigestError, WeakPasswordError

SYMBOLS = "!@#$%^&*-+?"
MIN_LENGTH = 8
MAX_BYTES = 72

_LOWER = re.compile(r"[a-z]")
_UPPER = re.compile(r"[A-Z]")
_DIGIT = re.compile(r"[0-9]")
_SYMBOL = re.compile("[" + re.escape(SYMBOLS) + "]")


def check_strength(password: str) -> None:
    """Raise WeakPasswordError unless the password satisfies the creation policy."""
    if (
        not isinstance(password, str)
        or len(password) < MIN_LENGTH
        or len(password.encode("utf-8")) > MAX_BYTES
        or not _LOWER.search(password)
        or not _UPPER.search(password)
        or not _DIGIT.search(password)
        or not _SYMBOL.search(password)
    ):
        raise WeakPasswordError()


class PasswordHasher:
    """Salted, iterated one-way hashing with a fixed bcrypt cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, password: str) -> str:
        """Return a bcrypt digest of a policy-valid password."""
        check_strength(password)
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, digest: str) -> bool:
        """Constant-time check of a password against a stored digest."""
        if not isinstance(digest, str) or not digest.startswith("$2"):
            raise CorruptDigestError(detail="stored digest is not a bcrypt hash")
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, digest.encode("utf-8"))
        except ValueError as exc:
            raise CorruptDigestError(detail=str(exc)) from exc

    def dummy_digest(self) -> str:
        """A digest no real password matches, at this hasher's cost factor.

        Used to equalize login timing for unknown identifiers.
        """
        return bcrypt.hashpw(b"tokenward_timing_dummy", bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
