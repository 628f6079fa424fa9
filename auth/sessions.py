"""
auth/sessions.py -- Opaque-token issuance and rotation (the anti-replay core).

State machine over one credential row's `opaque` column:

  issue(user_id)                 any -> fresh value          (login)
  verify_and_rotate(user_id, o)  o   -> fresh value          (match)
                                 x   -> NULL + Unauthorized  (mismatch)
                                 NULL/no row -> InvalidOpaque

A captured token therefore works at most once: the first use rotates the
stored value away from the one embedded in the token. A second use is a
mismatch, and a mismatch revokes the whole session so neither the replayed
token nor anything issued since can pass until the user logs in again.

Atomicity: the rotation write is CredentialStore.compare_and_swap_opaque(),
a single conditional UPDATE. Two concurrent requests carrying the same token
can both pass the read-and-compare step, but only one can win the swap. The
loser is treated exactly like a replay.

Safe-state rule: whenever a write fails partway, prefer "no active session"
over "stale valid session" -- attempt to clear the opaque value before
propagating the error.

Opaque values are 24 random bytes, standard base64: always 32 characters.
"""

from __future__ import annotations

import asyncio
import base64
import hmac
import logging
import secrets

from auth.errors import DatabaseError, InvalidOpaqueError, UnauthorizedAccessError
from auth.store import CredentialStore

logger = logging.getLogger("tokenward.sessions")

OPAQUE_BYTES = 24
OPAQUE_LENGTH = 32


def generate_opaque() -> str:
    return base64.b64encode(secrets.token_bytes(OPAQUE_BYTES)).decode("ascii")


class SessionRotator:
    """Sole writer of the opaque column."""

    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    async def issue(self, user_id: int) -> str:
        """Store and return a fresh opaque value for a newly logged-in user."""
        opaque = generate_opaque()
        found = await asyncio.to_thread(self._store.set_opaque, user_id, opaque)
        if not found:
            raise InvalidOpaqueError(detail=f"no credential row for user {user_id}")
        return opaque

    async def verify_and_rotate(self, user_id: int, presented: str) -> str:
        """Consume `presented` and return the opaque value that replaces it."""
        record = await asyncio.to_thread(self._store.find_by_id, user_id)
        if record is None or record.opaque is None:
            raise InvalidOpaqueError(detail=f"no active session for user {user_id}")

        if not hmac.compare_digest(record.opaque.encode("utf-8"), presented.encode("utf-8")):
            await self.revoke(user_id)
            raise UnauthorizedAccessError(detail=f"opaque mismatch for user {user_id}; session revoked")

        new = generate_opaque()
        try:
            swapped = await asyncio.to_thread(self._store.compare_and_swap_opaque, user_id, presented, new)
        except DatabaseError:
            await self.revoke(user_id)
            raise
        if not swapped:
            # Lost the swap to a concurrent request holding the same token.
            await self.revoke(user_id)
            raise UnauthorizedAccessError(detail=f"concurrent reuse of opaque for user {user_id}; session revoked")
        return new

    async def revoke(self, user_id: int) -> None:
        """Null out the stored opaque value. Failures are logged, not raised."""
        try:
            await asyncio.to_thread(self._store.clear_opaque, user_id)
        except DatabaseError as exc:
            logger.error("Could not revoke session for user %s: %s", user_id, exc.detail)
