"""
auth/gate.py -- Request authentication state machine.

Input: the raw Authorization header value (None when the header is absent).
Wire format: "Bearer: <jwt>:<user_id>" -- note the colon after Bearer and the
user id carried outside the token. The id must equal the token's aud claim.

  None                      -> NO_AUTH_HEADER   pass through, no principal
  wrong shape / bad id      -> MALFORMED_HEADER 401
  well formed               -> VERIFYING
     token + opaque ok      -> ADMITTED         principal = user id
     anything fails         -> REJECTED         403, handler never runs

On ADMITTED the stored opaque value has already been rotated, so the token
the client presented is spent. The outcome carries a freshly signed token
embedding the new opaque value for the client's next request.

Crypto calls run through asyncio.to_thread alongside the store calls so a
burst of verifications never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import re

from auth.audit import IncidentLog
from auth.errors import AuthError, MalformedHeaderError, ServerError
from auth.models import GateOutcome, GateState
from auth.sessions import SessionRotator
from auth.tokens import TokenIssuer

logger = logging.getLogger("tokenward.gate")

# JWTs never contain ':' so the last colon always separates the user id.
# 18 digits keeps every accepted id inside a signed 64-bit column.
_AUTHORIZATION_RE = re.compile(r"Bearer: ([^:\s]+):([0-9]{1,18})")


def parse_authorization(header: str) -> tuple[str, int]:
    """Split a header value into (token, user_id) or raise MalformedHeaderError."""
    match = _AUTHORIZATION_RE.fullmatch(header)
    if match is None:
        raise MalformedHeaderError(detail="authorization header does not match 'Bearer: <token>:<user_id>'")
    return match.group(1), int(match.group(2))


class AuthenticationGate:
    def __init__(self, issuer: TokenIssuer, rotator: SessionRotator, incidents: IncidentLog | None = None) -> None:
        self._issuer = issuer
        self._rotator = rotator
        self._incidents = incidents

    async def check(self, header: str | None, context: str | None = None) -> GateOutcome:
        """Run one request's authorization material through the gate.

        `context` is free-form request information (client address, user
        agent) recorded with any incident; it never reaches the client.
        """
        if header is None:
            return GateOutcome(GateState.NO_AUTH_HEADER)

        try:
            token, user_id = parse_authorization(header)
        except MalformedHeaderError as exc:
            logger.info("Malformed Authorization header rejected (%s)", context or "-")
            return GateOutcome(GateState.MALFORMED_HEADER, error=exc)

        try:
            opaque = await asyncio.to_thread(self._issuer.verify, user_id, token)
            new_opaque = await self._rotator.verify_and_rotate(user_id, opaque)
        except AuthError as exc:
            await self._record(user_id, exc, context)
            return GateOutcome(GateState.REJECTED, user_id=user_id, error=exc)

        try:
            new_token = await asyncio.to_thread(self._issuer.issue, user_id, new_opaque)
        except Exception as exc:
            # Rotation already happened; without a new token the session is unusable anyway.
            await self._rotator.revoke(user_id)
            err = ServerError(detail=f"re-issue failed: {type(exc).__name__}: {exc}")
            await self._record(user_id, err, context)
            return GateOutcome(GateState.REJECTED, user_id=user_id, error=err)

        logger.debug("Admitted user %s, session rotated", user_id)
        return GateOutcome(GateState.ADMITTED, user_id=user_id, token=new_token, opaque=new_opaque)

    async def _record(self, user_id: int, exc: AuthError, context: str | None) -> None:
        if self._incidents is None:
            return
        await self._incidents.record(str(user_id), "authenticate", exc, context=context)
