"""
auth/tokens.py -- Signed session assertions (RS256 JWT via python-jose).

Claim set of every token:
  iss  configured issuer          sub  "user" (fixed purpose literal)
  aud  str(user_id)               exp  issuance + token_expire_seconds (12h)
  iat  issuance time              o    the opaque value stored at issuance

verify() re-derives the same expectations and returns the embedded opaque
value. Any failed check (signature, expiry, iss, sub, aud, malformed token)
raises InvalidTokenError with the reason kept in `detail` for the incident
log only -- the client gets one generic 403 so the gate is not an oracle.
A token that verifies but carries no usable "o" claim raises
MissingOpaqueClaimError: not verified, but not a hard error either.

TokenIssuer holds only the read-only keypair and settings, so it can be shared
across concurrent requests. `clock` lets tests pin issuance time; expiry on
verification is always checked against the real clock by python-jose.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import JOSEError

from auth.errors import InvalidTokenError, MissingOpaqueClaimError
from auth.models import KeyMaterial

ALGORITHM = "RS256"
SUBJECT = "user"
OPAQUE_CLAIM = "o"
DEFAULT_EXPIRE_SECONDS = 12 * 60 * 60

_REQUIRED_CLAIMS = {
    "require_exp": True,
    "require_iss": True,
    "require_sub": True,
    "require_aud": True,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    def __init__(
        self,
        keys: KeyMaterial,
        issuer: str,
        expire_seconds: int = DEFAULT_EXPIRE_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._keys = keys
        self.issuer = issuer
        self.expire_seconds = expire_seconds
        self._clock = clock

    @property
    def fingerprint(self) -> str:
        return self._keys.fingerprint()

    def issue(self, user_id: int, opaque: str) -> str:
        """Sign a token for user_id embedding the current opaque value."""
        now = self._clock()
        claims = {
            OPAQUE_CLAIM: opaque,
            "iss": self.issuer,
            "sub": SUBJECT,
            "aud": str(user_id),
            "iat": now,
            "exp": now + timedelta(seconds=self.expire_seconds),
        }
        return jwt.encode(claims, self._keys.private_pem, algorithm=ALGORITHM)

    def verify(self, user_id: int, token: str) -> str:
        """Return the opaque value embedded in a valid token for user_id."""
        try:
            payload = jwt.decode(
                token,
                self._keys.public_pem,
                algorithms=[ALGORITHM],
                audience=str(user_id),
                issuer=self.issuer,
                subject=SUBJECT,
                options=_REQUIRED_CLAIMS,
            )
        except (JOSEError, TypeError, ValueError) as exc:
            raise InvalidTokenError(detail=f"{type(exc).__name__}: {exc}") from exc

        opaque = payload.get(OPAQUE_CLAIM)
        if not isinstance(opaque, str) or not opaque:
            raise MissingOpaqueClaimError(detail=f"token for user {user_id} has no opaque claim")
        return opaque
