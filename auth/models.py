"""
auth/models.py -- Domain dataclasses for credentials, keys and sessions.

Pattern: Data class (pure data container, almost no logic). Stores and
services do the work; these types only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum


@dataclass
class Credential:
    """One registered identity.

    identifier holds an email address or a username depending on
    Settings.identifier_field. opaque is None until the first login and
    whenever the session has been revoked; otherwise it is the single
    server-held session secret for this user.
    """

    identifier: str
    password_hash: str
    id: int | None = None
    opaque: str | None = None
    created_at: str | None = None
    last_login: str | None = None


@dataclass(frozen=True)
class KeyMaterial:
    """An RSA keypair as PEM text. Read-only after initialization."""

    public_pem: str
    private_pem: str

    def fingerprint(self) -> str:
        """SHA-256 of the public PEM, for display only."""
        return hashlib.sha256(self.public_pem.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class LoginResult:
    user_id: int
    token: str
    opaque: str


class GateState(str, Enum):
    NO_AUTH_HEADER = "no_auth_header"
    MALFORMED_HEADER = "malformed_header"
    VERIFYING = "verifying"
    ADMITTED = "admitted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class GateOutcome:
    """Terminal state of one pass through the authentication gate.

    On ADMITTED, user_id is the resolved principal and token/opaque carry the
    freshly rotated session for the client's next request. On REJECTED or
    MALFORMED_HEADER, error holds the failure (for logging) and status_code
    is the HTTP status to answer with.
    """

    state: GateState
    user_id: int | None = None
    token: str | None = None
    opaque: str | None = None
    error: Exception | None = None

    @property
    def status_code(self) -> int | None:
        if self.state is GateState.MALFORMED_HEADER:
            return 401
        if self.state is GateState.REJECTED:
            return 403
        return None

    @property
    def admitted(self) -> bool:
        return self.state is GateState.ADMITTED
