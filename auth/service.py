"""
auth/service.py -- Register / login / authenticate facade.

AuthService owns one of each collaborator (store, hasher, token issuer,
session rotator, incident log, gate). Nothing here is a module-level
singleton: build_auth_service(settings) assembles a stack, tests assemble
their own against throwaway databases.

Every store call and every bcrypt/RSA call goes through asyncio.to_thread.
The public API is async end to end; callers await it and the event loop is
never blocked by a 250ms bcrypt round or a database write.

Failures are AuthError subclasses. Each one is handed to the incident log
before it propagates, so the caller can show error.public_message while the
identifying detail stays in the log.

Login timing [C1]: an unknown identifier still pays one bcrypt verification
(against a dummy digest) so response time does not reveal which identifiers
are registered. Wrong identifier and wrong password raise the same error.
"""

from __future__ import annotations

import asyncio
import logging
import re

from auth.audit import IncidentLog
from auth.errors import AuthError, InvalidCredentialsError, InvalidIdentifierError, ServerError
from auth.gate import AuthenticationGate
from auth.keys import KeyProvider
from auth.models import GateOutcome, LoginResult
from auth.passwords import PasswordHasher, check_strength
from auth.sessions import SessionRotator
from auth.store import CredentialStore
from auth.tokens import TokenIssuer
from core.config import Settings

logger = logging.getLogger("tokenward.auth")

_MAX_IDENTIFIER_LENGTH = 255
_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def validate_identifier(identifier: str, identifier_field: str = "email") -> str:
    """Return the identifier unchanged if acceptable, else raise InvalidIdentifierError."""
    if not isinstance(identifier, str) or not identifier.strip():
        raise InvalidIdentifierError(f"{identifier_field.capitalize()} must be provided.")
    if len(identifier) > _MAX_IDENTIFIER_LENGTH or identifier != identifier.strip():
        raise InvalidIdentifierError(f"Please enter a valid {identifier_field}.")
    if identifier_field != "email":
        return identifier

    local, sep, domain = identifier.partition("@")
    labels = domain.split(".")
    if (
        not sep
        or not local
        or len(local) > 64
        or not _EMAIL_LOCAL_PART.match(local)
        or len(labels) < 2
        or not all(len(label) <= 63 and _EMAIL_DOMAIN_LABEL.match(label) for label in labels)
    ):
        raise InvalidIdentifierError("Please enter a valid email address.")
    return identifier


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        identifier_field: str = "email",
        incidents: IncidentLog | None = None,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.issuer = issuer
        self.identifier_field = identifier_field
        self.rotator = SessionRotator(store)
        self.incidents = incidents or IncidentLog(store)
        self.gate = AuthenticationGate(issuer, self.rotator, self.incidents)
        self._dummy_digest: str | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, identifier: str, password: str) -> str:
        """Create a credential row. Returns the identifier on success."""
        try:
            validate_identifier(identifier, self.identifier_field)
            check_strength(password)
            try:
                digest = await asyncio.to_thread(self.hasher.hash, password)
            except (ValueError, TypeError) as exc:
                raise ServerError(detail=f"hashing failed: {exc}") from exc
            user_id = await asyncio.to_thread(self.store.insert, identifier, digest)
        except AuthError as exc:
            await self.incidents.record(identifier if isinstance(identifier, str) else None, "register", exc)
            raise
        logger.info("Registered %s as user %s", identifier, user_id)
        return identifier

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, identifier: str, password: str) -> LoginResult:
        """Verify a password and open a fresh session.

        Returns the signed token and the opaque value it embeds. Any previous
        session for this user is superseded.
        """
        try:
            return await self._login(identifier, password)
        except AuthError as exc:
            await self.incidents.record(identifier if isinstance(identifier, str) else None, "login", exc)
            raise

    async def _login(self, identifier: str, password: str) -> LoginResult:
        if not isinstance(identifier, str) or not identifier:
            raise InvalidCredentialsError(detail="missing identifier")
        if not isinstance(password, str) or not password:
            raise InvalidCredentialsError(detail="missing password")

        record = await asyncio.to_thread(self.store.find_by_identifier, identifier)
        if record is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            await asyncio.to_thread(self.hasher.verify, password, await self._get_dummy_digest())
            raise InvalidCredentialsError(detail="unknown identifier")
        if not await asyncio.to_thread(self.hasher.verify, password, record.password_hash):
            raise InvalidCredentialsError(detail="failed password attempt")

        opaque = await self.rotator.issue(record.id)
        try:
            token = await asyncio.to_thread(self.issuer.issue, record.id, opaque)
            await asyncio.to_thread(self.store.update_last_login, record.id)
        except AuthError:
            await self.rotator.revoke(record.id)
            raise
        except Exception as exc:
            await self.rotator.revoke(record.id)
            raise ServerError(detail=f"token signing failed: {type(exc).__name__}: {exc}") from exc

        logger.info("User %s logged in", record.id)
        return LoginResult(user_id=record.id, token=token, opaque=opaque)

    async def _get_dummy_digest(self) -> str:
        if self._dummy_digest is None:
            self._dummy_digest = await asyncio.to_thread(self.hasher.dummy_digest)
        return self._dummy_digest

    # ------------------------------------------------------------------
    # Request authentication
    # ------------------------------------------------------------------

    async def authenticate(self, header: str | None, context: str | None = None) -> GateOutcome:
        """Run a raw Authorization header value through the gate."""
        return await self.gate.check(header, context)

    def close(self) -> None:
        self.store.close()


def build_auth_service(settings: Settings, keys: KeyProvider | None = None) -> AuthService:
    """Assemble a complete stack from Settings.

    Key resolution may generate and write a keypair (see auth/keys.py); pass
    an existing KeyProvider to share keys between stacks.
    """
    keys = keys or KeyProvider(settings.public_key, settings.private_key)
    store = CredentialStore(settings.database_url)
    return AuthService(
        store=store,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        issuer=TokenIssuer(keys.keys, issuer=settings.issuer, expire_seconds=settings.token_expire_seconds),
        identifier_field=settings.identifier_field,
    )
