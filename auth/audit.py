"""
auth/audit.py -- Security incident log.

Every failure the service hands back to a caller is also handed here, with
the identifying context the caller must never see (raw headers on a replay,
driver messages on a storage failure). Two sinks:

  1. The "tokenward.audit" logger: WARNING for policy failures, ERROR for
     replays and infrastructure failures.
  2. The auth_log table, via CredentialStore.record_incident().

The table write runs through asyncio.to_thread, like every other store
call on a request path. Recording is best-effort: if the write fails, that
failure is logged and swallowed here so it never replaces the error being
reported.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import logging

from auth.errors import AuthError, DatabaseError, UnauthorizedAccessError
from auth.store import CredentialStore

logger = logging.getLogger("tokenward.audit")

_ERROR_LEVEL = (UnauthorizedAccessError, DatabaseError)


class IncidentLog:
    def __init__(self, store: CredentialStore, persist: bool = True) -> None:
        self._store = store
        self._persist = persist

    async def record(
        self, identifier: str | None, operation: str, error: Exception, context: str | None = None
    ) -> None:
        """Log an incident and append it to auth_log. Never raises."""
        if isinstance(error, AuthError):
            public_error = type(error).__name__
            detail_error = type(error.__cause__).__name__ if error.__cause__ is not None else None
            message = error.detail or error.message
        else:
            public_error = "ServerError"
            detail_error = type(error).__name__
            message = str(error)
        if context:
            message = f"{message} [{context}]"

        severe = not isinstance(error, AuthError) or isinstance(error, _ERROR_LEVEL)
        level = logging.ERROR if severe else logging.WARNING
        logger.log(level, "%s failed for %s: %s (%s)", operation, identifier or "-", public_error, message)

        if not self._persist:
            return
        try:
            await asyncio.to_thread(
                self._store.record_incident,
                identifier=identifier,
                operation=operation,
                public_error=public_error,
                detail_error=detail_error,
                message=message,
            )
        except DatabaseError as exc:
            logger.error("Could not persist incident for %s/%s: %s", identifier or "-", operation, exc.detail)
