"""
tests/test_audit.py -- IncidentLog severity, persistence and failure isolation.

Coverage:
  - WARNING for policy failures, ERROR for replays and infrastructure failures
  - Cause class and request context land in the auth_log row
  - The auth_log write runs on a worker thread, never on the event loop
  - persist=False and persistence failures never raise
"""

from __future__ import annotations

import logging
import threading

import pytest

from auth.audit import IncidentLog
from auth.errors import DatabaseError, InvalidCredentialsError, ServerError, UnauthorizedAccessError
from auth.store import CredentialStore


class TestSeverity:
    """Log level follows how serious the failure is."""

    @pytest.mark.asyncio
    async def test_policy_failure_is_a_warning(self, store: CredentialStore, caplog) -> None:
        """A bad password is logged at WARNING and persisted with its detail."""
        with caplog.at_level(logging.WARNING, logger="tokenward.audit"):
            await IncidentLog(store).record("alice", "login", InvalidCredentialsError(detail="failed password attempt"))

        assert caplog.records[-1].levelno == logging.WARNING
        row = store.list_incidents("alice")[0]
        assert row["public_error"] == "InvalidCredentialsError"
        assert row["message"] == "failed password attempt"

    @pytest.mark.asyncio
    async def test_replay_is_an_error(self, store: CredentialStore, caplog) -> None:
        """An opaque mismatch is logged at ERROR."""
        with caplog.at_level(logging.WARNING, logger="tokenward.audit"):
            await IncidentLog(store).record("7", "authenticate", UnauthorizedAccessError(detail="opaque mismatch"))
        assert caplog.records[-1].levelno == logging.ERROR


class TestPersistence:
    """What reaches the auth_log table, and from which thread."""

    @pytest.mark.asyncio
    async def test_cause_and_context_are_kept(self, store: CredentialStore) -> None:
        """The chained cause class and the request context are stored with the incident."""
        try:
            try:
                raise KeyError("boom")
            except KeyError as inner:
                raise ServerError(detail="re-issue failed") from inner
        except ServerError as exc:
            await IncidentLog(store).record("7", "authenticate", exc, context="GET /x from 10.0.0.1")

        row = store.list_incidents("7")[0]
        assert row["detail_error"] == "KeyError"
        assert row["message"] == "re-issue failed [GET /x from 10.0.0.1]"

    @pytest.mark.asyncio
    async def test_non_auth_errors_are_recorded_as_server_errors(self, store: CredentialStore) -> None:
        """An unexpected exception is stored as ServerError with its own class as detail."""
        await IncidentLog(store).record(None, "register", RuntimeError("unexpected"))
        row = store.list_incidents()[0]
        assert row["public_error"] == "ServerError"
        assert row["detail_error"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_write_runs_off_the_event_loop(self, store: CredentialStore, monkeypatch) -> None:
        """record_incident must execute on a worker thread, not the thread running the loop."""
        loop_thread = threading.get_ident()
        writer_threads: list[int] = []
        real_record = store.record_incident

        def _spy(**kwargs) -> None:
            writer_threads.append(threading.get_ident())
            real_record(**kwargs)

        monkeypatch.setattr(store, "record_incident", _spy)
        await IncidentLog(store).record("alice", "login", InvalidCredentialsError())

        assert len(writer_threads) == 1
        assert writer_threads[0] != loop_thread
        assert len(store.list_incidents("alice")) == 1

    @pytest.mark.asyncio
    async def test_persist_false_only_logs(self, store: CredentialStore) -> None:
        """With persistence off nothing is written to auth_log."""
        await IncidentLog(store, persist=False).record("alice", "login", InvalidCredentialsError())
        assert store.list_incidents() == []

    @pytest.mark.asyncio
    async def test_persistence_failure_is_swallowed(self, store: CredentialStore, monkeypatch, caplog) -> None:
        """A failing auth_log write is logged and never raised to the caller."""

        def _fail(**kwargs):
            raise DatabaseError(detail="record_incident: database is locked")

        monkeypatch.setattr(store, "record_incident", _fail)
        await IncidentLog(store).record("alice", "login", InvalidCredentialsError())
        assert "Could not persist incident" in caplog.text
