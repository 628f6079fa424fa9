"""
auth/store.py -- SQLAlchemy Core persistence layer for credentials.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_credential is the mapper.
Service and gate code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Every mutation is scoped to one row, by id or by identifier. There is no
  table-wide update anywhere in this module.

  compare_and_swap_opaque() is a single conditional UPDATE
  (WHERE id = :id AND opaque = :expected). Two requests replaying the same
  token race on that one statement and exactly one of them can win; the
  loser sees rowcount == 0. This is what makes verify-and-rotate atomic per
  user without an application-level lock.

Error translation:
  IntegrityError on insert -> DuplicateIdentifierError (UNIQUE identifier).
  Any other SQLAlchemyError -> DatabaseError. Callers never see driver errors.

Threading:
  Methods are blocking. auth/service.py runs them via asyncio.to_thread, so
  the engine is created with check_same_thread=False for SQLite.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DatabaseError, DuplicateIdentifierError
from auth.models import Credential

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credentials = Table(
    "credentials",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identifier", String(255), nullable=False, unique=True),
    Column("password_hash", String(60), nullable=False),  # bcrypt digest, fixed width
    Column("opaque", String(32)),  # NULL = no active session
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_auth_log = Table(
    "auth_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identifier", String(255)),
    Column("operation", String(64), nullable=False),
    Column("public_error", String(64), nullable=False),
    Column("detail_error", String(64)),
    Column("message", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind the rotation writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise DatabaseError(detail=f"{operation}: {type(exc).__name__}: {exc}") from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for credential rows and the incident log.

    Usage:
        store = CredentialStore("sqlite:///auth.db")
        user_id = store.insert("alice@example.com", digest)
        store.set_opaque(user_id, opaque)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        with _translate_errors("create_schema"):
            _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Credential queries
    # ------------------------------------------------------------------

    def insert(self, identifier: str, password_hash: str) -> int:
        """Insert a new credential row and return its generated id."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _credentials.insert().values(
                        identifier=identifier,
                        password_hash=password_hash,
                        created_at=_now_iso(),
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateIdentifierError(detail=str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            raise DatabaseError(detail=f"insert: {type(exc).__name__}: {exc}") from exc

    def find_by_identifier(self, identifier: str) -> Credential | None:
        """Exact (case-sensitive) identifier lookup. None if not found."""
        with _translate_errors("find_by_identifier"), self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.identifier == identifier)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def find_by_id(self, user_id: int) -> Credential | None:
        with _translate_errors("find_by_id"), self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.id == user_id)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def set_opaque(self, user_id: int, opaque: str | None) -> bool:
        """Unconditionally set (or clear, with None) the opaque value.

        Used on login, where the previous value is irrelevant. Returns True if
        the row exists.
        """
        with _translate_errors("set_opaque"), self.engine.connect() as conn:
            result = conn.execute(_credentials.update().where(_credentials.c.id == user_id).values(opaque=opaque))
            conn.commit()
        return result.rowcount > 0

    def clear_opaque(self, user_id: int) -> bool:
        """Revoke the session: no outstanding token can verify until next login."""
        return self.set_opaque(user_id, None)

    def compare_and_swap_opaque(self, user_id: int, expected: str, new: str) -> bool:
        """Replace the opaque value only if it still equals `expected`.

        Returns True if exactly this call performed the swap.
        """
        with _translate_errors("compare_and_swap_opaque"), self.engine.connect() as conn:
            result = conn.execute(
                _credentials.update()
                .where((_credentials.c.id == user_id) & (_credentials.c.opaque == expected))
                .values(opaque=new)
            )
            conn.commit()
        return result.rowcount == 1

    def update_last_login(self, user_id: int) -> None:
        with _translate_errors("update_last_login"), self.engine.connect() as conn:
            conn.execute(_credentials.update().where(_credentials.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Incident log
    # ------------------------------------------------------------------

    def record_incident(
        self,
        identifier: str | None,
        operation: str,
        public_error: str,
        detail_error: str | None = None,
        message: str | None = None,
    ) -> None:
        """Append one row to auth_log. Never read on a request path."""
        with _translate_errors("record_incident"), self.engine.connect() as conn:
            conn.execute(
                _auth_log.insert().values(
                    identifier=identifier,
                    operation=operation,
                    public_error=public_error,
                    detail_error=detail_error,
                    message=message,
                    created_at=datetime.now(timezone.utc),
                )
            )
            conn.commit()

    def list_incidents(self, identifier: str | None = None) -> list[dict]:
        """Return incident rows (newest last), optionally for one identifier."""
        query = _auth_log.select().order_by(_auth_log.c.id)
        if identifier is not None:
            query = query.where(_auth_log.c.identifier == identifier)
        with _translate_errors("list_incidents"), self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [dict(row._mapping) for row in rows]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        identifier=row.identifier,
        password_hash=row.password_hash,
        opaque=row.opaque,
        created_at=row.created_at,
        last_login=row.last_login,
    )
