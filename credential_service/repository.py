"""Database repository for account credentials and the identity audit trail."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import Account
from .domain.contracts import NewAccount
from .domain.errors import StoreConflict

_ACCOUNT_COLUMNS = """
    account_id, email, name, password_hash, role, created_at, is_verified,
    pending_token_hash, pending_token_expires_at, version
"""


class AccountRepository:
    """Postgres-backed account persistence.

    Writes are conditional: ``save`` is a compare-and-swap on ``version`` and
    ``consume_pending_token`` matches, mutates and clears the token slot in one
    ``UPDATE`` so that concurrent consumers of the same token cannot both win.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def find_by_email(self, email: str) -> Account | None:
        """Fetch the account registered under ``email`` or return ``None``."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE email = %s",
                    (email,),
                )
                row = cur.fetchone()
        return self._map_record(row) if row else None

    def find_by_pending_token(self, token_hash: str, now: datetime) -> Account | None:
        """Return the account holding ``token_hash`` if that token is still unexpired."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_ACCOUNT_COLUMNS}
                    FROM accounts
                    WHERE pending_token_hash = %s AND pending_token_expires_at > %s
                    """,
                    (token_hash, now),
                )
                row = cur.fetchone()
        return self._map_record(row) if row else None

    def create_account(self, payload: NewAccount) -> Account:
        """Insert a new unverified account; a concurrent insert of the same email raises ``StoreConflict``."""
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO accounts (
                        account_id, email, name, password_hash, role, is_verified,
                        pending_token_hash, pending_token_expires_at, version,
                        created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, FALSE, %s, %s, 0, %s, %s)
                    ON CONFLICT (email) DO NOTHING
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (
                        account_id,
                        payload.email,
                        payload.name,
                        payload.password_hash,
                        payload.role,
                        payload.pending_token_hash,
                        payload.pending_token_expires_at,
                        now,
                        now,
                    ),
                )
                row = cur.fetchone()
                conn.commit()
        if row is None:
            raise StoreConflict()
        return self._map_record(row)

    def save(self, account: Account) -> Account:
        """Persist ``account`` if nobody else has written it since it was read."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE accounts
                    SET name = %s,
                        password_hash = %s,
                        role = %s,
                        is_verified = %s,
                        pending_token_hash = %s,
                        pending_token_expires_at = %s,
                        version = version + 1,
                        updated_at = NOW()
                    WHERE account_id = %s AND version = %s
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (
                        account.name,
                        account.password_hash,
                        account.role,
                        account.is_verified,
                        account.pending_token_hash,
                        account.pending_token_expires_at,
                        account.account_id,
                        account.version,
                    ),
                )
                row = cur.fetchone()
                conn.commit()
        if row is None:
            raise StoreConflict()
        return self._map_record(row)

    def consume_pending_token(
        self,
        token_hash: str,
        now: datetime,
        *,
        mark_verified: bool = False,
        password_hash: str | None = None,
    ) -> Account | None:
        """Atomically consume an unexpired token and apply the transition it unlocks.

        Returns the updated account, or ``None`` when no account currently holds
        a live token with that hash (wrong, expired or already consumed).
        """
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE accounts
                    SET is_verified = is_verified OR %s,
                        password_hash = COALESCE(%s, password_hash),
                        pending_token_hash = NULL,
                        pending_token_expires_at = NULL,
                        version = version + 1,
                        updated_at = %s
                    WHERE pending_token_hash = %s AND pending_token_expires_at > %s
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (mark_verified, password_hash, now, token_hash, now),
                )
                row = cur.fetchone()
                conn.commit()
        return self._map_record(row) if row else None

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=str(row[0]),
            email=row[1],
            name=row[2],
            password_hash=row[3],
            role=row[4],
            created_at=row[5],
            is_verified=row[6],
            pending_token_hash=row[7],
            pending_token_expires_at=row[8],
            version=row[9],
        )

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing credential lifecycle activity."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO identity_audit_log (account_id, event_type, actor, metadata)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (account_id, event_type, actor, Json(metadata or {})),
                )
                conn.commit()
