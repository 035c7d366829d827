from __future__ import annotations

import re
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from credential_service.api import routes
from credential_service.domain.account import Account
from credential_service.domain.contracts import NewAccount, Notification
from credential_service.domain.errors import StoreConflict
from credential_service.domain.service import AccountService
from credential_service.mailer import DeliveryError
from credential_service.security.passwords import PasswordManager
from credential_service.security.tokens import SessionIssuer, TokenGenerator

TOKEN_PATTERN = re.compile(r"token=([0-9a-f]{64})")


class FakeClock:
    """Controllable replacement for the service's UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class FakeAuditLogRecord:
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict


class FakeRepository:
    """In-memory repository mimicking the Postgres conditional-update behaviour."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._lock = threading.Lock()
        self.audit_log: list[FakeAuditLogRecord] = []

    def find_by_email(self, email: str) -> Account | None:
        return self._accounts.get(email)

    def find_by_pending_token(self, token_hash: str, now: datetime) -> Account | None:
        for account in list(self._accounts.values()):
            expires_at = account.pending_token_expires_at
            if account.pending_token_hash == token_hash and expires_at is not None and expires_at > now:
                return account
        return None

    def create_account(self, payload: NewAccount) -> Account:
        with self._lock:
            if payload.email in self._accounts:
                raise StoreConflict()
            account = Account(
                account_id=str(uuid.uuid4()),
                email=payload.email,
                name=payload.name,
                password_hash=payload.password_hash,
                role=payload.role,
                created_at=datetime.now(timezone.utc),
                pending_token_hash=payload.pending_token_hash,
                pending_token_expires_at=payload.pending_token_expires_at,
            )
            self._accounts[account.email] = account
            return account

    def save(self, account: Account) -> Account:
        with self._lock:
            current = self._accounts.get(account.email)
            if current is None or current.version != account.version:
                raise StoreConflict()
            stored = replace(account, version=account.version + 1)
            self._accounts[account.email] = stored
            return stored

    def consume_pending_token(
        self,
        token_hash: str,
        now: datetime,
        *,
        mark_verified: bool = False,
        password_hash: str | None = None,
    ) -> Account | None:
        with self._lock:
            account = self.find_by_pending_token(token_hash, now)
            if account is None:
                return None
            updated = replace(
                account,
                pending_token_hash=None,
                pending_token_expires_at=None,
                is_verified=account.is_verified or mark_verified,
                password_hash=password_hash or account.password_hash,
                version=account.version + 1,
            )
            self._accounts[account.email] = updated
            return updated

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict | None = None,
    ) -> None:
        self.audit_log.append(
            FakeAuditLogRecord(
                account_id=account_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata or {},
            )
        )

    def event_types(self) -> list[str]:
        return [record.event_type for record in self.audit_log]


class RecordingNotifier:
    """Notifier that keeps every message; can be switched to fail delivery."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []
        self.fail = False

    def send(self, notification: Notification) -> None:
        if self.fail:
            raise DeliveryError("smtp relay unavailable")
        self.sent.append(notification)

    def last_token(self) -> str:
        match = TOKEN_PATTERN.search(self.sent[-1].html_body)
        assert match, "no token link in the last notification"
        return match.group(1)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def session_issuer() -> SessionIssuer:
    return SessionIssuer("test-secret", issuer="credential-service.test")


@pytest.fixture
def service(repository, notifier, session_issuer, clock) -> AccountService:
    return AccountService(
        repository,
        notifier,
        session_issuer,
        frontend_url="https://app.example.com",
        passwords=PasswordManager(time_cost=1, memory_cost=8, parallelism=1),
        tokens=TokenGenerator(clock=clock),
        clock=clock,
    )


@pytest.fixture
def api_client(service, session_issuer):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    app.state.account_service = service
    app.state.session_issuer = session_issuer

    original_limiter = routes.rate_limiter
    routes.rate_limiter = routes.SlidingWindowRateLimiter(max_requests=3, window_seconds=60)

    with TestClient(app) as client:
        yield client

    routes.rate_limiter = original_limiter
