"""Account service orchestrating persistence, token issuance, notification and sessions."""

from __future__ import annotations

import logging
from typing import Any

from .account import Account
from .contracts import (
    NewAccount,
    Notification,
    RegistrationInput,
    RegistrationOutcome,
    normalise_email,
)
from .emails import password_reset_email, verification_email
from .errors import (
    AlreadyVerified,
    DispatchFailure,
    EmailNotVerified,
    InvalidCredentials,
    InvalidOrExpiredToken,
    StoreConflict,
)
from ..mailer import DeliveryError, Notifier
from ..metrics import LIFECYCLE_EVENTS
from ..repository import AccountRepository
from ..security.passwords import PasswordManager
from ..security.tokens import (
    Clock,
    SessionGrant,
    SessionIssuer,
    TokenGenerator,
    hash_pending_token,
    utc_now,
)

logger = logging.getLogger(__name__)

FORGOT_PASSWORD_ACK = "If a user exists with that email, a reset link has been sent."


class AccountService:
    """Token-gated account lifecycle: register, verify, login, forgot and reset.

    Verification and reset share one pending-token slot per account, so
    issuing either kind of token invalidates any outstanding token of the
    other kind.
    """

    def __init__(
        self,
        repository: AccountRepository,
        notifier: Notifier,
        sessions: SessionIssuer,
        *,
        frontend_url: str,
        passwords: PasswordManager | None = None,
        tokens: TokenGenerator | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Store dependencies used to orchestrate persistence, notification and session issuance."""
        self._repository = repository
        self._notifier = notifier
        self._sessions = sessions
        self._frontend_url = frontend_url
        self._passwords = passwords or PasswordManager()
        self._tokens = tokens or TokenGenerator(clock=clock)
        self._clock = clock

    def register(self, payload: RegistrationInput) -> RegistrationOutcome:
        """Create an unverified account, or resend verification for a pending one.

        A pending account keeps its original name, password and role; only its
        token is replaced, so earlier verification links stop working.
        """
        email = normalise_email(payload.email)
        account = self._repository.find_by_email(email)
        if account is not None and account.is_verified:
            raise AlreadyVerified()

        pending = self._tokens.issue()
        if account is None:
            account = self._repository.create_account(
                NewAccount(
                    email=email,
                    name=payload.name,
                    password_hash=self._passwords.hash(payload.password),
                    role=payload.role,
                    pending_token_hash=pending.token_hash,
                    pending_token_expires_at=pending.expires_at,
                )
            )
            outcome = RegistrationOutcome.verification_sent
            self._record(account, "account.registered", {"role": account.role})
        else:
            account = self._repository.save(
                account.with_pending_token(pending.token_hash, pending.expires_at)
            )
            outcome = RegistrationOutcome.verification_resent
            self._record(account, "account.verification_resent")

        self._dispatch(
            verification_email(
                recipient=account.email,
                name=account.name,
                base_url=self._frontend_url,
                token=pending.token,
            )
        )
        return outcome

    def verify_email(self, token: str) -> Account:
        """Consume a verification token and mark its account as verified."""
        account = self._repository.consume_pending_token(
            hash_pending_token(token), self._clock(), mark_verified=True
        )
        if account is None:
            raise InvalidOrExpiredToken("Invalid or expired verification token.")
        self._record(account, "account.verified")
        return account

    def login(self, email: str, password: str) -> SessionGrant:
        """Authenticate a verified account and mint its session credential."""
        account = self._repository.find_by_email(normalise_email(email))
        if account is not None and not account.is_verified:
            raise EmailNotVerified()
        if account is None:
            # Unknown identities pay the same argon2 cost as a password mismatch.
            self._passwords.verify_against_dummy(password)
            raise InvalidCredentials()
        if not self._passwords.verify(account.password_hash, password):
            raise InvalidCredentials()

        grant = self._sessions.issue(
            account_id=account.account_id, email=account.email, role=account.role
        )
        self._record(account, "session.issued", {"expires_in": grant.expires_in})
        return grant

    def forgot_password(self, email: str) -> str:
        """Send a reset link when the account exists; the reply never says whether it does."""
        account = self._repository.find_by_email(normalise_email(email))
        if account is None:
            logger.info("password reset requested for unknown identity")
            return FORGOT_PASSWORD_ACK

        pending = self._tokens.issue()
        try:
            account = self._repository.save(
                account.with_pending_token(pending.token_hash, pending.expires_at)
            )
        except StoreConflict:
            # The acknowledgement must not depend on whether the identity exists.
            logger.warning(
                "reset request for account %s lost a concurrent update; no token issued",
                account.account_id,
            )
            return FORGOT_PASSWORD_ACK
        self._record(account, "password.reset_requested")
        notification = password_reset_email(
            recipient=account.email,
            name=account.name,
            base_url=self._frontend_url,
            token=pending.token,
            ttl_minutes=int(self._tokens.ttl.total_seconds() // 60),
        )
        try:
            self._dispatch(notification)
        except DispatchFailure:
            # The acknowledgement must not depend on whether the identity exists.
            logger.error("reset email for account %s was not delivered", account.account_id)
        return FORGOT_PASSWORD_ACK

    def reset_password(self, token: str, new_password: str) -> Account:
        """Consume a reset token and replace the account's password representation."""
        token_hash = hash_pending_token(token)
        if self._repository.find_by_pending_token(token_hash, self._clock()) is None:
            raise InvalidOrExpiredToken("Invalid or expired reset token. Please try again.")

        account = self._repository.consume_pending_token(
            token_hash,
            self._clock(),
            password_hash=self._passwords.hash(new_password),
        )
        if account is None:
            raise InvalidOrExpiredToken("Invalid or expired reset token. Please try again.")
        self._record(account, "password.reset")
        return account

    def _dispatch(self, notification: Notification) -> None:
        try:
            self._notifier.send(notification)
        except DeliveryError as exc:
            raise DispatchFailure() from exc

    def _record(self, account: Account, event_type: str, metadata: dict[str, Any] | None = None) -> None:
        self._repository.write_audit_event(
            account_id=account.account_id,
            event_type=event_type,
            actor=account.account_id,
            metadata=metadata,
        )
        LIFECYCLE_EVENTS.labels(event=event_type).inc()
        logger.info("%s account=%s", event_type, account.account_id)
