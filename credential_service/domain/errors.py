"""Outcomes signalled by the account lifecycle engine.

Every error is recoverable and carries a message safe to show to the caller.
Sub-cases that would reveal whether an account exists or whether a token was
ever valid deliberately share one type and one message.
"""

from __future__ import annotations


class CredentialError(ValueError):
    """Base class for lifecycle outcomes surfaced to callers."""

    default_message = "credential operation failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class AlreadyVerified(CredentialError):
    default_message = "Email already verified. Please log in."


class InvalidOrExpiredToken(CredentialError):
    default_message = "Invalid or expired token."


class InvalidCredentials(CredentialError):
    default_message = "Invalid email or password"


class EmailNotVerified(CredentialError):
    default_message = "Email not verified. Please check your inbox."


class DispatchFailure(CredentialError):
    default_message = "Notification could not be delivered. Please try again later."


class StoreConflict(CredentialError):
    default_message = "The account was modified concurrently. Please retry."


class InvalidSession(CredentialError):
    default_message = "Invalid or expired session"
