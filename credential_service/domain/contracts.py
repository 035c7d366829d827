"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


def normalise_email(email: str) -> str:
    """Return the canonical identity form of an email address."""
    return email.strip().lower()


@dataclass(slots=True)
class RegistrationInput:
    """Validated inputs required to register (or re-register) an account."""

    email: str
    name: str
    password: str
    role: str = "user"


@dataclass(slots=True)
class NewAccount:
    """Fully derived values persisted when an identity registers for the first time."""

    email: str
    name: str
    password_hash: str
    role: str
    pending_token_hash: str
    pending_token_expires_at: datetime


class RegistrationOutcome(str, Enum):
    verification_sent = "verification_sent"
    verification_resent = "verification_resent"


@dataclass(slots=True, frozen=True)
class Notification:
    """Rendered notification handed to a ``Notifier``."""

    recipient: str
    subject: str
    html_body: str
