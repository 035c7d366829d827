from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime


@dataclass(slots=True, frozen=True)
class Account:
    """Aggregate root for a user's credentials and verification state.

    ``pending_token_hash`` and ``pending_token_expires_at`` form a single slot
    shared by email verification and password reset; both are set or both are
    ``None``.
    """

    account_id: str
    email: str
    name: str
    password_hash: str
    role: str
    created_at: datetime
    is_verified: bool = False
    pending_token_hash: str | None = None
    pending_token_expires_at: datetime | None = None
    version: int = 0

    def with_pending_token(self, token_hash: str, expires_at: datetime) -> "Account":
        """Return a copy whose token slot holds the given token, replacing any earlier one."""
        return replace(self, pending_token_hash=token_hash, pending_token_expires_at=expires_at)
