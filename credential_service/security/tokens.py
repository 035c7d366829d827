"""Single-use email tokens and signed session credentials."""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import jwt

from ..domain.errors import InvalidSession

Clock = Callable[[], datetime]

PENDING_TOKEN_BYTES = 32
SESSION_ALGORITHM = "HS256"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def hash_pending_token(token: str) -> str:
    """Return the SHA-256 hex digest stored in place of a raw pending token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(slots=True, frozen=True)
class PendingToken:
    """A freshly issued verification/reset token.

    Only ``token`` leaves the process (inside an emailed link); the store keeps
    ``token_hash``.
    """

    token: str
    token_hash: str
    expires_at: datetime


class TokenGenerator:
    """Issue unguessable single-use tokens with a fixed expiry horizon."""

    def __init__(self, ttl: timedelta = timedelta(hours=1), clock: Clock = utc_now) -> None:
        if ttl <= timedelta(0):
            raise ValueError("token ttl must be positive")
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self) -> PendingToken:
        """Return a 256-bit hex token together with its hash and expiry instant."""
        token = secrets.token_hex(PENDING_TOKEN_BYTES)
        return PendingToken(
            token=token,
            token_hash=hash_pending_token(token),
            expires_at=self._clock() + self._ttl,
        )


@dataclass(slots=True, frozen=True)
class SessionClaims:
    """Identity assertions carried by a verified session credential."""

    account_id: str
    email: str
    role: str
    issued_at: datetime
    expires_at: datetime


@dataclass(slots=True, frozen=True)
class SessionGrant:
    """Session credential handed back to a caller after a successful login."""

    token: str
    expires_in: int
    claims: SessionClaims


class SessionIssuer:
    """Mint and verify HS256 JWT session credentials.

    The signing key is supplied at construction; replacing it invalidates every
    credential signed with the previous key.
    """

    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        ttl_seconds: int = 24 * 60 * 60,
        clock: Clock = utc_now,
    ) -> None:
        if not secret:
            raise ValueError("a session signing secret is required")
        if ttl_seconds <= 0:
            raise ValueError("session ttl must be positive")
        self._secret = secret
        self._issuer = issuer
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, *, account_id: str, email: str, role: str) -> SessionGrant:
        """Create a signed credential asserting the account's identity and role.

        Parameters
        ----------
        account_id:
            Stable account identifier embedded in the ``sub`` claim.
        email:
            Identity of the account, embedded in the ``email`` claim.
        role:
            Role tag consulted by request-gating collaborators.

        Returns
        -------
        SessionGrant
            The encoded JWT, its lifetime in seconds, and the claims it carries.
        """
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + timedelta(seconds=self._ttl_seconds)
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": account_id,
            "email": email,
            "role": role,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret, algorithm=SESSION_ALGORITHM)
        claims = SessionClaims(
            account_id=account_id,
            email=email,
            role=role,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        return SessionGrant(token=token, expires_in=self._ttl_seconds, claims=claims)

    def verify(self, token: str) -> SessionClaims:
        """Decode ``token`` and return its claims.

        Raises
        ------
        InvalidSession
            When the signature, issuer or expiry check fails, or required claims are missing.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[SESSION_ALGORITHM],
                issuer=self._issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.PyJWTError as exc:
            raise InvalidSession() from exc

        email = payload.get("email")
        role = payload.get("role")
        if not email or not role:
            raise InvalidSession()
        return SessionClaims(
            account_id=str(payload["sub"]),
            email=email,
            role=role,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
