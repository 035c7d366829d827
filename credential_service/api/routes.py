"""HTTP route definitions for the credential service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, EmailStr, Field

from ..config import get_settings
from ..domain.contracts import RegistrationInput, RegistrationOutcome, normalise_email
from ..domain.errors import (
    AlreadyVerified,
    CredentialError,
    DispatchFailure,
    EmailNotVerified,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidSession,
    StoreConflict,
)
from ..domain.service import AccountService
from ..security.rate_limiter import SlidingWindowRateLimiter
from ..security.redis_rate_limiter import RedisSlidingWindowRateLimiter
from ..security.tokens import SessionClaims
from .dependencies import SESSION_COOKIE, get_service, require_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users")


class RegisterRequest(BaseModel):
    """Payload accepted when registering or re-sending verification."""

    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    password: str = Field(..., min_length=1)
    role: str = Field(default="user", min_length=1, max_length=50)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    message: str


class LoginResponse(BaseModel):
    """Login result carrying the session credential also set as a cookie."""

    message: str
    token: str


class SessionResponse(BaseModel):
    account_id: str
    email: str
    role: str
    expires_at: str

    @classmethod
    def from_claims(cls, claims: SessionClaims) -> "SessionResponse":
        return cls(
            account_id=claims.account_id,
            email=claims.email,
            role=claims.role,
            expires_at=claims.expires_at.isoformat(),
        )


settings = get_settings()

_ERROR_STATUS: dict[type[CredentialError], int] = {
    AlreadyVerified: status.HTTP_400_BAD_REQUEST,
    InvalidOrExpiredToken: status.HTTP_400_BAD_REQUEST,
    InvalidCredentials: status.HTTP_401_UNAUTHORIZED,
    EmailNotVerified: status.HTTP_403_FORBIDDEN,
    StoreConflict: status.HTTP_409_CONFLICT,
    DispatchFailure: status.HTTP_502_BAD_GATEWAY,
    InvalidSession: status.HTTP_401_UNAUTHORIZED,
}


def _build_rate_limiter() -> SlidingWindowRateLimiter | RedisSlidingWindowRateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            client.ping()
            logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except Exception as exc:  # pragma: no cover - depends on a live redis
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


rate_limiter = _build_rate_limiter()


def _enforce_rate_limit(key: str) -> None:
    if not rate_limiter.allow(key):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate limited")


def _http_error(exc: CredentialError) -> HTTPException:
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=status_code, detail=str(exc))


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def register(
    response: Response,
    payload: RegisterRequest,
    service: AccountService = Depends(get_service),
) -> MessageResponse:
    """Register a new account or resend the verification email for a pending one."""
    _enforce_rate_limit(f"register:{normalise_email(payload.email)}")
    try:
        outcome = service.register(
            RegistrationInput(
                email=payload.email,
                name=payload.name,
                password=payload.password,
                role=payload.role,
            )
        )
    except CredentialError as exc:
        raise _http_error(exc) from exc

    if outcome is RegistrationOutcome.verification_resent:
        response.status_code = status.HTTP_200_OK
        return MessageResponse(message="Verification email resent. Please check your inbox.")
    return MessageResponse(message="Verification email sent. Please check your inbox.")


@router.get("/verify-email", response_model=MessageResponse)
def verify_email(
    token: str | None = Query(default=None),
    service: AccountService = Depends(get_service),
) -> MessageResponse:
    """Confirm ownership of an email address with the token from the verification link."""
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Verification token is missing.")
    try:
        service.verify_email(token)
    except CredentialError as exc:
        raise _http_error(exc) from exc
    return MessageResponse(message="Email verified successfully. You can now log in.")


@router.post("/login", response_model=LoginResponse)
def login(
    response: Response,
    payload: LoginRequest,
    service: AccountService = Depends(get_service),
) -> LoginResponse:
    """Authenticate and return a session credential, also set as an HTTP-only cookie."""
    rate_key = f"login:{normalise_email(payload.email)}"
    _enforce_rate_limit(rate_key)
    try:
        grant = service.login(payload.email, payload.password)
    except CredentialError as exc:
        raise _http_error(exc) from exc

    rate_limiter.reset(rate_key)
    response.set_cookie(
        SESSION_COOKIE,
        grant.token,
        max_age=grant.expires_in,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return LoginResponse(message="Login successful", token=grant.token)


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    payload: ForgotPasswordRequest,
    service: AccountService = Depends(get_service),
) -> MessageResponse:
    """Request a password reset link; the response is identical whether or not the account exists."""
    _enforce_rate_limit(f"forgot:{normalise_email(payload.email)}")
    try:
        message = service.forgot_password(payload.email)
    except CredentialError as exc:
        raise _http_error(exc) from exc
    return MessageResponse(message=message)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    payload: ResetPasswordRequest,
    token: str | None = Query(default=None),
    service: AccountService = Depends(get_service),
) -> MessageResponse:
    """Set a new password using the token from the reset link."""
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Reset token is missing.")
    try:
        service.reset_password(token, payload.password)
    except CredentialError as exc:
        raise _http_error(exc) from exc
    return MessageResponse(message="Password reset successfully.")


@router.get("/me", response_model=SessionResponse)
def current_session(claims: SessionClaims = Depends(require_session)) -> SessionResponse:
    """Return the identity asserted by the caller's session credential."""
    return SessionResponse.from_claims(claims)
