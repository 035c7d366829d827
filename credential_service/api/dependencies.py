"""Request-scoped dependencies shared by the HTTP routes."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from ..domain.errors import InvalidSession
from ..domain.service import AccountService
from ..security.tokens import SessionClaims, SessionIssuer

SESSION_COOKIE = "token"


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_session_issuer(request: Request) -> SessionIssuer:
    issuer: SessionIssuer = request.app.state.session_issuer
    return issuer


def _extract_session_token(request: Request) -> str | None:
    authorization = request.headers.get("Authorization", "").strip()
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(SESSION_COOKIE)


def require_session(request: Request) -> SessionClaims:
    """Gate a route on a valid session from the ``Authorization`` header or session cookie."""
    token = _extract_session_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access denied. No token provided.",
        )
    try:
        return get_session_issuer(request).verify(token)
    except InvalidSession as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
