"""FastAPI application wiring for the credential service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import router as users_router
from .config import DEV_JWT_SECRET, Settings, get_settings
from .domain.service import AccountService
from .mailer import LoggingNotifier, Notifier, SmtpNotifier
from .repository import AccountRepository
from .security.passwords import PasswordManager
from .security.tokens import SessionIssuer, TokenGenerator

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


def build_session_issuer(config: Settings) -> SessionIssuer:
    """Create the process-wide session issuer; refuses to start without a usable signing key."""
    if config.is_production and config.jwt_secret in ("", DEV_JWT_SECRET):
        raise RuntimeError("JWT_SECRET must be set to a non-default value in production")
    return SessionIssuer(
        config.jwt_secret,
        issuer=config.jwt_issuer,
        ttl_seconds=config.session_ttl_seconds,
    )


def build_notifier(config: Settings) -> Notifier:
    if config.mail_backend == "smtp":
        return SmtpNotifier(
            host=config.smtp_host,
            port=config.smtp_port,
            sender=config.mail_from,
            username=config.smtp_username,
            password=config.smtp_password,
            starttls=config.smtp_starttls,
            timeout=config.smtp_timeout_seconds,
        )
    logger.warning("MAIL_BACKEND=%s: notifications will be logged, not sent", config.mail_backend)
    return LoggingNotifier()


def build_account_service(
    repository: AccountRepository, session_issuer: SessionIssuer, config: Settings
) -> AccountService:
    return AccountService(
        repository,
        build_notifier(config),
        session_issuer,
        frontend_url=config.frontend_url,
        passwords=PasswordManager(
            time_cost=config.password_time_cost,
            memory_cost=config.password_memory_cost,
            parallelism=config.password_parallelism,
        ),
        tokens=TokenGenerator(ttl=timedelta(seconds=config.verification_token_ttl_seconds)),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    session_issuer = build_session_issuer(settings)
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    app.state.pool = pool
    app.state.session_issuer = session_issuer
    app.state.account_service = build_account_service(
        AccountRepository(pool), session_issuer, settings
    )
    logger.info("%s %s started (env=%s)", settings.app_name, settings.version, settings.environment)
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", tags=["health"])
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(users_router)


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_level=settings.log_level.lower())
