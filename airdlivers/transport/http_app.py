# airdlivers/transport/http_app.py
"""
HTTP application.

Security layers:
1. Public: /health, /ready and the Telegram webhook (secret header)
2. Protected: /metrics (token, or dev only)
3. Dev-only: /dev/event (404 outside dev)

Run with:
    uvicorn airdlivers.transport.http_app:app --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from zoneinfo import ZoneInfo

from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from airdlivers.config import settings
from airdlivers.core.engine.domain import EventKind
from airdlivers.core.engine.use_cases import MarketplaceEngine, build_engine
from airdlivers.infra.db_async import close_pool, init_pool, db_conn
from airdlivers.infra.http_client import close_all_sessions
from airdlivers.infra.logging_config import setup_logging, get_logger
from airdlivers.infra.metrics import get_metrics_collector
from airdlivers.infra.pg_auth_session_repo_async import AsyncPostgresAuthSessionStore
from airdlivers.infra.pg_inbound_repo_async import AsyncPostgresInboundEventRepository
from airdlivers.infra.pg_request_repo_async import AsyncPostgresRequestStore
from airdlivers.infra.pg_session_store_async import AsyncPostgresSessionStore
from airdlivers.infra.pg_user_control_repo_async import AsyncPostgresUserControlStore
from airdlivers.infra.rate_limiter import InMemoryRateLimiter, RateLimitDependency
from airdlivers.infra.schema_validator import validate_schema_version
from airdlivers.transport.adapters import DevAdapter
from airdlivers.transport.dev_messenger import OutboxMessenger
from airdlivers.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from airdlivers.transport.schemas import DevEventIn, DevEventOut
from airdlivers.transport.security import (
    SecurityHeaders,
    require_dev_environment,
    require_metrics_auth,
)
from airdlivers.transport.telegram_polling import TelegramPoller
from airdlivers.transport.telegram_sender import TelegramMessenger, TelegramSendError, set_webhook
from airdlivers.transport.telegram_webhook import get_chat_rate_limiter, telegram_webhook_handler

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)

HOUSEKEEPING_INTERVAL_SECONDS = 900
PROVIDER = "telegram"


# ============================================================================
# DEPENDENCIES
# ============================================================================

def local_now() -> datetime:
    """Now in the marketplace timezone; form dates are checked against this day."""
    return datetime.now(ZoneInfo(settings.timezone))


def get_engine(request: Request) -> MarketplaceEngine:
    """Get engine from app state"""
    return request.app.state.engine


async def rate_limit_check(request: Request) -> None:
    """Rate limit dependency for dev endpoints"""
    await request.app.state.rate_limiter(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return SecurityHeaders.add_security_headers(response)


# ============================================================================
# BACKGROUND HOUSEKEEPING
# ============================================================================

async def _housekeeping_loop(
    sessions: AsyncPostgresSessionStore,
    inbound: AsyncPostgresInboundEventRepository,
) -> None:
    """Purge expired form sessions, old idempotency rows and idle rate-limit keys."""
    while True:
        await asyncio.sleep(HOUSEKEEPING_INTERVAL_SECONDS)
        try:
            await sessions.cleanup_expired(settings.session_ttl_seconds)
            await inbound.cleanup_old(settings.inbound_event_ttl_days)
            get_chat_rate_limiter().cleanup()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error("Housekeeping run failed", exc_info=True)


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    logger.info(f"Starting application: env={settings.app_env}, channel_mode={settings.telegram_channel_mode}")

    if settings.is_production:
        missing = settings.validate_required_for_production()
        if missing:
            logger.critical(f"Missing required production settings: {missing}")
            raise RuntimeError(f"Missing production config: {missing}")
        if settings.log_level.upper() == "DEBUG":
            logger.critical("LOG_LEVEL=DEBUG is not allowed in production")
            raise RuntimeError("LOG_LEVEL=DEBUG in production")

    await init_pool()
    logger.info("Database pool initialized")

    # Validate schema version (does NOT run migrations)
    try:
        schema_result = await validate_schema_version()
        logger.info(f"Schema validated: {schema_result['current_version']}")
    except Exception:
        logger.critical(
            "Schema validation failed. Run migrations first: python -m airdlivers.infra.migrate",
            exc_info=True
        )
        await close_pool()
        raise

    sessions = AsyncPostgresSessionStore()
    inbound = AsyncPostgresInboundEventRepository()

    if settings.telegram_bot_token:
        messenger = TelegramMessenger(token=settings.telegram_bot_token)
        fastapi_app.state.outbox = None
    else:
        if settings.app_env != "dev":
            raise RuntimeError("TELEGRAM_BOT_TOKEN is required outside dev")
        logger.warning("No Telegram bot token: replies are kept in the dev outbox")
        messenger = OutboxMessenger()
        fastapi_app.state.outbox = messenger

    fastapi_app.state.engine = build_engine(
        provider=PROVIDER,
        requests=AsyncPostgresRequestStore(),
        sessions=sessions,
        controls=AsyncPostgresUserControlStore(),
        auth_sessions=AsyncPostgresAuthSessionStore(),
        inbound=inbound,
        messenger=messenger,
        moderation_chat_id=settings.moderation_chat_id,
        super_admin_id=settings.super_admin_id,
        admin_pin=settings.admin_pin,
        support_email=settings.support_email,
        clock=local_now,
        admin_session_ttl_hours=settings.admin_session_ttl_hours,
        session_ttl_seconds=settings.session_ttl_seconds,
        max_weight_kg=settings.max_weight_kg,
        weight_tolerance_kg=settings.weight_tolerance_kg,
        date_tolerance_days=settings.date_tolerance_days,
    )

    fastapi_app.state.rate_limiter = RateLimitDependency(
        InMemoryRateLimiter(max_requests=settings.chat_rate_limit_per_minute, window_seconds=60)
    )

    poller: TelegramPoller | None = None
    if settings.telegram_bot_token:
        if settings.telegram_channel_mode == "polling":
            poller = TelegramPoller(engine=fastapi_app.state.engine, token=settings.telegram_bot_token)
            await poller.start()
        elif settings.telegram_webhook_url:
            try:
                await set_webhook(settings.telegram_webhook_url, settings.telegram_webhook_secret)
                logger.info(f"Telegram webhook registered: {settings.telegram_webhook_url}")
            except TelegramSendError as exc:
                logger.error(f"Telegram setWebhook failed: {exc}")
        else:
            logger.info("Webhook mode: register /webhooks/telegram with setWebhook manually")
    fastapi_app.state.telegram_poller = poller

    housekeeping = asyncio.create_task(_housekeeping_loop(sessions, inbound), name="housekeeping")

    logger.info(
        f"Session settings: ttl={settings.session_ttl_seconds}s, "
        f"admin_ttl={settings.admin_session_ttl_hours}h"
    )
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")

    housekeeping.cancel()
    try:
        await housekeeping
    except asyncio.CancelledError:
        pass

    if poller is not None:
        await poller.stop()

    await close_all_sessions()
    await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="AirDlivers Bot",
    description="Sender / traveler marketplace chat bot",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

# Starlette runs the last-added middleware first
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=not settings.is_production)
app.add_middleware(RequestIDMiddleware)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Liveness: the process is up."""
    return {"status": "healthy"}


@app.get("/ready")
async def readiness():
    """Readiness: the database answers."""
    try:
        async with db_conn() as conn:
            await conn.fetchval("SELECT 1")
    except Exception:
        logger.warning("Readiness check failed", exc_info=True)
        return JSONResponse(status_code=503, content={"status": "unhealthy"})
    return {"status": "healthy"}


@app.post("/webhooks/telegram")
async def webhook_telegram(request: Request):
    return await telegram_webhook_handler(request)


# ============================================================================
# PROTECTED ENDPOINTS
# ============================================================================

@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics():
    return get_metrics_collector().get_metrics()


# ============================================================================
# DEV ENDPOINTS
# ============================================================================

@app.post(
    "/dev/event",
    response_model=DevEventOut,
    dependencies=[Depends(require_dev_environment()), Depends(rate_limit_check)],
)
async def dev_event(payload: DevEventIn, request: Request, engine: MarketplaceEngine = Depends(get_engine)):
    """
    Drive the bot without Telegram - DEV ONLY.

    Replies addressed to the actor are returned when the dev outbox is in use.
    """
    event = DevAdapter().adapt(
        actor_id=payload.actor_id,
        kind=EventKind(payload.kind),
        payload=payload.payload,
        event_id=payload.event_id,
    )
    result = await engine.process_event(event)

    outbox: OutboxMessenger | None = request.app.state.outbox
    replies = outbox.drain(event.chat_id) if outbox is not None else []
    return DevEventOut(status=result["status"], reason=result.get("reason"), replies=replies)
