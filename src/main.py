"""FastAPI application entry point: wires the request tracker together.

Usage:
    python -m src.main

Serves the session relay, the student and staff APIs and their SSE feeds.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api import staff, student
from src.api.errors import register_error_handlers
from src.auth import routes as auth_routes
from src.config import settings
from src.db.engine import db_lifespan, get_redis
from src.realtime.events import emit, start_event_system, stop_event_system, subscribe, unsubscribe
from src.realtime.relay import ChangeRelay
from src.schemas.events import EventType, SystemEvent
from src.security.audit import audit_on_event

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting course request tracker (env=%s)", settings.environment)

    # 1. Database
    async with db_lifespan():
        logger.info("Database initialized")

        # 2. Event system
        await start_event_system()

        # 3. Audit logging; always active (global subscriber)
        subscribe(audit_on_event)
        logger.info("Audit logging subscriber registered")

        # 4. Cross-process change relay (only if enabled)
        relay: ChangeRelay | None = None
        if settings.realtime.redis_relay_enabled:
            relay = ChangeRelay(get_redis(), settings.realtime.change_channel)
            await relay.start()
        else:
            logger.info("Redis change relay disabled; feeds only see this process's changes")

        await emit(SystemEvent(
            event_type=EventType.SYSTEM_STARTUP,
            actor_id="system",
            actor_role="system",
            data={"environment": settings.environment},
            source_module="main",
        ))

        try:
            yield
        finally:
            # Shutdown in reverse order
            logger.info("Shutting down course request tracker...")

            await emit(SystemEvent(
                event_type=EventType.SYSTEM_SHUTDOWN,
                actor_id="system",
                actor_role="system",
                source_module="main",
            ))

            if relay is not None:
                await relay.stop()

            await stop_event_system()
            unsubscribe(audit_on_event)

    logger.info("Shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Course Request Tracker API",
    description="Add, drop and change course requests with a registrar review queue",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.auth.client_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)
app.include_router(auth_routes.router)
app.include_router(student.router)
app.include_router(staff.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=settings.auth.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
