"""FastAPI application for the property settlement service.

Startup order matters: the database must exist before the runtime resumes
unfinished note consumption, and Redis is optional (offers and settlements
are served without idempotency keys when it is down). Shutdown stops the
consumption worker before the database is closed so no task writes into a
disposed engine.

REST routes live under /api/v1, agent tools under /mcp.

Run with:
    uvicorn property_settlement.main:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from property_settlement.api.middleware import setup_middleware
from property_settlement.api.routes.health import router as health_router
from property_settlement.api.routes.offers import router as offers_router
from property_settlement.api.routes.proofs import router as proofs_router
from property_settlement.api.routes.properties import router as properties_router
from property_settlement.api.routes.settlement import router as settlement_router
from property_settlement.config import get_settings
from property_settlement.infrastructure.database.engine import close_db, init_db
from property_settlement.infrastructure.redis_client import close_redis, init_redis
from property_settlement.logging_config import get_logger, setup_logging
from property_settlement.runtime import close_runtime, init_runtime

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

VERSION = "0.1.0"

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    setup_logging(log_level=settings.app_log_level, json_logs=not settings.is_development)
    logger.info(
        "app.starting",
        env=settings.app_env,
        simulated_ledger=settings.ledger_simulate,
        ledger_url=None if settings.ledger_simulate else settings.ledger_service_url,
    )

    await init_db()
    redis = await init_redis()
    await init_runtime(resume=True)
    logger.info("app.started", idempotency=redis is not None)

    try:
        yield
    finally:
        logger.info("app.shutting_down")
        await close_runtime()
        await close_db()
        await close_redis()
        logger.info("app.stopped")


def create_app() -> FastAPI:
    """Build the app: middleware, REST routers, MCP sub-application."""
    settings = get_settings()
    app = FastAPI(
        title="Property Settlement",
        description=(
            "Compliance-gated offers, ledger escrow and atomic-intent settlement "
            "for tokenized real estate."
        ),
        version=VERSION,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
    )
    setup_middleware(app)

    for router in (
        health_router,
        properties_router,
        proofs_router,
        offers_router,
        settlement_router,
    ):
        app.include_router(router)

    # Imported here so the FastMCP instance is created only for the served app.
    from property_settlement.mcp_server.tools import mcp

    app.mount("/mcp", mcp.sse_app())
    return app


app = create_app()
