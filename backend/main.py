"""Uniform entitlements API: eligibility views, rule store and order consumption."""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import backend.models  # noqa: F401  (registers every mapper)
from backend.common.exceptions import register_exception_handlers
from backend.config import settings
from backend.database import engine, get_db
from backend.eligibility.router import router as eligibility_router
from backend.orders.router import router as orders_router

API_VERSION = "1.0.0"
API_PREFIX = "/api/v1"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level_value,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Uniform entitlements API %s starting (%s)", API_VERSION, settings.ENVIRONMENT)
    yield
    await engine.dispose()
    logger.info("Database pool disposed")


async def health(db: AsyncSession = Depends(get_db)) -> dict:
    """Liveness plus a round trip to the database; no API key required."""
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as exc:
        logger.error("Health check: database unreachable: %s", exc)
        database = "unreachable"
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "version": API_VERSION,
        "environment": settings.ENVIRONMENT,
    }


def create_app() -> FastAPI:
    app = FastAPI(
        title="Uniform Entitlements",
        description="Designation-based apparel eligibility, renewal cycles and order consumption",
        version=API_VERSION,
        docs_url=None if settings.is_production else f"{API_PREFIX}/docs",
        redoc_url=None,
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=[settings.API_KEY_HEADER, "X-Actor", "Content-Type"],
    )

    app.add_api_route(f"{API_PREFIX}/health", health, methods=["GET"], tags=["system"])
    app.include_router(eligibility_router, prefix=f"{API_PREFIX}/eligibility", tags=["eligibility"])
    app.include_router(orders_router, prefix=f"{API_PREFIX}/orders", tags=["orders"])
    return app


app = create_app()
