"""Forela health sync API, FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config import Settings, get_settings
from src.integrations.adapters import AdapterFactory, OAuthConfigError, OuraOAuthClient, OuraOAuthConfig
from src.integrations.config_loader import ConfigValidationError, get_sync_config
from src.integrations.stores import (
    InMemoryHealthDataStore,
    InMemorySettingsStore,
    PersistenceError,
    PostgresHealthDataStore,
    PostgresSettingsStore,
)
from src.integrations.sync.orchestrator import HealthSyncOrchestrator
from src.routers import health, integrations
from src.services.supabase import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("forela")


def build_orchestrator(settings: Settings, http_client: httpx.AsyncClient | None) -> HealthSyncOrchestrator:
    """Wire stores and adapters according to the environment."""
    if settings.supabase_db_url:
        settings_store, data_store = PostgresSettingsStore(), PostgresHealthDataStore()
    else:
        logger.warning("SUPABASE_DB_URL not set, using in-memory stores")
        settings_store, data_store = InMemorySettingsStore(), InMemoryHealthDataStore()

    config = get_sync_config()
    factory = AdapterFactory(
        http_client=http_client,
        mock_fallback=settings.mock_fallback_enabled,
        config=config,
    )
    return HealthSyncOrchestrator(settings_store, data_store, factory, config=config)


def build_oura_oauth(settings: Settings, http_client: httpx.AsyncClient | None) -> OuraOAuthClient | None:
    try:
        config = OuraOAuthConfig.from_settings(settings)
    except OAuthConfigError as exc:
        logger.warning("Oura OAuth disabled: %s", exc)
        return None
    return OuraOAuthClient(config, http_client=http_client)


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting %s v%s [%s]", settings.app_name, settings.app_version, settings.environment
    )
    if settings.supabase_db_url:
        await init_pool(settings)

    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    app.state.orchestrator = build_orchestrator(settings, http_client)
    app.state.oura_oauth = build_oura_oauth(settings, http_client)
    yield
    await http_client.aclose()
    if settings.supabase_db_url:
        await close_pool()
    logger.info("%s shut down", settings.app_name)


# ---------- Error handlers ----------

async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Health data store unavailable"})


async def config_error_handler(request: Request, exc: ConfigValidationError) -> JSONResponse:
    logger.error("Sync configuration invalid: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Sync configuration invalid"})


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Forela Health Sync API",
        description=(
            "Health data integration layer: Apple Health and Oura adapters, "
            "unified per-day records, incremental idempotent sync."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PersistenceError, persistence_error_handler)
    app.add_exception_handler(ConfigValidationError, config_error_handler)

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    app.include_router(integrations.router, prefix="/api/v1")

    return app


app = create_app()
