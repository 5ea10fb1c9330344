"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.integrations.adapters import OuraOAuthClient
from src.integrations.sync.orchestrator import HealthSyncOrchestrator


async def get_orchestrator(request: Request) -> HealthSyncOrchestrator:
    """Return the orchestrator built in the app lifespan."""
    return request.app.state.orchestrator


async def get_oura_oauth_client(request: Request) -> OuraOAuthClient:
    """Return the Oura OAuth client, or 503 when OAuth is not configured."""
    client: OuraOAuthClient | None = getattr(request.app.state, "oura_oauth", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Oura OAuth is not configured")
    return client


# Annotated shortcuts for route signatures
Orchestrator = Annotated[HealthSyncOrchestrator, Depends(get_orchestrator)]
OuraOAuth = Annotated[OuraOAuthClient, Depends(get_oura_oauth_client)]
