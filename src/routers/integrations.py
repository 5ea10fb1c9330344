"""Health integration endpoints: provider settings, sync, stored data and summary.

User identity comes from the path; an authenticating gateway in front of the
API is expected to enforce that callers only reach their own user id.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query, Request

from src.dependencies import Orchestrator, OuraOAuth
from src.integrations.adapters import AppleHealthAdapter, AppleHealthExportBridge
from src.integrations.base import ProviderFetchError
from src.models.health import (
    EnableProviderRequest,
    HealthSummary,
    IntegrationSettingsRead,
    OuraAuthorizeUrl,
    OuraCallbackRequest,
    ProviderId,
    ProviderSettingsRead,
    SyncResponse,
    UnifiedDayRecord,
)

router = APIRouter(tags=["health-integrations"])
logger = logging.getLogger("forela.routers.integrations")


def _provider(provider_id: str) -> ProviderId:
    try:
        return ProviderId(provider_id)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown provider '{provider_id}'") from None


# ---------- Settings ----------

@router.get("/users/{user_id}/health/settings", response_model=IntegrationSettingsRead)
async def get_integration_settings(user_id: uuid.UUID, orchestrator: Orchestrator) -> Any:
    settings = await orchestrator.get_settings(user_id)
    return IntegrationSettingsRead.from_settings(settings)


@router.post(
    "/users/{user_id}/health/providers/{provider_id}/enable",
    response_model=ProviderSettingsRead,
)
async def enable_provider(
    user_id: uuid.UUID,
    provider_id: str,
    orchestrator: Orchestrator,
    body: EnableProviderRequest | None = Body(default=None),
) -> Any:
    pid = _provider(provider_id)
    credentials = None
    if body is not None and body.access_token:
        credentials = {"access_token": body.access_token, "refresh_token": body.refresh_token}

    result = await orchestrator.enable_provider(user_id, pid, credentials)
    if not result:
        raise HTTPException(status_code=409, detail=f"Could not enable {pid.value}: {result.reason}")
    return ProviderSettingsRead.from_settings(result.settings)


@router.delete("/users/{user_id}/health/providers/{provider_id}", response_model=ProviderSettingsRead)
async def disable_provider(user_id: uuid.UUID, provider_id: str, orchestrator: Orchestrator) -> Any:
    pid = _provider(provider_id)
    disabled = await orchestrator.disable_provider(user_id, pid)
    return ProviderSettingsRead.from_settings(disabled)


# ---------- Sync ----------

@router.post("/users/{user_id}/health/sync", response_model=SyncResponse)
async def sync_health_data(user_id: uuid.UUID, orchestrator: Orchestrator) -> Any:
    records = await orchestrator.sync_all(user_id)
    settings = await orchestrator.get_settings(user_id)
    return SyncResponse(
        records=records,
        record_count=len(records),
        settings=IntegrationSettingsRead.from_settings(settings),
    )


@router.post(
    "/users/{user_id}/health/apple-health/import",
    response_model=list[UnifiedDayRecord],
)
async def import_apple_health_export(
    user_id: uuid.UUID,
    request: Request,
    orchestrator: Orchestrator,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
) -> Any:
    """Import an Apple Health ``export.xml`` sent as the raw request body."""
    body = await request.body()
    if not body:
        raise HTTPException(status_code=400, detail="Request body must be an Apple Health export.xml")
    try:
        bridge = AppleHealthExportBridge(body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    adapter = AppleHealthAdapter(bridge, mock_fallback=False)
    try:
        return await orchestrator.import_from_adapter(user_id, adapter, start_date, end_date)
    except ProviderFetchError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


# ---------- Stored data ----------

@router.get("/users/{user_id}/health/data", response_model=list[UnifiedDayRecord])
async def list_health_data(
    user_id: uuid.UUID,
    orchestrator: Orchestrator,
    start_date: date = Query(...),
    end_date: date = Query(...),
) -> Any:
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must be on or before end_date")
    return await orchestrator.query(user_id, start_date, end_date)


@router.get("/users/{user_id}/health/summary", response_model=HealthSummary)
async def health_summary(
    user_id: uuid.UUID,
    orchestrator: Orchestrator,
    days: int = Query(default=7, ge=1, le=365),
) -> Any:
    return await orchestrator.summarize(user_id, days)


# ---------- Oura OAuth ----------

@router.get("/health/oura/authorize-url", response_model=OuraAuthorizeUrl)
async def oura_authorize_url(oauth: OuraOAuth) -> Any:
    url, state = oauth.authorization_url()
    return OuraAuthorizeUrl(url=url, state=state)


@router.post("/users/{user_id}/health/oura/callback", response_model=ProviderSettingsRead)
async def oura_callback(
    user_id: uuid.UUID,
    body: OuraCallbackRequest,
    oauth: OuraOAuth,
    orchestrator: Orchestrator,
) -> Any:
    try:
        tokens = await oauth.exchange_code(body.code)
    except ProviderFetchError as exc:
        logger.warning("Oura code exchange failed for user %s: %s", user_id, exc)
        raise HTTPException(status_code=502, detail="Oura token exchange failed") from exc

    result = await orchestrator.enable_provider(user_id, ProviderId.OURA, tokens.as_credentials())
    if not result:
        raise HTTPException(status_code=409, detail=f"Could not enable oura: {result.reason}")
    return ProviderSettingsRead.from_settings(result.settings)
