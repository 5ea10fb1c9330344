"""Forela Health Data Integration Layer.

This package connects a user's Apple Health and Oura accounts, normalizes
their readings into one canonical per-day record per source, and keeps the
stored records current with an idempotent trailing-window sync.

Subpackages:
    adapters/  Provider adapters (Apple Health, Oura) with mock fallback
    sync/      Sync orchestrator, deduplication and upsert helpers

Core modules:
    base           ProviderAdapter ABC, RawReading and fetch errors
    unification    Pure RawReading → UnifiedDayRecord transform
    summary        Trailing-window dashboard averages
    stores         Settings and health data stores (Postgres, in-memory)
    mock_data      Synthetic provider payloads
    config_loader  Load/validate/hot-reload sync_config.yaml
"""

from src.integrations.base import (
    FetchOutcome,
    OAuthTokens,
    ProviderAdapter,
    ProviderFetchError,
    RawReading,
    ReadingKind,
    TokenExpiredError,
)
from src.integrations.config_loader import SyncConfig, get_sync_config

__all__ = [
    "ProviderAdapter",
    "RawReading",
    "ReadingKind",
    "FetchOutcome",
    "OAuthTokens",
    "ProviderFetchError",
    "TokenExpiredError",
    "SyncConfig",
    "get_sync_config",
]
