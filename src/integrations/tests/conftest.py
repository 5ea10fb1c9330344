"""Shared fixtures for the health integration tests."""

from __future__ import annotations

import asyncio
import json
import random
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import httpx
import pytest

from src.integrations.base import ProviderAdapter, ProviderFetchError, RawReading, ReadingKind
from src.integrations.config_loader import SyncConfig, load_sync_config
from src.integrations.stores import InMemoryHealthDataStore, InMemorySettingsStore
from src.integrations.sync.orchestrator import HealthSyncOrchestrator
from src.models.health import CapabilityFlag, ProviderId, ProviderSettings

# Fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Canonical test user and clock
TEST_USER_ID = UUID("12345678-1234-5678-1234-567812345678")
TEST_NOW = datetime(2026, 2, 24, 9, 0, 0, tzinfo=timezone.utc)
TEST_TODAY = TEST_NOW.date()


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real sync config for tests."""
    return load_sync_config()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(20260224)


# ---------------------------------------------------------------------------
# File fixture loaders
# ---------------------------------------------------------------------------


@pytest.fixture
def oura_collections() -> dict:
    return json.loads((FIXTURES_DIR / "oura_collections.json").read_text())


@pytest.fixture
def apple_export_xml() -> bytes:
    return (FIXTURES_DIR / "apple_health_export.xml").read_bytes()


# ---------------------------------------------------------------------------
# Fake adapter
# ---------------------------------------------------------------------------


class FakeAdapter(ProviderAdapter):
    """Scriptable adapter: returns fixed readings, raises, or stalls."""

    DISPLAY_NAME = "Fake Provider"
    CAPABILITIES = frozenset({CapabilityFlag.STEPS, CapabilityFlag.HEART_RATE})

    def __init__(
        self,
        provider_id: ProviderId,
        readings: list[RawReading] | None = None,
        *,
        error: Exception | None = None,
        granted: bool = True,
        delay: float = 0.0,
    ) -> None:
        self.PROVIDER_ID = provider_id
        self.readings = readings or []
        self.error = error
        self.granted = granted
        self.delay = delay
        self.fetch_calls: list[tuple[date, date]] = []
        self.settings_seen: ProviderSettings | None = None

    def is_available(self) -> bool:
        return True

    async def request_permission(self, capabilities: set[CapabilityFlag]) -> bool:
        return self.granted

    async def fetch_range(self, start: date, end: date) -> list[RawReading]:
        self.fetch_calls.append((start, end))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.readings)


def steps_reading(provider: ProviderId, day: date, value: float) -> RawReading:
    return RawReading(
        kind=ReadingKind.STEPS,
        provider=provider,
        start=datetime(day.year, day.month, day.day, 12, 0, tzinfo=timezone.utc),
        value=value,
    )


def heart_rate_reading(provider: ProviderId, day: date, hour: int, bpm: float) -> RawReading:
    return RawReading(
        kind=ReadingKind.HEART_RATE,
        provider=provider,
        start=datetime(day.year, day.month, day.day, hour, 0, tzinfo=timezone.utc),
        value=bpm,
    )


@pytest.fixture
def apple_fake() -> FakeAdapter:
    return FakeAdapter(
        ProviderId.APPLE_HEALTH,
        [
            steps_reading(ProviderId.APPLE_HEALTH, date(2026, 2, 22), 4000),
            steps_reading(ProviderId.APPLE_HEALTH, date(2026, 2, 22), 3500),
            heart_rate_reading(ProviderId.APPLE_HEALTH, date(2026, 2, 22), 8, 62),
            steps_reading(ProviderId.APPLE_HEALTH, date(2026, 2, 23), 8100),
        ],
    )


@pytest.fixture
def oura_fake() -> FakeAdapter:
    return FakeAdapter(
        ProviderId.OURA,
        [
            steps_reading(ProviderId.OURA, date(2026, 2, 23), 7800),
            heart_rate_reading(ProviderId.OURA, date(2026, 2, 23), 9, 66),
        ],
    )


# ---------------------------------------------------------------------------
# Stores and orchestrator
# ---------------------------------------------------------------------------


@pytest.fixture
def settings_store() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def data_store() -> InMemoryHealthDataStore:
    return InMemoryHealthDataStore()


@pytest.fixture
def fake_adapters(apple_fake: FakeAdapter, oura_fake: FakeAdapter) -> dict[ProviderId, FakeAdapter]:
    return {ProviderId.APPLE_HEALTH: apple_fake, ProviderId.OURA: oura_fake}


@pytest.fixture
def orchestrator(
    settings_store: InMemorySettingsStore,
    data_store: InMemoryHealthDataStore,
    fake_adapters: dict[ProviderId, FakeAdapter],
    sync_config: SyncConfig,
) -> HealthSyncOrchestrator:
    def factory(provider_id: ProviderId, settings: ProviderSettings) -> FakeAdapter:
        adapter = fake_adapters[provider_id]
        adapter.settings_seen = settings
        return adapter

    return HealthSyncOrchestrator(
        settings_store,
        data_store,
        factory,
        config=sync_config,
        clock=lambda: TEST_NOW,
    )


# ---------------------------------------------------------------------------
# Mock HTTP clients
# ---------------------------------------------------------------------------


def make_response(payload: dict | None = None, status_code: int = 200) -> MagicMock:
    """Build a mock httpx.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.json = MagicMock(return_value=payload or {})
    if status_code >= 400:
        request = httpx.Request("GET", "https://api.ouraring.com")
        real = httpx.Response(status_code, request=request)
        response.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError("error", request=request, response=real)
        )
    else:
        response.raise_for_status = MagicMock()
    return response


@pytest.fixture
def mock_httpx_client() -> MagicMock:
    """Mock httpx.AsyncClient for testing adapters without real API calls."""
    client = MagicMock()
    client.get = AsyncMock(return_value=make_response({"data": []}))
    client.post = AsyncMock(return_value=make_response({}))
    return client


@pytest.fixture
def fetch_error() -> ProviderFetchError:
    return ProviderFetchError(ProviderId.OURA, "HTTP 500 from daily_sleep")
