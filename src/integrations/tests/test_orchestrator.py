"""Tests for the sync orchestrator: sync_all, summarize, enable/disable."""

from __future__ import annotations

import random
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from src.integrations.adapters import AdapterFactory
from src.integrations.base import ProviderFetchError
from src.integrations.config_loader import SyncConfig, SyncWindowConfig
from src.integrations.stores import InMemoryHealthDataStore, InMemorySettingsStore, PersistenceError
from src.integrations.sync.orchestrator import HealthSyncOrchestrator
from src.integrations.tests.conftest import (
    TEST_NOW,
    TEST_TODAY,
    TEST_USER_ID,
    FakeAdapter,
    steps_reading,
)
from src.models.health import (
    CapabilityFlag,
    DataSource,
    HeartRateSummary,
    IntegrationSettings,
    ProviderId,
    ProviderSettings,
    UnifiedDayRecord,
)

EARLIER = datetime(2026, 2, 20, 8, 0, tzinfo=timezone.utc)


async def _enable_both(settings_store: InMemorySettingsStore) -> None:
    settings = IntegrationSettings(
        apple_health=ProviderSettings(enabled=True, last_sync=EARLIER),
        oura=ProviderSettings(enabled=True, credentials={"access_token": "tok"}, last_sync=EARLIER),
    )
    await settings_store.put(TEST_USER_ID, settings)


# ---------------------------------------------------------------------------
# sync_all
# ---------------------------------------------------------------------------


class TestSyncAll:
    @pytest.mark.asyncio
    async def test_no_enabled_providers(
        self, orchestrator: HealthSyncOrchestrator, fake_adapters: dict, data_store: InMemoryHealthDataStore
    ) -> None:
        assert await orchestrator.sync_all(TEST_USER_ID) == []
        assert all(not a.fetch_calls for a in fake_adapters.values())
        assert len(data_store) == 0

    @pytest.mark.asyncio
    async def test_syncs_enabled_providers_over_trailing_window(
        self,
        orchestrator: HealthSyncOrchestrator,
        settings_store: InMemorySettingsStore,
        fake_adapters: dict,
        sync_config: SyncConfig,
    ) -> None:
        await _enable_both(settings_store)
        records = await orchestrator.sync_all(TEST_USER_ID)

        assert {(r.date, r.source) for r in records} == {
            (date(2026, 2, 22), DataSource.APPLE_HEALTH),
            (date(2026, 2, 23), DataSource.APPLE_HEALTH),
            (date(2026, 2, 23), DataSource.OURA),
        }
        expected_window = (TEST_TODAY - timedelta(days=sync_config.sync.window_days), TEST_TODAY)
        for adapter in fake_adapters.values():
            assert adapter.fetch_calls == [expected_window]
        assert fake_adapters[ProviderId.OURA].settings_seen.credentials == {"access_token": "tok"}

    @pytest.mark.asyncio
    async def test_only_enabled_providers_are_fetched(
        self, orchestrator: HealthSyncOrchestrator, settings_store: InMemorySettingsStore, fake_adapters: dict
    ) -> None:
        await settings_store.put(
            TEST_USER_ID, IntegrationSettings(oura=ProviderSettings(enabled=True))
        )
        records = await orchestrator.sync_all(TEST_USER_ID)
        assert {r.source for r in records} == {DataSource.OURA}
        assert fake_adapters[ProviderId.APPLE_HEALTH].fetch_calls == []

    @pytest.mark.asyncio
    async def test_sync_is_idempotent(
        self,
        orchestrator: HealthSyncOrchestrator,
        settings_store: InMemorySettingsStore,
        data_store: InMemoryHealthDataStore,
    ) -> None:
        await _enable_both(settings_store)
        await orchestrator.sync_all(TEST_USER_ID)
        first = await data_store.query_range(TEST_USER_ID, date(2026, 1, 1), TEST_TODAY)

        await orchestrator.sync_all(TEST_USER_ID)
        second = await data_store.query_range(TEST_USER_ID, date(2026, 1, 1), TEST_TODAY)

        assert len(data_store) == 3
        assert first == second

    @pytest.mark.asyncio
    async def test_updates_last_sync_to_start_time(
        self, orchestrator: HealthSyncOrchestrator, settings_store: InMemorySettingsStore
    ) -> None:
        await _enable_both(settings_store)
        await orchestrator.sync_all(TEST_USER_ID)
        settings = await settings_store.get(TEST_USER_ID)
        assert settings.apple_health.last_sync == TEST_NOW
        assert settings.oura.last_sync == TEST_NOW

    @pytest.mark.asyncio
    async def test_partial_failure_isolated(
        self,
        orchestrator: HealthSyncOrchestrator,
        settings_store: InMemorySettingsStore,
        data_store: InMemoryHealthDataStore,
        fake_adapters: dict,
        fetch_error: ProviderFetchError,
    ) -> None:
        await _enable_both(settings_store)
        fake_adapters[ProviderId.OURA].error = fetch_error

        records = await orchestrator.sync_all(TEST_USER_ID)

        assert records
        assert {r.source for r in records} == {DataSource.APPLE_HEALTH}
        stored = await data_store.query_range(TEST_USER_ID, date(2026, 1, 1), TEST_TODAY)
        assert {r.source for r in stored} == {DataSource.APPLE_HEALTH}

        settings = await settings_store.get(TEST_USER_ID)
        assert settings.apple_health.last_sync == TEST_NOW
        assert settings.oura.last_sync == EARLIER
        assert settings.oura.enabled is True

    @pytest.mark.asyncio
    async def test_malformed_readings_isolated_to_their_provider(
        self,
        orchestrator: HealthSyncOrchestrator,
        settings_store: InMemorySettingsStore,
        data_store: InMemoryHealthDataStore,
        fake_adapters: dict,
    ) -> None:
        await _enable_both(settings_store)
        fake_adapters[ProviderId.APPLE_HEALTH].readings = [
            steps_reading(ProviderId.APPLE_HEALTH, date(2026, 2, 23), -500)
        ]

        records = await orchestrator.sync_all(TEST_USER_ID)

        assert {r.source for r in records} == {DataSource.OURA}
        stored = await data_store.query_range(TEST_USER_ID, date(2026, 1, 1), TEST_TODAY)
        assert [(r.date, r.source) for r in stored] == [(date(2026, 2, 23), DataSource.OURA)]

        settings = await settings_store.get(TEST_USER_ID)
        assert settings.apple_health.last_sync == EARLIER
        assert settings.oura.last_sync == TEST_NOW

    @pytest.mark.asyncio
    async def test_timed_out_provider_treated_as_failed(
        self,
        settings_store: InMemorySettingsStore,
        data_store: InMemoryHealthDataStore,
        fake_adapters: dict,
        sync_config: SyncConfig,
    ) -> None:
        await _enable_both(settings_store)
        fake_adapters[ProviderId.OURA].delay = 5
        config = replace(
            sync_config,
            sync=SyncWindowConfig(
                window_days=30,
                provider_timeouts_seconds={"oura": 0.01, "apple_health": 5.0},
            ),
        )
        orchestrator = HealthSyncOrchestrator(
            settings_store, data_store, lambda pid, s: fake_adapters[pid], config=config,
            clock=lambda: TEST_NOW,
        )

        records = await orchestrator.sync_all(TEST_USER_ID)

        assert {r.source for r in records} == {DataSource.APPLE_HEALTH}
        settings = await settings_store.get(TEST_USER_ID)
        assert settings.oura.last_sync == EARLIER

    @pytest.mark.asyncio
    async def test_persistence_failure_propagates(
        self, settings_store: InMemorySettingsStore, fake_adapters: dict, sync_config: SyncConfig
    ) -> None:
        await _enable_both(settings_store)
        failing_store = InMemoryHealthDataStore()
        failing_store.upsert_many = AsyncMock(side_effect=PersistenceError("db down"))
        orchestrator = HealthSyncOrchestrator(
            settings_store, failing_store, lambda pid, s: fake_adapters[pid], config=sync_config,
            clock=lambda: TEST_NOW,
        )

        with pytest.raises(PersistenceError):
            await orchestrator.sync_all(TEST_USER_ID)

        settings = await settings_store.get(TEST_USER_ID)
        assert settings.apple_health.last_sync == EARLIER

    @pytest.mark.asyncio
    async def test_mock_providers_end_to_end(
        self,
        settings_store: InMemorySettingsStore,
        data_store: InMemoryHealthDataStore,
        sync_config: SyncConfig,
    ) -> None:
        factory = AdapterFactory(mock_fallback=True, config=sync_config, rng=random.Random(7))
        orchestrator = HealthSyncOrchestrator(
            settings_store, data_store, factory, config=sync_config, clock=lambda: TEST_NOW
        )
        for pid in ProviderId:
            assert await orchestrator.enable_provider(TEST_USER_ID, pid)

        records = await orchestrator.sync_all(TEST_USER_ID)

        window = sync_config.sync.window_days + 1
        assert len([r for r in records if r.source is DataSource.APPLE_HEALTH]) == window
        assert len([r for r in records if r.source is DataSource.OURA]) == window
        assert len(data_store) == 2 * window
        for record in records:
            if record.heart_rate:
                hr = record.heart_rate
                assert hr.resting <= hr.average <= hr.max


# ---------------------------------------------------------------------------
# import_from_adapter
# ---------------------------------------------------------------------------


class TestImport:
    @pytest.mark.asyncio
    async def test_import_persists_adapter_records(
        self, orchestrator: HealthSyncOrchestrator, apple_fake: FakeAdapter, data_store: InMemoryHealthDataStore
    ) -> None:
        records = await orchestrator.import_from_adapter(TEST_USER_ID, apple_fake)
        assert len(records) == 2
        assert len(data_store) == 2

    @pytest.mark.asyncio
    async def test_import_raises_fetch_errors(
        self, orchestrator: HealthSyncOrchestrator, fetch_error: ProviderFetchError
    ) -> None:
        adapter = FakeAdapter(ProviderId.APPLE_HEALTH, error=fetch_error)
        with pytest.raises(ProviderFetchError):
            await orchestrator.import_from_adapter(TEST_USER_ID, adapter)


# ---------------------------------------------------------------------------
# summarize
# ---------------------------------------------------------------------------


def _record(day: date, **fields) -> UnifiedDayRecord:
    return UnifiedDayRecord(date=day, source=DataSource.APPLE_HEALTH, **fields)


class TestSummarize:
    @pytest.mark.asyncio
    async def test_empty_window_is_all_zero(self, orchestrator: HealthSyncOrchestrator) -> None:
        summary = await orchestrator.summarize(TEST_USER_ID, 7)
        assert summary.average_steps == 0
        assert summary.average_sleep == 0.0
        assert summary.total_workouts == 0

    @pytest.mark.asyncio
    async def test_sparse_heart_rate_averages_over_present_days(
        self, orchestrator: HealthSyncOrchestrator, data_store: InMemoryHealthDataStore
    ) -> None:
        days = [TEST_TODAY - timedelta(days=i) for i in range(7)]
        averages = [60, 70, 80, None, None, None, None]
        records = [
            _record(
                d,
                steps=7000,
                heart_rate=HeartRateSummary(resting=50, average=avg, max=120) if avg else None,
            )
            for d, avg in zip(days, averages)
        ]
        await data_store.upsert_many(TEST_USER_ID, records)

        summary = await orchestrator.summarize(TEST_USER_ID, 7)

        assert summary.average_heart_rate == 70
        assert summary.average_steps == 7000

    @pytest.mark.asyncio
    async def test_window_excludes_older_records(
        self, orchestrator: HealthSyncOrchestrator, data_store: InMemoryHealthDataStore
    ) -> None:
        await data_store.upsert_many(TEST_USER_ID, [
            _record(TEST_TODAY, steps=4000),
            _record(TEST_TODAY - timedelta(days=6), steps=6000),
            _record(TEST_TODAY - timedelta(days=7), steps=100000),
        ])
        summary = await orchestrator.summarize(TEST_USER_ID, 7)
        assert summary.average_steps == 5000

    @pytest.mark.asyncio
    async def test_default_window_from_config(
        self, orchestrator: HealthSyncOrchestrator, data_store: InMemoryHealthDataStore
    ) -> None:
        await data_store.upsert_many(TEST_USER_ID, [_record(TEST_TODAY - timedelta(days=6), steps=8000)])
        assert (await orchestrator.summarize(TEST_USER_ID)).average_steps == 8000

    @pytest.mark.asyncio
    async def test_invalid_window(self, orchestrator: HealthSyncOrchestrator) -> None:
        with pytest.raises(ValueError):
            await orchestrator.summarize(TEST_USER_ID, 0)


# ---------------------------------------------------------------------------
# enable / disable
# ---------------------------------------------------------------------------


class TestEnableDisable:
    @pytest.mark.asyncio
    async def test_enable_runs_smoke_test_and_stores_credentials(
        self,
        orchestrator: HealthSyncOrchestrator,
        settings_store: InMemorySettingsStore,
        fake_adapters: dict,
        sync_config: SyncConfig,
    ) -> None:
        result = await orchestrator.enable_provider(
            TEST_USER_ID, ProviderId.OURA, {"access_token": "new", "refresh_token": "r"}
        )

        assert result
        smoke_days = sync_config.sync.smoke_test_days
        assert fake_adapters[ProviderId.OURA].fetch_calls == [
            (TEST_TODAY - timedelta(days=smoke_days - 1), TEST_TODAY)
        ]
        settings = await settings_store.get(TEST_USER_ID)
        assert settings.oura.enabled is True
        assert settings.oura.credentials == {"access_token": "new", "refresh_token": "r"}
        assert CapabilityFlag.STEPS in settings.oura.granted_permissions
        assert settings.apple_health.enabled is False

    @pytest.mark.asyncio
    async def test_failed_smoke_test_leaves_provider_disabled(
        self,
        orchestrator: HealthSyncOrchestrator,
        settings_store: InMemorySettingsStore,
        fake_adapters: dict,
        fetch_error: ProviderFetchError,
    ) -> None:
        fake_adapters[ProviderId.OURA].error = fetch_error

        result = await orchestrator.enable_provider(TEST_USER_ID, ProviderId.OURA, {"access_token": "x"})

        assert not result
        assert "smoke test failed" in result.reason
        settings = await settings_store.get(TEST_USER_ID)
        assert settings.oura.enabled is False
        assert settings.oura.credentials is None

    @pytest.mark.asyncio
    async def test_permission_denied_returns_false_without_fetch(
        self, orchestrator: HealthSyncOrchestrator, fake_adapters: dict
    ) -> None:
        fake_adapters[ProviderId.APPLE_HEALTH].granted = False
        result = await orchestrator.enable_provider(TEST_USER_ID, ProviderId.APPLE_HEALTH)
        assert not result
        assert result.reason == "permission denied"
        assert fake_adapters[ProviderId.APPLE_HEALTH].fetch_calls == []

    @pytest.mark.asyncio
    async def test_disable_clears_credentials_and_permissions(
        self, orchestrator: HealthSyncOrchestrator, settings_store: InMemorySettingsStore
    ) -> None:
        await orchestrator.enable_provider(TEST_USER_ID, ProviderId.OURA, {"access_token": "tok"})
        await orchestrator.sync_all(TEST_USER_ID)

        await orchestrator.disable_provider(TEST_USER_ID, ProviderId.OURA)

        settings = await settings_store.get(TEST_USER_ID)
        assert settings.oura.enabled is False
        assert settings.oura.credentials is None
        assert settings.oura.granted_permissions == set()

    @pytest.mark.asyncio
    async def test_disable_leaves_other_provider_untouched(
        self, orchestrator: HealthSyncOrchestrator, settings_store: InMemorySettingsStore
    ) -> None:
        await _enable_both(settings_store)
        await orchestrator.disable_provider(TEST_USER_ID, ProviderId.APPLE_HEALTH)
        settings = await settings_store.get(TEST_USER_ID)
        assert settings.apple_health.enabled is False
        assert settings.oura.enabled is True
        assert settings.oura.credentials == {"access_token": "tok"}

    @pytest.mark.asyncio
    async def test_disable_never_enabled_provider(
        self, orchestrator: HealthSyncOrchestrator, settings_store: InMemorySettingsStore
    ) -> None:
        disabled = await orchestrator.disable_provider(TEST_USER_ID, ProviderId.APPLE_HEALTH)
        assert disabled.enabled is False
        assert (await settings_store.get(TEST_USER_ID)).apple_health.enabled is False
