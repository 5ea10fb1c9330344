"""Per-user health sync orchestration.

Coordinates one user's sync end to end:
1. Load integration settings
2. Fetch every enabled provider concurrently over the trailing window
   (all-settled: one provider failing or timing out never stalls the others)
3. Unify each successful provider's readings into day records
4. Upsert all records on (user_id, date, source)
5. Stamp ``last_sync`` on the providers that succeeded

Persistence failures propagate to the caller as ``PersistenceError``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable
from uuid import UUID

from src.integrations.base import ProviderAdapter
from src.integrations.config_loader import SyncConfig, get_sync_config
from src.integrations.stores import HealthDataStore, SettingsStore
from src.integrations.summary import summarize_records
from src.integrations.unification import UnificationProfile, unify
from src.models.base import utc_now
from src.models.health import (
    DataSource,
    HealthSummary,
    IntegrationSettings,
    ProviderId,
    ProviderSettings,
    UnifiedDayRecord,
)

logger = logging.getLogger("forela.integrations.sync")

AdapterBuilder = Callable[[ProviderId, ProviderSettings], ProviderAdapter]


@dataclass
class EnableResult:
    """Outcome of ``enable_provider``; falsy when the provider was not enabled."""

    provider: ProviderId
    enabled: bool
    reason: str | None = None
    settings: ProviderSettings | None = None

    def __bool__(self) -> bool:
        return self.enabled


class HealthSyncOrchestrator:
    """Sync, summarize, enable and disable health providers for a user.

    Usage::

        orchestrator = HealthSyncOrchestrator(
            settings_store=InMemorySettingsStore(),
            data_store=InMemoryHealthDataStore(),
            adapter_factory=AdapterFactory(http_client=client),
        )
        records = await orchestrator.sync_all(user_id)
    """

    def __init__(
        self,
        settings_store: SettingsStore,
        data_store: HealthDataStore,
        adapter_factory: AdapterBuilder,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            settings_store:  Per-user IntegrationSettings persistence.
            data_store:      Canonical UnifiedDayRecord persistence.
            adapter_factory: Callable(provider_id, provider_settings) → adapter.
            config:          Sync configuration; the global one by default.
            clock:           Returns the current UTC datetime (overridable in tests).
        """
        self._settings_store = settings_store
        self._data_store = data_store
        self._adapter_factory = adapter_factory
        self._config = config or get_sync_config()
        self._clock = clock

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync_all(self, user_id: UUID) -> list[UnifiedDayRecord]:
        """Fetch, unify and persist every enabled provider for a user.

        Returns:
            All records written in this run, ordered by provider then date.

        Raises:
            PersistenceError: If the settings or data store fails.
        """
        started_at = self._clock()
        settings = await self._settings_store.get(user_id)
        enabled = settings.enabled_providers()
        if not enabled:
            logger.info("Sync for user %s: no providers enabled", user_id)
            return []

        end = started_at.date()
        start = end - timedelta(days=self._config.sync.window_days)

        adapters = [self._adapter_factory(pid, settings.provider(pid)) for pid in enabled]
        outcomes = await asyncio.gather(*(
            adapter.fetch_range_settled(
                start, end, timeout=self._config.provider_timeout(pid.value)
            )
            for pid, adapter in zip(enabled, adapters)
        ))

        records: list[UnifiedDayRecord] = []
        succeeded: list[ProviderId] = []
        for pid, outcome in zip(enabled, outcomes):
            if not outcome.ok:
                logger.warning(
                    "Sync for user %s: %s failed, keeping last_sync: %s", user_id, pid.value, outcome.error
                )
                continue
            try:
                provider_records = self._unify(pid, outcome.readings)
            except (ValueError, TypeError) as exc:
                logger.warning(
                    "Sync for user %s: %s returned malformed readings, keeping last_sync: %s",
                    user_id, pid.value, exc,
                )
                continue
            records.extend(provider_records)
            succeeded.append(pid)

        await self._data_store.upsert_many(user_id, records)

        if succeeded:
            for pid in succeeded:
                settings.provider(pid).last_sync = started_at
            await self._settings_store.put(user_id, settings, providers=succeeded)

        logger.info(
            "Sync for user %s: %d records from %s (%d/%d providers ok)",
            user_id, len(records), [p.value for p in succeeded], len(succeeded), len(enabled),
        )
        return records

    async def import_from_adapter(
        self,
        user_id: UUID,
        adapter: ProviderAdapter,
        start: date | None = None,
        end: date | None = None,
    ) -> list[UnifiedDayRecord]:
        """Unify and persist one adapter's readings, e.g. from an uploaded export.

        Unlike ``sync_all`` a fetch failure is raised, since the caller
        supplied the data source directly.
        """
        end = end or self._clock().date()
        start = start or end - timedelta(days=self._config.sync.window_days)
        readings = await adapter.fetch_range(start, end)
        records = self._unify(adapter.PROVIDER_ID, readings)
        await self._data_store.upsert_many(user_id, records)
        logger.info(
            "Imported %d %s records for user %s", len(records), adapter.PROVIDER_ID.value, user_id
        )
        return records

    def _unify(self, provider_id: ProviderId, readings: list) -> list[UnifiedDayRecord]:
        profile = UnificationProfile.for_provider(DataSource(provider_id.value), self._config)
        return unify(readings, profile)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_settings(self, user_id: UUID) -> IntegrationSettings:
        return await self._settings_store.get(user_id)

    async def query(self, user_id: UUID, start: date, end: date) -> list[UnifiedDayRecord]:
        return await self._data_store.query_range(user_id, start, end)

    async def summarize(self, user_id: UUID, window_days: int | None = None) -> HealthSummary:
        """Averages over the trailing ``window_days`` days, today included."""
        days = self._config.summary_window_days if window_days is None else window_days
        if days < 1:
            raise ValueError(f"window_days must be >= 1, got {days}")
        end = self._clock().date()
        start = end - timedelta(days=days - 1)
        records = await self._data_store.query_range(user_id, start, end)
        return summarize_records(records)

    # ------------------------------------------------------------------
    # Enable / disable
    # ------------------------------------------------------------------

    async def enable_provider(
        self,
        user_id: UUID,
        provider_id: ProviderId,
        credentials: dict[str, Any] | None = None,
    ) -> EnableResult:
        """Check permission, run a smoke-test fetch, then mark the provider enabled.

        Returns a falsy EnableResult (and leaves settings untouched) when
        permission is denied or the smoke-test fetch raises.
        """
        provider_id = ProviderId(provider_id)
        settings = await self._settings_store.get(user_id)
        current = settings.provider(provider_id)
        candidate = current.model_copy(
            update={"credentials": credentials if credentials is not None else current.credentials}
        )
        adapter = self._adapter_factory(provider_id, candidate)
        capabilities = set(adapter.CAPABILITIES)

        if not await adapter.request_permission(capabilities):
            logger.info("Enable %s for user %s: permission denied", provider_id.value, user_id)
            return EnableResult(provider_id, enabled=False, reason="permission denied")

        end = self._clock().date()
        start = end - timedelta(days=self._config.sync.smoke_test_days - 1)
        try:
            readings = await asyncio.wait_for(
                adapter.fetch_range(start, end),
                self._config.provider_timeout(provider_id.value),
            )
        except asyncio.TimeoutError:
            logger.warning("Enable %s for user %s: smoke test timed out", provider_id.value, user_id)
            return EnableResult(provider_id, enabled=False, reason="smoke test timed out")
        except Exception as exc:
            logger.warning(
                "Enable %s for user %s: smoke test failed: %s", provider_id.value, user_id, exc
            )
            return EnableResult(provider_id, enabled=False, reason=f"smoke test failed: {exc}")

        enabled = candidate.model_copy(
            update={"enabled": True, "granted_permissions": capabilities}
        )
        settings.set_provider(provider_id, enabled)
        await self._settings_store.put(user_id, settings, providers=[provider_id])
        logger.info(
            "Enabled %s for user %s (smoke test: %d readings)", provider_id.value, user_id, len(readings)
        )
        return EnableResult(provider_id, enabled=True, settings=enabled)

    async def disable_provider(self, user_id: UUID, provider_id: ProviderId) -> ProviderSettings:
        """Clear enabled, credentials and granted permissions unconditionally."""
        provider_id = ProviderId(provider_id)
        settings = await self._settings_store.get(user_id)
        disabled = settings.provider(provider_id).model_copy(
            update={"enabled": False, "credentials": None, "granted_permissions": set()}
        )
        settings.set_provider(provider_id, disabled)
        await self._settings_store.put(user_id, settings, providers=[provider_id])
        logger.info("Disabled %s for user %s", provider_id.value, user_id)
        return disabled
