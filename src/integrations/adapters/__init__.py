"""Health data provider adapters for Forela.

Each adapter implements the ProviderAdapter ABC and handles:
- Availability detection (host bridge present, access token present)
- Permission requests
- Fetching a date range and parsing the provider payload into RawReadings
- Mock payloads of the same shape when the provider is unavailable

Available adapters:
    AppleHealthAdapter  Apple HealthKit (native host bridge or export.xml)
    OuraAdapter         Oura API v2 (OAuth2)
"""

from __future__ import annotations

import logging
import random

import httpx

from src.integrations.adapters.apple_health import (
    AppleHealthAdapter,
    AppleHealthExportBridge,
    HealthKitBridge,
)
from src.integrations.adapters.oura import OAuthConfigError, OuraAdapter, OuraOAuthClient, OuraOAuthConfig
from src.integrations.base import ProviderAdapter
from src.integrations.config_loader import SyncConfig, get_sync_config
from src.models.health import ProviderId, ProviderSettings

logger = logging.getLogger("forela.integrations.adapters")

__all__ = [
    "AppleHealthAdapter",
    "AppleHealthExportBridge",
    "HealthKitBridge",
    "OuraAdapter",
    "OuraOAuthClient",
    "OuraOAuthConfig",
    "OAuthConfigError",
    "ADAPTER_REGISTRY",
    "AdapterFactory",
    "get_adapter",
]

# Registry: provider slug → adapter class
ADAPTER_REGISTRY: dict[str, type[ProviderAdapter]] = {
    ProviderId.APPLE_HEALTH.value: AppleHealthAdapter,
    ProviderId.OURA.value: OuraAdapter,
}


def get_adapter(provider_id: str) -> type[ProviderAdapter]:
    """Return the adapter class for a given provider slug.

    Raises:
        KeyError: If the provider_id is not registered.
    """
    if provider_id not in ADAPTER_REGISTRY:
        raise KeyError(
            f"No adapter registered for provider '{provider_id}'. "
            f"Available: {list(ADAPTER_REGISTRY)}"
        )
    return ADAPTER_REGISTRY[provider_id]


class AdapterFactory:
    """Build a configured adapter for one user's provider settings.

    Usage::

        factory = AdapterFactory(http_client=client, mock_fallback=True)
        adapter = factory(ProviderId.OURA, settings.oura)
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        mock_fallback: bool = True,
        apple_bridge: HealthKitBridge | None = None,
        config: SyncConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._http_client = http_client
        self._mock_fallback = mock_fallback
        self._apple_bridge = apple_bridge
        self._config = config or get_sync_config()
        self._rng = rng

    def __call__(self, provider_id: ProviderId, settings: ProviderSettings) -> ProviderAdapter:
        adapter_cls = get_adapter(ProviderId(provider_id).value)

        if adapter_cls is OuraAdapter:
            credentials = settings.credentials or {}
            return OuraAdapter(
                credentials.get("access_token"),
                http_client=self._http_client,
                mock_fallback=self._mock_fallback,
                rng=self._rng,
                config=self._config,
            )

        return AppleHealthAdapter(
            self._apple_bridge,
            mock_fallback=self._mock_fallback,
            rng=self._rng,
            config=self._config,
        )
