"""Oura Ring API v2 adapter.

Supports the OAuth2 authorization-code flow (``OuraOAuthClient``) and reads
with a per-user Bearer token (``OuraAdapter``).

API base: https://api.ouraring.com

Endpoints used:
    /v2/usercollection/daily_sleep      Nightly sleep score
    /v2/usercollection/sleep            Detailed sleep sessions and stages
    /v2/usercollection/daily_activity   Daily step/calorie summary
    /v2/usercollection/daily_readiness  Oura readiness score
    /v2/usercollection/heartrate        Continuous heart rate
    /v2/usercollection/workout          Auto-detected and logged workouts
    /v2/usercollection/session          Guided sessions (meditation, breathing...)
"""

from __future__ import annotations

import asyncio
import logging
import random
import secrets
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx

from src.integrations.base import (
    OAuthTokens,
    ProviderAdapter,
    ProviderFetchError,
    RawReading,
    ReadingKind,
    TokenExpiredError,
)
from src.integrations.config_loader import SyncConfig, get_sync_config
from src.integrations.mock_data import generate_oura_payload
from src.models.health import CapabilityFlag, ProviderId

logger = logging.getLogger("forela.integrations.oura")

_OURA_API_BASE = "https://api.ouraring.com"
_OURA_TOKEN_URL = "https://api.ouraring.com/oauth/token"
_OURA_AUTH_URL = "https://cloud.ouraring.com/oauth/authorize"

# Collections fetched for a sync, in payload-key order
_COLLECTIONS = (
    "daily_sleep",
    "sleep",
    "daily_activity",
    "daily_readiness",
    "heartrate",
    "workout",
    "session",
)

# Guided session types that count as mindfulness
_MINDFUL_SESSION_TYPES = {"meditation", "breathing", "relaxation"}

# Upper bound on pages followed per collection
_MAX_PAGES = 50


class OAuthConfigError(ValueError):
    """Raised when the Oura OAuth configuration is incomplete."""


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OuraOAuthConfig:
    """OAuth2 client registration for the Oura cloud API."""

    client_id: str
    client_secret: str
    redirect_uri: str
    scope: str = "email personal daily"

    def __post_init__(self) -> None:
        missing = [
            name for name in ("client_id", "client_secret", "redirect_uri")
            if not getattr(self, name)
        ]
        if missing:
            raise OAuthConfigError(f"Oura OAuth config is missing: {', '.join(missing)}")

    @classmethod
    def from_settings(cls, settings: Any) -> "OuraOAuthConfig":
        return cls(
            client_id=settings.oura_client_id,
            client_secret=settings.oura_client_secret,
            redirect_uri=settings.oura_redirect_uri,
            scope=settings.oura_scope,
        )


class OuraOAuthClient:
    """Authorization-code exchange and token refresh against Oura."""

    def __init__(self, config: OuraOAuthConfig, http_client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._http_client = http_client

    def authorization_url(self, state: str | None = None) -> tuple[str, str]:
        """Build the consent URL the user is redirected to.

        Returns:
            (url, state): the caller must keep ``state`` to verify the callback.
        """
        state = state or secrets.token_urlsafe(16)
        params = {
            "response_type": "code",
            "client_id": self._config.client_id,
            "redirect_uri": self._config.redirect_uri,
            "scope": self._config.scope,
            "state": state,
        }
        return f"{_OURA_AUTH_URL}?{urlencode(params)}", state

    async def exchange_code(self, code: str) -> OAuthTokens:
        """Exchange an authorization code for access + refresh tokens."""
        logger.info("Oura: exchanging authorization code")
        data = await self._post_token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._config.redirect_uri,
        })
        return self._tokens_from(data)

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        """Obtain a new access token; Oura may or may not rotate the refresh token."""
        logger.info("Oura: refreshing access token")
        data = await self._post_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
        return self._tokens_from(data, fallback_refresh=refresh_token)

    async def _post_token(self, form: dict[str, str]) -> dict:
        form = {
            **form,
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
        }
        try:
            if self._http_client:
                response = await self._http_client.post(_OURA_TOKEN_URL, data=form)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(_OURA_TOKEN_URL, data=form)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderFetchError(ProviderId.OURA, f"token request failed: {exc}") from exc
        return response.json()

    @staticmethod
    def _tokens_from(data: dict, fallback_refresh: str | None = None) -> OAuthTokens:
        expires_in = data.get("expires_in", 3600)
        expires_at = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(seconds=expires_in)
        scope = data.get("scope") or ""
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or fallback_refresh,
            expires_at=expires_at,
            token_type=data.get("token_type", "Bearer"),
            scope=scope.split(),
        )


# ---------------------------------------------------------------------------
# Data adapter
# ---------------------------------------------------------------------------


class OuraAdapter(ProviderAdapter):
    """Oura Ring API v2 adapter.

    Available when an access token is present.  A sync fetches every
    collection concurrently; a failing collection only empties its own
    category, and the fetch fails only when every collection fails.
    """

    PROVIDER_ID = ProviderId.OURA
    DISPLAY_NAME = "Oura Ring"
    CAPABILITIES = frozenset({
        CapabilityFlag.PERSONAL_INFO,
        CapabilityFlag.DAILY_SLEEP,
        CapabilityFlag.DAILY_ACTIVITY,
        CapabilityFlag.DAILY_READINESS,
        CapabilityFlag.HEART_RATE,
        CapabilityFlag.WORKOUTS,
        CapabilityFlag.SESSIONS,
        CapabilityFlag.TAGS,
    })

    def __init__(
        self,
        access_token: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        mock_fallback: bool = True,
        rng: random.Random | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        """Initialize the Oura adapter.

        Args:
            access_token:  Per-user OAuth2 Bearer token.
            http_client:   Optional pre-configured httpx client (shared app client, or a mock in tests).
            mock_fallback: Serve mock data and grant permissions when no token is present.
            rng:           Random source for mock data.
            config:        Sync configuration; the global one by default.
        """
        self._access_token = access_token
        self._http_client = http_client
        self._mock_fallback = mock_fallback
        self._rng = rng or random.Random()
        self._config = config or get_sync_config()

    # ------------------------------------------------------------------
    # ProviderAdapter interface
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        return bool(self._access_token)

    async def request_permission(self, capabilities: set[CapabilityFlag]) -> bool:
        # Consent is granted during the OAuth flow; nothing to ask here.
        if not self.is_available():
            logger.info("Oura: no access token, mock_fallback=%s", self._mock_fallback)
            return self._mock_fallback
        unsupported = set(capabilities) - self.CAPABILITIES
        if unsupported:
            logger.warning(
                "Oura: unsupported capabilities requested: %s",
                sorted(c.value for c in unsupported),
            )
            return False
        return True

    async def fetch_range(self, start: date, end: date) -> list[RawReading]:
        if not self.is_available():
            if not self._mock_fallback:
                return []
            logger.info("Oura: no access token, returning mock data")
            return self.parse_payload(
                generate_oura_payload(start, end, self._config.mock_data, self._rng)
            )

        results = await asyncio.gather(
            *(self._fetch_collection(name, start, end) for name in _COLLECTIONS),
            return_exceptions=True,
        )

        payload: dict[str, list] = {}
        errors: list[BaseException] = []
        for name, result in zip(_COLLECTIONS, results):
            if isinstance(result, BaseException):
                logger.warning("Oura: %s fetch failed: %s", name, result)
                errors.append(result)
                payload[name] = []
            else:
                payload[name] = result

        if len(errors) == len(_COLLECTIONS):
            first = errors[0]
            if isinstance(first, ProviderFetchError):
                raise first
            raise ProviderFetchError(self.PROVIDER_ID, f"every collection failed: {first}")

        return self.parse_payload(payload)

    # ------------------------------------------------------------------
    # Payload parsing
    # ------------------------------------------------------------------

    def parse_payload(self, payload: dict) -> list[RawReading]:
        """Convert ``{collection: [documents]}`` into RawReadings.

        The longest sleep session of a day is its primary night; the day's
        ``daily_sleep`` score is attached to it.
        """
        readings: list[RawReading] = []

        scores_by_day = {
            doc.get("day"): self._safe_int(doc.get("score"))
            for doc in payload.get("daily_sleep") or []
        }

        primary_sleep: dict[str, dict] = {}
        for session in payload.get("sleep") or []:
            day = session.get("day")
            if not day:
                continue
            current = primary_sleep.get(day)
            if current is None or (session.get("total_sleep_duration") or 0) > (
                current.get("total_sleep_duration") or 0
            ):
                primary_sleep[day] = session

        for day_str, session in primary_sleep.items():
            day = self._parse_day(day_str)
            start = self._parse_instant(session.get("bedtime_start"))
            if day is None or start is None:
                continue
            total = self._safe_float(session.get("total_sleep_duration"))
            deep = self._safe_float(session.get("deep_sleep_duration"))
            rem = self._safe_float(session.get("rem_sleep_duration"))
            readings.append(RawReading(
                kind=ReadingKind.SLEEP,
                provider=self.PROVIDER_ID,
                start=start,
                end=self._parse_instant(session.get("bedtime_end")),
                day=day,
                device="Oura Ring",
                details={
                    "duration_hours": round(total / 3600, 2) if total is not None else None,
                    "efficiency_percent": self._safe_float(session.get("efficiency")),
                    "deep_sleep_hours": round(deep / 3600, 2) if deep is not None else None,
                    "rem_sleep_hours": round(rem / 3600, 2) if rem is not None else None,
                    "score": scores_by_day.get(day_str),
                },
            ))

        for doc in payload.get("daily_activity") or []:
            day = self._parse_day(doc.get("day"))
            if day is None:
                continue
            start = datetime.combine(day, time.min)
            steps = self._safe_int(doc.get("steps"))
            if steps is not None:
                readings.append(RawReading(
                    kind=ReadingKind.STEPS, provider=self.PROVIDER_ID,
                    start=start, day=day, value=steps, device="Oura Ring",
                ))
            active_secs = (self._safe_int(doc.get("high_activity_time")) or 0) + (
                self._safe_int(doc.get("medium_activity_time")) or 0
            )
            readings.append(RawReading(
                kind=ReadingKind.ACTIVITY,
                provider=self.PROVIDER_ID,
                start=start,
                day=day,
                details={
                    "calories_burned": self._safe_float(doc.get("active_calories")),
                    "active_minutes": active_secs // 60,
                    "score": self._safe_int(doc.get("score")),
                },
            ))

        for doc in payload.get("daily_readiness") or []:
            day = self._parse_day(doc.get("day"))
            if day is None:
                continue
            contributors = doc.get("contributors") or {}
            readings.append(RawReading(
                kind=ReadingKind.READINESS,
                provider=self.PROVIDER_ID,
                start=datetime.combine(day, time.min),
                day=day,
                details={
                    "score": self._safe_int(doc.get("score")),
                    "hrv": self._safe_float(contributors.get("hrv_balance")),
                    "temperature_deviation": self._safe_float(doc.get("temperature_deviation")),
                },
            ))

        for sample in payload.get("heartrate") or []:
            when = self._parse_instant(sample.get("timestamp"))
            bpm = self._safe_float(sample.get("bpm"))
            if when is None or bpm is None:
                continue
            readings.append(RawReading(
                kind=ReadingKind.HEART_RATE, provider=self.PROVIDER_ID,
                start=when, value=bpm, device="Oura Ring",
            ))

        for doc in payload.get("workout") or []:
            start = self._parse_instant(doc.get("start_datetime"))
            if start is None:
                continue
            readings.append(RawReading(
                kind=ReadingKind.WORKOUT,
                provider=self.PROVIDER_ID,
                start=start,
                end=self._parse_instant(doc.get("end_datetime")),
                day=self._parse_day(doc.get("day")),
                details={
                    "type": doc.get("activity") or "other",
                    "calories": self._safe_float(doc.get("calories")) or 0.0,
                    "intensity": doc.get("intensity"),
                },
            ))

        for doc in payload.get("session") or []:
            if doc.get("type") not in _MINDFUL_SESSION_TYPES:
                continue
            start = self._parse_instant(doc.get("start_datetime"))
            if start is None:
                continue
            readings.append(RawReading(
                kind=ReadingKind.MINDFULNESS,
                provider=self.PROVIDER_ID,
                start=start,
                end=self._parse_instant(doc.get("end_datetime")),
                day=self._parse_day(doc.get("day")),
            ))

        return readings

    # ------------------------------------------------------------------
    # Private HTTP helpers
    # ------------------------------------------------------------------

    async def _fetch_collection(self, name: str, start: date, end: date) -> list[dict]:
        """Fetch every page of one usercollection for [start, end]."""
        if name == "heartrate":
            params = {
                "start_datetime": datetime.combine(start, time.min, tzinfo=timezone.utc).isoformat(),
                "end_datetime": datetime.combine(
                    end + timedelta(days=1), time.min, tzinfo=timezone.utc
                ).isoformat(),
            }
        else:
            params = {"start_date": start.isoformat(), "end_date": end.isoformat()}

        url = f"{_OURA_API_BASE}/v2/usercollection/{name}"
        documents: list[dict] = []
        for _ in range(_MAX_PAGES):
            body = await self._get(url, params)
            documents.extend(body.get("data") or [])
            next_token = body.get("next_token")
            if not next_token:
                break
            params = {**params, "next_token": next_token}
        else:
            logger.warning("Oura: %s pagination stopped after %d pages", name, _MAX_PAGES)
        return documents

    async def _get(self, url: str, params: dict) -> dict:
        """Make an authenticated GET request to the Oura API.

        Raises:
            TokenExpiredError:  On HTTP 401.
            ProviderFetchError: On any other HTTP or transport error.
        """
        headers = {"Authorization": f"Bearer {self._access_token}"}
        try:
            if self._http_client:
                response = await self._http_client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise ProviderFetchError(self.PROVIDER_ID, f"request to {url} failed: {exc}") from exc

        if response.status_code == 401:
            raise TokenExpiredError(self.PROVIDER_ID, "access token expired or revoked")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderFetchError(
                self.PROVIDER_ID, f"{url} returned HTTP {response.status_code}"
            ) from exc
        return response.json()
