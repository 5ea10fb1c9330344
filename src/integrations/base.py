"""Base classes and raw reading model for the Forela health integration layer.

Every provider adapter must subclass ProviderAdapter and return RawReading
lists.  RawReadings are transient: the unification engine turns them into
UnifiedDayRecord rows, and only those are persisted.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterator

from src.models.health import CapabilityFlag, ProviderId

logger = logging.getLogger("forela.integrations")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ProviderFetchError(RuntimeError):
    """A provider could not deliver readings (network, timeout, provider-side error)."""

    def __init__(self, provider: ProviderId | str, message: str) -> None:
        self.provider = ProviderId(provider)
        super().__init__(f"{self.provider.value}: {message}")


class TokenExpiredError(ProviderFetchError):
    """The stored access token was rejected by the provider."""


# ---------------------------------------------------------------------------
# OAuth tokens
# ---------------------------------------------------------------------------


@dataclass
class OAuthTokens:
    """OAuth token pair returned after authentication or refresh.

    Attributes:
        access_token:  Bearer token for API calls.
        refresh_token: Long-lived token used to obtain a new access_token.
        expires_at:    UTC datetime when the access_token expires.
        token_type:    Token type, typically "Bearer".
        scope:         Granted OAuth scopes.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: list[str] = field(default_factory=list)

    def as_credentials(self) -> dict[str, Any]:
        """Shape stored in ProviderSettings.credentials."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


# ---------------------------------------------------------------------------
# Raw readings
# ---------------------------------------------------------------------------


class ReadingKind(str, Enum):
    STEPS = "steps"
    HEART_RATE = "heart_rate"
    SLEEP = "sleep"
    WORKOUT = "workout"
    MINDFULNESS = "mindfulness"
    # Pre-aggregated daily values supplied by richer providers
    ACTIVITY = "activity"
    READINESS = "readiness"


@dataclass(frozen=True)
class RawReading:
    """A single timestamped measurement or interval from one provider.

    Attributes:
        kind:     What was measured.
        provider: Provider that produced the reading.
        start:    Timestamp of a sample, or start of an interval.
        end:      End of an interval (None for point samples).
        value:    Scalar value: step count, bpm, asleep hours, or minutes.
        device:   Source device string as reported ("Apple Watch", "Oura Ring").
        day:      Calendar day the provider itself attributes the reading to.
                  Takes precedence over ``start`` when grouping by date.
        details:  Kind-specific extra fields (workout type, sleep score, ...).
    """

    kind: ReadingKind
    provider: ProviderId
    start: datetime
    end: datetime | None = None
    value: float | None = None
    device: str | None = None
    day: date | None = None
    details: dict[str, Any] = field(default_factory=dict, hash=False)

    @property
    def attributed_date(self) -> date:
        """Calendar date this reading is grouped under.

        Intervals that span midnight belong to the date of their start
        instant, read in the offset the timestamp was recorded with.
        """
        return self.day or self.start.date()

    @property
    def duration_minutes(self) -> float | None:
        if self.end is None:
            return None
        return max((self.end - self.start).total_seconds() / 60.0, 0.0)


@dataclass
class FetchOutcome:
    """Settled result of one provider fetch."""

    provider: ProviderId
    readings: list[RawReading] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Abstract base adapter
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Abstract base class for all health data provider adapters.

    Subclasses must implement:
        - is_available()
        - request_permission()
        - fetch_range()

    ``fetch_range`` may raise ProviderFetchError; the orchestrator calls
    ``fetch_range_settled`` instead, which never raises.
    """

    #: Provider slug, also the ``source`` of the unified records it produces.
    PROVIDER_ID: ProviderId

    #: Human-readable name for logging and UI.
    DISPLAY_NAME: str = "Unknown Provider"

    #: Capability flags this provider can grant.
    CAPABILITIES: frozenset[CapabilityFlag] = frozenset()

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if the real provider can be reached from this runtime.

        Must not raise; an unavailable provider is a normal state.
        """

    @abstractmethod
    async def request_permission(self, capabilities: set[CapabilityFlag]) -> bool:
        """Ask the provider for consent to read the given data categories.

        Returns False on denial or any provider error instead of raising.
        When the provider is unavailable and mock data is allowed, returns True.
        """

    @abstractmethod
    async def fetch_range(self, start: date, end: date) -> list[RawReading]:
        """Fetch every reading kind the provider supports for [start, end].

        When the provider is unavailable and mock data is allowed, returns
        synthetic readings of the same shape covering the same range.

        Raises:
            ProviderFetchError: If the real provider fails.
        """

    async def fetch_range_settled(
        self, start: date, end: date, timeout: float | None = None
    ) -> FetchOutcome:
        """Fetch a range, converting any failure or timeout into an empty outcome.

        Args:
            start:   First day (inclusive).
            end:     Last day (inclusive).
            timeout: Seconds before the fetch is abandoned. None = no limit.

        Returns:
            FetchOutcome; ``outcome.ok`` is False when the fetch failed.
        """
        try:
            readings = await asyncio.wait_for(self.fetch_range(start, end), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "%s: fetch %s..%s timed out after %ss", self.DISPLAY_NAME, start, end, timeout
            )
            return FetchOutcome(self.PROVIDER_ID, error=f"timed out after {timeout}s")
        except Exception as exc:
            logger.warning("%s: fetch %s..%s failed: %s", self.DISPLAY_NAME, start, end, exc)
            return FetchOutcome(self.PROVIDER_ID, error=str(exc) or type(exc).__name__)

        logger.debug("%s: fetched %d readings", self.DISPLAY_NAME, len(readings))
        return FetchOutcome(self.PROVIDER_ID, readings=readings)

    # ------------------------------------------------------------------
    # Shared helpers available to all adapters
    # ------------------------------------------------------------------

    @staticmethod
    def _safe_int(value: object) -> int | None:
        """Safely coerce a value to int, returning None on failure."""
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _safe_float(value: object) -> float | None:
        """Safely coerce a value to float, returning None on failure."""
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_instant(value: str | None) -> datetime | None:
        """Parse an ISO-8601 date or datetime string.

        The recorded UTC offset is kept so that date attribution uses the
        wall-clock date the reading was taken on.  A bare date parses to
        midnight.  Returns None if the value is missing or unparseable.
        """
        if not value:
            return None
        try:
            if len(value) == 10:
                return datetime.combine(date.fromisoformat(value), time.min)
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            logger.warning("Could not parse datetime string: %r", value)
            return None

    @staticmethod
    def _parse_day(value: str | None) -> date | None:
        if not value:
            return None
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            logger.warning("Could not parse date string: %r", value)
            return None


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every calendar day in [start, end]."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round with halves away from zero (7500.5 -> 7501), unlike built-in round().

    Returns an int when ``ndigits`` is 0.
    """
    quantum = Decimal(1).scaleb(-ndigits)
    rounded = Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if ndigits == 0 else float(rounded)
