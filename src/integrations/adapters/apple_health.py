"""Apple HealthKit adapter for Forela.

Apple does not provide a server-side API.  HealthKit data reaches Forela
through a *host bridge*: the native iOS shell answers ``requestPermissions``
and ``fetchData`` requests on behalf of the web app.  Two bridges exist:

1. **Native bridge**: any object implementing ``HealthKitBridge`` (the iOS
   shell's message channel, wrapped so each request awaits its real reply).
2. **Export bridge**: ``AppleHealthExportBridge`` answers the same requests
   from an Apple Health ``export.xml`` upload.

Without a bridge the adapter is unavailable and, in development, serves mock
readings in the same payload shape.

Bridge payload shape (``fetchData`` reply)::

    {
        "steps":       [{"value", "unit", "date", "source"}],
        "heartRate":   [{"value", "unit", "date", "source"}],
        "sleep":       [{"startDate", "endDate", "value", "category", "source",
                         "deepHours"?, "remHours"?}],
        "workouts":    [{"workoutType", "startDate", "endDate", "duration",
                         "totalEnergyBurned", "totalDistance", "source"}],
        "mindfulness": [{"startDate", "endDate", "duration", "source"}]
    }
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import date, datetime, timedelta
from typing import Any, Protocol
from xml.etree import ElementTree as ET

from src.integrations.base import ProviderAdapter, ProviderFetchError, RawReading, ReadingKind
from src.integrations.config_loader import SyncConfig, get_sync_config
from src.integrations.mock_data import generate_apple_health_payload
from src.models.health import CapabilityFlag, ProviderId

logger = logging.getLogger("forela.integrations.apple_health")

# CapabilityFlag → HealthKit data type name understood by the bridge
_BRIDGE_PERMISSION_NAMES: dict[CapabilityFlag, list[str]] = {
    CapabilityFlag.STEPS: ["steps"],
    CapabilityFlag.HEART_RATE: ["heartRate"],
    CapabilityFlag.SLEEP: ["sleep"],
    CapabilityFlag.WORKOUTS: ["workouts"],
    CapabilityFlag.MINDFULNESS: ["mindfulness"],
    CapabilityFlag.BODY_MEASUREMENTS: ["bodyMass", "height"],
}

_FETCH_DATA_TYPES = ["steps", "heartRate", "sleep", "workouts", "mindfulness"]

# Sleep categories that describe a whole night rather than a stage segment
_NIGHT_CATEGORIES = {"asleep", "inBed"}


class HealthKitBridge(Protocol):
    """Request/response channel to a HealthKit host."""

    async def request(self, action: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Send one request and await its reply."""


class AppleHealthAdapter(ProviderAdapter):
    """Apple HealthKit adapter.

    Available only when a bridge is attached.  Every bridge call is bounded
    by ``bridge_timeout`` seconds.
    """

    PROVIDER_ID = ProviderId.APPLE_HEALTH
    DISPLAY_NAME = "Apple Health"
    CAPABILITIES = frozenset(_BRIDGE_PERMISSION_NAMES)

    def __init__(
        self,
        bridge: HealthKitBridge | None = None,
        *,
        mock_fallback: bool = True,
        bridge_timeout: float | None = None,
        rng: random.Random | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        """Initialize the Apple Health adapter.

        Args:
            bridge:         HealthKit host bridge; None when not running in the iOS shell.
            mock_fallback:  Serve mock data and grant permissions when unavailable.
            bridge_timeout: Seconds to wait for a bridge reply.
            rng:            Random source for mock data (seed it for reproducible tests).
            config:         Sync configuration; the global one by default.
        """
        self._bridge = bridge
        self._mock_fallback = mock_fallback
        self._config = config or get_sync_config()
        self._bridge_timeout = bridge_timeout or self._config.provider_timeout(self.PROVIDER_ID.value)
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # ProviderAdapter interface
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        return self._bridge is not None

    async def request_permission(self, capabilities: set[CapabilityFlag]) -> bool:
        if not self.is_available():
            logger.info("Apple Health: no HealthKit bridge, mock_fallback=%s", self._mock_fallback)
            return self._mock_fallback

        unsupported = set(capabilities) - self.CAPABILITIES
        if unsupported:
            logger.warning(
                "Apple Health: unsupported capabilities requested: %s",
                sorted(c.value for c in unsupported),
            )
            return False

        names = [n for cap in capabilities for n in _BRIDGE_PERMISSION_NAMES[cap]]
        try:
            reply = await asyncio.wait_for(
                self._bridge.request("requestPermissions", {"permissions": names}),
                self._bridge_timeout,
            )
        except Exception as exc:
            logger.warning("Apple Health: permission request failed: %r", exc)
            return False

        granted = reply.get("granted") or {}
        return all(granted.get(name, False) for name in names)

    async def fetch_range(self, start: date, end: date) -> list[RawReading]:
        if not self.is_available():
            if not self._mock_fallback:
                return []
            logger.info("Apple Health: no HealthKit bridge, returning mock data")
            payload = generate_apple_health_payload(start, end, self._config.mock_data, self._rng)
            return self.parse_payload(payload)

        request = {
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
            "dataTypes": _FETCH_DATA_TYPES,
        }
        try:
            payload = await asyncio.wait_for(
                self._bridge.request("fetchData", request), self._bridge_timeout
            )
        except asyncio.TimeoutError as exc:
            raise ProviderFetchError(
                self.PROVIDER_ID, f"HealthKit bridge did not reply within {self._bridge_timeout}s"
            ) from exc
        except Exception as exc:
            raise ProviderFetchError(self.PROVIDER_ID, f"HealthKit bridge error: {exc}") from exc

        return self.parse_payload(payload)

    # ------------------------------------------------------------------
    # Payload parsing
    # ------------------------------------------------------------------

    def parse_payload(self, payload: dict) -> list[RawReading]:
        """Convert a bridge ``fetchData`` reply into RawReadings.

        Pure function: malformed entries are skipped with a debug log.
        """
        readings: list[RawReading] = []

        for kind, key in ((ReadingKind.STEPS, "steps"), (ReadingKind.HEART_RATE, "heartRate")):
            for sample in payload.get(key) or []:
                when = self._parse_instant(sample.get("date"))
                value = self._safe_float(sample.get("value"))
                if when is None or value is None:
                    logger.debug("Apple Health: skipping malformed %s sample %r", key, sample)
                    continue
                readings.append(RawReading(
                    kind=kind,
                    provider=self.PROVIDER_ID,
                    start=when,
                    value=value,
                    device=sample.get("source"),
                ))

        for sleep in payload.get("sleep") or []:
            if sleep.get("category", "asleep") not in _NIGHT_CATEGORIES:
                continue
            start = self._parse_instant(sleep.get("startDate"))
            if start is None:
                continue
            details: dict[str, Any] = {}
            if sleep.get("deepHours") is not None:
                details["deep_sleep_hours"] = self._safe_float(sleep["deepHours"])
            if sleep.get("remHours") is not None:
                details["rem_sleep_hours"] = self._safe_float(sleep["remHours"])
            readings.append(RawReading(
                kind=ReadingKind.SLEEP,
                provider=self.PROVIDER_ID,
                start=start,
                end=self._parse_instant(sleep.get("endDate")),
                value=self._safe_float(sleep.get("value")),
                device=sleep.get("source"),
                details=details,
            ))

        for workout in payload.get("workouts") or []:
            start = self._parse_instant(workout.get("startDate"))
            if start is None:
                continue
            readings.append(RawReading(
                kind=ReadingKind.WORKOUT,
                provider=self.PROVIDER_ID,
                start=start,
                end=self._parse_instant(workout.get("endDate")),
                device=workout.get("source"),
                details={
                    "type": workout.get("workoutType") or "other",
                    "duration_minutes": self._safe_float(workout.get("duration")),
                    "calories": self._safe_float(workout.get("totalEnergyBurned")) or 0.0,
                    "distance_km": self._safe_float(workout.get("totalDistance")),
                },
            ))

        for session in payload.get("mindfulness") or []:
            start = self._parse_instant(session.get("startDate"))
            if start is None:
                continue
            readings.append(RawReading(
                kind=ReadingKind.MINDFULNESS,
                provider=self.PROVIDER_ID,
                start=start,
                end=self._parse_instant(session.get("endDate")),
                value=self._safe_float(session.get("duration")),
                device=session.get("source"),
            ))

        return readings


# ---------------------------------------------------------------------------
# Export-file bridge
# ---------------------------------------------------------------------------

_HK_STEP_COUNT = "HKQuantityTypeIdentifierStepCount"
_HK_HEART_RATE = "HKQuantityTypeIdentifierHeartRate"
_HK_SLEEP_ANALYSIS = "HKCategoryTypeIdentifierSleepAnalysis"
_HK_MINDFUL_SESSION = "HKCategoryTypeIdentifierMindfulSession"

_SLEEP_STAGE_MAP: dict[str, str] = {
    "HKCategoryValueSleepAnalysisAsleepUnspecified": "light",
    "HKCategoryValueSleepAnalysisAsleep": "light",
    "HKCategoryValueSleepAnalysisAsleepCore": "light",
    "HKCategoryValueSleepAnalysisAsleepDeep": "deep",
    "HKCategoryValueSleepAnalysisAsleepREM": "rem",
}

_WORKOUT_TYPE_MAP: dict[str, str] = {
    "HKWorkoutActivityTypeRunning": "Running",
    "HKWorkoutActivityTypeCycling": "Cycling",
    "HKWorkoutActivityTypeSwimming": "Swimming",
    "HKWorkoutActivityTypeWalking": "Walking",
    "HKWorkoutActivityTypeTraditionalStrengthTraining": "Strength Training",
    "HKWorkoutActivityTypeHighIntensityIntervalTraining": "HIIT",
    "HKWorkoutActivityTypeYoga": "Yoga",
    "HKWorkoutActivityTypePilates": "Pilates",
    "HKWorkoutActivityTypeHiking": "Hiking",
}

# Asleep segments closer than this belong to the same night
_SLEEP_SESSION_GAP = timedelta(hours=1)


def _parse_export_datetime(value: str | None) -> datetime | None:
    """Parse Apple's export timestamp format: ``2026-02-23 07:00:00 -0800``."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        logger.debug("Apple Health export: unparseable timestamp %r", value)
        return None


class AppleHealthExportBridge:
    """HealthKit bridge backed by an Apple Health ``export.xml``.

    Every permission is granted (the user chose to upload the file).
    Asleep stage segments are merged into one interval per night, and the
    night's deep/REM totals are reported so no default ratios are needed.
    """

    def __init__(self, xml_bytes: bytes) -> None:
        try:
            self._root = ET.fromstring(xml_bytes)
        except ET.ParseError as exc:
            logger.error("Apple Health XML parse error: %s", exc)
            raise ValueError(f"Invalid Apple Health XML: {exc}") from exc

    async def request(self, action: str, payload: dict[str, Any]) -> dict[str, Any]:
        if action == "requestPermissions":
            return {"granted": {name: True for name in payload.get("permissions", [])}}
        if action == "fetchData":
            start = date.fromisoformat(payload["startDate"][:10])
            end = date.fromisoformat(payload["endDate"][:10])
            return self.extract(start, end)
        raise ValueError(f"Unsupported HealthKit bridge action: {action!r}")

    def extract(self, start: date, end: date) -> dict[str, list]:
        """Return every record whose start falls in [start, end], in bridge shape."""
        result: dict[str, list] = {key: [] for key in _FETCH_DATA_TYPES}
        asleep_segments: list[tuple[datetime, datetime, str, str]] = []

        def in_range(dt: datetime) -> bool:
            return start <= dt.date() <= end

        for record in self._root.iter("Record"):
            rec_type = record.get("type", "")
            begin = _parse_export_datetime(record.get("startDate"))
            finish = _parse_export_datetime(record.get("endDate"))
            if begin is None or not in_range(begin):
                continue
            source = record.get("sourceName", "")

            if rec_type in (_HK_STEP_COUNT, _HK_HEART_RATE):
                try:
                    value = float(record.get("value", ""))
                except ValueError:
                    continue
                key = "steps" if rec_type == _HK_STEP_COUNT else "heartRate"
                result[key].append({
                    "value": value,
                    "unit": record.get("unit", ""),
                    "date": begin.isoformat(),
                    "source": source,
                })
            elif rec_type == _HK_SLEEP_ANALYSIS and finish is not None:
                stage = _SLEEP_STAGE_MAP.get(record.get("value", ""))
                if stage is not None:
                    asleep_segments.append((begin, finish, stage, source))
            elif rec_type == _HK_MINDFUL_SESSION and finish is not None:
                result["mindfulness"].append({
                    "startDate": begin.isoformat(),
                    "endDate": finish.isoformat(),
                    "duration": round((finish - begin).total_seconds() / 60),
                    "source": source,
                })

        result["sleep"] = self._merge_sleep(asleep_segments)

        for workout in self._root.iter("Workout"):
            begin = _parse_export_datetime(workout.get("startDate"))
            finish = _parse_export_datetime(workout.get("endDate"))
            if begin is None or not in_range(begin):
                continue
            activity_type = workout.get("workoutActivityType", "")
            result["workouts"].append({
                "workoutType": _WORKOUT_TYPE_MAP.get(
                    activity_type, activity_type.replace("HKWorkoutActivityType", "") or "Other"
                ),
                "startDate": begin.isoformat(),
                "endDate": finish.isoformat() if finish else None,
                "duration": float(workout.get("duration", "0") or 0),
                "totalEnergyBurned": float(workout.get("totalEnergyBurned", "0") or 0),
                "totalDistance": float(workout.get("totalDistance", "0") or 0),
                "source": workout.get("sourceName", ""),
            })

        logger.info(
            "Apple Health export: %d step, %d heart-rate, %d sleep, %d workout records for %s..%s",
            len(result["steps"]), len(result["heartRate"]), len(result["sleep"]),
            len(result["workouts"]), start, end,
        )
        return result

    @staticmethod
    def _merge_sleep(segments: list[tuple[datetime, datetime, str, str]]) -> list[dict]:
        nights: list[dict] = []
        current: dict | None = None
        for begin, finish, stage, source in sorted(segments, key=lambda s: s[0]):
            hours = (finish - begin).total_seconds() / 3600
            if current is None or begin - current["_end"] > _SLEEP_SESSION_GAP:
                current = {"_start": begin, "_end": finish, "value": 0.0,
                           "deepHours": 0.0, "remHours": 0.0, "source": source}
                nights.append(current)
            current["_end"] = max(current["_end"], finish)
            current["value"] += hours
            if stage == "deep":
                current["deepHours"] += hours
            elif stage == "rem":
                current["remHours"] += hours

        return [
            {
                "startDate": night["_start"].isoformat(),
                "endDate": night["_end"].isoformat(),
                "value": round(night["value"], 2),
                "deepHours": round(night["deepHours"], 2),
                "remHours": round(night["remHours"], 2),
                "category": "asleep",
                "source": night["source"],
            }
            for night in nights
        ]
