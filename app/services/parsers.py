"""Parsers to convert raw Fitbit/HealthPlanet JSON into daily record fields.

Every parser returns all of its category's fields. A value the provider did
not report is None; a reported zero stays 0.
"""

from datetime import date, datetime
from typing import Any, Optional
import logging

logger = logging.getLogger(__name__)

# Columns of DailyHealthRecord owned by each data category
CATEGORY_FIELDS: dict[str, tuple[str, ...]] = {
    "activity": ("steps", "calories_burned", "distance_km", "active_minutes"),
    "heart_rate": ("resting_heart_rate",),
    "sleep": ("sleep_hours",),
    "body_composition": ("weight", "body_fat_percent", "muscle_mass", "bone_mass", "visceral_fat"),
}

# HealthPlanet innerscan measurement tags
HEALTHPLANET_TAGS: dict[str, str] = {
    "6021": "weight",
    "6022": "body_fat_percent",
    "6023": "muscle_mass",
    "6024": "bone_mass",
    "6025": "visceral_fat",
}


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        logger.debug(f"Could not parse {value!r} as int")
        return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug(f"Could not parse {value!r} as float")
        return None


def empty_fields(category: str) -> dict[str, Any]:
    return {field: None for field in CATEGORY_FIELDS[category]}


def parse_fitbit_activity(raw: dict | None) -> dict[str, Any]:
    """Parse /activities/date/{date}.json into activity fields."""
    fields = empty_fields("activity")
    summary = (raw or {}).get("summary")
    if not summary:
        return fields

    fields["steps"] = _to_int(summary.get("steps"))
    fields["calories_burned"] = _to_int(summary.get("caloriesOut"))

    distances = summary.get("distances") or []
    total = next((d for d in distances if d.get("activity") == "total"), None)
    if total is None and distances:
        total = distances[0]
    if total is not None:
        fields["distance_km"] = _to_float(total.get("distance"))

    very_active = _to_int(summary.get("veryActiveMinutes"))
    fairly_active = _to_int(summary.get("fairlyActiveMinutes"))
    if very_active is not None or fairly_active is not None:
        fields["active_minutes"] = (very_active or 0) + (fairly_active or 0)

    return fields


def parse_fitbit_heart_rate(raw: dict | None) -> dict[str, Any]:
    """Parse /activities/heart/date/{date}/1d.json into the resting heart rate."""
    fields = empty_fields("heart_rate")
    entries = (raw or {}).get("activities-heart") or []
    if not entries:
        return fields

    value = entries[0].get("value") or {}
    if isinstance(value, dict):
        fields["resting_heart_rate"] = _to_int(value.get("restingHeartRate"))
    return fields


def parse_fitbit_sleep(raw: dict | None) -> dict[str, Any]:
    """Parse /sleep/date/{date}.json into hours asleep."""
    fields = empty_fields("sleep")
    raw = raw or {}
    summary = raw.get("summary")
    if not summary:
        return fields

    minutes = _to_float(summary.get("totalMinutesAsleep"))
    # Fitbit reports a zero summary when no sleep log exists for the date
    if minutes is not None and not (minutes == 0 and not raw.get("sleep")):
        fields["sleep_hours"] = round(minutes / 60, 2)
    return fields


def parse_healthplanet_date(value: str) -> date:
    """HealthPlanet measurement dates look like yyyyMMddHHmm; only the day matters."""
    return datetime.strptime(value[:8], "%Y%m%d").date()


def parse_healthplanet_innerscan(raw: dict | None) -> dict[date, dict[str, Any]]:
    """
    Group innerscan measurements by day.

    Later measurements on the same day replace earlier ones. Unknown tags are
    skipped.
    """
    items = (raw or {}).get("data")
    if not isinstance(items, list):
        return {}

    by_date: dict[date, dict[str, Any]] = {}
    for item in sorted(items, key=lambda i: str(i.get("date", ""))):
        field = HEALTHPLANET_TAGS.get(str(item.get("tag", "")))
        if field is None:
            logger.debug(f"Ignoring HealthPlanet tag {item.get('tag')!r}")
            continue
        try:
            day = parse_healthplanet_date(str(item["date"]))
        except (KeyError, ValueError):
            logger.warning(f"Skipping HealthPlanet item with bad date: {item!r}")
            continue

        fields = by_date.setdefault(day, empty_fields("body_composition"))
        value = _to_float(item.get("keydata"))
        if value is not None:
            fields[field] = value

    logger.debug(f"Parsed HealthPlanet measurements for {len(by_date)} days")
    return by_date
