"""Small shared helpers."""

from __future__ import annotations

import json
import math
from datetime import UTC, datetime

EARTH_RADIUS_M = 6_371_000
WALKING_SPEED_M_PER_MIN = 83.33


def safe_json_loads(raw: str | None):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None


def iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def as_utc(dt: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt


def distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def walk_time(distance: float | None) -> str:
    if not distance or distance <= 0:
        return "Nearby"
    minutes = round(distance / WALKING_SPEED_M_PER_MIN)
    if minutes < 1:
        return "< 1 min walk"
    if minutes == 1:
        return "1 min walk"
    if minutes > 30:
        return f"{round(minutes / 5) * 5} min walk"
    return f"{minutes} min walk"
