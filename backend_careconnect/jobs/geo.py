"""
GPS helpers for check-in / check-out: distance, geofence allowance and fraud indicators.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from backend_careconnect.core.exceptions import ValidationError

EARTH_RADIUS_M = 6_371_000.0
LOW_ACCURACY_THRESHOLD_M = 100.0
FRAUD_LOW_ACCURACY = "low_accuracy"
FRAUD_NEAR_GEOFENCE_EDGE = "near_geofence_edge"


@dataclass
class GeoPoint:
    lat: float
    lng: float
    accuracy_m: float = 0.0
    fraud_indicators: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "accuracy_m": self.accuracy_m,
            "fraud_indicators": list(self.fraud_indicators),
        }


def parse_geo(raw: dict[str, Any] | None) -> GeoPoint | None:
    """Build a GeoPoint from request data; None when no coordinates were sent."""
    if not raw or raw.get("lat") is None or raw.get("lng") is None:
        return None
    try:
        lat = float(raw["lat"])
        lng = float(raw["lng"])
    except (TypeError, ValueError):
        raise ValidationError("Invalid GPS coordinates") from None
    if not (math.isfinite(lat) and math.isfinite(lng)) or abs(lat) > 90 or abs(lng) > 180:
        raise ValidationError("Invalid GPS coordinates")
    try:
        accuracy = float(raw.get("accuracy_m") or 0.0)
    except (TypeError, ValueError):
        accuracy = 0.0
    if not math.isfinite(accuracy):
        accuracy = 0.0
    return GeoPoint(lat=lat, lng=lng, accuracy_m=max(accuracy, 0.0))


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle (haversine) distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def allowed_radius(geofence_radius_m: float | None, max_radius_m: float) -> float:
    """Job radius capped at max_radius_m; a missing or non-positive radius means the cap."""
    radius = float(geofence_radius_m or 0)
    if radius <= 0:
        return max_radius_m
    return min(max_radius_m, radius)


def check_geofence(
    point: GeoPoint,
    job_lat: float | None,
    job_lng: float | None,
    geofence_radius_m: float | None,
    max_radius_m: float,
) -> GeoPoint:
    """
    Raise ValidationError when the point lies outside the job geofence
    (radius + reported accuracy). Jobs without coordinates accept any point.
    Fills point.fraud_indicators and returns the point.
    """
    if point.accuracy_m > LOW_ACCURACY_THRESHOLD_M:
        point.fraud_indicators.append(FRAUD_LOW_ACCURACY)
    if job_lat is None or job_lng is None:
        return point
    distance = distance_meters(point.lat, point.lng, job_lat, job_lng)
    radius = allowed_radius(geofence_radius_m, max_radius_m)
    allowance = radius + point.accuracy_m
    if distance > allowance:
        raise ValidationError(
            f"GPS distance too far ({round(distance)}m). Allowed {round(allowance)}m",
            details={"distance_m": round(distance), "allowed_m": round(allowance)},
        )
    if distance > radius:
        point.fraud_indicators.append(FRAUD_NEAR_GEOFENCE_EDGE)
    return point
