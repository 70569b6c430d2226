from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt

from hrcore.errors import OutOfGeofenceError, ValidationError
from hrcore.settings import CoreConfig


@dataclass(frozen=True, slots=True)
class GeoReading:
    latitude: float | None
    longitude: float | None
    accuracy: float | None = None


@dataclass(frozen=True, slots=True)
class GeofenceResult:
    distance_m: float
    max_distance_m: float
    distance_checked: bool


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    earth_radius_m = 6371000.0

    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return earth_radius_m * c


def validate_location(
    latitude: float | None,
    longitude: float | None,
    accuracy: float | None,
    *,
    office_latitude: float,
    office_longitude: float,
    max_distance_m: float,
    max_accuracy_m: float,
    remote_exempt: bool = False,
) -> GeofenceResult:
    if latitude is None or longitude is None:
        raise ValidationError(
            code="LOCATION_REQUIRED",
            message="Location is required to mark attendance.",
        )

    # A missing accuracy value is accepted; only reported values are bounded.
    if accuracy is not None and accuracy > max_accuracy_m:
        raise ValidationError(
            code="ACCURACY_TOO_LOW",
            message=f"Location accuracy is too low ({accuracy:.0f}m). Required: {max_accuracy_m:.0f}m or better.",
            details={"accuracy_m": accuracy, "max_accuracy_m": max_accuracy_m},
        )

    distance_value = distance_m(office_latitude, office_longitude, latitude, longitude)
    if remote_exempt:
        return GeofenceResult(distance_m=distance_value, max_distance_m=max_distance_m, distance_checked=False)

    if distance_value > max_distance_m:
        raise OutOfGeofenceError(distance_m=distance_value, max_distance_m=max_distance_m)

    return GeofenceResult(distance_m=distance_value, max_distance_m=max_distance_m, distance_checked=True)


def validate_reading(reading: GeoReading, config: CoreConfig, *, remote_exempt: bool) -> GeofenceResult:
    return validate_location(
        reading.latitude,
        reading.longitude,
        reading.accuracy,
        office_latitude=config.office_latitude,
        office_longitude=config.office_longitude,
        max_distance_m=config.geofence_max_distance_m,
        max_accuracy_m=config.geofence_max_accuracy_m,
        remote_exempt=remote_exempt,
    )
