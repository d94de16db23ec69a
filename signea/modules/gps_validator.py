"""
GPS Validator Module - SIGNEA Event Management Core

This module validates that a participant is physically close to an event
when checking in. It computes great-circle distances with the haversine
formula, classifies a point as inside or outside an allowed radius and
wraps the device geolocation capability behind a time-bounded coroutine.

Features:
- Haversine distance in whole meters
- Inclusive radius classification with localized messages
- Device location acquisition with permission/unavailable/timeout errors
- Event attendance location policy (remote events, unlocated events)
- Friendly distance formatting and common radius presets
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from signea.modules.exceptions import GeolocationError, ValidationError

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371e3

DEFAULT_RADIUS_METERS = 100
DEFAULT_TIMEOUT_MS = 10000

VALIDATION_RADII = {
    'INSIDE_BUILDING': 50,
    'ON_CAMPUS': 100,
    'NEARBY_AREA': 200,
    'CITY_BLOCK': 500,
    'ONE_KILOMETER': 1000,
    'WIDE_AREA': 2000,
}

RADIUS_DESCRIPTIONS = {
    50: 'Dentro do prédio',
    100: 'No campus (Recomendado)',
    200: 'Área próxima',
    500: 'Quarteirão',
    1000: '1 km (Eventos externos)',
    2000: '2 km (Área ampla)',
}


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self):
        for name, value, limit in (('latitude', self.latitude, 90),
                                   ('longitude', self.longitude, 180)):
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError(f"{name} must be a finite number")
            if not -limit <= value <= limit:
                raise ValidationError(
                    f"{name} must be between -{limit} and {limit}",
                    details={name: value}
                )


@dataclass(frozen=True)
class DeviceLocation:
    """A position reported by the device together with its accuracy."""
    point: GeoPoint
    accuracy_meters: float

    @property
    def latitude(self) -> float:
        return self.point.latitude

    @property
    def longitude(self) -> float:
        return self.point.longitude


@dataclass(frozen=True)
class ProximityCheck:
    """Result of comparing a point against an anchor and a radius."""
    distance_meters: int
    within_radius: bool
    radius_meters: int

    @property
    def message(self) -> str:
        if self.within_radius:
            return (f"✅ Você está a {self.distance_meters}m do evento "
                    f"(dentro do raio de {self.radius_meters}m)")
        return (f"❌ Você está a {self.distance_meters}m do evento "
                f"(fora do raio de {self.radius_meters}m)")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'distance_meters': self.distance_meters,
            'within_radius': self.within_radius,
            'radius_meters': self.radius_meters,
            'message': self.message,
        }


def haversine_distance_meters(p1: GeoPoint, p2: GeoPoint) -> int:
    """
    Great-circle distance between two points.

    Args:
        p1 (GeoPoint): First point
        p2 (GeoPoint): Second point

    Returns:
        int: Distance in meters, rounded to the nearest meter
    """
    phi1 = math.radians(p1.latitude)
    phi2 = math.radians(p2.latitude)
    delta_phi = math.radians(p2.latitude - p1.latitude)
    delta_lambda = math.radians(p2.longitude - p1.longitude)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    # rounding can push a slightly outside [0, 1] for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return int(math.floor(EARTH_RADIUS_METERS * c + 0.5))


def validate_proximity(subject: GeoPoint, anchor: GeoPoint,
                       radius_meters: int) -> ProximityCheck:
    """
    Classify a point as inside or outside the radius around an anchor.

    The boundary is inclusive: a distance equal to the radius is inside.

    Raises:
        ValidationError: If the radius is not a positive integer
    """
    if isinstance(radius_meters, bool) or not isinstance(radius_meters, int) or radius_meters <= 0:
        raise ValidationError("Radius must be a positive integer number of meters",
                              details={'radius_meters': radius_meters})

    distance = haversine_distance_meters(subject, anchor)
    return ProximityCheck(
        distance_meters=distance,
        within_radius=distance <= radius_meters,
        radius_meters=radius_meters
    )


def format_distance(meters: int) -> str:
    """Format a distance as ``150m`` below one kilometer, ``1.5km`` above."""
    if meters < 1000:
        return f"{meters}m"
    return f"{meters / 1000:.1f}km"


class GeolocationProvider(ABC):
    """Platform geolocation capability."""

    @abstractmethod
    async def get_current_position(self, enable_high_accuracy: bool,
                                   timeout_ms: int,
                                   maximum_age_ms: int) -> DeviceLocation:
        """
        Resolve the current device position.

        Raises:
            GeolocationError: With PERMISSION_DENIED, POSITION_UNAVAILABLE
                or TIMEOUT
        """


class ReportedLocationProvider(GeolocationProvider):
    """
    Resolves to a position a client already measured and reported, or
    to the geolocation error code the client reported instead.
    """

    def __init__(self, latitude: Optional[float] = None, longitude: Optional[float] = None,
                 accuracy_meters: float = 0.0, error_code: Optional[str] = None):
        self.error_code = error_code
        self.location = None
        if error_code is None:
            if latitude is None or longitude is None:
                raise ValidationError("latitude and longitude are required")
            self.location = DeviceLocation(
                point=GeoPoint(latitude, longitude),
                accuracy_meters=accuracy_meters
            )

    async def get_current_position(self, enable_high_accuracy: bool,
                                   timeout_ms: int,
                                   maximum_age_ms: int) -> DeviceLocation:
        if self.error_code is not None:
            raise GeolocationError(self.error_code)
        return self.location


async def acquire_device_location(provider: Optional[GeolocationProvider],
                                  timeout_ms: int = DEFAULT_TIMEOUT_MS,
                                  allow_cached: bool = False) -> DeviceLocation:
    """
    Acquire the device position, suspending the caller until it resolves.

    The wait is bounded by ``timeout_ms``; abandoning the await is the only
    other way to stop it.

    Args:
        provider (GeolocationProvider): Platform capability, None if absent
        timeout_ms (int): Upper bound for the wait in milliseconds
        allow_cached (bool): Accept a cached position instead of a fresh fix

    Returns:
        DeviceLocation: Coordinates and accuracy

    Raises:
        GeolocationError: On permission denial, unavailable position or timeout
    """
    if provider is None:
        raise GeolocationError(
            GeolocationError.POSITION_UNAVAILABLE,
            'Geolocalização não é suportada neste dispositivo.'
        )

    maximum_age_ms = timeout_ms if allow_cached else 0

    try:
        return await asyncio.wait_for(
            provider.get_current_position(
                enable_high_accuracy=True,
                timeout_ms=timeout_ms,
                maximum_age_ms=maximum_age_ms
            ),
            timeout=timeout_ms / 1000
        )
    except asyncio.TimeoutError:
        logger.warning(f"Geolocation timed out after {timeout_ms}ms")
        raise GeolocationError(GeolocationError.TIMEOUT)
    except GeolocationError as e:
        logger.warning(f"Geolocation failed: {e.code}")
        raise


def check_attendance_location(event: Dict[str, Any],
                              location: DeviceLocation) -> Dict[str, Any]:
    """
    Decide whether a check-in location is acceptable for an event.

    Events that allow remote attendance or do not require location
    validation accept any position. Other events need coordinates and
    compare against their own radius (100 m when unset).

    Args:
        event (Dict[str, Any]): Event with latitude, longitude,
            radius_meters, remote_attendance_allowed and
            location_validation_required
        location (DeviceLocation): Participant position

    Returns:
        Dict[str, Any]: Decision with 'valid', 'message' and, when checked,
            the proximity result
    """
    if event.get('remote_attendance_allowed') or not event.get('location_validation_required', True):
        return {
            'valid': True,
            'checked': False,
            'message': 'Evento não exige validação de localização'
        }

    if event.get('latitude') is None or event.get('longitude') is None:
        return {
            'valid': False,
            'checked': False,
            'message': 'Evento não possui localização definida'
        }

    anchor = GeoPoint(event['latitude'], event['longitude'])
    radius = event.get('radius_meters') or DEFAULT_RADIUS_METERS
    # JSON clients may send whole radii as floats
    if isinstance(radius, float) and radius.is_integer():
        radius = int(radius)
    result = validate_proximity(location.point, anchor, radius)

    logger.info(f"Attendance location check for event {event.get('id')}: "
                f"{result.distance_meters}m (radius {radius}m)")

    return {
        'valid': result.within_radius,
        'checked': True,
        'message': result.message,
        'proximity': result.to_dict()
    }
