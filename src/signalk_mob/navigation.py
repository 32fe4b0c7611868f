"""Navigation geometry for MOB tracking.

Pure functions, no state::

    bow correction   destination point on a sphere (R = 6378137 m)
    bearing          rhumb line (constant compass heading), degrees
    distance         Vincenty inverse on the WGS-84 ellipsoid, metres

The bearing is a rhumb line rather than a great circle: a constant heading
is what the helm can actually steer during a manual recovery.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Optional

from signalk_mob.models import GeoPoint, MobEvent, NavigationDelta

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6378137.0

# --- WGS84 constants ---
_WGS84_A = 6378137.0
_WGS84_F = 1.0 / 298.257223563
_WGS84_B = _WGS84_A * (1.0 - _WGS84_F)

_VINCENTY_MAX_ITERATIONS = 200
_VINCENTY_EPSILON = 1e-12

DEFAULT_ACCURACY_M = 0.1


def _normalize_degrees(bearing: float) -> float:
    return bearing % 360.0


def _normalize_longitude(lon: float) -> float:
    return (lon + 540.0) % 360.0 - 180.0


def destination_point(origin: GeoPoint, bearing_deg: float, distance_m: float) -> GeoPoint:
    """Point reached from *origin* after *distance_m* along *bearing_deg*."""
    delta = distance_m / EARTH_RADIUS_M
    theta = math.radians(bearing_deg)
    phi1 = math.radians(origin.latitude)
    lam1 = math.radians(origin.longitude)

    phi2 = math.asin(
        math.sin(phi1) * math.cos(delta)
        + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    )
    lam2 = lam1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    return GeoPoint(
        latitude=math.degrees(phi2),
        longitude=_normalize_longitude(math.degrees(lam2)),
    )


def rhumb_bearing(origin: GeoPoint, target: GeoPoint) -> float:
    """Rhumb-line bearing from *origin* to *target*, degrees in ``[0, 360)``.

    Mercator isometric latitude ``ψ = ln tan(π/4 + φ/2)``, bearing
    ``θ = atan2(Δλ, Δψ)`` with Δλ taken the short way round.
    """
    phi1 = math.radians(origin.latitude)
    phi2 = math.radians(target.latitude)
    dlam = math.radians(target.longitude - origin.longitude)

    if abs(dlam) > math.pi:
        dlam -= math.copysign(2.0 * math.pi, dlam)

    dpsi = math.log(
        math.tan(math.pi / 4 + phi2 / 2) / math.tan(math.pi / 4 + phi1 / 2)
    )
    return _normalize_degrees(math.degrees(math.atan2(dlam, dpsi)))


def haversine_distance(origin: GeoPoint, target: GeoPoint) -> float:
    """Great-circle distance in metres on a sphere of radius ``EARTH_RADIUS_M``."""
    phi1 = math.radians(origin.latitude)
    phi2 = math.radians(target.latitude)
    dphi = phi2 - phi1
    dlam = math.radians(target.longitude - origin.longitude)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def _vincenty_inverse(origin: GeoPoint, target: GeoPoint) -> Optional[float]:
    """Ellipsoidal distance in metres, ``None`` when the iteration diverges."""
    f = _WGS84_F
    L = math.radians(target.longitude - origin.longitude)
    U1 = math.atan((1.0 - f) * math.tan(math.radians(origin.latitude)))
    U2 = math.atan((1.0 - f) * math.tan(math.radians(target.latitude)))
    sinU1, cosU1 = math.sin(U1), math.cos(U1)
    sinU2, cosU2 = math.sin(U2), math.cos(U2)

    lam = L
    for _ in range(_VINCENTY_MAX_ITERATIONS):
        sin_lam, cos_lam = math.sin(lam), math.cos(lam)
        sin_sigma = math.sqrt(
            (cosU2 * sin_lam) ** 2
            + (cosU1 * sinU2 - sinU1 * cosU2 * cos_lam) ** 2
        )
        if sin_sigma == 0.0:
            return 0.0  # coincident points
        cos_sigma = sinU1 * sinU2 + cosU1 * cosU2 * cos_lam
        sigma = math.atan2(sin_sigma, cos_sigma)
        sin_alpha = cosU1 * cosU2 * sin_lam / sin_sigma
        cos_sq_alpha = 1.0 - sin_alpha ** 2
        if cos_sq_alpha != 0.0:
            cos_2sigma_m = cos_sigma - 2.0 * sinU1 * sinU2 / cos_sq_alpha
        else:
            cos_2sigma_m = 0.0  # equatorial line
        C = f / 16.0 * cos_sq_alpha * (4.0 + f * (4.0 - 3.0 * cos_sq_alpha))
        lam_prev = lam
        lam = L + (1.0 - C) * f * sin_alpha * (
            sigma + C * sin_sigma * (
                cos_2sigma_m + C * cos_sigma * (-1.0 + 2.0 * cos_2sigma_m ** 2)
            )
        )
        if abs(lam - lam_prev) < _VINCENTY_EPSILON:
            break
    else:
        return None

    u_sq = cos_sq_alpha * (_WGS84_A ** 2 - _WGS84_B ** 2) / (_WGS84_B ** 2)
    A = 1.0 + u_sq / 16384.0 * (4096.0 + u_sq * (-768.0 + u_sq * (320.0 - 175.0 * u_sq)))
    B = u_sq / 1024.0 * (256.0 + u_sq * (-128.0 + u_sq * (74.0 - 47.0 * u_sq)))
    delta_sigma = B * sin_sigma * (
        cos_2sigma_m + B / 4.0 * (
            cos_sigma * (-1.0 + 2.0 * cos_2sigma_m ** 2)
            - B / 6.0 * cos_2sigma_m * (-3.0 + 4.0 * sin_sigma ** 2)
            * (-3.0 + 4.0 * cos_2sigma_m ** 2)
        )
    )
    return _WGS84_B * A * (sigma - delta_sigma)


def geodesic_distance(
    origin: GeoPoint,
    target: GeoPoint,
    accuracy: float = DEFAULT_ACCURACY_M,
) -> float:
    """Geodesic distance in metres, rounded to a multiple of *accuracy*.

    Uses Vincenty's inverse formula on WGS-84; nearly antipodal points, where
    it fails to converge, fall back to the haversine distance.
    """
    distance = _vincenty_inverse(origin, target)
    if distance is None:
        logger.debug("Vincenty did not converge, using haversine distance")
        distance = haversine_distance(origin, target)
    if accuracy and accuracy > 0:
        distance = round(distance / accuracy) * accuracy
    return distance


def bow_position(
    position: GeoPoint,
    heading: Optional[float],
    bow_offset_m: Optional[float],
) -> GeoPoint:
    """Project the GPS *position* forward to the bow.

    *heading* is true heading in radians. Without a heading or an offset the
    position is returned unchanged.
    """
    if heading is None or not bow_offset_m:
        return position
    return destination_point(position, math.degrees(heading), bow_offset_m)


def compute_delta(
    vessel_position: Optional[GeoPoint],
    heading: Optional[float],
    mob_event: Optional[MobEvent],
    now: datetime,
    bow_offset_m: Optional[float] = None,
    accuracy: float = DEFAULT_ACCURACY_M,
) -> NavigationDelta:
    """Compute elapsed time, distance and bearing to the MOB target.

    Parameters
    ----------
    vessel_position:
        Latest GPS fix of the vessel.
    heading:
        True heading in radians, if known.
    mob_event:
        The active emergency.
    now:
        Evaluation time (timezone-aware).
    bow_offset_m:
        Distance from the GPS antenna to the bow.
    accuracy:
        Rounding step of the distance, in metres.

    Returns
    -------
    NavigationDelta
        The cleared delta when the vessel position or the MOB event is
        missing, the full delta otherwise.
    """
    if vessel_position is None or mob_event is None:
        return NavigationDelta.cleared()

    origin = bow_position(vessel_position, heading, bow_offset_m)
    target = mob_event.position

    return NavigationDelta(
        elapsed=(now - mob_event.captured_at).total_seconds(),
        distance=geodesic_distance(origin, target, accuracy),
        bearing=math.radians(rhumb_bearing(origin, target)),
        position=target,
        time=mob_event.captured_at,
    )
