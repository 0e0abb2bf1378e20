"""Geometry utilities for GPS and road calculations.

Route coordinates are ``(lng, lat)`` pairs, the order directions providers
and GeoJSON use. Scalar helpers take ``lat, lon`` arguments explicitly.
"""

import bisect
import math
from typing import List, Sequence, Tuple

import numpy as np

from . import config
from .models import RoutePoint

EARTH_RADIUS_M = 6371000

Coordinate = Tuple[float, float]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate great circle distance between two GPS points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def coord_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Distance in meters between two (lng, lat) coordinates."""
    return haversine_distance(a[1], a[0], b[1], b[0])


def bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate bearing from point 1 to point 2 in degrees (0-360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    x = math.sin(delta_lambda) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(
        delta_lambda
    )

    bearing_rad = math.atan2(x, y)
    return (math.degrees(bearing_rad) + 360) % 360


def coord_bearing(a: Sequence[float], b: Sequence[float]) -> float:
    """Bearing in degrees from one (lng, lat) coordinate to another."""
    return bearing(a[1], a[0], b[1], b[0])


def angle_difference(angle1: float, angle2: float) -> float:
    """Calculate smallest difference between two angles in degrees (-180 to 180).

    Positive means angle2 is clockwise of angle1 (a right-hand turn).
    """
    diff = (angle2 - angle1 + 180) % 360 - 180
    return diff


def point_along_bearing(
    lat: float, lon: float, bearing_deg: float, distance_m: float
) -> Tuple[float, float]:
    """Calculate (lat, lon) at given distance and bearing from start point."""
    R = EARTH_RADIUS_M

    lat_rad = math.radians(lat)
    lon_rad = math.radians(lon)
    bearing_rad = math.radians(bearing_deg)

    lat2 = math.asin(
        math.sin(lat_rad) * math.cos(distance_m / R)
        + math.cos(lat_rad) * math.sin(distance_m / R) * math.cos(bearing_rad)
    )

    lon2 = lon_rad + math.atan2(
        math.sin(bearing_rad) * math.sin(distance_m / R) * math.cos(lat_rad),
        math.cos(distance_m / R) - math.sin(lat_rad) * math.sin(lat2),
    )

    return math.degrees(lat2), math.degrees(lon2)


def closest_point_on_segment(
    point: Sequence[float],
    seg_start: Sequence[float],
    seg_end: Sequence[float],
) -> Tuple[Coordinate, float]:
    """
    Find closest point on a line segment to a given point.

    All arguments are (lng, lat). The projection is done in a local metric
    frame centred on ``point``.

    Returns: (closest_point, distance_along_segment_fraction)
    """
    lon, lat = point[0], point[1]
    x1 = (seg_start[0] - lon) * 111320 * math.cos(math.radians(lat))
    y1 = (seg_start[1] - lat) * 110540
    x2 = (seg_end[0] - lon) * 111320 * math.cos(math.radians(lat))
    y2 = (seg_end[1] - lat) * 110540

    dx = x2 - x1
    dy = y2 - y1

    if dx == 0 and dy == 0:
        return (seg_start[0], seg_start[1]), 0.0

    # Parameter t for closest point on infinite line, clamped to the segment
    t = max(0.0, min(1.0, -((x1 * dx + y1 * dy) / (dx * dx + dy * dy))))

    closest_lon = seg_start[0] + t * (seg_end[0] - seg_start[0])
    closest_lat = seg_start[1] + t * (seg_end[1] - seg_start[1])

    return (closest_lon, closest_lat), t


def cumulative_distances(coordinates: Sequence[Sequence[float]]) -> List[float]:
    """Calculate cumulative distance in meters along a list of (lng, lat) points."""
    distances = [0.0]
    for i in range(1, len(coordinates)):
        distances.append(distances[-1] + coord_distance(coordinates[i - 1], coordinates[i]))
    return distances


def path_length(coordinates: Sequence[Sequence[float]]) -> float:
    """Total length of a polyline in meters."""
    if len(coordinates) < 2:
        return 0.0
    return cumulative_distances(coordinates)[-1]


def resample(
    coordinates: Sequence[Sequence[float]],
    interval_m: float = config.RESAMPLE_INTERVAL_M,
) -> List[RoutePoint]:
    """
    Resample a polyline to (near) fixed arc-length spacing.

    Points are linearly interpolated along the original segments so that
    heading changes are sampled uniformly regardless of how densely the
    source polyline was digitised. The route length is split into a whole
    number of equal steps as close to ``interval_m`` as possible, so the
    last point lands exactly on the route end.

    Zero-length segments (repeated vertices) are skipped.
    """
    if not coordinates:
        return []

    kept = [(float(coordinates[0][0]), float(coordinates[0][1]))]
    for coord in coordinates[1:]:
        candidate = (float(coord[0]), float(coord[1]))
        if coord_distance(kept[-1], candidate) > 0.0:
            kept.append(candidate)

    if len(kept) < 2:
        return [RoutePoint(coord=kept[0], cumulative_distance=0.0)]

    distances = np.asarray(cumulative_distances(kept))
    total = float(distances[-1])
    steps = max(1, int(round(total / interval_m)))
    targets = np.linspace(0.0, total, steps + 1)

    arr = np.asarray(kept)
    lngs = np.interp(targets, distances, arr[:, 0])
    lats = np.interp(targets, distances, arr[:, 1])

    return [
        RoutePoint(coord=(float(lng), float(lat)), cumulative_distance=float(d))
        for lng, lat, d in zip(lngs, lats, targets)
    ]


def heading_sequence(coordinates: Sequence[Sequence[float]]) -> np.ndarray:
    """Bearings (degrees) between consecutive (lng, lat) points."""
    arr = np.asarray(coordinates, dtype=float)
    if len(arr) < 2:
        return np.zeros(0)

    lam1 = np.radians(arr[:-1, 0])
    lam2 = np.radians(arr[1:, 0])
    phi1 = np.radians(arr[:-1, 1])
    phi2 = np.radians(arr[1:, 1])

    x = np.sin(lam2 - lam1) * np.cos(phi2)
    y = np.cos(phi1) * np.sin(phi2) - np.sin(phi1) * np.cos(phi2) * np.cos(lam2 - lam1)
    return (np.degrees(np.arctan2(x, y)) + 360.0) % 360.0


def heading_changes(headings: np.ndarray) -> np.ndarray:
    """Signed change between consecutive headings, normalised to [-180, 180)."""
    if len(headings) < 2:
        return np.zeros(0)
    return (np.diff(headings) + 180.0) % 360.0 - 180.0


def position_at_distance(
    coordinates: Sequence[Sequence[float]],
    distances: Sequence[float],
    target: float,
) -> Tuple[Coordinate, int, float]:
    """
    Interpolate a position along a polyline.

    Returns: ((lng, lat), segment_index, bearing_of_segment). Targets outside
    the route are clamped to its ends.
    """
    n = len(coordinates)
    if n == 0:
        return (0.0, 0.0), 0, 0.0
    if n == 1:
        return (coordinates[0][0], coordinates[0][1]), 0, 0.0

    if target <= 0:
        return (coordinates[0][0], coordinates[0][1]), 0, coord_bearing(coordinates[0], coordinates[1])

    if target >= distances[-1]:
        return (
            (coordinates[-1][0], coordinates[-1][1]),
            n - 2,
            coord_bearing(coordinates[-2], coordinates[-1]),
        )

    low = max(0, min(bisect.bisect_right(distances, target) - 1, n - 2))
    high = low + 1

    seg_length = distances[high] - distances[low]
    fraction = (target - distances[low]) / seg_length if seg_length > 0 else 0.0

    start, end = coordinates[low], coordinates[high]
    coord = (
        start[0] + (end[0] - start[0]) * fraction,
        start[1] + (end[1] - start[1]) * fraction,
    )
    return coord, low, coord_bearing(start, end)
