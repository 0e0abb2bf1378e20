"""
Route matcher - maps GPS fixes to distance along a planned route.

Matching is constrained to a window around the last known distance so the
position cannot jump onto a parallel or doubled-back part of the route when
GPS is noisy. The first fix of a drive is acquired with a KD-tree lookup
over the whole route.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.spatial import cKDTree

from . import config
from .geometry import closest_point_on_segment, cumulative_distances, haversine_distance

logger = logging.getLogger('tramo.matcher')


@dataclass(frozen=True)
class MatchResult:
    """Distance along route (m) and perpendicular offset from it (m)."""
    distance: float
    dist_from_route: float


def get_distance_along_route(
    route_coords: Sequence[Sequence[float]],
    cumulative: Sequence[float],
    lng: float,
    lat: float,
    last_distance: float,
    speed_mph: float,
) -> MatchResult:
    """
    Match a fix to the route inside a speed-sized window.

    The forward window is ten seconds of travel (at least 200 m, speed
    floored at 10 mph) with 50 m of backward tolerance for jitter. The fix
    is projected onto every segment touching the window and the closest
    projection wins. Unreliable results fall back to ``last_distance``:

    - more than 100 m from the route
    - more than 30 m behind the last distance
    - forward jumps are capped at five seconds of travel

    Args:
        route_coords: Route polyline as (lng, lat) pairs.
        cumulative: Cumulative distance in metres at each route point.
        lng, lat: GPS fix.
        last_distance: Last known distance along the route (m).
        speed_mph: Current speed.
    """
    speed_mps = max(speed_mph or 0.0, config.MATCH_MIN_SPEED_MPH) * config.MPS_PER_MPH
    window = max(config.MATCH_MIN_WINDOW_M, speed_mps * config.MATCH_WINDOW_SECONDS)

    search_start = max(0.0, last_distance - config.MATCH_BACKWARD_TOLERANCE_M)
    search_end = last_distance + window

    best_dist = math.inf
    best_distance = last_distance
    fix = (lng, lat)

    for i in range(len(route_coords) - 1):
        seg_start = cumulative[i]
        seg_end = cumulative[i + 1]

        if seg_end < search_start or seg_start > search_end:
            continue

        (near_lng, near_lat), t = closest_point_on_segment(fix, route_coords[i], route_coords[i + 1])
        dist = haversine_distance(lat, lng, near_lat, near_lng)

        if dist < best_dist:
            best_dist = dist
            best_distance = seg_start + t * (seg_end - seg_start)

    if best_dist > config.MATCH_MAX_OFF_ROUTE_M:
        logger.debug("Fix %.0fm from route, keeping %.0fm", best_dist, last_distance)
        return MatchResult(distance=last_distance, dist_from_route=best_dist)

    if best_distance < last_distance - config.MATCH_MAX_BACKWARD_M:
        logger.debug("Backward match %.0fm -> %.0fm rejected", last_distance, best_distance)
        return MatchResult(distance=last_distance, dist_from_route=best_dist)

    max_jump = speed_mps * config.MATCH_MAX_JUMP_SECONDS
    if best_distance - last_distance > max_jump:
        best_distance = last_distance + max_jump

    return MatchResult(distance=best_distance, dist_from_route=best_dist)


class RouteMatcher:
    """
    Stateful route matcher for one drive.

    Keeps the route arrays and the last matched distance so callers only
    feed fixes. ``acquire`` places the first fix anywhere on the route;
    ``update`` then follows it with the windowed matcher.
    """

    def __init__(self, coordinates: Sequence[Sequence[float]], cumulative: Optional[Sequence[float]] = None):
        self.coordinates = [(float(c[0]), float(c[1])) for c in coordinates]
        self.cumulative = list(cumulative) if cumulative is not None else cumulative_distances(self.coordinates)
        self.last_distance = 0.0
        self.last_result: Optional[MatchResult] = None
        self._build_kdtree()

    def _build_kdtree(self):
        """Build a KD-tree over route points in an equirectangular metre frame."""
        if not self.coordinates:
            self.kdtree = None
            return
        arr = np.asarray(self.coordinates)
        self._ref_lat = float(arr[:, 1].mean())
        self.kdtree = cKDTree(self._to_plane(arr[:, 0], arr[:, 1]))

    def _to_plane(self, lngs, lats) -> np.ndarray:
        x = np.asarray(lngs) * 111320.0 * math.cos(math.radians(self._ref_lat))
        y = np.asarray(lats) * 110540.0
        return np.column_stack((x, y))

    @property
    def total_distance(self) -> float:
        return self.cumulative[-1] if self.cumulative else 0.0

    def acquire(self, lng: float, lat: float) -> MatchResult:
        """
        Match a fix without history, e.g. the first fix of a drive.

        Finds the nearest route vertex, then projects onto the segments on
        either side of it.
        """
        if self.kdtree is None or len(self.coordinates) < 2:
            return MatchResult(distance=self.last_distance, dist_from_route=math.inf)

        _, idx = self.kdtree.query(self._to_plane([lng], [lat])[0])
        idx = int(idx)

        best_dist = math.inf
        best_distance = self.cumulative[idx]
        for seg in (idx - 1, idx):
            if seg < 0 or seg >= len(self.coordinates) - 1:
                continue
            (near_lng, near_lat), t = closest_point_on_segment(
                (lng, lat), self.coordinates[seg], self.coordinates[seg + 1]
            )
            dist = haversine_distance(lat, lng, near_lat, near_lng)
            if dist < best_dist:
                best_dist = dist
                best_distance = self.cumulative[seg] + t * (self.cumulative[seg + 1] - self.cumulative[seg])

        logger.debug("Acquired route at %.0fm (%.1fm off route)", best_distance, best_dist)
        self.last_distance = best_distance
        self.last_result = MatchResult(distance=best_distance, dist_from_route=best_dist)
        return self.last_result

    def update(self, lng: float, lat: float, speed_mph: float) -> MatchResult:
        """Match a fix against the window ahead of the last known distance."""
        if len(self.coordinates) < 2:
            return MatchResult(distance=self.last_distance, dist_from_route=math.inf)

        result = get_distance_along_route(
            self.coordinates, self.cumulative, lng, lat, self.last_distance, speed_mph
        )
        self.last_distance = result.distance
        self.last_result = result
        return result

    def reset(self, distance: float = 0.0):
        """Forget history, e.g. after the user seeks along the route."""
        self.last_distance = distance
        self.last_result = None
