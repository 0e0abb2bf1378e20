"""
Curve detection from a route polyline.

Turns the geometry of a route into an ordered list of curve events:

1. Resample - uniform arc-length spacing so heading changes are comparable
2. Road character - classify the whole route to pick detection thresholds
3. Sharp pass - runs of same-sign heading changes above a start threshold
4. Gradual pass - long sweepers found by a sliding net-heading window
5. Merging - adjacent same-direction pieces, chicanes, technical sections
6. Speed adjustment - recommended speeds scaled by road character
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

import numpy as np

from . import config
from .geometry import (
    angle_difference,
    coord_bearing,
    coord_distance,
    heading_changes,
    heading_sequence,
    resample,
)
from .models import (
    CurveEvent,
    Direction,
    Modifier,
    RoadCharacter,
    RoutePoint,
    SectionType,
    SpeedRecommendation,
)

logger = logging.getLogger('tramo.curves')


@dataclass(frozen=True)
class RoadProfile:
    """
    Whole-route geometry summary from the road-character pass.

    Attributes:
        character: highway, mixed or technical.
        deg_per_100m: Average absolute heading change per 100 m.
        avg_straight_m: Mean length of straight runs (changes below 2°).
        longest_straight_m: Longest straight run.
    """
    character: RoadCharacter
    deg_per_100m: float
    avg_straight_m: float
    longest_straight_m: float


@dataclass(frozen=True)
class CurveAnalysis:
    """Curves detected on a route together with the route's profile."""
    profile: Optional[RoadProfile]
    curves: List[CurveEvent]
    points: List[RoutePoint]


@dataclass(frozen=True)
class UpcomingCurve:
    """A curve ahead of the vehicle and its straight-line distance."""
    curve: CurveEvent
    distance_m: float


def classify_severity(radius: float, angle: float) -> int:
    """
    Severity 1 (gentle) to 6 (hardest) from radius, escalated by total angle.

    Radius bands decide the base rating; very large total angles raise it so
    a long wide-radius hairpin is not reported as gentle.
    """
    severity = config.MAX_SEVERITY
    for limit, band in config.SEVERITY_RADIUS_BANDS:
        if radius > limit:
            severity = band
            break

    if angle > 150:
        severity = max(severity, 5)
    elif angle > 120:
        severity = max(severity, 4)
    elif angle > 90:
        severity = severity + 1

    return min(config.MAX_SEVERITY, severity)


def speeds_for_severity(severity: int) -> SpeedRecommendation:
    table = config.SEVERITY_SPEEDS_MPH.get(severity, config.SEVERITY_SPEEDS_MPH[3])
    return SpeedRecommendation(cruise=table["cruise"], fast=table["fast"], race=table["race"])


def estimate_radius(length: float, angle: float) -> float:
    if angle <= 0:
        return math.inf
    return length / math.radians(angle)


def first_direction(changes: Sequence[float]) -> Direction:
    """
    Direction of the first heading change above 1°.

    The net total is only a fallback: in shapes whose changes cancel out the
    first turn is what the driver meets first.
    """
    for change in changes:
        if abs(change) > config.DIRECTION_MIN_CHANGE_DEG:
            return Direction.RIGHT if change > 0 else Direction.LEFT
    return Direction.RIGHT if sum(changes) > 0 else Direction.LEFT


def shape_modifier(
    changes: Sequence[float], angle: float, severity: int, length: float
) -> Optional[Modifier]:
    """Compare first and last thirds of a curve, falling back to size labels."""
    magnitudes = [abs(c) for c in changes]
    third = len(magnitudes) // 3

    if third >= 1:
        first = sum(magnitudes[:third]) / third
        last = sum(magnitudes[-third:]) / third
        if first > 0:
            ratio = last / first
            if ratio > config.TIGHTENS_RATIO:
                return Modifier.TIGHTENS
            if ratio < config.OPENS_RATIO:
                return Modifier.OPENS
        elif last > 0:
            return Modifier.TIGHTENS

    if angle > 150:
        return Modifier.HAIRPIN
    if angle > 120 or severity >= 5:
        return Modifier.SHARP
    if length > 120 and severity >= 4:
        return Modifier.LONG
    if length > 150:
        return Modifier.LONG
    return None


class CurveDetector:
    """
    Detect curves, chicanes and technical sections on a route.

    Index conventions
    -----------------
    With resampled points p[0..N-1], heading h[k] runs from p[k] to p[k+1]
    and change c[k] = h[k+1] - h[k] happens at p[k+1]. A span of changes
    c[a..b] therefore covers the arc from the middle of segment a to the
    middle of segment b+1, so consecutive spans share a boundary but never
    overlap.

    Thresholds
    ----------
    Start, continuation, gradual-window and minimum-angle thresholds come
    from ``config.ROAD_CLASS_THRESHOLDS`` keyed by the route's road
    character: lower on technical roads to catch every bend, higher on
    highways so lane-keeping wobble is not reported.
    """

    def __init__(
        self,
        resample_interval: float = config.RESAMPLE_INTERVAL_M,
        gradual_window: float = config.GRADUAL_WINDOW_M,
        merge_adjacent: bool = True,
        merge_chicanes: bool = True,
        merge_sections: bool = True,
        adjacent_gap: float = config.ADJACENT_MERGE_GAP_M,
        chicane_gap: float = config.CHICANE_MAX_GAP_M,
        section_gap: float = config.SECTION_MAX_GAP_M,
    ):
        self.resample_interval = resample_interval
        self.gradual_window = gradual_window
        self.merge_adjacent = merge_adjacent
        self.merge_chicanes = merge_chicanes
        self.merge_sections = merge_sections
        self.adjacent_gap = adjacent_gap
        self.chicane_gap = chicane_gap
        self.section_gap = section_gap

    def detect_curves(self, coordinates: Sequence[Sequence[float]]) -> List[CurveEvent]:
        """Detect curves on a (lng, lat) polyline. Fewer than 3 points gives []."""
        return self.analyse(coordinates).curves

    def analyse(self, coordinates: Sequence[Sequence[float]]) -> CurveAnalysis:
        """Run the full pipeline and keep the road profile alongside the curves."""
        if not coordinates or len(coordinates) < 3:
            return CurveAnalysis(profile=None, curves=[], points=[])

        points = resample(coordinates, self.resample_interval)
        if len(points) < 3:
            return CurveAnalysis(profile=None, curves=[], points=points)

        coords = [p.coord for p in points]
        distances = [p.cumulative_distance for p in points]
        spacing = distances[-1] / (len(points) - 1)

        changes = heading_changes(heading_sequence(coords))

        profile = self._road_profile(changes, spacing, distances[-1])
        thresholds = config.ROAD_CLASS_THRESHOLDS[profile.character.value]

        sharp = self._sharp_pass(changes, thresholds)
        gradual = self._gradual_pass(changes, sharp, spacing, thresholds)
        spans = sorted(sharp + gradual)

        curves = []
        for start, end in spans:
            curve = self._build_curve(len(curves) + 1, start, end, changes, coords, distances)
            if curve.angle >= thresholds["min_angle"]:
                curves.append(curve)

        if self.merge_adjacent:
            curves = self._merge_adjacent(curves)
        if self.merge_chicanes:
            curves = self._merge_chicanes(curves)
        if self.merge_sections:
            curves = self._merge_sections(curves)

        curves = self._adjust_speeds(curves, profile.character)
        curves = [replace(c, id=i + 1) for i, c in enumerate(curves)]

        logger.info(
            "Curve detection: %d curves from %d points (%s road, %.1f deg/100m)",
            len(curves), len(coordinates), profile.character.value, profile.deg_per_100m,
        )
        return CurveAnalysis(profile=profile, curves=curves, points=points)

    # ------------------------------------------------------------------
    # Road character
    # ------------------------------------------------------------------

    def _road_profile(self, changes: np.ndarray, spacing: float, total: float) -> RoadProfile:
        """Classify the whole route as highway, technical or mixed."""
        abs_changes = np.abs(changes)
        deg_per_100m = float(abs_changes.sum() / total * 100.0) if total > 0 else 0.0

        runs = []
        run = 0
        for magnitude in abs_changes:
            if magnitude < config.STRAIGHT_SEGMENT_MAX_DEG:
                run += 1
            elif run:
                runs.append(run * spacing)
                run = 0
        if run:
            runs.append(run * spacing)

        avg_straight = sum(runs) / len(runs) if runs else 0.0
        longest = max(runs) if runs else 0.0

        if (deg_per_100m >= config.TECHNICAL_DEG_PER_100M
                or avg_straight < config.TECHNICAL_MAX_AVG_STRAIGHT_M):
            character = RoadCharacter.TECHNICAL
        elif (deg_per_100m < config.HIGHWAY_MAX_DEG_PER_100M
                and avg_straight >= config.HIGHWAY_MIN_AVG_STRAIGHT_M):
            character = RoadCharacter.HIGHWAY
        else:
            character = RoadCharacter.MIXED

        logger.debug(
            "Road profile: %s (%.1f deg/100m, avg straight %.0fm, longest %.0fm)",
            character.value, deg_per_100m, avg_straight, longest,
        )
        return RoadProfile(
            character=character,
            deg_per_100m=deg_per_100m,
            avg_straight_m=avg_straight,
            longest_straight_m=longest,
        )

    # ------------------------------------------------------------------
    # Detection passes
    # ------------------------------------------------------------------

    def _sharp_pass(self, changes: np.ndarray, thresholds: dict) -> List[Tuple[int, int]]:
        """
        Find runs of same-sign heading change.

        A curve starts on a change above the start threshold and keeps
        growing while changes of the same sign stay above the continuation
        threshold. A sub-threshold change is bridged when the next few
        changes still turn the same way by more than the start threshold.
        Finished spans are widened over neighbouring same-sign changes above
        1° so a corner split unevenly across two samples keeps its full angle.
        """
        start_threshold = thresholds["start"]
        continue_threshold = thresholds["continue"]
        n = len(changes)
        spans = []

        i = 0
        while i < n:
            if abs(changes[i]) <= start_threshold:
                i += 1
                continue

            sign = np.sign(changes[i])
            start = i
            end = i

            while end + 1 < n:
                nxt = changes[end + 1]
                if np.sign(nxt) == sign and abs(nxt) > continue_threshold:
                    end += 1
                elif abs(nxt) <= continue_threshold:
                    lookahead = changes[end + 1:end + 1 + config.LOOKAHEAD_SEGMENTS].sum()
                    if np.sign(lookahead) == sign and abs(lookahead) > start_threshold:
                        end += 1
                    else:
                        break
                else:
                    break

            floor = spans[-1][1] + 1 if spans else 0
            while (start - 1 >= floor
                   and sign * changes[start - 1] > config.DIRECTION_MIN_CHANGE_DEG):
                start -= 1
            while end + 1 < n and sign * changes[end + 1] > config.DIRECTION_MIN_CHANGE_DEG:
                end += 1

            spans.append((start, end))
            i = end + 1

        return spans

    def _gradual_pass(
        self,
        changes: np.ndarray,
        claimed_spans: List[Tuple[int, int]],
        spacing: float,
        thresholds: dict,
    ) -> List[Tuple[int, int]]:
        """
        Find long sweepers the sharp pass misses.

        Slides a fixed-distance window over unclaimed indices. When the net
        heading change inside it passes the gradual threshold, the window is
        grown in both directions while the turn keeps its sign, then trimmed
        so it starts and ends on a turning segment.
        """
        n = len(changes)
        claimed = np.zeros(n, dtype=bool)
        for start, end in claimed_spans:
            claimed[start:end + 1] = True

        window = max(1, int(round(self.gradual_window / spacing)))
        threshold = thresholds["gradual"]
        spans = []

        i = 0
        while i < n:
            if claimed[i]:
                i += 1
                continue

            end = i
            while end + 1 < n and end + 1 - i < window and not claimed[end + 1]:
                end += 1

            net = float(changes[i:end + 1].sum())
            if abs(net) < threshold:
                i += 1
                continue

            sign = np.sign(net)
            start = i
            while end + 1 < n and not claimed[end + 1] and np.sign(changes[end + 1]) == sign:
                end += 1
            while start - 1 >= 0 and not claimed[start - 1] and np.sign(changes[start - 1]) == sign:
                start -= 1

            while start < end and sign * changes[start] <= config.GRADUAL_TRIM_DEG:
                start += 1
            while end > start and sign * changes[end] <= config.GRADUAL_TRIM_DEG:
                end -= 1

            spans.append((start, end))
            claimed[start:end + 1] = True
            i = end + 1

        return spans

    # ------------------------------------------------------------------
    # Curve construction
    # ------------------------------------------------------------------

    def _build_curve(
        self,
        curve_id: int,
        start: int,
        end: int,
        changes: np.ndarray,
        coords: List[Tuple[float, float]],
        distances: List[float],
    ) -> CurveEvent:
        segment = [float(c) for c in changes[start:end + 1]]
        angle = abs(sum(segment))

        entry = (distances[start] + distances[start + 1]) / 2
        exit_ = (distances[end + 1] + distances[end + 2]) / 2
        length = exit_ - entry

        apex_offset = int(np.argmax(np.abs(changes[start:end + 1])))
        apex_idx = start + apex_offset + 1

        radius = estimate_radius(length, angle)
        severity = classify_severity(radius, angle)

        return CurveEvent(
            id=curve_id,
            entry_distance=entry,
            apex_distance=distances[apex_idx],
            exit_distance=exit_,
            position=coords[apex_idx],
            direction=first_direction(segment),
            severity=severity,
            angle=angle,
            length=length,
            radius=radius,
            modifier=shape_modifier(segment, angle, severity, length),
            speeds=speeds_for_severity(severity),
            heading_changes=tuple(segment),
        )

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def _merge_adjacent(self, curves: List[CurveEvent]) -> List[CurveEvent]:
        """Merge same-direction plain curves separated by less than adjacent_gap."""
        merged: List[CurveEvent] = []
        for curve in curves:
            if merged and self._can_merge_adjacent(merged[-1], curve):
                merged[-1] = self._combine(merged[-1], curve)
            else:
                merged.append(curve)
        return merged

    def _can_merge_adjacent(self, first: CurveEvent, second: CurveEvent) -> bool:
        return (
            not first.is_compound
            and not second.is_compound
            and first.direction == second.direction
            and second.entry_distance - first.exit_distance < self.adjacent_gap
        )

    def _combine(self, first: CurveEvent, second: CurveEvent) -> CurveEvent:
        """Join two same-direction curves; angle and length add up."""
        angle = first.angle + second.angle
        length = first.length + second.length
        radius = estimate_radius(length, angle)
        severity = classify_severity(radius, angle)
        changes = first.heading_changes + second.heading_changes

        apex = first if _peak_change(first) >= _peak_change(second) else second

        return replace(
            first,
            apex_distance=apex.apex_distance,
            exit_distance=second.exit_distance,
            position=apex.position,
            severity=severity,
            angle=angle,
            length=length,
            radius=radius,
            modifier=shape_modifier(changes, angle, severity, length),
            speeds=speeds_for_severity(severity),
            heading_changes=changes,
        )

    def _merge_chicanes(self, curves: List[CurveEvent]) -> List[CurveEvent]:
        """
        Collapse 2-3 consecutive opposite-direction curves into a chicane.

        Each curve must start within chicane_gap of the previous one's exit
        and turn the other way. The chicane keeps the first sub-curve's
        direction.
        """
        merged = []
        i = 0

        while i < len(curves):
            group = [curves[i]]
            j = i + 1
            while (j < len(curves)
                   and len(group) < config.CHICANE_MAX_CURVES
                   and not curves[j].is_compound
                   and not group[0].is_compound
                   and curves[j].direction != group[-1].direction
                   and curves[j].entry_distance - group[-1].exit_distance <= self.chicane_gap):
                group.append(curves[j])
                j += 1

            if len(group) >= 2:
                merged.append(self._compound(group, is_chicane=True))
                i = j
            else:
                merged.append(curves[i])
                i += 1

        return merged

    def _merge_sections(self, curves: List[CurveEvent]) -> List[CurveEvent]:
        """
        Collapse sustained runs of curves into technical sections.

        A run is consecutive non-chicane curves each within section_gap of
        the last. Runs of at least three curves with two or more direction
        reversals are reported as one section.
        """
        merged: List[CurveEvent] = []
        run: List[CurveEvent] = []

        def flush():
            reversals = sum(
                1 for a, b in zip(run, run[1:]) if a.direction != b.direction
            )
            if len(run) >= config.SECTION_MIN_CURVES and reversals >= config.SECTION_MIN_REVERSALS:
                merged.append(self._compound(run, section_type=self._section_type(run, reversals)))
            else:
                merged.extend(run)

        for curve in curves:
            if curve.is_chicane:
                flush()
                run = []
                merged.append(curve)
                continue
            if run and curve.entry_distance - run[-1].exit_distance > self.section_gap:
                flush()
                run = []
            run.append(curve)
        flush()

        return merged

    def _section_type(self, run: List[CurveEvent], reversals: int) -> SectionType:
        density = reversals / (len(run) - 1)
        hardest = max(c.severity for c in run)

        if hardest >= 5 and density >= 0.75:
            return SectionType.SWITCHBACKS
        if hardest >= 4:
            return SectionType.TECHNICAL
        if density >= 0.75:
            return SectionType.WINDY
        return SectionType.SWEEPING

    def _compound(
        self,
        group: List[CurveEvent],
        is_chicane: bool = False,
        section_type: Optional[SectionType] = None,
    ) -> CurveEvent:
        """Build a chicane or section entity from its sub-curves."""
        hardest = max(group, key=lambda c: (c.severity, c.angle))
        speeds = hardest.speeds
        if section_type is not None:
            speeds = speeds.scaled(config.SECTION_SPEED_FACTOR)

        changes: Tuple[float, ...] = ()
        for curve in group:
            changes += curve.heading_changes

        return CurveEvent(
            id=group[0].id,
            entry_distance=group[0].entry_distance,
            apex_distance=hardest.apex_distance,
            exit_distance=group[-1].exit_distance,
            position=hardest.position,
            direction=group[0].direction,
            severity=hardest.severity,
            angle=sum(c.angle for c in group),
            length=group[-1].exit_distance - group[0].entry_distance,
            radius=min(c.radius for c in group),
            modifier=None,
            speeds=speeds,
            is_chicane=is_chicane,
            is_technical_section=section_type is not None,
            section_type=section_type,
            sub_curves=tuple(group),
            heading_changes=changes,
        )

    def _adjust_speeds(
        self, curves: List[CurveEvent], character: RoadCharacter
    ) -> List[CurveEvent]:
        """Scale recommended speeds by the route's road character."""
        factor = config.ROAD_CLASS_SPEED_FACTORS[character.value]
        if factor == 1.0:
            return curves

        def adjust(curve: CurveEvent) -> CurveEvent:
            return replace(
                curve,
                speeds=curve.speeds.scaled(factor),
                sub_curves=tuple(adjust(sub) for sub in curve.sub_curves),
            )

        return [adjust(c) for c in curves]


def _peak_change(curve: CurveEvent) -> float:
    return max((abs(c) for c in curve.heading_changes), default=0.0)


def detect_curves(coordinates: Sequence[Sequence[float]]) -> List[CurveEvent]:
    """Detect curves on a (lng, lat) polyline with default settings."""
    return CurveDetector().detect_curves(coordinates)


def get_upcoming_curves(
    curves: Sequence[CurveEvent],
    position: Sequence[float],
    heading: float,
    max_distance: float = config.UPCOMING_MAX_DISTANCE_M,
    limit: int = config.UPCOMING_LIMIT,
) -> List[UpcomingCurve]:
    """
    Curves ahead of the vehicle, nearest first.

    A curve is ahead when the bearing to its apex is within 90° of the
    current heading. Curves right next to the vehicle (under 10 m) are
    dropped, as are recently passed ones: close by but already well off
    the direction of travel.
    """
    if not curves or position is None:
        return []

    upcoming = []
    for curve in curves:
        distance = coord_distance(position, curve.position)
        if distance >= max_distance or distance <= config.UPCOMING_MIN_DISTANCE_M:
            continue

        divergence = abs(angle_difference(heading, coord_bearing(position, curve.position)))
        if divergence >= 90:
            continue
        if (distance < config.RECENTLY_PASSED_DISTANCE_M
                and divergence > config.RECENTLY_PASSED_BEARING_DEG):
            continue

        upcoming.append(UpcomingCurve(curve=curve, distance_m=distance))

    upcoming.sort(key=lambda u: u.distance_m)
    return upcoming[:limit]
