"""
Voting zone classifier.

Splits a route into transit, technical and urban zones. Overlapping
half-mile windows each collect weighted votes from independent signals
(curve clusters, long straights, road reference and census hints), the
winning character per window is merged into zones, short zones are
absorbed and urban hints are applied at the route edges only.

Zone boundaries are in miles.
"""

import bisect
import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import config
from .models import (
    ClassifierCurve,
    CurveEvent,
    RoadClass,
    RoadSegment,
    UrbanHint,
    Zone,
    ZoneCharacter,
    ZoneScore,
    normalize_curve,
)

logger = logging.getLogger('tramo.zones')


@dataclass(frozen=True)
class _Window:
    start_mile: float
    end_mile: float
    own_end_mile: float
    score: ZoneScore
    reasons: Tuple[str, ...]
    is_override: bool = False

    @property
    def mid_mile(self) -> float:
        return (self.start_mile + self.end_mile) / 2


def _merge_overrides(
    defaults: Dict[str, Any], overrides: Optional[Mapping[str, Any]], kind: str
) -> Dict[str, Any]:
    merged = dict(defaults)
    if overrides:
        unknown = sorted(set(overrides) - set(defaults))
        if unknown:
            raise ValueError(f"Unknown zone {kind}: {', '.join(unknown)}")
        merged.update(overrides)
    return merged


class _HintIndex:
    """Mile-range hints sorted by start for bisect lookups."""

    def __init__(self, items: Optional[Iterable[Any]], cls):
        hints = [item if isinstance(item, cls) else cls.from_mapping(item) for item in items or ()]
        self.hints = sorted(hints, key=lambda h: h.start_mile)
        self._starts = [h.start_mile for h in self.hints]

    def __len__(self) -> int:
        return len(self.hints)

    def __iter__(self):
        return iter(self.hints)

    def at(self, mile: float) -> Optional[Any]:
        """Latest-starting hint covering ``mile``, or None."""
        idx = bisect.bisect_right(self._starts, mile)
        for hint in reversed(self.hints[:idx]):
            if mile < hint.end_mile:
                return hint
        return None


def _dedupe(*groups: Iterable[str]) -> Tuple[str, ...]:
    seen = []
    for group in groups:
        for reason in group:
            if reason not in seen:
                seen.append(reason)
    return tuple(seen)


class VotingZoneClassifier:
    """
    Classify a route into zones by weighted window voting.

    Every weight and threshold defaults to ``config.ZONE_WEIGHTS`` and
    ``config.ZONE_THRESHOLDS``; partial overrides are merged over them.
    Unknown keys raise ValueError.
    """

    def __init__(
        self,
        weights: Optional[Mapping[str, float]] = None,
        thresholds: Optional[Mapping[str, float]] = None,
        interstate_override: bool = config.INTERSTATE_OVERRIDE,
    ):
        self.weights = _merge_overrides(config.ZONE_WEIGHTS, weights, "weights")
        self.thresholds = _merge_overrides(config.ZONE_THRESHOLDS, thresholds, "thresholds")
        self.interstate_override = interstate_override

    def classify(
        self,
        curve_events: Iterable[Any],
        total_distance_m: float,
        census_hints: Optional[Iterable[Any]] = None,
        road_ref_hints: Optional[Iterable[Any]] = None,
    ) -> List[Zone]:
        """
        Classify a route. Returns contiguous zones covering [0, total miles].

        Args:
            curve_events: CurveEvent objects or curve-like mappings.
            total_distance_m: Route length in metres. Zero or negative gives [].
            census_hints: UrbanHint objects or mappings.
            road_ref_hints: RoadSegment objects or mappings.
        """
        if not total_distance_m or total_distance_m <= 0:
            logger.warning("Zone classification skipped: route length %s", total_distance_m)
            return []

        total_miles = total_distance_m / config.METERS_PER_MILE
        curves = self._extract_curves(curve_events)
        urban_hints = _HintIndex(census_hints, UrbanHint)
        road_segments = _HintIndex(road_ref_hints, RoadSegment)

        logger.debug(
            "Voting classifier: %.2f mi, %d curves, %d census hints, %d road refs",
            total_miles, len(curves), len(urban_hints), len(road_segments),
        )

        windows = [
            self._score_window(start, end, own_end, curves, urban_hints, road_segments, total_miles)
            for start, end, own_end in self._build_windows(total_miles)
        ]
        zones = self._merge_windows(windows)
        raw_count = len(zones)
        zones = self._absorb_short_zones(zones)
        zones = self._apply_urban_edges(zones, urban_hints, total_miles)

        logger.info(
            "Zone classification: %d zones (%d before cleanup) over %.1f mi",
            len(zones), raw_count, total_miles,
        )
        for zone in zones:
            logger.debug(
                "  %.2f-%.2f mi %s [T:%s H:%s U:%s] %s",
                zone.start_mile, zone.end_mile, zone.character.value,
                zone.score.technical, zone.score.transit, zone.score.urban,
                ", ".join(zone.reasons[:3]),
            )
        return zones

    def _extract_curves(self, curve_events: Iterable[Any]) -> List[ClassifierCurve]:
        curves = []
        for event in curve_events or ():
            curve = normalize_curve(event)
            if curve is not None and curve.angle >= self.thresholds["min_angle_to_count"]:
                curves.append(curve)
        curves.sort(key=lambda c: c.mile)
        return curves

    def _build_windows(self, total_miles: float) -> List[Tuple[float, float, float]]:
        """(start, end, own_end) per window; each window owns its leading stride."""
        size = self.thresholds["analysis_window_miles"]
        stride = size / 2
        windows = []
        k = 0
        while k * stride < total_miles:
            start = k * stride
            windows.append((start, min(start + size, total_miles), min(start + stride, total_miles)))
            k += 1
        return windows

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _score_window(
        self,
        start: float,
        end: float,
        own_end: float,
        curves: List[ClassifierCurve],
        urban_hints: _HintIndex,
        road_segments: _HintIndex,
        total_miles: float,
    ) -> _Window:
        w = self.weights
        t = self.thresholds
        mid = (start + end) / 2
        technical = transit = urban = 0.0
        reasons = []

        road = road_segments.at(mid)
        if road is not None:
            label = road.ref or road.name or road.road_class.value
            if road.road_class == RoadClass.INTERSTATE:
                transit += w["road_ref_interstate"]
                if self.interstate_override:
                    reasons.append(f"road: {label} (interstate override)")
                    return _Window(
                        start, end, own_end,
                        ZoneScore(technical, transit, urban), tuple(reasons), is_override=True,
                    )
                reasons.append(f"road: {label}")
            elif road.road_class == RoadClass.US_HIGHWAY:
                transit += w["road_ref_us_highway"]
                reasons.append(f"road: {label}")
            elif road.road_class == RoadClass.STATE_ROUTE:
                transit += w["road_ref_state_route"]
                reasons.append(f"road: {label}")
            elif road.road_class == RoadClass.LOCAL:
                technical += w["road_ref_local"]
                reasons.append(f"road: {label} (local)")

        in_window = [c for c in curves if start <= c.mile < end]
        cluster = [c for c in curves if start <= c.mile < start + t["cluster_window_miles"]]
        sustained = [c for c in curves if start <= c.mile < start + t["sustained_window_miles"]]

        if len(cluster) >= t["cluster_min_curves"]:
            avg = sum(c.angle for c in cluster) / len(cluster)
            if avg >= t["cluster_min_avg_angle"]:
                technical += w["curve_cluster"]
                reasons.append(f"cluster: {len(cluster)} curves, avg {avg:.0f}°")

        if len(sustained) >= t["sustained_min_curves"]:
            avg = sum(c.angle for c in sustained) / len(sustained)
            if avg >= t["sustained_min_avg_angle"]:
                technical += w["sustained_curves"]
                reasons.append(
                    f"sustained: {len(sustained)} curves in {t['sustained_window_miles']}mi, avg {avg:.0f}°"
                )

        danger = [c for c in sustained if c.angle >= t["danger_angle"]]
        if danger:
            technical += w["danger_curve"]
            reasons.append(f"danger: {len(danger)} curve(s) ≥{t['danger_angle']:.0f}° nearby")

        if len(in_window) >= 2:
            avg = sum(c.angle for c in in_window) / len(in_window)
            if avg >= t["high_angle_avg"]:
                technical += w["high_angle_avg"]
                reasons.append(f"high avg: {avg:.0f}° in window")

        tight = [c for c in in_window if c.radius is not None and c.radius < t["tight_radius_m"]]
        if len(tight) >= t["tight_min_curves"]:
            technical += w["tight_curves"]
            reasons.append(f"tight: {len(tight)} tight curves")

        gap = self.find_gap_at_mile(mid, curves)
        if gap >= t["gap_threshold_miles"]:
            transit += w["long_gap"]
            if math.isinf(gap):
                reasons.append("gap: no curves ahead")
            else:
                reasons.append(f"gap: {gap:.1f}mi without curves")

        if len(sustained) < t["sparse_max_curves"]:
            transit += w["sparse_window"]
            reasons.append(
                f"sparse: only {len(sustained)} curve(s) in {t['sustained_window_miles']}mi"
            )

        census = urban_hints.at(mid)
        character = census.character if census is not None else None
        if character == "rural":
            transit += w["census_rural"]
            reasons.append("census: rural")
        elif character == "urban":
            edge = t["urban_edge_miles"]
            if mid < edge or mid > total_miles - edge:
                urban += w["census_urban"]
                reasons.append("census: urban at route edge")

        return _Window(start, end, own_end, ZoneScore(technical, transit, urban), tuple(reasons))

    @staticmethod
    def find_gap_at_mile(mile: float, curves: Sequence[ClassifierCurve]) -> float:
        """
        Length in miles of the curve-free stretch around ``mile``.

        The stretch runs from the last curve at or before ``mile`` (or the
        route start) to the first curve after it. With no curve after it the
        stretch is open ended and the gap is infinite, as it is with no
        curves at all.
        """
        if not curves:
            return math.inf

        miles = [c.mile for c in curves]
        idx = bisect.bisect_right(miles, mile)
        gap_start = miles[idx - 1] if idx > 0 else 0.0
        if idx >= len(miles):
            return math.inf
        return miles[idx] - gap_start

    @staticmethod
    def classify_window(window: _Window) -> ZoneCharacter:
        """Urban if positive and not outvoted by technical, then technical, else transit."""
        score = window.score
        if window.is_override:
            return ZoneCharacter.TRANSIT
        if score.urban > 0 and score.urban >= score.technical:
            return ZoneCharacter.URBAN
        if score.technical > score.transit:
            return ZoneCharacter.TECHNICAL
        return ZoneCharacter.TRANSIT

    # ------------------------------------------------------------------
    # Zone assembly
    # ------------------------------------------------------------------

    def _merge_windows(self, windows: List[_Window]) -> List[Zone]:
        zones: List[Zone] = []
        for window in windows:
            character = self.classify_window(window)
            if zones and zones[-1].character == character:
                last = zones[-1]
                zones[-1] = replace(
                    last,
                    end_mile=window.own_end_mile,
                    score=last.score + window.score,
                    reasons=_dedupe(last.reasons, window.reasons),
                )
            else:
                zones.append(Zone(
                    start_mile=window.start_mile,
                    end_mile=window.own_end_mile,
                    character=character,
                    score=window.score,
                    reasons=window.reasons,
                ))
        return zones

    def _absorb_short_zones(self, zones: List[Zone]) -> List[Zone]:
        """
        Absorb zones shorter than min_zone_length_miles until none remain.

        A short zone between two neighbours of the same character bridges
        them into one zone; otherwise it joins the longer neighbour (the
        previous one on a tie).
        """
        min_length = self.thresholds["min_zone_length_miles"]
        zones = list(zones)

        while len(zones) > 1:
            idx = next((i for i, z in enumerate(zones) if z.length_miles < min_length), None)
            if idx is None:
                break

            prev = zones[idx - 1] if idx > 0 else None
            nxt = zones[idx + 1] if idx + 1 < len(zones) else None

            if prev is not None and nxt is not None and prev.character == nxt.character:
                zones[idx - 1:idx + 2] = [_join(prev, zones[idx], nxt)]
            elif prev is not None and (nxt is None or prev.length_miles >= nxt.length_miles):
                zones[idx - 1:idx + 1] = [_join(prev, zones[idx])]
            else:
                zones[idx:idx + 2] = [_join(zones[idx], nxt, character=nxt.character)]

        return zones

    def _apply_urban_edges(
        self, zones: List[Zone], urban_hints: Iterable[UrbanHint], total_miles: float
    ) -> List[Zone]:
        """Force urban character at the route ends covered by urban hints."""
        if not zones:
            return zones

        edge = min(self.thresholds["urban_edge_miles"], total_miles)
        min_region = self.thresholds["min_urban_edge_miles"]
        urban = [h for h in urban_hints if h.character == "urban"]

        # Only hints that reach the endpoint itself mark an edge as urban.
        ends = [min(h.end_mile, edge) for h in urban if h.start_mile <= min_region and h.end_mile > 0]
        if ends:
            region_end = max(ends)
            if region_end >= min_region:
                zones = self._force_urban(zones, 0.0, region_end, "census: urban at route start")

        starts = [
            max(h.start_mile, total_miles - edge)
            for h in urban
            if h.end_mile >= total_miles - min_region and h.start_mile < total_miles
        ]
        if starts:
            region_start = min(starts)
            if total_miles - region_start >= min_region:
                zones = self._force_urban(zones, region_start, total_miles, "census: urban at route end")

        return zones

    def _force_urban(self, zones: List[Zone], start: float, end: float, reason: str) -> List[Zone]:
        """Overwrite [start, end] with an urban zone, clipping what it covers."""
        sliver = self.thresholds["min_urban_edge_miles"]
        before: List[Zone] = []
        after: List[Zone] = []

        for zone in zones:
            if zone.end_mile <= start:
                before.append(zone)
            elif zone.start_mile >= end:
                after.append(zone)
            else:
                if zone.start_mile < start:
                    if start - zone.start_mile < sliver:
                        start = zone.start_mile
                    else:
                        before.append(replace(zone, end_mile=start))
                if zone.end_mile > end:
                    if zone.end_mile - end < sliver:
                        end = zone.end_mile
                    else:
                        after.append(replace(zone, start_mile=end))

        forced = Zone(
            start_mile=start,
            end_mile=end,
            character=ZoneCharacter.URBAN,
            score=ZoneScore(urban=self.weights["census_urban"]),
            reasons=(reason,),
        )

        result: List[Zone] = []
        for zone in before + [forced] + after:
            if result and result[-1].character == zone.character:
                result[-1] = _join(result[-1], zone)
            else:
                result.append(zone)
        return result


def _join(*zones: Zone, character: Optional[ZoneCharacter] = None) -> Zone:
    """Join consecutive zones; the first zone's character wins unless given."""
    score = ZoneScore()
    for zone in zones:
        score = score + zone.score
    return Zone(
        start_mile=zones[0].start_mile,
        end_mile=zones[-1].end_mile,
        character=character or zones[0].character,
        score=score,
        reasons=_dedupe(*(z.reasons for z in zones)),
    )


def zone_at_mile(zones: Sequence[Zone], mile: float) -> Optional[Zone]:
    """Zone containing ``mile``; the last zone also contains its end."""
    if not zones:
        return None
    starts = [z.start_mile for z in zones]
    idx = bisect.bisect_right(starts, mile) - 1
    if idx < 0:
        return None
    zone = zones[idx]
    if mile < zone.end_mile or (idx == len(zones) - 1 and mile <= zone.end_mile):
        return zone
    return None


def classify_with_voting(
    curve_events: Iterable[Any],
    total_distance_m: float,
    census_hints: Optional[Iterable[Any]] = None,
    road_ref_hints: Optional[Iterable[Any]] = None,
) -> List[Zone]:
    """Classify a route into zones with the default weights and thresholds."""
    return VotingZoneClassifier().classify(
        curve_events, total_distance_m, census_hints, road_ref_hints
    )


def reassign_event_zones(events: Iterable[Any], zones: Sequence[Zone]) -> List[Any]:
    """
    Label each event with the character of the zone containing its mile.

    CurveEvents come back as new objects; mappings come back as copies with
    a ``zone`` key. Events outside every zone keep their existing label.
    """
    events = list(events or ())
    if not zones:
        return events

    updated = []
    reassigned = 0
    for event in events:
        if isinstance(event, CurveEvent):
            zone = zone_at_mile(zones, event.mile)
            if zone is not None and event.zone != zone.character:
                event = replace(event, zone=zone.character)
                reassigned += 1
        else:
            curve = normalize_curve(event)
            zone = zone_at_mile(zones, curve.mile) if curve is not None else None
            if zone is not None:
                event = dict(event, zone=zone.character.value)
                reassigned += 1
        updated.append(event)

    logger.debug("Reassigned zones to %d of %d events", reassigned, len(events))
    return updated


def zone_to_dict(zone: Zone) -> Dict[str, Any]:
    """Plain-dict form with both mile and metre boundaries."""
    return {
        "start_mile": zone.start_mile,
        "end_mile": zone.end_mile,
        "start_distance": zone.start_distance,
        "end_distance": zone.end_distance,
        "length_miles": zone.length_miles,
        "character": zone.character.value,
        "score": {
            "technical": zone.score.technical,
            "transit": zone.score.transit,
            "urban": zone.score.urban,
        },
        "reasons": list(zone.reasons),
    }
