"""Road reference classification for directions steps."""

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional

from . import config
from .models import RoadClass, RoadSegment

logger = logging.getLogger('tramo.road_refs')

INTERSTATE_RE = re.compile(r'^I[\s-]?\d+')
US_HIGHWAY_RE = re.compile(r'^U\.?S\.?[\s-]?\d+')
STATE_ROUTE_RE = re.compile(r'^[A-Z]{2}[\s-]?\d+')
NUMBERED_ROUTE_RE = re.compile(r'^(ROUTE|RT\.?|RTE\.?)[\s-]?\d+')

HIGHWAY_NAME_WORDS = ("TURNPIKE", "PARKWAY", "EXPRESSWAY", "FREEWAY", "THRUWAY", "INTERSTATE")


def classify_road_ref(ref: Optional[str], name: Optional[str] = None) -> RoadClass:
    """
    Classify a road from its reference number and name.

    I-90, I 90 -> interstate; US-9, U.S. 9 -> us_highway; MA-9, Route 66 ->
    state_route; turnpikes/parkways/expressways by name -> us_highway; any
    other named road -> local; nothing -> unknown (ramps, connectors).
    """
    ref_upper = (ref or "").upper().strip()
    name_upper = (name or "").upper().strip()

    if INTERSTATE_RE.match(ref_upper):
        return RoadClass.INTERSTATE
    if US_HIGHWAY_RE.match(ref_upper):
        return RoadClass.US_HIGHWAY
    if STATE_ROUTE_RE.match(ref_upper) or NUMBERED_ROUTE_RE.match(ref_upper):
        return RoadClass.STATE_ROUTE
    if any(word in name_upper for word in HIGHWAY_NAME_WORDS):
        return RoadClass.US_HIGHWAY
    if name_upper:
        return RoadClass.LOCAL
    return RoadClass.UNKNOWN


def _primary_ref(ref: str) -> str:
    # Concurrent routes come as "I 90; US 20"
    return re.split(r'[;/]', ref)[0].strip() if ref else ""


def build_road_segments(
    steps: Iterable[Mapping[str, Any]],
    total_distance_m: Optional[float] = None,
) -> List[RoadSegment]:
    """
    Turn directions steps into RoadSegment hints.

    Each step needs a ``distance`` in metres and may carry ``ref`` and
    ``name``. Consecutive steps on the same road are merged. Segments are
    clipped to ``total_distance_m`` when given.
    """
    segments: List[RoadSegment] = []
    position = 0.0
    total_miles = total_distance_m / config.METERS_PER_MILE if total_distance_m else None

    for step in steps or ():
        try:
            distance = float(step.get("distance", 0.0))
        except (TypeError, ValueError):
            logger.warning("Skipping step with invalid distance: %r", step.get("distance"))
            continue
        if distance <= 0:
            continue

        start = position / config.METERS_PER_MILE
        position += distance
        end = position / config.METERS_PER_MILE
        if total_miles is not None:
            if start >= total_miles:
                break
            end = min(end, total_miles)

        ref = _primary_ref(str(step.get("ref") or ""))
        name = step.get("name") or None
        road_class = classify_road_ref(ref, name)

        last = segments[-1] if segments else None
        if last is not None and last.ref == ref and last.road_class == road_class and (ref or last.name == name):
            segments[-1] = RoadSegment(last.start_mile, end, last.ref, last.road_class, last.name)
        else:
            segments.append(RoadSegment(start, end, ref, road_class, name))

    logger.debug("Built %d road segments from directions steps", len(segments))
    return segments
