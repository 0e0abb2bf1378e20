"""
Core data structures for the road-geometry pipeline.

Unit Conventions
----------------
- Distance: metres, except zone and hint boundaries which are in miles
  (the unit the zone classifier reasons in)
- Speed: metres per second, except recommended curve speeds and user
  facing overrides which are in mph
- Angles: degrees (0-360 for headings, unsigned totals for curve angles)
- Coordinates: (lng, lat) decimal degrees (WGS84)

Events and zones are frozen; pipeline stages return new objects instead of
editing the ones they were given.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from . import config

logger = logging.getLogger('tramo.models')


class Direction(Enum):
    LEFT = "LEFT"
    RIGHT = "RIGHT"


class Modifier(Enum):
    TIGHTENS = "TIGHTENS"
    OPENS = "OPENS"
    HAIRPIN = "HAIRPIN"
    SHARP = "SHARP"
    LONG = "LONG"


class SectionType(Enum):
    SWITCHBACKS = "switchbacks"
    SWEEPING = "sweeping"
    TECHNICAL = "technical"
    WINDY = "windy"


class RoadCharacter(Enum):
    """Whole-route classification from the road-character pass."""
    HIGHWAY = "highway"
    MIXED = "mixed"
    TECHNICAL = "technical"


class ZoneCharacter(Enum):
    TRANSIT = "transit"
    TECHNICAL = "technical"
    URBAN = "urban"


class RoadClass(Enum):
    INTERSTATE = "interstate"
    US_HIGHWAY = "us_highway"
    STATE_ROUTE = "state_route"
    LOCAL = "local"
    UNKNOWN = "unknown"


class SimPhase(Enum):
    IDLE = "idle"
    INITIAL_DELAY = "initial_delay"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(frozen=True)
class RoutePoint:
    """A resampled route point and its distance from the route start (m)."""
    coord: Tuple[float, float]
    cumulative_distance: float


@dataclass(frozen=True)
class SpeedRecommendation:
    """Recommended corner speeds in mph for three driving styles."""
    cruise: int
    fast: int
    race: int

    def scaled(self, factor: float) -> "SpeedRecommendation":
        return SpeedRecommendation(
            cruise=int(round(self.cruise * factor)),
            fast=int(round(self.fast * factor)),
            race=int(round(self.race * factor)),
        )


@dataclass(frozen=True)
class CurveEvent:
    """
    A detected curve, chicane or technical section.

    Attributes:
        id: Sequential id, unique within one detection run.
        entry_distance: Metres from route start to the curve entry.
        apex_distance: Metres to the apex (sharpest heading change).
        exit_distance: Metres to the curve exit.
        position: Apex coordinate (lng, lat).
        direction: Direction of the first significant heading change. For
            chicanes and sections this is the first sub-curve's direction.
        severity: 1 (gentle) to 6 (hardest).
        angle: Total degrees turned (unsigned).
        length: Arc length in metres.
        radius: Estimated radius in metres (arc length / angle).
        modifier: Shape modifier, or None.
        speeds: Recommended speeds in mph.
        is_chicane: Merged 2-3 opposite-direction curves.
        is_technical_section: Merged run of curves driven as one stretch.
        section_type: Tag for technical sections.
        sub_curves: Contained curves for chicanes and sections.
        zone: Character of the zone the curve sits in, once assigned.
        heading_changes: Per-segment signed heading changes inside the curve.
    """

    id: int
    entry_distance: float
    apex_distance: float
    exit_distance: float
    position: Tuple[float, float]
    direction: Direction
    severity: int
    angle: float
    length: float
    radius: float
    modifier: Optional[Modifier] = None
    speeds: SpeedRecommendation = field(
        default_factory=lambda: SpeedRecommendation(45, 55, 65)
    )
    is_chicane: bool = False
    is_technical_section: bool = False
    section_type: Optional[SectionType] = None
    sub_curves: Tuple["CurveEvent", ...] = ()
    zone: Optional[ZoneCharacter] = None
    heading_changes: Tuple[float, ...] = field(default=(), repr=False, compare=False)

    @property
    def distance_from_start(self) -> float:
        return self.entry_distance

    @property
    def mile(self) -> float:
        return self.entry_distance / config.METERS_PER_MILE

    @property
    def is_compound(self) -> bool:
        return self.is_chicane or self.is_technical_section


@dataclass(frozen=True)
class ZoneScore:
    technical: float = 0
    transit: float = 0
    urban: float = 0

    def __add__(self, other: "ZoneScore") -> "ZoneScore":
        return ZoneScore(
            technical=self.technical + other.technical,
            transit=self.transit + other.transit,
            urban=self.urban + other.urban,
        )


@dataclass(frozen=True)
class Zone:
    """A contiguous stretch of route with one driving character."""
    start_mile: float
    end_mile: float
    character: ZoneCharacter
    score: ZoneScore = field(default_factory=ZoneScore)
    reasons: Tuple[str, ...] = ()

    @property
    def length_miles(self) -> float:
        return self.end_mile - self.start_mile

    @property
    def start_distance(self) -> float:
        return self.start_mile * config.METERS_PER_MILE

    @property
    def end_distance(self) -> float:
        return self.end_mile * config.METERS_PER_MILE


@dataclass(frozen=True)
class RoadSegment:
    """Road reference hint covering a stretch of route (miles)."""
    start_mile: float
    end_mile: float
    ref: str
    road_class: RoadClass
    name: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RoadSegment":
        road_class = data.get("road_class", data.get("roadClass", RoadClass.UNKNOWN))
        if not isinstance(road_class, RoadClass):
            try:
                road_class = RoadClass(str(road_class))
            except ValueError:
                road_class = RoadClass.UNKNOWN
        return cls(
            start_mile=float(data.get("start_mile", data.get("startMile", 0.0))),
            end_mile=float(data.get("end_mile", data.get("endMile", 0.0))),
            ref=str(data.get("ref") or ""),
            road_class=road_class,
            name=data.get("name"),
        )


@dataclass(frozen=True)
class UrbanHint:
    """Urban/rural character hint for a stretch of route (miles)."""
    start_mile: float
    end_mile: float
    character: str  # urban, suburban or rural

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "UrbanHint":
        if "start_mile" in data or "startMile" in data:
            start = float(data.get("start_mile", data.get("startMile")))
            end = float(data.get("end_mile", data.get("endMile", start)))
        else:
            # Metre-based producers
            start = float(data.get("startDistance", data.get("start", 0.0))) / config.METERS_PER_MILE
            end = float(data.get("endDistance", data.get("end", 0.0))) / config.METERS_PER_MILE
        return cls(start_mile=start, end_mile=end, character=str(data.get("character", "rural")))


@dataclass(frozen=True)
class GeoFix:
    """
    A position reading shaped like a native geolocation fix.

    Attributes:
        latitude: Decimal degrees.
        longitude: Decimal degrees.
        speed: Ground speed in m/s.
        heading: Course over ground in degrees (0 = north).
        accuracy: Horizontal accuracy estimate in metres.
        timestamp: Seconds (wall clock for live ticks, simulated time for
            pulled sequences).
        altitude: Always None for synthetic fixes.
    """
    latitude: float
    longitude: float
    speed: float
    heading: float
    accuracy: float
    timestamp: float
    altitude: Optional[float] = None

    @property
    def speed_mph(self) -> float:
        return self.speed / config.MPS_PER_MPH

    @property
    def coord(self) -> Tuple[float, float]:
        return self.longitude, self.latitude


@dataclass(frozen=True)
class SimulationState:
    """Snapshot of the drive simulator's mutable state."""
    distance: float
    zone: Optional[ZoneCharacter]
    speed_override: Optional[float]
    is_seeking: bool
    is_running: bool
    is_paused: bool
    phase: SimPhase


@dataclass(frozen=True)
class SimulationProgress:
    distance_m: float
    distance_miles: float
    total_m: float
    total_miles: float
    percent: float
    speed_mps: float
    speed_mph: float
    zone: Optional[ZoneCharacter]
    is_running: bool
    is_paused: bool
    playback_speed: int


@dataclass(frozen=True)
class ClassifierCurve:
    """The fields of a curve the zone classifier votes on."""
    mile: float
    angle: float
    direction: Optional[Direction] = None
    radius: Optional[float] = None
    length_m: float = 0.0


def _first_present(data: Mapping[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def normalize_curve(event: Any) -> Optional[ClassifierCurve]:
    """
    Coerce a curve-like input into a ClassifierCurve.

    Accepts CurveEvent objects or mappings using any of the historic field
    names. Returns None (and logs) for shapes without a usable angle or
    position.
    """
    if isinstance(event, CurveEvent):
        return ClassifierCurve(
            mile=event.mile,
            angle=event.angle,
            direction=event.direction,
            radius=event.radius,
            length_m=event.length,
        )

    if not isinstance(event, Mapping):
        logger.warning("Dropping curve of unsupported type %s", type(event).__name__)
        return None

    angle = _first_present(event, "angle", "totalAngle", "total_angle")
    mile = _first_present(event, "mile", "apexMile", "startMile", "start_mile")
    if mile is None:
        meters = _first_present(
            event, "distanceFromStart", "distance_from_start", "apexDistance", "startDistance"
        )
        if meters is not None:
            mile = float(meters) / config.METERS_PER_MILE

    if angle is None or mile is None:
        logger.warning("Dropping curve without angle/position: keys=%s", sorted(event.keys()))
        return None

    try:
        angle = abs(float(angle))
        mile = float(mile)
    except (TypeError, ValueError):
        logger.warning("Dropping curve with non-numeric angle/position")
        return None

    if math.isnan(angle) or math.isnan(mile):
        return None

    direction = event.get("direction")
    if not isinstance(direction, Direction):
        try:
            direction = Direction(str(direction).upper()) if direction else None
        except ValueError:
            direction = None

    radius = event.get("radius")
    length_m = _first_present(event, "length", "lengthMeters", "length_m") or 0.0

    return ClassifierCurve(
        mile=mile,
        angle=angle,
        direction=direction,
        radius=float(radius) if radius is not None else None,
        length_m=float(length_m),
    )
