"""Command line tools: analyse a route file or simulate a drive over it."""

import argparse
import json
import logging
import sys
import threading
from typing import List, Optional

from . import config
from .curves import CurveDetector, get_upcoming_curves
from .models import CurveEvent, GeoFix, Zone
from .road_refs import build_road_segments
from .route_loader import RouteLoadError, load_route
from .route_matcher import RouteMatcher
from .simulator import DriveSimulator
from .zones import VotingZoneClassifier, reassign_event_zones, zone_to_dict

logger = logging.getLogger('tramo.cli')


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value!r}")
    return number


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="tramo",
        description="Tramo - road geometry analysis for driving routes",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    analyse = sub.add_parser("analyse", help="Detect curves and zones on a route")
    analyse.add_argument("route", help="GPX or JSON route file")
    analyse.add_argument("--json", action="store_true", help="Print results as JSON")

    simulate = sub.add_parser("simulate", help="Simulate a drive along a route")
    simulate.add_argument("route", help="GPX or JSON route file")
    simulate.add_argument("--speed", type=_positive_float, default=None, help="Fixed speed in mph")
    simulate.add_argument(
        "--step", type=_positive_float, default=config.SIM_TICK_INTERVAL_S,
        help="Simulated seconds between fixes (default: %(default)s)",
    )
    simulate.add_argument(
        "--playback", type=int, default=1, choices=config.SIM_PLAYBACK_SPEEDS,
        help="Playback speed multiplier",
    )
    simulate.add_argument(
        "--realtime", action="store_true",
        help="Tick on the wall clock instead of replaying instantly",
    )

    return parser.parse_args(argv)


def analyse_route(route):
    """Curves, profile and zones for a loaded route."""
    analysis = CurveDetector().analyse(route.coordinates)
    segments = build_road_segments(route.steps, route.distance_m)
    zones = VotingZoneClassifier().classify(
        analysis.curves, route.distance_m, route.urban_hints, segments
    )
    curves = reassign_event_zones(analysis.curves, zones)
    return analysis.profile, curves, zones


def _curve_to_dict(curve: CurveEvent) -> dict:
    return {
        "id": curve.id,
        "entry_distance": round(curve.entry_distance, 1),
        "apex_distance": round(curve.apex_distance, 1),
        "exit_distance": round(curve.exit_distance, 1),
        "position": list(curve.position),
        "direction": curve.direction.value,
        "severity": curve.severity,
        "angle": round(curve.angle, 1),
        "length": round(curve.length, 1),
        "radius": round(curve.radius, 1),
        "modifier": curve.modifier.value if curve.modifier else None,
        "speeds": {"cruise": curve.speeds.cruise, "fast": curve.speeds.fast, "race": curve.speeds.race},
        "is_chicane": curve.is_chicane,
        "is_technical_section": curve.is_technical_section,
        "section_type": curve.section_type.value if curve.section_type else None,
        "sub_curves": len(curve.sub_curves),
        "zone": curve.zone.value if curve.zone else None,
    }


def _describe(curve: CurveEvent) -> str:
    if curve.is_chicane:
        kind = f"chicane ({len(curve.sub_curves)})"
    elif curve.is_technical_section:
        kind = f"{curve.section_type.value} section ({len(curve.sub_curves)})"
    else:
        kind = f"{curve.direction.value.lower()} {curve.severity}"
        if curve.modifier:
            kind += f" {curve.modifier.value.lower()}"
    return kind


def cmd_analyse(args) -> int:
    route = load_route(args.route)
    profile, curves, zones = analyse_route(route)

    if args.json:
        print(json.dumps({
            "name": route.name,
            "distance_m": round(route.distance_m, 1),
            "road_class": profile.character.value if profile else None,
            "curves": [_curve_to_dict(c) for c in curves],
            "zones": [zone_to_dict(z) for z in zones],
        }, indent=2))
        return 0

    print(f"{route.name}: {route.distance_m / config.METERS_PER_MILE:.1f} mi, "
          f"road class {profile.character.value if profile else 'n/a'}")
    print(f"\nCurves ({len(curves)}):")
    for curve in curves:
        print(f"  {curve.id:3d}  {curve.mile:6.2f} mi  {_describe(curve):28s} "
              f"{curve.angle:5.0f}°  {curve.speeds.cruise:3d} mph  [{curve.zone.value if curve.zone else '-'}]")
    print(f"\nZones ({len(zones)}):")
    for zone in zones:
        print(f"  {zone.start_mile:6.2f}-{zone.end_mile:6.2f} mi  {zone.character.value:9s} "
              f"{', '.join(zone.reasons[:3])}")
    return 0


class DriveMonitor:
    """Feeds simulated fixes through the route matcher and logs what is ahead."""

    def __init__(self, route, curves: List[CurveEvent]):
        self.matcher = RouteMatcher(route.coordinates)
        self.curves = curves
        self.fixes = 0
        self.max_offset = 0.0
        self._acquired = False
        self._next_curve_id = None

    def on_position(self, fix: GeoFix):
        if self._acquired:
            result = self.matcher.update(fix.longitude, fix.latitude, fix.speed_mph)
        else:
            result = self.matcher.acquire(fix.longitude, fix.latitude)
            self._acquired = True
        self.fixes += 1
        self.max_offset = max(self.max_offset, result.dist_from_route)

        upcoming = get_upcoming_curves(self.curves, fix.coord, fix.heading)
        if upcoming and upcoming[0].curve.id != self._next_curve_id:
            self._next_curve_id = upcoming[0].curve.id
            logger.info(
                "%.2f mi @ %.0f mph: next %s in %.0fm",
                result.distance / config.METERS_PER_MILE, fix.speed_mph,
                _describe(upcoming[0].curve), upcoming[0].distance_m,
            )

    @staticmethod
    def on_zone_change(zone: Zone):
        logger.info("Entering %s zone (%.1f-%.1f mi)", zone.character.value, zone.start_mile, zone.end_mile)


def cmd_simulate(args) -> int:
    route = load_route(args.route)
    _, curves, zones = analyse_route(route)

    monitor = DriveMonitor(route, curves)
    done = threading.Event()
    simulator = DriveSimulator(
        route.coordinates,
        zones=zones,
        curves=curves,
        on_position=monitor.on_position,
        on_complete=done.set,
        on_zone_change=monitor.on_zone_change,
        use_timer=args.realtime,
    )
    simulator.set_playback_speed(args.playback)
    if args.speed is not None:
        simulator.set_speed_override(args.speed)

    if args.realtime:
        simulator.start()
        try:
            while not done.wait(timeout=0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            simulator.stop()
    else:
        for _ in simulator.drive(args.step):
            pass

    progress = simulator.get_progress()
    print(f"Drove {route.distance_m / config.METERS_PER_MILE:.1f} mi in {monitor.fixes} fixes, "
          f"matched {monitor.matcher.last_distance / config.METERS_PER_MILE:.2f} mi, "
          f"max offset {monitor.max_offset:.1f}m, complete: {done.is_set()}")
    logger.debug("Final progress: %s", progress)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    commands = {"analyse": cmd_analyse, "simulate": cmd_simulate}
    try:
        return commands[args.command](args)
    except RouteLoadError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
