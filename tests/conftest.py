"""
Shared pytest fixtures for Tramo tests.
"""

import json
import math
import os
import sys

import pytest

# Add project root to path for imports
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from tramo.geometry import point_along_bearing  # noqa: E402

ORIGIN = (-0.1278, 51.5074)  # London, (lng, lat)


def make_route(legs, start=ORIGIN, spacing=20.0):
    """
    Build a (lng, lat) polyline from (bearing, length_m) legs.

    Each leg is split into vertices roughly ``spacing`` metres apart, like a
    directions provider's geometry.
    """
    lon, lat = start
    coords = [(lon, lat)]
    for heading, length in legs:
        n = max(1, int(round(length / spacing)))
        step = length / n
        for _ in range(n):
            lat, lon = point_along_bearing(lat, lon, heading, step)
            coords.append((lon, lat))
    return coords


def arc_legs(start_heading, turn_deg, radius, chord=5.0):
    """Legs approximating a constant-radius arc; positive turns are right."""
    arc_length = abs(math.radians(turn_deg)) * radius
    n = max(1, int(math.ceil(arc_length / chord)))
    step_angle = turn_deg / n
    return [
        ((start_heading + step_angle * (i + 0.5)) % 360, arc_length / n)
        for i in range(n)
    ]


@pytest.fixture
def route_builder():
    """Polyline factory: route_builder([(bearing, metres), ...])."""
    return make_route


@pytest.fixture
def arc_builder():
    return arc_legs


@pytest.fixture
def straight_route():
    """2 km due north."""
    return make_route([(0, 2000)])


@pytest.fixture
def mile_route():
    """One mile due east."""
    return make_route([(90, 1609.34)])


@pytest.fixture
def right_angle_route():
    """400 m north then a square right turn and 400 m east."""
    return make_route([(0, 400), (90, 400)])


@pytest.fixture
def chicane_route():
    """Three alternating 45° corners 50 m apart."""
    return make_route([(0, 300), (45, 50), (0, 50), (45, 300)])


@pytest.fixture
def out_and_back_route():
    """1 km east, 30 m north, 1 km back west on a parallel line."""
    return make_route([(90, 1000), (0, 30), (270, 1000)])


@pytest.fixture
def route_json_file(tmp_path, right_angle_route):
    """Directions-style JSON route file."""
    path = tmp_path / "route.json"
    path.write_text(json.dumps({
        "name": "Test corner",
        "coordinates": [list(c) for c in right_angle_route],
        "steps": [
            {"distance": 400, "name": "Mill Lane"},
            {"distance": 400, "ref": "B4009", "name": "Station Road"},
        ],
        "urbanHints": [
            {"startMile": 0.0, "endMile": 0.1, "character": "urban"},
        ],
    }))
    return path


@pytest.fixture
def route_gpx_file(tmp_path, right_angle_route):
    """GPX 1.1 track of the right-angle route."""
    points = "\n".join(
        f'      <trkpt lat="{lat:.7f}" lon="{lon:.7f}"></trkpt>'
        for lon, lat in right_angle_route
    )
    path = tmp_path / "route.gpx"
    path.write_text(
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<gpx version="1.1" creator="tests" xmlns="http://www.topografix.com/GPX/1/1">\n'
        '  <trk>\n'
        '    <name>Corner track</name>\n'
        '    <trkseg>\n'
        f'{points}\n'
        '    </trkseg>\n'
        '  </trk>\n'
        '</gpx>\n'
    )
    return path
