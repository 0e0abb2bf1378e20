"""Load routes from GPX and JSON files."""

import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

from .geometry import path_length
from .models import UrbanHint

logger = logging.getLogger('tramo.route_loader')

GPX_NAMESPACES = (
    'http://www.topografix.com/GPX/1/1',
    'http://www.topografix.com/GPX/1/0',
)


class RouteLoadError(Exception):
    """Route file missing, unreadable or without usable geometry."""


@dataclass
class RouteData:
    """
    A loaded route.

    Attributes:
        coordinates: (lng, lat) polyline.
        distance_m: Route length; the provider's value when given, else
            measured from the polyline.
        steps: Directions steps (``distance``, ``ref``, ``name``) if any.
        urban_hints: Urban/rural hints if any.
        name: Route name from the file, or the file stem.
    """
    coordinates: List[Tuple[float, float]]
    distance_m: float
    steps: List[Dict[str, Any]] = field(default_factory=list)
    urban_hints: List[UrbanHint] = field(default_factory=list)
    name: str = ""


def load_route(path: Union[str, Path]) -> RouteData:
    """Load a route, choosing the parser from the file extension."""
    path = Path(path)
    if not path.is_file():
        raise RouteLoadError(f"Route file not found: {path}")

    if path.suffix.lower() == '.gpx':
        route = _load_gpx(path)
    else:
        route = _load_json(path)

    if len(route.coordinates) < 2:
        raise RouteLoadError(f"Route has fewer than 2 points: {path}")

    logger.info(
        "Loaded route '%s': %d points, %.1f km",
        route.name, len(route.coordinates), route.distance_m / 1000,
    )
    return route


def _load_gpx(path: Path) -> RouteData:
    """Track points first, then route points, with or without namespace."""
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise RouteLoadError(f"Error parsing GPX file {path}: {e}") from e
    except OSError as e:
        raise RouteLoadError(f"Error reading GPX file {path}: {e}") from e

    points: List[Tuple[float, float]] = []
    queries = []
    for uri in GPX_NAMESPACES:
        queries.append(('.//gpx:trkpt', {'gpx': uri}))
        queries.append(('.//gpx:rtept', {'gpx': uri}))
    queries.append(('.//trkpt', {}))
    queries.append(('.//rtept', {}))

    for query, ns in queries:
        elements = root.findall(query, ns)
        if elements:
            try:
                points = [(float(e.get('lon')), float(e.get('lat'))) for e in elements]
            except (TypeError, ValueError) as e:
                raise RouteLoadError(f"Invalid lat/lon in GPX file {path}") from e
            break

    name = path.stem
    for query, ns in [('.//gpx:name', {'gpx': uri}) for uri in GPX_NAMESPACES] + [('.//name', {})]:
        element = root.find(query, ns)
        if element is not None and element.text:
            name = element.text.strip()
            break

    return RouteData(coordinates=points, distance_m=path_length(points), name=name)


def _properties(data: dict) -> dict:
    properties = data.get('properties')
    return properties if isinstance(properties, dict) else {}


def _load_json(path: Path) -> RouteData:
    """
    Directions-style JSON or GeoJSON.

    Accepted shapes:
        {"coordinates": [[lng, lat], ...], "distance": m, "steps": [...], "urbanHints": [...]}
        {"geometry": {"type": "LineString", "coordinates": [...]}, ...}
        {"type": "Feature", "geometry": {...}, "properties": {...}}
        {"type": "LineString", "coordinates": [...]}
    """
    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise RouteLoadError(f"Error parsing JSON route {path}: {e}") from e
    except OSError as e:
        raise RouteLoadError(f"Error reading JSON route {path}: {e}") from e

    if not isinstance(data, dict):
        raise RouteLoadError(f"JSON route must be an object: {path}")

    properties = _properties(data)
    if data.get('type') == 'FeatureCollection':
        features = data.get('features')
        if not isinstance(features, list):
            raise RouteLoadError(f"FeatureCollection features must be a list: {path}")
        lines = [
            f for f in features
            if isinstance(f, dict) and isinstance(f.get('geometry'), dict)
            and f['geometry'].get('type') == 'LineString'
        ]
        if not lines:
            raise RouteLoadError(f"No LineString feature in {path}")
        data = lines[0]
        properties = _properties(data)

    geometry = data.get('geometry') if isinstance(data.get('geometry'), dict) else data
    raw = geometry.get('coordinates')
    if not isinstance(raw, list):
        raise RouteLoadError(f"No coordinates in JSON route {path}")

    try:
        coordinates = [(float(c[0]), float(c[1])) for c in raw]
    except (TypeError, ValueError, IndexError) as e:
        raise RouteLoadError(f"Invalid coordinates in JSON route {path}") from e

    distance = data.get('distance', properties.get('distance'))
    if distance:
        try:
            distance_m = float(distance)
        except (TypeError, ValueError) as e:
            raise RouteLoadError(f"Invalid distance {distance!r} in JSON route {path}") from e
    else:
        distance_m = path_length(coordinates)

    steps = data.get('steps', properties.get('steps')) or []
    if not isinstance(steps, list) or not all(isinstance(s, dict) for s in steps):
        raise RouteLoadError(f"Directions steps must be a list of objects: {path}")
    hints = data.get('urbanHints', data.get('urban_hints', properties.get('urbanHints'))) or []

    try:
        urban_hints = [UrbanHint.from_mapping(h) for h in hints]
    except (TypeError, ValueError, AttributeError) as e:
        raise RouteLoadError(f"Invalid urban hints in {path}") from e

    return RouteData(
        coordinates=coordinates,
        distance_m=distance_m,
        steps=steps,
        urban_hints=urban_hints,
        name=str(data.get('name') or properties.get('name') or path.stem),
    )
