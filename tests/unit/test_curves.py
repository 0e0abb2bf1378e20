"""Tests for tramo/curves.py - curve detection pipeline."""

import pytest

from tramo import config
from tramo.curves import (
    CurveDetector,
    classify_severity,
    detect_curves,
    first_direction,
    get_upcoming_curves,
    shape_modifier,
    speeds_for_severity,
)
from tramo.geometry import point_along_bearing
from tramo.models import (
    CurveEvent,
    Direction,
    Modifier,
    RoadCharacter,
    SectionType,
    SpeedRecommendation,
)


def make_curve(curve_id, entry, exit_, direction=Direction.RIGHT, angle=30.0, severity=3,
               position=(-0.1278, 51.5074), radius=80.0):
    return CurveEvent(
        id=curve_id,
        entry_distance=entry,
        apex_distance=(entry + exit_) / 2,
        exit_distance=exit_,
        position=position,
        direction=direction,
        severity=severity,
        angle=angle,
        length=exit_ - entry,
        radius=radius,
        speeds=speeds_for_severity(severity),
        heading_changes=(angle / 2, angle / 2),
    )


class TestSeverity:
    """Severity from radius bands escalated by total angle."""

    @pytest.mark.unit
    @pytest.mark.parametrize("radius,angle,expected", [
        (300, 30, 1),
        (200, 30, 2),
        (100, 30, 3),
        (60, 30, 4),
        (30, 30, 5),
        (20, 30, 6),
        (300, 100, 2),   # >90° adds one
        (300, 130, 4),   # >120° at least 4
        (300, 160, 5),   # >150° at least 5
        (20, 100, 6),    # capped
        (25, 30, 6),     # band limits are exclusive
    ])
    def test_severity_table(self, radius, angle, expected):
        assert classify_severity(radius, angle) == expected

    @pytest.mark.unit
    def test_speeds_get_slower_with_severity(self):
        cruise = [speeds_for_severity(s).cruise for s in range(1, 7)]
        assert cruise == sorted(cruise, reverse=True)
        assert speeds_for_severity(1) == SpeedRecommendation(65, 75, 85)
        assert speeds_for_severity(6) == SpeedRecommendation(20, 25, 35)


class TestShapeModifier:
    """First-third vs last-third comparison with size fallbacks."""

    @pytest.mark.unit
    @pytest.mark.parametrize("changes,angle,severity,length,expected", [
        ([1, 1, 2, 2, 3, 3], 12, 3, 50, Modifier.TIGHTENS),
        ([-3, -3, -2, -2, -1, -1], 12, 3, 50, Modifier.OPENS),
        ([5] * 6, 160, 5, 50, Modifier.HAIRPIN),
        ([5] * 6, 130, 4, 50, Modifier.SHARP),
        ([5] * 6, 60, 5, 50, Modifier.SHARP),
        ([2] * 6, 60, 4, 130, Modifier.LONG),
        ([2] * 6, 60, 3, 200, Modifier.LONG),
        ([2] * 6, 60, 3, 100, None),
        ([40], 40, 6, 8, Modifier.SHARP),  # too short to compare thirds
    ])
    def test_modifier(self, changes, angle, severity, length, expected):
        assert shape_modifier(changes, angle, severity, length) == expected


class TestDirection:
    """Direction comes from the first significant segment."""

    @pytest.mark.unit
    def test_first_significant_change_wins(self):
        # Net total is right, but the first real turn is left
        assert first_direction([0.5, -3.0, 10.0, 10.0]) == Direction.LEFT

    @pytest.mark.unit
    def test_small_changes_ignored(self):
        assert first_direction([0.2, -0.9, 2.0]) == Direction.RIGHT

    @pytest.mark.unit
    def test_fallback_to_net(self):
        assert first_direction([-0.5, -0.5]) == Direction.LEFT


class TestDetectCurves:
    """End-to-end detection on synthetic routes."""

    @pytest.mark.unit
    def test_too_few_points(self):
        assert detect_curves([]) == []
        assert detect_curves([(-0.1278, 51.5074), (-0.1278, 51.5084)]) == []

    @pytest.mark.unit
    def test_straight_road_has_no_curves(self, straight_route):
        analysis = CurveDetector().analyse(straight_route)

        assert analysis.curves == []
        assert analysis.profile.character == RoadCharacter.HIGHWAY

    @pytest.mark.unit
    def test_right_angle_corner(self, right_angle_route):
        curves = detect_curves(right_angle_route)

        assert len(curves) == 1
        curve = curves[0]
        assert curve.direction == Direction.RIGHT
        assert curve.angle == pytest.approx(90, abs=5)
        assert curve.severity in (4, 5, 6)
        assert 380 < curve.apex_distance < 420
        assert curve.entry_distance <= curve.apex_distance <= curve.exit_distance

    @pytest.mark.unit
    def test_left_corner(self, route_builder):
        curves = detect_curves(route_builder([(0, 400), (270, 400)]))

        assert len(curves) == 1
        assert curves[0].direction == Direction.LEFT
        assert curves[0].angle == pytest.approx(90, abs=5)

    @pytest.mark.unit
    def test_wide_arc_radius(self, route_builder, arc_builder):
        legs = [(0, 500)] + arc_builder(0, 60, 200) + [(60, 500)]
        curves = detect_curves(route_builder(legs, spacing=5.0))

        assert len(curves) == 1
        curve = curves[0]
        assert curve.direction == Direction.RIGHT
        assert curve.angle == pytest.approx(60, abs=6)
        assert curve.radius == pytest.approx(200, rel=0.25)
        assert curve.severity in (2, 3)

    @pytest.mark.unit
    def test_chicane_merged(self, chicane_route):
        curves = detect_curves(chicane_route)

        assert len(curves) == 1
        chicane = curves[0]
        assert chicane.is_chicane
        assert len(chicane.sub_curves) == 3
        assert chicane.direction == Direction.RIGHT
        assert [c.direction for c in chicane.sub_curves] == [
            Direction.RIGHT, Direction.LEFT, Direction.RIGHT
        ]
        assert chicane.angle == pytest.approx(135, abs=8)

    @pytest.mark.unit
    def test_chicane_merge_can_be_disabled(self, chicane_route):
        curves = CurveDetector(merge_chicanes=False, merge_sections=False).detect_curves(chicane_route)
        assert len(curves) == 3
        assert not any(c.is_chicane for c in curves)

    @pytest.mark.unit
    def test_events_sorted_and_disjoint(self, route_builder):
        legs = [(0, 300), (60, 300), (20, 400), (100, 250), (100, 10), (30, 300)]
        curves = detect_curves(route_builder(legs))

        assert [c.id for c in curves] == list(range(1, len(curves) + 1))
        for a, b in zip(curves, curves[1:]):
            assert a.entry_distance < b.entry_distance
            assert a.exit_distance <= b.entry_distance

    @pytest.mark.unit
    def test_technical_road_slows_speeds(self, chicane_route):
        """Technical roads scale recommended speeds down."""
        detector = CurveDetector()
        analysis = detector.analyse(chicane_route)

        assert analysis.profile.character == RoadCharacter.TECHNICAL
        hardest = max(analysis.curves[0].sub_curves, key=lambda c: c.severity)
        base = speeds_for_severity(hardest.severity)
        assert analysis.curves[0].speeds == base.scaled(config.ROAD_CLASS_SPEED_FACTORS["technical"])


class TestMerging:
    """Merge passes on hand-built curve lists."""

    @pytest.mark.unit
    def test_adjacent_same_direction_merge(self):
        detector = CurveDetector()
        curves = [
            make_curve(1, 100, 140, angle=30),
            make_curve(2, 160, 200, angle=25),
        ]

        merged = detector._merge_adjacent(curves)

        assert len(merged) == 1
        assert merged[0].angle == pytest.approx(55)
        assert merged[0].length == pytest.approx(80)
        assert merged[0].entry_distance == 100
        assert merged[0].exit_distance == 200

    @pytest.mark.unit
    def test_adjacent_merge_idempotent(self):
        detector = CurveDetector()
        curves = [
            make_curve(1, 100, 140),
            make_curve(2, 160, 200),
            make_curve(3, 215, 260),
            make_curve(4, 400, 450, direction=Direction.LEFT),
            make_curve(5, 470, 500),
        ]

        once = detector._merge_adjacent(curves)
        twice = detector._merge_adjacent(once)

        assert once == twice
        assert len(once) == 3

    @pytest.mark.unit
    def test_gap_too_large_not_merged(self):
        detector = CurveDetector()
        curves = [make_curve(1, 100, 140), make_curve(2, 175, 200)]
        assert len(detector._merge_adjacent(curves)) == 2

    @pytest.mark.unit
    def test_chicane_from_two_curves(self):
        detector = CurveDetector()
        curves = [
            make_curve(1, 100, 140, direction=Direction.LEFT, severity=3),
            make_curve(2, 200, 240, direction=Direction.RIGHT, severity=4, radius=50.0),
        ]

        merged = detector._merge_chicanes(curves)

        assert len(merged) == 1
        assert merged[0].is_chicane
        assert merged[0].direction == Direction.LEFT
        assert merged[0].severity == 4
        assert merged[0].radius == 50.0
        assert merged[0].speeds == speeds_for_severity(4)

    @pytest.mark.unit
    def test_chicane_limited_to_three(self):
        detector = CurveDetector()
        directions = [Direction.LEFT, Direction.RIGHT] * 2
        curves = [
            make_curve(i + 1, 100 + i * 100, 150 + i * 100, direction=d)
            for i, d in enumerate(directions)
        ]

        merged = detector._merge_chicanes(curves)

        assert [len(c.sub_curves) for c in merged] == [3, 0]

    @pytest.mark.unit
    def test_technical_section(self):
        detector = CurveDetector()
        curves = [
            make_curve(1, 0, 50, direction=Direction.LEFT, severity=5),
            make_curve(2, 230, 280, direction=Direction.RIGHT, severity=3),
            make_curve(3, 460, 510, direction=Direction.LEFT, severity=4),
        ]

        merged = detector._merge_sections(curves)

        assert len(merged) == 1
        section = merged[0]
        assert section.is_technical_section
        assert section.section_type == SectionType.SWITCHBACKS
        assert section.speeds == speeds_for_severity(5).scaled(1.05)
        assert section.entry_distance == 0
        assert section.exit_distance == 510

    @pytest.mark.unit
    def test_section_needs_reversals(self):
        detector = CurveDetector()
        curves = [
            make_curve(1, 0, 50, direction=Direction.LEFT),
            make_curve(2, 230, 280, direction=Direction.LEFT),
            make_curve(3, 460, 510, direction=Direction.RIGHT),
        ]
        assert len(detector._merge_sections(curves)) == 3

    @pytest.mark.unit
    @pytest.mark.parametrize("severities,directions,expected", [
        ([5, 3, 3], "LRL", SectionType.SWITCHBACKS),
        ([4, 3, 3, 3], "LRRL", SectionType.TECHNICAL),
        ([3, 3, 3], "LRL", SectionType.WINDY),
        ([2, 3, 2, 2, 3], "LLRRL", SectionType.SWEEPING),
    ])
    def test_section_type(self, severities, directions, expected):
        detector = CurveDetector()
        lookup = {"L": Direction.LEFT, "R": Direction.RIGHT}
        run = [
            make_curve(i + 1, i * 200, i * 200 + 40, direction=lookup[d], severity=s)
            for i, (s, d) in enumerate(zip(severities, directions))
        ]
        reversals = sum(1 for a, b in zip(directions, directions[1:]) if a != b)
        assert detector._section_type(run, reversals) == expected


class TestUpcomingCurves:
    """Ahead-of-vehicle filter."""

    def _curve_at(self, curve_id, bearing_deg, distance):
        lat, lon = point_along_bearing(51.5074, -0.1278, bearing_deg, distance)
        return make_curve(curve_id, 0, 10, position=(lon, lat))

    @pytest.mark.unit
    def test_only_curves_ahead(self):
        curves = [
            self._curve_at(1, 0, 300),     # ahead
            self._curve_at(2, 180, 300),   # behind
            self._curve_at(3, 20, 600),    # ahead, slightly right
        ]

        upcoming = get_upcoming_curves(curves, (-0.1278, 51.5074), 0)

        assert [u.curve.id for u in upcoming] == [1, 3]
        assert upcoming[0].distance_m == pytest.approx(300, abs=1)

    @pytest.mark.unit
    def test_distance_limits(self):
        curves = [
            self._curve_at(1, 0, 5),       # too close
            self._curve_at(2, 0, 1500),    # too far
            self._curve_at(3, 0, 500),
        ]
        upcoming = get_upcoming_curves(curves, (-0.1278, 51.5074), 0)
        assert [u.curve.id for u in upcoming] == [3]

    @pytest.mark.unit
    def test_recently_passed_excluded(self):
        curves = [self._curve_at(1, 60, 50)]
        assert get_upcoming_curves(curves, (-0.1278, 51.5074), 0) == []

    @pytest.mark.unit
    def test_limit(self):
        curves = [self._curve_at(i, 0, 100 + i * 100) for i in range(1, 9)]
        upcoming = get_upcoming_curves(curves, (-0.1278, 51.5074), 0, limit=3)
        assert [u.curve.id for u in upcoming] == [1, 2, 3]
