"""Tramo configuration."""

# Unit conversions
METERS_PER_MILE = 1609.34
MPS_PER_MPH = 0.44704

# ==============================================================================
# CURVE DETECTION
# ==============================================================================

RESAMPLE_INTERVAL_M = 8.0  # Arc-length spacing of resampled route points
DIRECTION_MIN_CHANGE_DEG = 1.0  # First segment above this sets curve direction
LOOKAHEAD_SEGMENTS = 3  # Segments inspected when bridging a sub-threshold gap
GRADUAL_WINDOW_M = 250.0  # Sliding window for long sweepers
GRADUAL_TRIM_DEG = 0.5  # Sweeper ends are trimmed to segments above this

# Road character pass
STRAIGHT_SEGMENT_MAX_DEG = 2.0  # Heading changes below this count as straight
TECHNICAL_DEG_PER_100M = 12.0
TECHNICAL_MAX_AVG_STRAIGHT_M = 150.0
HIGHWAY_MAX_DEG_PER_100M = 4.0
HIGHWAY_MIN_AVG_STRAIGHT_M = 400.0

# Per road class thresholds (degrees)
ROAD_CLASS_THRESHOLDS = {
    "highway": {"start": 10.0, "continue": 5.0, "gradual": 25.0, "min_angle": 15.0},
    "mixed": {"start": 7.0, "continue": 4.0, "gradual": 18.0, "min_angle": 12.0},
    "technical": {"start": 5.0, "continue": 3.0, "gradual": 15.0, "min_angle": 10.0},
}

# Severity: radius bands (radius > limit -> severity), 6 = hardest
SEVERITY_RADIUS_BANDS = [
    (250.0, 1),
    (150.0, 2),
    (80.0, 3),
    (45.0, 4),
    (25.0, 5),
]
MAX_SEVERITY = 6

# Shape modifier
TIGHTENS_RATIO = 1.5
OPENS_RATIO = 0.65

# Merging
CHICANE_MAX_GAP_M = 150.0
CHICANE_MAX_CURVES = 3
SECTION_MAX_GAP_M = 200.0
SECTION_MIN_CURVES = 3
SECTION_MIN_REVERSALS = 2
SECTION_SPEED_FACTOR = 1.05
ADJACENT_MERGE_GAP_M = 30.0

# Recommended speeds (mph) by severity
SEVERITY_SPEEDS_MPH = {
    1: {"cruise": 65, "fast": 75, "race": 85},
    2: {"cruise": 55, "fast": 65, "race": 75},
    3: {"cruise": 45, "fast": 55, "race": 65},
    4: {"cruise": 35, "fast": 45, "race": 55},
    5: {"cruise": 25, "fast": 35, "race": 45},
    6: {"cruise": 20, "fast": 25, "race": 35},
}
ROAD_CLASS_SPEED_FACTORS = {
    "highway": 1.15,
    "mixed": 1.0,
    "technical": 0.92,
}

# Upcoming curve filter
UPCOMING_MAX_DISTANCE_M = 1000.0
UPCOMING_MIN_DISTANCE_M = 10.0
UPCOMING_LIMIT = 5
RECENTLY_PASSED_DISTANCE_M = 100.0
RECENTLY_PASSED_BEARING_DEG = 45.0

# ==============================================================================
# ZONE CLASSIFICATION
# ==============================================================================

# Empirically tuned; pending validation against driven routes
ZONE_WEIGHTS = {
    # Technical
    "curve_cluster": 4,
    "sustained_curves": 3,
    "danger_curve": 3,
    "high_angle_avg": 2,
    "tight_curves": 2,
    "road_ref_local": 4,
    # Transit
    "long_gap": 4,
    "sparse_window": 2,
    "census_rural": 1,
    "road_ref_interstate": 15,
    "road_ref_us_highway": 8,
    "road_ref_state_route": 0,
    # Urban
    "census_urban": 10,
}

ZONE_THRESHOLDS = {
    "min_angle_to_count": 12.0,
    "danger_angle": 50.0,
    "high_angle_avg": 25.0,
    "tight_radius_m": 50.0,
    "tight_min_curves": 2,
    "cluster_window_miles": 0.5,
    "cluster_min_curves": 3,
    "cluster_min_avg_angle": 18.0,
    "sustained_window_miles": 2.0,
    "sustained_min_curves": 4,
    "sustained_min_avg_angle": 20.0,
    "sparse_max_curves": 2,
    "gap_threshold_miles": 2.0,
    "analysis_window_miles": 0.5,
    "min_zone_length_miles": 0.5,
    "urban_edge_miles": 2.0,
    "min_urban_edge_miles": 0.1,
}

INTERSTATE_OVERRIDE = True  # Interstate windows skip curve voting

# ==============================================================================
# ROUTE MATCHING
# ==============================================================================

MATCH_MIN_SPEED_MPH = 10.0
MATCH_MIN_WINDOW_M = 200.0
MATCH_WINDOW_SECONDS = 10.0
MATCH_BACKWARD_TOLERANCE_M = 50.0
MATCH_MAX_OFF_ROUTE_M = 100.0
MATCH_MAX_BACKWARD_M = 30.0
MATCH_MAX_JUMP_SECONDS = 5.0

# ==============================================================================
# DRIVE SIMULATION
# ==============================================================================

ZONE_SPEEDS_MPS = {
    "urban": 11.2,  # 25 mph
    "transit": 25.9,  # 58 mph
    "technical": 17.0,  # 38 mph
}
DEFAULT_SPEED_MPS = 20.1  # 45 mph

CURVE_SPEED_MULTIPLIERS = {1: 0.90, 2: 0.90, 3: 0.70, 4: 0.70, 5: 0.50, 6: 0.50}

SIM_TICK_INTERVAL_S = 1.0
SIM_MAX_TICK_DT_S = 2.0  # Cap wall-clock gaps so a stalled loop doesn't teleport
SIM_ZONE_TRANSITION_M = 300.0
SIM_CURVE_APPROACH_M = 200.0
SIM_CURVE_EXIT_M = 100.0
SIM_INITIAL_DELAY_S = 3.0
SIM_GPS_ACCURACY_M = 10.0
SIM_PLAYBACK_SPEEDS = (1, 2, 4, 8)
