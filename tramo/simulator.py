"""
Drive simulation for testing without driving.

Replays a route at zone- and curve-dependent speeds and emits synthetic
GPS fixes. Fixes are delivered either by a background timer thread that
ticks on the wall clock, or pulled from ``drive()``, which advances a
simulated clock so a whole route can be replayed instantly.

Phases: idle -> initial_delay -> running <-> paused -> completed.
"""

import logging
import threading
import time
from typing import Callable, Iterator, List, Optional, Sequence

from . import config
from .geometry import coord_bearing, cumulative_distances, position_at_distance
from .models import (
    CurveEvent,
    GeoFix,
    SimPhase,
    SimulationProgress,
    SimulationState,
    Zone,
)
from .zones import zone_at_mile

logger = logging.getLogger('tramo.simulator')

ACTIVE_PHASES = (SimPhase.INITIAL_DELAY, SimPhase.RUNNING, SimPhase.PAUSED)


class DriveSimulator:
    """
    Generates synthetic GPS fixes along a route.

    Speed model:
    - Base speed by zone character, ramped over 300 m after a boundary
      with a zone of different character
    - Within 200 m before a curve apex the speed eases down toward the
      curve's severity multiplier, recovering over 100 m after it
    - A speed override (mph) replaces the model entirely

    Callbacks run on the ticking thread, outside the simulator's lock, so
    they may call back into the simulator.
    """

    def __init__(
        self,
        coordinates: Sequence[Sequence[float]],
        zones: Optional[Sequence[Zone]] = None,
        curves: Optional[Sequence[CurveEvent]] = None,
        on_position: Optional[Callable[[GeoFix], None]] = None,
        on_complete: Optional[Callable[[], None]] = None,
        on_zone_change: Optional[Callable[[Zone], None]] = None,
        clock: Callable[[], float] = time.time,
        use_timer: bool = True,
        tick_interval: float = config.SIM_TICK_INTERVAL_S,
    ):
        self.coordinates = [(float(c[0]), float(c[1])) for c in coordinates or ()]
        self.zones: List[Zone] = list(zones or ())
        self.curves: List[CurveEvent] = sorted(curves or (), key=lambda c: c.apex_distance)

        self.on_position = on_position
        self.on_complete = on_complete
        self.on_zone_change = on_zone_change

        self.clock = clock
        self.use_timer = use_timer
        self.tick_interval = tick_interval

        self.distances = cumulative_distances(self.coordinates) if self.coordinates else [0.0]
        self.total_distance = self.distances[-1]

        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._phase = SimPhase.IDLE
        self._resume_phase = SimPhase.RUNNING
        self._distance = 0.0
        self._zone: Optional[Zone] = None
        self._speed_override: Optional[float] = None
        self._playback_speed = 1
        self._is_seeking = False
        self._seek_generation = 0
        self._tick_in_flight = False
        self._initial_delay_complete = False
        self._completion_fired = False
        self._start_time = 0.0
        self._last_tick_time = 0.0
        self._sim_time = 0.0
        self._wall_clock = True

        logger.info(
            "DriveSimulator initialised: %.1f miles, %d zones, %d curves",
            self.total_distance / config.METERS_PER_MILE, len(self.zones), len(self.curves),
        )

    # ------------------------------------------------------------------
    # Speed model
    # ------------------------------------------------------------------

    def zone_at_distance(self, distance: float) -> Optional[Zone]:
        return zone_at_mile(self.zones, distance / config.METERS_PER_MILE)

    def calculate_speed(self, distance: float) -> float:
        """Speed in m/s at a distance along the route."""
        if self._speed_override is not None:
            return self._speed_override * config.MPS_PER_MPH

        zone = self.zone_at_distance(distance)
        speed = self._zone_speed(zone)

        if zone is not None:
            idx = self.zones.index(zone)
            prev = self.zones[idx - 1] if idx > 0 else None
            if prev is not None and prev.character != zone.character:
                into_zone = distance - zone.start_distance
                if into_zone < config.SIM_ZONE_TRANSITION_M:
                    prev_speed = self._zone_speed(prev)
                    speed = prev_speed + (speed - prev_speed) * (into_zone / config.SIM_ZONE_TRANSITION_M)

        return speed * self._curve_factor(distance)

    @staticmethod
    def _zone_speed(zone: Optional[Zone]) -> float:
        if zone is None:
            return config.DEFAULT_SPEED_MPS
        return config.ZONE_SPEEDS_MPS.get(zone.character.value, config.DEFAULT_SPEED_MPS)

    def _curve_factor(self, distance: float) -> float:
        """Lowest slowdown factor of the curves around ``distance``."""
        factor = 1.0
        for curve in self.curves:
            to_apex = curve.apex_distance - distance
            if to_apex >= config.SIM_CURVE_APPROACH_M:
                break
            if to_apex < -config.SIM_CURVE_EXIT_M:
                continue

            severity = min(config.MAX_SEVERITY, max(1, curve.severity))
            multiplier = config.CURVE_SPEED_MULTIPLIERS.get(severity, 0.7)

            if to_apex > 0:
                approach = 1 - to_apex / config.SIM_CURVE_APPROACH_M
                curve_factor = 1 - (1 - multiplier) * approach
            else:
                curve_factor = multiplier + (1 - multiplier) * (-to_apex / config.SIM_CURVE_EXIT_M)
            factor = min(factor, curve_factor)
        return factor

    def _fix_at(self, distance: float, speed: float, timestamp: float) -> GeoFix:
        if len(self.coordinates) < 2:
            lng, lat = self.coordinates[0] if self.coordinates else (0.0, 0.0)
            heading = 0.0
        else:
            (lng, lat), _, heading = position_at_distance(self.coordinates, self.distances, distance)
        return GeoFix(
            latitude=lat,
            longitude=lng,
            speed=speed,
            heading=heading,
            accuracy=config.SIM_GPS_ACCURACY_M,
            timestamp=timestamp,
        )

    def _start_heading(self) -> float:
        if len(self.coordinates) < 2:
            return 0.0
        return coord_bearing(self.coordinates[0], self.coordinates[1])

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self, use_timer: Optional[bool] = None) -> Optional[GeoFix]:
        """Start from the route start. Ignored while a drive is active."""
        use_timer = self.use_timer if use_timer is None else use_timer
        return self._begin(use_timer, wall_clock=True)

    def _begin(self, use_timer: bool, wall_clock: bool) -> Optional[GeoFix]:
        with self._lock:
            if self._phase in ACTIVE_PHASES:
                return None
            if not self.coordinates:
                logger.warning("Cannot simulate an empty route")
                return None

            self._wall_clock = wall_clock
            now = self._now()
            self._phase = SimPhase.INITIAL_DELAY
            self._resume_phase = SimPhase.INITIAL_DELAY
            self._distance = 0.0
            self._zone = self.zone_at_distance(0.0)
            self._initial_delay_complete = False
            self._completion_fired = False
            self._start_time = now
            self._last_tick_time = now
            fix = self._start_fix(now)

            if use_timer:
                self._stop_event = threading.Event()
                self._thread = threading.Thread(
                    target=self._timer_loop, args=(self._stop_event,), daemon=True
                )
                self._thread.start()

        logger.info("Starting drive simulation")
        self._emit_position(fix)
        return fix

    def pause(self):
        with self._lock:
            if self._phase not in (SimPhase.INITIAL_DELAY, SimPhase.RUNNING):
                return
            self._resume_phase = self._phase
            self._phase = SimPhase.PAUSED
        logger.info("Simulation paused")

    def resume(self):
        with self._lock:
            if self._phase != SimPhase.PAUSED:
                return
            self._phase = SimPhase.RUNNING if self._initial_delay_complete else self._resume_phase
            self._last_tick_time = self._now()
        logger.info("Simulation resumed")

    def stop(self):
        """Stop and reset. Safe to call repeatedly; nothing is emitted afterwards."""
        with self._lock:
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            was_active = self._phase != SimPhase.IDLE
            self._phase = SimPhase.IDLE
            self._distance = 0.0
            self._zone = None
            self._is_seeking = False
            self._initial_delay_complete = False

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.tick_interval + 1.0)
        if was_active:
            logger.info("Simulation stopped")

    def set_speed_override(self, mph: Optional[float]):
        """Drive at a fixed speed (mph), or None to return to the speed model."""
        if mph is not None:
            mph = float(mph)
            if mph <= 0:
                raise ValueError(f"Speed override must be positive, got {mph!r}")
        with self._lock:
            self._speed_override = mph

    def set_playback_speed(self, multiplier: int):
        if multiplier not in config.SIM_PLAYBACK_SPEEDS:
            raise ValueError(
                f"Playback speed must be one of {config.SIM_PLAYBACK_SPEEDS}, got {multiplier!r}"
            )
        with self._lock:
            self._playback_speed = multiplier
        logger.info("Playback speed: %dx", multiplier)

    def seek_to(self, meters: float) -> Optional[GeoFix]:
        """
        Jump to a distance along the route and emit a fix there.

        The state reports ``is_seeking`` while the jump's fix is delivered.
        Seeking ends the initial delay; seeking after completion leaves the
        drive paused at the new position.
        """
        with self._lock:
            if not self.coordinates:
                return None
            distance = max(0.0, min(float(meters), self.total_distance))
            self._distance = distance
            self._zone = self.zone_at_distance(distance)
            self._initial_delay_complete = True
            self._is_seeking = True
            self._seek_generation += 1
            self._last_tick_time = self._now()

            if self._phase == SimPhase.INITIAL_DELAY:
                self._phase = SimPhase.RUNNING
            elif self._phase == SimPhase.COMPLETED:
                self._phase = SimPhase.PAUSED
                self._resume_phase = SimPhase.RUNNING
                self._completion_fired = False

            fix = self._fix_at(distance, self.calculate_speed(distance), self._now())

        logger.info("Seeking to %.2f mi", distance / config.METERS_PER_MILE)
        try:
            self._emit_position(fix)
        finally:
            with self._lock:
                self._is_seeking = False
        return fix

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def _now(self) -> float:
        return self.clock() if self._wall_clock else self._sim_time

    def _timer_loop(self, stop_event: threading.Event):
        while not stop_event.wait(self.tick_interval):
            self.tick()

    def tick(self) -> Optional[GeoFix]:
        """
        Advance by the wall-clock time since the last tick.

        Returns the emitted fix, or None when nothing was emitted (not
        running, paused, seeking or another tick already in flight).
        """
        with self._lock:
            if self._tick_in_flight or self._is_seeking:
                return None
            self._tick_in_flight = True
        try:
            return self._advance(self._now(), config.SIM_MAX_TICK_DT_S)
        finally:
            with self._lock:
                self._tick_in_flight = False

    def _advance(self, now: float, max_dt: Optional[float]) -> Optional[GeoFix]:
        zone_changed = None
        completed = False

        with self._lock:
            if self._phase not in (SimPhase.INITIAL_DELAY, SimPhase.RUNNING):
                return None
            generation = self._seek_generation

            waiting = (not self._initial_delay_complete
                       and now - self._start_time < config.SIM_INITIAL_DELAY_S)
            if waiting:
                fix = self._start_fix(now)
            else:
                fix, zone_changed, completed = self._move(now, max_dt)

        if zone_changed is not None and self.on_zone_change:
            self.on_zone_change(zone_changed)
        if self._superseded(generation):
            return None
        self._emit_position(fix)
        if completed and not self._superseded(generation):
            logger.info("Simulation complete")
            if self.on_complete:
                self.on_complete()
        return fix

    def _superseded(self, generation: int) -> bool:
        """True once a seek has moved the drive since ``generation``."""
        with self._lock:
            stale = generation != self._seek_generation
        if stale:
            logger.debug("Dropping fix computed before a seek")
        return stale

    def _move(self, now: float, max_dt: Optional[float]):
        """Advance distance under the lock; returns (fix, changed zone, completed)."""
        zone_changed = None
        completed = False

        if not self._initial_delay_complete:
            self._initial_delay_complete = True
            self._phase = SimPhase.RUNNING
            self._last_tick_time = now
            logger.info("Initial delay complete, starting drive")

        dt = now - self._last_tick_time
        if max_dt is not None:
            dt = min(dt, max_dt)
        dt = max(0.0, dt) * self._playback_speed
        self._last_tick_time = now

        speed = self.calculate_speed(self._distance)
        self._distance = min(self._distance + speed * dt, self.total_distance)

        zone = self.zone_at_distance(self._distance)
        if zone is not None and (self._zone is None or zone.character != self._zone.character):
            logger.info(
                "Zone change: %s -> %s @ %.2f mi",
                self._zone.character.value if self._zone else "start",
                zone.character.value,
                self._distance / config.METERS_PER_MILE,
            )
            zone_changed = zone
        if zone is not None:
            self._zone = zone

        if self._distance >= self.total_distance:
            self._phase = SimPhase.COMPLETED
            self._stop_event.set()
            self._thread = None
            completed = not self._completion_fired
            self._completion_fired = True

        return self._fix_at(self._distance, speed, now), zone_changed, completed

    def _start_fix(self, timestamp: float) -> GeoFix:
        lng, lat = self.coordinates[0]
        return GeoFix(
            latitude=lat,
            longitude=lng,
            speed=0.0,
            heading=self._start_heading(),
            accuracy=config.SIM_GPS_ACCURACY_M,
            timestamp=timestamp,
        )

    def _emit_position(self, fix: GeoFix):
        if self.on_position:
            self.on_position(fix)

    def drive(self, step_s: float = config.SIM_TICK_INTERVAL_S) -> Iterator[GeoFix]:
        """
        Pull fixes in simulated time, ``step_s`` seconds apart.

        Starts the drive without a timer if it is idle. The sequence ends at
        completion, when the drive is paused or stopped. Seeks made while
        iterating are followed from the new position.
        """
        if step_s <= 0:
            raise ValueError("step_s must be positive")

        with self._lock:
            idle = self._phase in (SimPhase.IDLE, SimPhase.COMPLETED)
            if idle:
                self._sim_time = 0.0
            elif self._wall_clock:
                # Continue a wall-clock drive on the simulated clock
                self._sim_time = self._last_tick_time
                self._wall_clock = False
        if idle:
            fix = self._begin(use_timer=False, wall_clock=False)
            if fix is None:
                return
            yield fix

        while True:
            with self._lock:
                if self._phase not in (SimPhase.INITIAL_DELAY, SimPhase.RUNNING):
                    return
                self._sim_time += step_s
                now = self._sim_time
            fix = self._advance(now, None)
            if fix is not None:
                yield fix

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._phase in ACTIVE_PHASES

    @property
    def is_paused(self) -> bool:
        return self._phase == SimPhase.PAUSED

    @property
    def phase(self) -> SimPhase:
        return self._phase

    def get_state(self) -> SimulationState:
        with self._lock:
            return SimulationState(
                distance=self._distance,
                zone=self._zone.character if self._zone else None,
                speed_override=self._speed_override,
                is_seeking=self._is_seeking,
                is_running=self.is_running,
                is_paused=self.is_paused,
                phase=self._phase,
            )

    def get_progress(self) -> SimulationProgress:
        with self._lock:
            speed = self.calculate_speed(self._distance)
            total = self.total_distance
            return SimulationProgress(
                distance_m=self._distance,
                distance_miles=self._distance / config.METERS_PER_MILE,
                total_m=total,
                total_miles=total / config.METERS_PER_MILE,
                percent=(self._distance / total * 100.0) if total > 0 else 0.0,
                speed_mps=speed,
                speed_mph=speed / config.MPS_PER_MPH,
                zone=self._zone.character if self._zone else None,
                is_running=self.is_running,
                is_paused=self.is_paused,
                playback_speed=self._playback_speed,
            )
