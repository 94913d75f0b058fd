"""
Running statistics engine.
Converts an irregular stream of cumulative-distance samples into elapsed time,
overall pace and a rolling pace over the most recently completed mile.
"""
import time
import collections
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Deque, List, Optional, Tuple, Union

import numpy as np

from stride import config as cfg

Coordinate = Tuple[float, float]
Timestamp = Union[float, int, datetime]


def to_seconds(ts: Timestamp) -> float:
    """Normalizes a datetime or POSIX timestamp to float seconds."""
    if isinstance(ts, datetime):
        return ts.timestamp()
    return float(ts)


@dataclass(frozen=True)
class RunSample:
    """A single cumulative-distance reading from a sample source."""
    timestamp: float
    cumulative_distance_m: float
    coordinate: Optional[Coordinate] = None


@dataclass(frozen=True)
class PaceDataPoint:
    """Historical (time, distance) pair retained for rolling pace interpolation."""
    timestamp: float
    cumulative_distance_m: float


@dataclass
class RunStats:
    """Live statistics of the active run, as exposed to readers."""
    total_distance_m: float = 0.0
    elapsed_time_s: float = 0.0
    overall_pace_s_per_km: float = 0.0
    rolling_mile_pace_s: Optional[float] = None
    route: List[Coordinate] = field(default_factory=list)
    is_running: bool = False
    is_final: bool = False


class RunningStatsEngine:
    """
    Pure computation over a run's sample stream.
    Out-of-order or shrinking samples are discarded, never corrected.
    """

    def __init__(self, max_points: int = cfg.MAX_PACE_POINTS,
                 clock: Callable[[], float] = time.time):
        self._clock = clock
        self._max_points = int(max_points)
        self._stats = RunStats()
        self._start_time: Optional[float] = None
        self._last_sample_time: Optional[float] = None
        self._points: Deque[PaceDataPoint] = collections.deque()

    # --- READ-ONLY VIEW ---

    @property
    def stats(self) -> RunStats:
        """Snapshot copy of the current statistics."""
        return replace(self._stats, route=list(self._stats.route))

    @property
    def start_time(self) -> Optional[float]:
        return self._start_time

    @property
    def pace_points(self) -> List[PaceDataPoint]:
        return list(self._points)

    # --- RUN CONTROL ---

    def start_run(self, now: Optional[Timestamp] = None) -> None:
        """Discards any previous run and starts a new one."""
        self.reset_stats()
        self._start_time = to_seconds(now) if now is not None else self._clock()
        self._points.append(PaceDataPoint(self._start_time, 0.0))
        self._stats.is_running = True
        print(f"🏁 Run started at {self._start_time:.3f}")

    def stop_run(self, now: Optional[Timestamp] = None) -> None:
        """Finalizes elapsed time and freezes the statistics."""
        if self._start_time is None:
            print("⚠️ Stop requested but no run is active.")
            return

        if self._last_sample_time is not None:
            end = self._last_sample_time
        else:
            end = to_seconds(now) if now is not None else self._clock()
        self._stats.elapsed_time_s = max(0.0, end - self._start_time)
        self._stats.is_running = False
        self._stats.is_final = True
        print(f"🛑 Run stopped. Time: {format_time_interval(self._stats.elapsed_time_s)}, "
              f"Distance: {format_distance(self._stats.total_distance_m)}")

    def reset_stats(self) -> None:
        """Returns the engine to its initial empty state."""
        self._stats = RunStats()
        self._start_time = None
        self._last_sample_time = None
        self._points.clear()

    # --- SAMPLE INGESTION ---

    def record_sample(self, cumulative_distance_m: float, timestamp: Timestamp,
                      coordinate: Optional[Coordinate] = None) -> bool:
        """
        Applies a new cumulative-distance reading.
        Returns False (and leaves the stats untouched) when the sample is rejected.
        """
        if self._start_time is None:
            print("⚠️ Run has not been started. Sample ignored.")
            return False
        if self._stats.is_final:
            print("⚠️ Run already stopped. Sample ignored.")
            return False

        try:
            distance = float(cumulative_distance_m)
            ts = to_seconds(timestamp)
        except (TypeError, ValueError):
            print(f"⚠️ Malformed sample ignored: {cumulative_distance_m!r} @ {timestamp!r}")
            return False
        if not (np.isfinite(distance) and np.isfinite(ts)):
            print(f"⚠️ Non-finite sample ignored: {distance} @ {ts}")
            return False

        last_ts = self._last_sample_time if self._last_sample_time is not None else self._start_time
        if distance < self._stats.total_distance_m or ts < last_ts:
            print(f"⚠️ Out-of-order sample ignored. Dist {self._stats.total_distance_m:.1f} -> {distance:.1f}, "
                  f"time {last_ts:.3f} -> {ts:.3f}")
            return False

        self._stats.total_distance_m = distance
        self._stats.elapsed_time_s = ts - self._start_time
        self._last_sample_time = ts

        if coordinate is not None:
            self._stats.route.append((float(coordinate[0]), float(coordinate[1])))

        if not self._points or self._points[-1].cumulative_distance_m != distance:
            self._points.append(PaceDataPoint(ts, distance))

        elapsed = self._stats.elapsed_time_s
        if distance > 0 and elapsed > 0:
            self._stats.overall_pace_s_per_km = elapsed / distance * cfg.KILOMETER_IN_METERS
        else:
            self._stats.overall_pace_s_per_km = 0.0

        self._stats.rolling_mile_pace_s = self._rolling_mile_pace(distance, ts)
        self._prune()
        return True

    def record(self, sample: RunSample) -> bool:
        """Convenience wrapper accepting a RunSample."""
        return self.record_sample(sample.cumulative_distance_m, sample.timestamp, sample.coordinate)

    # --- PACE CALCULATION ---

    def _rolling_mile_pace(self, current_distance: float, current_time: float) -> Optional[float]:
        """Time taken over the last mile, interpolated between bracketing log points."""
        if current_distance < cfg.MILE_IN_METERS or not self._points:
            return None

        target = current_distance - cfg.MILE_IN_METERS
        distances = np.fromiter((p.cumulative_distance_m for p in self._points),
                                dtype=float, count=len(self._points))
        # number of log points at or before the target distance
        idx = int(np.searchsorted(distances, target, side="right"))

        if idx > 0:
            pa = self._points[idx - 1]
            da, ta = pa.cumulative_distance_m, pa.timestamp
        else:
            da, ta = 0.0, self._start_time

        if idx < len(self._points):
            pb = self._points[idx]
            db, tb = pb.cumulative_distance_m, pb.timestamp
        else:
            db, tb = current_distance, current_time

        t_start = interpolate_time(target, da, ta, db, tb)
        if t_start is None:
            return None

        pace = current_time - t_start
        return pace if pace > cfg.PACE_NOISE_FLOOR_S else None

    def _prune(self) -> None:
        while len(self._points) > self._max_points:
            self._points.popleft()


def interpolate_time(target: float, da: float, ta: float, db: float, tb: float) -> Optional[float]:
    """
    Linear interpolation of the instant at which distance equalled `target`.
    Returns None when the bracket is degenerate or does not contain the target.
    """
    if db == da:
        return ta if target == da else None
    fraction = (target - da) / (db - da)
    if fraction < 0.0 or fraction > 1.0:
        return None
    return ta + fraction * (tb - ta)


# --- FORMATTING HELPERS ---

def format_time_interval(seconds: float) -> str:
    """Formats seconds as H:MM:SS (one hour and above) or MM:SS."""
    total = max(0, int(seconds or 0))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_distance(meters: float, use_metric: bool = False) -> str:
    """Formats meters as m/km (metric) or mi (imperial)."""
    meters = float(meters or 0.0)
    if use_metric:
        if meters < cfg.KILOMETER_IN_METERS:
            return f"{meters:.0f} m"
        return f"{meters / cfg.KILOMETER_IN_METERS:.2f} km"
    return f"{meters / cfg.MILE_IN_METERS:.2f} mi"


def format_pace(pace: Optional[float], per_km: bool = False) -> str:
    """Formats a pace in seconds per unit as M:SS /unit."""
    unit = "km" if per_km else "mi"
    if pace is None or pace <= 0:
        return f"--:-- /{unit}"
    total = int(round(pace))
    return f"{total // 60}:{total % 60:02d} /{unit}"
