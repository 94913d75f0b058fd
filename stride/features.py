"""
Sensor feature extraction module.
Turns raw GPS fixes into a cumulative running distance and raw pedometer
cadence into a stable tempo target for track matching.
"""
import time
import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple

from stride import config as cfg
from stride.stats import RunSample

EARTH_RADIUS_M = 6371008.8


@dataclass
class CadenceState:
    """Maintains the temporal state of the user's running cadence."""
    cadence_smooth: Optional[float] = None
    last_good_t: float = 0.0


@dataclass(frozen=True)
class LocationFix:
    """A single GPS fix. Negative accuracy means the fix is invalid."""
    timestamp: float
    lat: float
    lon: float
    accuracy_m: float = 0.0


def haversine_m(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """Great-circle distance in meters between two (lat, lon) pairs."""
    lat1, lon1, lat2, lon2 = np.radians([a[0], a[1], b[0], b[1]])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = np.sin(dlat / 2.0) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2.0) ** 2
    return float(2.0 * EARTH_RADIUS_M * np.arcsin(np.sqrt(np.clip(h, 0.0, 1.0))))


class DistanceTracker:
    """
    Accumulates distance from successive GPS fixes.
    Poor or stale fixes are dropped; only well-resolved fixes add distance.
    """

    def __init__(self, max_accuracy_m: float = cfg.MAX_FIX_ACCURACY_M,
                 distance_accuracy_m: float = cfg.DISTANCE_FIX_ACCURACY_M,
                 max_age_s: float = cfg.MAX_FIX_AGE_S):
        self.max_accuracy_m = max_accuracy_m
        self.distance_accuracy_m = distance_accuracy_m
        self.max_age_s = max_age_s
        self.cumulative_m = 0.0
        self._previous: Optional[LocationFix] = None

    def reset(self) -> None:
        self.cumulative_m = 0.0
        self._previous = None

    def update(self, fix: LocationFix, now: Optional[float] = None) -> Optional[RunSample]:
        """Applies a fix and returns the resulting sample, or None if the fix was dropped."""
        if not (0.0 <= fix.accuracy_m < self.max_accuracy_m):
            print(f"⚠️ Skipping fix with poor accuracy: {fix.accuracy_m:.0f}m")
            return None

        now = time.time() if now is None else now
        if abs(now - fix.timestamp) >= self.max_age_s:
            print("⚠️ Skipping stale location fix.")
            return None

        if self._previous is not None and fix.accuracy_m < self.distance_accuracy_m:
            step = haversine_m((self._previous.lat, self._previous.lon), (fix.lat, fix.lon))
            if step > 0:
                self.cumulative_m += step
        self._previous = fix

        return RunSample(timestamp=fix.timestamp, cumulative_distance_m=self.cumulative_m,
                         coordinate=(fix.lat, fix.lon))


def best_bpm_error(song_bpm: float, cadence_spm: float) -> tuple:
    """Determines optimal match mode (1:1 or halftime 2:1) and respective error."""
    e11 = abs(song_bpm - cadence_spm)
    e21 = abs(song_bpm * 2.0 - cadence_spm)
    if e21 <= e11 + 2.0:
        return e21, "2:1", cadence_spm / 2.0
    return e11, "1:1", cadence_spm


def round_to_preset_bpm(spm: float, step: int = cfg.PRESET_BPM_STEP) -> int:
    """Rounds a cadence to the nearest preset playlist tempo."""
    return int(round(float(spm) / step) * step)


def clamp_bpm(bpm: float) -> float:
    return float(min(cfg.MAX_BPM, max(cfg.MIN_BPM, bpm)))


def smooth_cadence(
    state: CadenceState,
    spm: Optional[float],
    conf: float = 1.0,
    conf_update_th: float = 0.25,
    cadence_lost_after_s: float = 4.0,
    alpha_base: float = 0.15,
    now: Optional[float] = None,
) -> CadenceState:
    """Applies an Exponential Moving Average (EMA) to stabilize cadence readings."""
    now = time.time() if now is None else now
    if spm is not None and spm > 0 and conf >= conf_update_th:
        w = (conf - conf_update_th) / max(1e-6, (1.0 - conf_update_th))
        alpha = alpha_base * (0.4 + 0.6 * w)
        if state.cadence_smooth is None:
            state.cadence_smooth = float(spm)
        else:
            state.cadence_smooth = float(alpha * spm + (1.0 - alpha) * state.cadence_smooth)
        state.last_good_t = now
    else:
        if state.cadence_smooth is not None and (now - state.last_good_t) >= cadence_lost_after_s:
            state.cadence_smooth = None
    return state
