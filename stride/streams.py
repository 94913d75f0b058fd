"""
Data Acquisition Module.
Manages network-based live GPS ingestion (Phyphox) and offline replay of
recorded runs.
"""
import os
import time
import requests
import pandas as pd
import numpy as np
from typing import Any, List, Optional

from stride.features import LocationFix
from stride.stats import RunSample


class PhyphoxStream:
    """
    REST-client for live GPS fixes from the Phyphox "Location" experiment.
    Handles network timeouts and data sanitization.
    """

    def __init__(self, base_url: str, timeout: float = 0.5, session: Optional[requests.Session] = None):
        self.base_url = str(base_url).rstrip("/")
        self.timeout = timeout
        self.session = session or requests
        self.last_t = -1e9
        self.error_count = 0
        self._time_offset: Optional[float] = None
        print(f"📡 Connecting to sensor: {self.base_url}")

    def fetch_fixes(self) -> List[LocationFix]:
        """Polls the Phyphox endpoint for new location fixes."""
        try:
            pipe = "%7C"
            url = (f"{self.base_url}/get?locTime={self.last_t}"
                   f"&locLat={self.last_t}{pipe}locTime"
                   f"&locLon={self.last_t}{pipe}locTime"
                   f"&locAccuracy={self.last_t}{pipe}locTime")

            r = self.session.get(url, timeout=self.timeout)
            if r.status_code != 200:
                return []

            data = r.json()
            buffer = data.get("buffer", {})

            def get_array(key: str) -> list:
                obj = buffer.get(key)
                if isinstance(obj, dict) and "buffer" in obj:
                    return obj["buffer"]
                return obj if isinstance(obj, list) else []

            ts = get_array("locTime")
            lats = get_array("locLat")
            lons = get_array("locLon")
            accs = get_array("locAccuracy")

            if len(ts) > 0:
                self.error_count = 0
                if self._time_offset is None:
                    self._time_offset = time.time() - float(ts[0])
                out = []
                for i in range(min(len(ts), len(lats), len(lons), len(accs))):
                    if ts[i] is None or lats[i] is None or lons[i] is None:
                        continue
                    self.last_t = float(ts[i])
                    acc = float(accs[i]) if accs[i] is not None else -1.0
                    out.append(LocationFix(self.last_t + self._time_offset,
                                           float(lats[i]), float(lons[i]), acc))
                return out

            return []

        except (requests.RequestException, ValueError, TypeError):
            self.error_count += 1
            if self.error_count % 30 == 0:
                print(f"⚠️ No data from {self.base_url} (Is Phyphox running?)")
            return []


class ReplayStream:
    """
    Offline simulator reading a recorded or synthetic run from a CSV file.
    Expected columns: ts, distance_m and optionally lat, lon, cadence.
    """

    def __init__(self, csv_path: str, speed: float = 1.0, hz: float = 1.0):
        if not os.path.exists(csv_path):
            raise FileNotFoundError(f"Simulation file missing: {csv_path}")

        self.df = pd.read_csv(csv_path)
        if "distance_m" not in self.df.columns:
            raise ValueError(f"Simulation file has no distance_m column: {csv_path}")
        self.speed = float(max(0.05, speed))
        self.hz = float(hz)
        self.start_wall = time.time()
        self.i = 0
        self.n = len(self.df)
        self.last_cadence: Optional[float] = None
        print(f"📼 Simulation loaded: {self.n} rows from {csv_path}")

    @property
    def finished(self) -> bool:
        return self.i >= self.n

    def fetch_sample(self, now: Optional[float] = None) -> Optional[RunSample]:
        """Calculates temporal progression and fetches the appropriate simulated sample."""
        if self.n <= 0 or self.finished:
            return None

        now = time.time() if now is None else now
        elapsed = (now - self.start_wall) * self.speed
        target_i = min(int(elapsed * self.hz), self.n - 1)

        if self.i > target_i:
            return None

        row = self.df.iloc[self.i]
        self.i += 1

        def parse_col(name: str, default: Any = None) -> Any:
            v = row.get(name, default)
            try:
                if v is None or (isinstance(v, float) and np.isnan(v)):
                    return default
                return float(v)
            except (TypeError, ValueError):
                return default

        self.last_cadence = parse_col("cadence", None)
        lat, lon = parse_col("lat"), parse_col("lon")
        return RunSample(
            timestamp=self.start_wall + parse_col("ts", 0.0),
            cumulative_distance_m=parse_col("distance_m", 0.0),
            coordinate=(lat, lon) if lat is not None and lon is not None else None,
        )
