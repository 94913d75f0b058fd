"""
Synthetic run generator for the Stride-DJ simulation mode.
Creates a warm-up, steady, tempo and cool-down run with slightly noisy pace,
a northbound GPS trace and matching step cadence, one row per second.
"""
import sys
from pathlib import Path

# Ensure Python can find the 'stride' package from the root directory
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import os
import pandas as pd
import numpy as np
from typing import Optional
from stride import config as cfg

SAMPLE_RATE = 1.0
START_LAT, START_LON = 52.5163, 13.3777
METERS_PER_DEG_LAT = 111195.0


def generate(path: str = cfg.SIM_DATA_FILE, seed: Optional[int] = None) -> pd.DataFrame:
    """Writes the run CSV consumed by ReplayStream and returns it."""
    rng = np.random.default_rng(seed)

    # (duration s, pace start s/km, pace end s/km, cadence start, cadence end)
    phases = [
        (180, 420, 360, 150, 162),
        (600, 340, 340, 166, 166),
        (300, 300, 285, 174, 180),
        (180, 360, 450, 164, 148),
    ]
    print(f"Generating synthetic run ({sum(p[0] for p in phases)}s)...")

    records = []
    t = 0.0
    distance = 0.0
    dt = 1.0 / SAMPLE_RATE

    for duration, pace_start, pace_end, spm_start, spm_end in phases:
        steps = int(duration * SAMPLE_RATE)
        for i in range(steps):
            p = i / steps
            pace = pace_start + (pace_end - pace_start) * p + rng.normal(0, 6.0)
            spm = spm_start + (spm_end - spm_start) * p + rng.normal(0, 1.5)

            distance += 1000.0 / max(pace, 150.0) * dt
            records.append({
                "ts": round(t, 2),
                "distance_m": round(distance, 2),
                "lat": round(START_LAT + distance / METERS_PER_DEG_LAT, 7),
                "lon": START_LON,
                "cadence": round(max(spm, 0.0), 1),
            })
            t += dt

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    df = pd.DataFrame(records)
    df.to_csv(path, index=False)

    print(f"Success: File '{path}' generated ({len(df)} records, {distance / 1000.0:.2f} km).")
    return df


if __name__ == "__main__":
    generate()
