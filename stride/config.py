"""
Configuration module for the Stride-DJ system.
Defines central file paths, network endpoints, run-statistics constants,
queue thresholds and persisted user settings.
"""
import os
import json
from typing import Any, Dict, List

# --- PATHS ---
BASE_DIR = os.getcwd()
OUT_DIR = os.path.join(BASE_DIR, "outputs")
DATA_DIR = os.path.join(BASE_DIR, "_data")

AUDIO_ROOT = os.path.join(DATA_DIR, "audio")
LIBRARY_FILE = os.path.join(DATA_DIR, "library.json")
SIM_DATA_FILE = os.path.join(OUT_DIR, "demo_run.csv")
DB_PATH = os.path.join(OUT_DIR, "live_session.db")
SESSION_LOG_PATH = os.path.join(OUT_DIR, "session_log.db")
CONTROL_JSON = os.path.join(OUT_DIR, "control.json")
SETTINGS_JSON = os.path.join(OUT_DIR, "settings.json")

# --- NETWORK ---
BACKEND_URL = os.environ.get("STRIDE_BACKEND_URL", "http://localhost:8000")
DEFAULT_PHYPHOX_URL = "http://10.9.4.80:8080"
HTTP_TIMEOUT_S = 10.0

# --- RUN STATS ---
MILE_IN_METERS = 1609.344
KILOMETER_IN_METERS = 1000.0
MAX_PACE_POINTS = 500
PACE_NOISE_FLOOR_S = 0.1

# --- GPS FILTERING ---
MAX_FIX_ACCURACY_M = 65.0
DISTANCE_FIX_ACCURACY_M = 30.0
MAX_FIX_AGE_S = 15.0

# --- QUEUE SCHEDULING ---
INITIAL_BATCH_SIZE = 10
REFILL_BATCH_SIZE = 10
LOW_WATER_MARK = 5
MAX_FLUSH_SKIPS = 50
TRACK_CHANGE_TIMEOUT_S = 5.0
SKIP_POLL_INTERVAL_S = 0.05
PLACEHOLDER_TRACK_ID = "2bNCdW4rLnCTzgqUXTTDO1"

# --- TEMPO ---
DEFAULT_BPM = 160.0
MIN_BPM = 100.0
MAX_BPM = 200.0
BPM_TOLERANCE = 8.0
PRESET_BPM_STEP = 5
DEFAULT_SOURCES = [
    "top_tracks",
    "saved_tracks",
    "playlists",
    "top_artists_top_tracks",
    "top_artists_albums",
    "followed_artists_top_tracks",
    "followed_artists_albums",
]

# --- MAIN LOOP ---
POLL_INTERVAL = 0.5
TELEMETRY_EVERY_S = 5.0

# --- FEATURE FLAGS ---
USE_BACKEND = True
ENABLE_LOCAL_AUDIO = True


def load_settings(path: str = SETTINGS_JSON) -> Dict[str, Any]:
    """Loads persisted music sources and last BPM, falling back to defaults."""
    settings: Dict[str, Any] = {"sources": list(DEFAULT_SOURCES), "bpm": DEFAULT_BPM}
    if not os.path.exists(path):
        return settings

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        print(f"⚠️ Settings unreadable ({e}). Using defaults.")
        return settings

    if not isinstance(data, dict):
        return settings

    sources = data.get("sources")
    if isinstance(sources, list) and all(isinstance(s, str) for s in sources):
        settings["sources"] = sources

    try:
        bpm = float(data.get("bpm", DEFAULT_BPM))
    except (TypeError, ValueError):
        bpm = DEFAULT_BPM
    settings["bpm"] = bpm if MIN_BPM <= bpm <= MAX_BPM else DEFAULT_BPM
    return settings


def save_settings(sources: List[str], bpm: float, path: str = SETTINGS_JSON) -> None:
    """Persists music sources and the last selected BPM."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"sources": list(sources), "bpm": float(bpm)}, f, indent=2)


def get_operating_mode(path: str = CONTROL_JSON) -> str:
    """Reads the requested operating mode ('live' or 'sim') from the control file."""
    control = read_control(path)
    mode = control.get("mode", "live")
    return mode if mode in ("live", "sim", "replay") else "live"


def read_control(path: str = CONTROL_JSON) -> Dict[str, Any]:
    """Returns the control file contents, or an empty dict when unavailable."""
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, ValueError):
        return {}
