"""
Backend clients supplying BPM-matched track sets.
BackendClient talks to the Stride-DJ REST server; LocalLibraryBackend serves
the same query from an analyzed local music library. Neither raises: failures
come back as empty results ({} / None / False).
"""
import os
import json
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import requests

from stride import config as cfg
from stride.features import best_bpm_error

TokenProvider = Callable[[], Optional[str]]

FEEDBACK_VALUES = ("LIKE", "DISLIKE")


class BackendClient:
    """
    REST client for the track-matching backend.
    The access token comes from an opaque provider so credential storage stays outside.
    """

    def __init__(self, base_url: str = cfg.BACKEND_URL, token_provider: Optional[TokenProvider] = None,
                 timeout: float = cfg.HTTP_TIMEOUT_S, session: Optional[requests.Session] = None):
        self.base_url = str(base_url).rstrip("/")
        self.token_provider = token_provider or (lambda: None)
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        self._cache: Dict[Tuple[float, Tuple[str, ...]], Dict[str, float]] = {}

    def _request(self, method: str, path: str, **params: Any) -> Optional[requests.Response]:
        token = self.token_provider()
        if not token:
            print(f"⚠️ No access token available for {path}")
            return None

        query = {"access_token": token}
        query.update({k: v for k, v in params.items() if v is not None})
        try:
            r = self.session.request(method, f"{self.base_url}{path}", params=query, timeout=self.timeout)
        except requests.RequestException as e:
            print(f"❌ Backend request failed ({method} {path}): {e}")
            return None

        if not 200 <= r.status_code < 300:
            print(f"⚠️ Backend {method} {path} -> HTTP {r.status_code}")
            return None
        return r

    def register_user(self) -> bool:
        """Registers the current user with the backend."""
        return self._request("POST", "/api/user/register") is not None

    def get_tracks_by_bpm(self, bpm: float, sources: Sequence[str]) -> Dict[str, float]:
        """Returns {track_id: bpm} for the requested tempo and sources."""
        key = (float(bpm), tuple(sources))
        cached = self._cache.get(key)
        if cached:
            print(f"📦 Using {len(cached)} cached songs for {bpm:.0f} BPM")
            return dict(cached)

        r = self._request("GET", f"/api/songs/bpm/{float(bpm)}", sources=",".join(sources))
        if r is None:
            return {}

        try:
            tracks = r.json().get("tracks", {})
            songs = {str(k): float(v) for k, v in tracks.items()}
        except (ValueError, AttributeError, TypeError) as e:
            print(f"❌ Could not decode track response: {e}")
            return {}

        print(f"✅ Received {len(songs)} songs for {bpm:.0f} BPM")
        if songs:
            self._cache[key] = songs
        return dict(songs)

    def create_playlist(self, bpm: float, sources: Sequence[str]) -> Optional[str]:
        """Asks the backend to build a playlist. Returns its id."""
        r = self._request("POST", f"/api/playlist/bpm/{float(bpm)}", sources=",".join(sources))
        if r is None:
            return None
        try:
            playlist_id = r.json().get("id")
        except (ValueError, AttributeError) as e:
            print(f"❌ Could not decode playlist response: {e}")
            return None
        return str(playlist_id) if playlist_id else None

    def get_preset_playlist(self, steps_per_minute: float) -> Optional[str]:
        """Returns the URI of the preset playlist closest to a cadence."""
        r = self._request("GET", "/api/songs/preset", bpm=str(float(steps_per_minute)))
        if r is None:
            return None
        uri = (r.text or "").strip()
        return uri or None

    def send_feedback(self, track_id: str, feedback: str) -> bool:
        """Sends LIKE/DISLIKE feedback for a track."""
        if feedback not in FEEDBACK_VALUES:
            print(f"⚠️ Unsupported feedback value: {feedback!r}")
            return False
        return self._request("POST", f"/api/song/{track_id}/feedback", feedback=feedback) is not None

    def clear_cache(self) -> None:
        self._cache.clear()


class LocalLibraryBackend:
    """Serves BPM-matched track sets from an analyzed local library (offline mode)."""

    def __init__(self, library: Dict[str, Dict[str, Any]], tolerance: float = cfg.BPM_TOLERANCE):
        self.library = library or {}
        self.tolerance = float(tolerance)

    @classmethod
    def from_file(cls, path: str = cfg.LIBRARY_FILE, tolerance: float = cfg.BPM_TOLERANCE) -> "LocalLibraryBackend":
        return cls(load_library(path), tolerance=tolerance)

    def get_tracks_by_bpm(self, bpm: float, sources: Sequence[str] = ()) -> Dict[str, float]:
        """Returns tracks matching the tempo 1:1 or at half time within tolerance."""
        try:
            target = float(bpm)
        except (TypeError, ValueError):
            return {}
        if target <= 0:
            return {}

        out: Dict[str, float] = {}
        for track_id, meta in self.library.items():
            try:
                song_bpm = float(meta.get("bpm_norm") or 0.0)
            except (TypeError, ValueError, AttributeError):
                continue
            if song_bpm <= 0:
                continue
            err, _, _ = best_bpm_error(song_bpm, target)
            if err <= self.tolerance:
                out[str(track_id)] = song_bpm
        return out


def load_library(path: str) -> Dict[str, Dict[str, Any]]:
    """Loads the analyzed music library as {id: metadata}."""
    if not os.path.exists(path):
        print(f"⚠️ Library file not found: {path}")
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        print(f"❌ Library error: {e}")
        return {}

    if isinstance(data, dict):
        return {str(k): v for k, v in data.items() if isinstance(v, dict)}
    if isinstance(data, list):
        return {str(t["id"]): t for t in data if isinstance(t, dict) and t.get("id")}
    return {}
