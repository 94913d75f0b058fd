"""
Run session aggregate.
Owns the statistics engine and the queue scheduler of one active run and
wires them to the track backend and the session log.
"""
import asyncio
import sqlite3
import uuid
from typing import Any, List, Optional, Sequence

from stride import config as cfg
from stride.features import CadenceState, clamp_bpm, smooth_cadence
from stride.logger_sqlite import SQLiteLogger
from stride.player import RemotePlayer
from stride.scheduler import QueueScheduler
from stride.stats import Coordinate, RunningStatsEngine, RunStats, Timestamp, to_seconds


class RunSession:
    """One active run: statistics, tempo target and the tempo-matched queue."""

    def __init__(self, player: RemotePlayer, backend: Any = None,
                 engine: Optional[RunningStatsEngine] = None,
                 scheduler: Optional[QueueScheduler] = None,
                 session_log: Optional[SQLiteLogger] = None,
                 sources: Optional[Sequence[str]] = None,
                 target_bpm: float = cfg.DEFAULT_BPM):
        self.player = player
        self.backend = backend
        self.engine = engine or RunningStatsEngine()
        self.scheduler = scheduler or QueueScheduler(player)
        self.session_log = session_log
        self.sources: List[str] = list(sources if sources is not None else cfg.DEFAULT_SOURCES)
        self.target_bpm = float(target_bpm)
        self.cadence = CadenceState()
        self.run_id: Optional[str] = None

    @property
    def stats(self) -> RunStats:
        return self.engine.stats

    @property
    def is_running(self) -> bool:
        return self.engine.stats.is_running

    # --- RUN CONTROL ---

    def start(self, now: Optional[Timestamp] = None) -> None:
        self.run_id = uuid.uuid4().hex[:12]
        self.cadence = CadenceState()
        self.engine.start_run(now)

    def stop(self, now: Optional[Timestamp] = None) -> RunStats:
        """Freezes the statistics and drops the queue selection."""
        self.engine.stop_run(now)
        self.scheduler.clear()
        if self.session_log is not None:
            self.session_log.commit()
        return self.engine.stats

    def reset(self) -> None:
        self.engine.reset_stats()
        self.scheduler.clear()
        self.run_id = None

    def record_sample(self, cumulative_distance_m: float, timestamp: Timestamp,
                      coordinate: Optional[Coordinate] = None) -> bool:
        accepted = self.engine.record_sample(cumulative_distance_m, timestamp, coordinate)
        if accepted and self.session_log is not None:
            self._log_sample(timestamp, coordinate)
        return accepted

    def update_cadence(self, spm: Optional[float], conf: float = 1.0,
                       now: Optional[float] = None) -> Optional[float]:
        """Feeds a raw cadence reading. Returns the smoothed cadence, if any."""
        smooth_cadence(self.cadence, spm, conf, now=now)
        return self.cadence.cadence_smooth

    # --- MUSIC ---

    async def change_tempo(self, bpm: float, sources: Optional[Sequence[str]] = None) -> int:
        """Fetches a track set for the tempo and re-queues the player with it."""
        if self.backend is None:
            print("⚠️ No track backend configured.")
            return 0

        self.target_bpm = clamp_bpm(bpm)
        if sources is not None:
            self.sources = list(sources)
        self.scheduler.clear()

        tracks = await asyncio.to_thread(self.backend.get_tracks_by_bpm, self.target_bpm, list(self.sources))
        return await self.scheduler.refresh_songs_and_queue(tracks)

    async def send_feedback(self, liked: bool) -> bool:
        """Sends LIKE/DISLIKE feedback for the track currently playing."""
        track_id = self.scheduler.current_track_id
        send = getattr(self.backend, "send_feedback", None)
        if not track_id or send is None:
            return False
        return await asyncio.to_thread(send, track_id, "LIKE" if liked else "DISLIKE")

    # --- LOGGING ---

    def _log_sample(self, timestamp: Timestamp, coordinate: Optional[Coordinate]) -> None:
        stats = self.engine.stats
        try:
            self.session_log.insert({
                "ts": to_seconds(timestamp),
                "run_id": self.run_id,
                "distance_m": stats.total_distance_m,
                "elapsed_s": stats.elapsed_time_s,
                "pace_s_per_km": stats.overall_pace_s_per_km,
                "rolling_mile_s": stats.rolling_mile_pace_s,
                "target_bpm": self.target_bpm,
                "track_id": self.scheduler.current_track_id or None,
                "queued_count": self.scheduler.queued_songs_count,
                "lat": coordinate[0] if coordinate else None,
                "lon": coordinate[1] if coordinate else None,
            })
        except sqlite3.Error as e:
            print(f"⚠️ Session log write failed: {e}")
