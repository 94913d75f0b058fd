"""
Main Orchestrator for Stride-DJ.
Feeds live or simulated run samples into the statistics engine and keeps the
player queued with tracks matching the runner's tempo.
"""
import os
import sys
import time
import asyncio
from typing import Any, Optional, Tuple

# Package internal imports
from stride import config as cfg
from stride.audio_engine import LocalPlayer
from stride.backend import BackendClient, LocalLibraryBackend, load_library
from stride.db import set_status
from stride.features import DistanceTracker, round_to_preset_bpm
from stride.logger_sqlite import SQLiteLogger
from stride.player import PlayerError
from stride.session import RunSession
from stride.stats import format_distance, format_pace, format_time_interval
from stride.streams import PhyphoxStream, ReplayStream


def build_backend(library: dict) -> Any:
    """Chooses the remote backend when a token is configured, else the local library."""
    token = os.environ.get("STRIDE_ACCESS_TOKEN", "").strip()
    if cfg.USE_BACKEND and token:
        print(f"🌐 Backend: {cfg.BACKEND_URL}")
        return BackendClient(cfg.BACKEND_URL, token_provider=lambda: token)
    print(f"📚 Backend: local library ({len(library)} tracks)")
    return LocalLibraryBackend(library)


def tempo_request(settings: dict, cadence: Optional[float] = None) -> Tuple[float, list]:
    """
    Returns the (bpm, sources) requested via the control file, falling back to settings.
    With "follow_cadence" set, the smoothed cadence rounded to a preset tempo wins.
    """
    control = cfg.read_control()
    try:
        bpm = float(control.get("bpm", settings["bpm"]))
    except (TypeError, ValueError):
        bpm = settings["bpm"]
    if control.get("follow_cadence") and cadence:
        bpm = float(round_to_preset_bpm(cadence))
    sources = control.get("sources", settings["sources"])
    if not isinstance(sources, list):
        sources = settings["sources"]
    return bpm, sources


async def ingest_live(stream: PhyphoxStream, tracker: DistanceTracker, session: RunSession, now: float) -> int:
    """Polls GPS fixes in a worker thread and records the resulting samples. Returns how many were accepted."""
    fixes = await asyncio.to_thread(stream.fetch_fixes)
    accepted = 0
    for fix in fixes:
        sample = tracker.update(fix, now=now)
        if sample and session.record_sample(sample.cumulative_distance_m, sample.timestamp, sample.coordinate):
            accepted += 1
    return accepted


async def run() -> None:
    os.makedirs(cfg.OUT_DIR, exist_ok=True)
    print("\n=== STRIDE-DJ SYSTEM ===")

    # 1. Initialization
    settings = cfg.load_settings()
    library = load_library(cfg.LIBRARY_FILE)
    player = LocalPlayer(library, silent_ids=[cfg.PLACEHOLDER_TRACK_ID])
    backend = build_backend(library)
    log = SQLiteLogger(cfg.SESSION_LOG_PATH)
    session = RunSession(player, backend=backend, session_log=log,
                         sources=settings["sources"], target_bpm=settings["bpm"])
    session.scheduler.subscribe_status(lambda msg: set_status(msg, db_path=cfg.DB_PATH, also_print=False))

    # 2. Select Stream
    mode = cfg.get_operating_mode()
    tracker: Optional[DistanceTracker] = None
    if mode in ["replay", "sim"]:
        print(f"🎬 MODE: SIMULATION ({os.path.basename(cfg.SIM_DATA_FILE)})")
        stream = ReplayStream(cfg.SIM_DATA_FILE, speed=1.0)
        session.start(now=stream.start_wall)
    else:
        print(f"📡 MODE: LIVE SENSOR ({cfg.DEFAULT_PHYPHOX_URL})")
        stream = PhyphoxStream(cfg.DEFAULT_PHYPHOX_URL)
        tracker = DistanceTracker()
        session.start()

    # 3. Music
    if cfg.ENABLE_LOCAL_AUDIO:
        try:
            await player.connect()
        except PlayerError as e:
            set_status(f"⚠️ Audio output disabled: {e}", db_path=cfg.DB_PATH)
    requested = (session.target_bpm, list(session.sources))
    await session.change_tempo(*requested)

    last_telemetry_t = 0.0
    print("\n🚀 System active.")

    try:
        while True:
            loop_t0 = time.time()

            # --- DATA INGESTION ---
            if tracker is not None:
                await ingest_live(stream, tracker, session, loop_t0)
            else:
                sample = stream.fetch_sample(now=loop_t0)
                while sample is not None:
                    session.record_sample(sample.cumulative_distance_m, sample.timestamp, sample.coordinate)
                    if stream.last_cadence:
                        session.update_cadence(stream.last_cadence, now=loop_t0)
                    sample = stream.fetch_sample(now=loop_t0)
                if stream.finished:
                    print("\n🏁 Simulation finished.")
                    break

            # --- TEMPO CHANGES ---
            wanted = tempo_request(settings, session.cadence.cadence_smooth)
            if wanted != requested:
                requested = wanted
                cfg.save_settings(wanted[1], wanted[0])
                await session.change_tempo(*wanted)

            # Telemetry Output
            stats = session.stats
            sched = session.scheduler
            track_name = sched.current_track_name or "-"
            sys.stdout.write(
                f"\r[RUN] {format_time_interval(stats.elapsed_time_s)} | "
                f"{format_distance(stats.total_distance_m)} | "
                f"Avg {format_pace(stats.overall_pace_s_per_km, per_km=True)} | "
                f"Mile {format_pace(stats.rolling_mile_pace_s)} | "
                f"{session.target_bpm:3.0f} BPM | Q{sched.queued_songs_count:2d} | {track_name[:15]}")
            sys.stdout.flush()

            # --- DATA LOGGING ---
            if (loop_t0 - last_telemetry_t) >= cfg.TELEMETRY_EVERY_S:
                last_telemetry_t = loop_t0
                set_status(
                    "Running", db_path=cfg.DB_PATH, mode=mode, also_print=False,
                    distance_m=stats.total_distance_m, elapsed_s=stats.elapsed_time_s,
                    pace_s_per_km=stats.overall_pace_s_per_km, rolling_mile_s=stats.rolling_mile_pace_s,
                    target_bpm=session.target_bpm, track_id=sched.current_track_id or None,
                    track_name=sched.current_track_name or None, track_bpm=sched.current_bpm or None,
                    queued_count=sched.queued_songs_count,
                )
                log.commit()

            await asyncio.sleep(max(0.0, cfg.POLL_INTERVAL - (time.time() - loop_t0)))

    finally:
        final = session.stop()
        set_status(
            f"Run finished: {format_distance(final.total_distance_m)} in "
            f"{format_time_interval(final.elapsed_time_s)}",
            db_path=cfg.DB_PATH, mode=mode,
            distance_m=final.total_distance_m, elapsed_s=final.elapsed_time_s,
            pace_s_per_km=final.overall_pace_s_per_km, rolling_mile_s=final.rolling_mile_pace_s,
        )
        await player.disconnect()
        log.close()


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\n[Exit] Shutdown.")


if __name__ == "__main__":
    main()
