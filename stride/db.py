"""
Status telemetry database for Stride-DJ.
Utilizes SQLite in Write-Ahead Logging (WAL) mode so status readers can poll
while the run loop writes.
"""
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, Optional

from stride import config as cfg

DEFAULT_DB_PATH = Path(cfg.DB_PATH)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS telemetry (
  ts REAL NOT NULL,
  mode TEXT,
  status TEXT,
  distance_m REAL,
  elapsed_s REAL,
  pace_s_per_km REAL,
  rolling_mile_s REAL,
  target_bpm REAL,
  track_id TEXT,
  track_name TEXT,
  track_bpm REAL,
  queued_count INTEGER,
  note TEXT
);

CREATE INDEX IF NOT EXISTS idx_telemetry_ts ON telemetry(ts);
"""

COLUMNS = (
    "ts", "mode", "status", "distance_m", "elapsed_s", "pace_s_per_km",
    "rolling_mile_s", "target_bpm", "track_id", "track_name", "track_bpm",
    "queued_count", "note",
)


def connect(db_path: Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Establishes a concurrent database connection."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(str(db_path), check_same_thread=False)
    con.execute("PRAGMA journal_mode=WAL;")
    con.execute("PRAGMA synchronous=NORMAL;")
    return con


def init_db(con: sqlite3.Connection) -> None:
    """Initializes the database schema."""
    con.executescript(SCHEMA_SQL)
    con.commit()


def insert_telemetry(con: sqlite3.Connection, row: Dict[str, Any]) -> None:
    """Inserts a single telemetry record into the database."""
    init_db(con)
    data = {c: row.get(c) for c in COLUMNS}
    data["ts"] = float(row.get("ts") or time.time())

    con.execute(
        f"INSERT INTO telemetry ({', '.join(COLUMNS)}) "
        f"VALUES ({', '.join(':' + c for c in COLUMNS)})",
        data,
    )
    con.commit()


def set_status(
    msg: str,
    *,
    db_path: Path = DEFAULT_DB_PATH,
    mode: Optional[str] = None,
    distance_m: Optional[float] = None,
    elapsed_s: Optional[float] = None,
    pace_s_per_km: Optional[float] = None,
    rolling_mile_s: Optional[float] = None,
    target_bpm: Optional[float] = None,
    track_id: Optional[str] = None,
    track_name: Optional[str] = None,
    track_bpm: Optional[float] = None,
    queued_count: Optional[int] = None,
    note: Optional[str] = None,
    also_print: bool = True,
) -> None:
    """Helper method to update the system status and log it to telemetry."""
    if also_print:
        print(msg)

    try:
        con = connect(db_path)
    except sqlite3.Error as e:
        print(f"⚠️ Telemetry unavailable: {e}")
        return
    try:
        insert_telemetry(con, {
            "ts": time.time(),
            "mode": mode,
            "status": msg,
            "distance_m": distance_m,
            "elapsed_s": elapsed_s,
            "pace_s_per_km": pace_s_per_km,
            "rolling_mile_s": rolling_mile_s,
            "target_bpm": target_bpm,
            "track_id": track_id,
            "track_name": track_name,
            "track_bpm": track_bpm,
            "queued_count": queued_count,
            "note": note,
        })
    except sqlite3.Error as e:
        print(f"⚠️ Telemetry write failed: {e}")
    finally:
        con.close()


def fetch_last(db_path: Path = DEFAULT_DB_PATH) -> Dict[str, Any]:
    """Retrieves the most recent telemetry entry."""
    con = connect(db_path)
    try:
        init_db(con)
        cur = con.execute("SELECT * FROM telemetry ORDER BY ts DESC, rowid DESC LIMIT 1")
        row = cur.fetchone()
        if not row:
            return {}

        cols = [d[0] for d in cur.description]
        return dict(zip(cols, row))
    finally:
        con.close()
