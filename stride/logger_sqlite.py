"""
Dedicated SQLite logging module for run sessions.
Stores every accepted sample together with the statistics it produced.
"""
import os
import sqlite3
from typing import Any, Dict


class SQLiteLogger:
    """
    Manages the persistent session logging for offline evaluation.
    Utilizes Write-Ahead Logging (WAL) to ensure thread-safe, concurrent access.
    """

    def __init__(self, db_path: str) -> None:
        """
        Initializes the database connection and sets appropriate PRAGMA rules.
        """
        self.db_path = db_path
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self.con = sqlite3.connect(db_path, check_same_thread=False)
        self.con.execute("PRAGMA journal_mode=WAL;")
        self.con.execute("PRAGMA synchronous=NORMAL;")
        self.con.execute("PRAGMA busy_timeout=2500;")
        self._init()

    def _init(self) -> None:
        """
        Initializes the schema and handles basic column migrations.
        """
        self.con.execute("""
        CREATE TABLE IF NOT EXISTS session_log (
            ts REAL,
            run_id TEXT,
            distance_m REAL,
            elapsed_s REAL,
            pace_s_per_km REAL,
            rolling_mile_s REAL,
            target_bpm REAL,
            track_id TEXT,
            queued_count INTEGER
        )
        """)
        self.con.execute("CREATE INDEX IF NOT EXISTS idx_session_ts ON session_log(ts)")
        self.con.commit()

        cur = self.con.execute("PRAGMA table_info(session_log)")
        existing_columns = {r[1] for r in cur.fetchall()}

        if "lat" not in existing_columns:
            self.con.execute("ALTER TABLE session_log ADD COLUMN lat REAL")
        if "lon" not in existing_columns:
            self.con.execute("ALTER TABLE session_log ADD COLUMN lon REAL")

        self.con.commit()

    def insert(self, row: Dict[str, Any]) -> None:
        """Inserts a populated data row into the session log."""
        self.con.execute("""
        INSERT INTO session_log (
            ts, run_id, distance_m, elapsed_s,
            pace_s_per_km, rolling_mile_s,
            target_bpm, track_id, queued_count,
            lat, lon
        ) VALUES (?,?,?,?,?,?,?,?,?,?,?)
        """, (
            row.get("ts"), row.get("run_id"), row.get("distance_m"), row.get("elapsed_s"),
            row.get("pace_s_per_km"), row.get("rolling_mile_s"),
            row.get("target_bpm"), row.get("track_id"), row.get("queued_count"),
            row.get("lat"), row.get("lon"),
        ))

    def commit(self) -> None:
        """Flushes pending transactions to disk."""
        self.con.commit()

    def close(self) -> None:
        """Safely commits data and closes the database connection."""
        try:
            self.con.commit()
            self.con.close()
        except sqlite3.Error as e:
            print(f"⚠️ Session log close failed: {e}")
