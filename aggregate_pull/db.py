"""SQLite database for recorded instances and pull preferences."""

import sqlite3
import threading
from typing import List, Optional, Tuple


class Database:
    def __init__(self, db_path: str = "aggregate_pull.db"):
        self.db_path = db_path
        self._local = threading.local()
        self._init_db()

    @property
    def _conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self.db_path)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
        return self._local.conn

    def _init_db(self):
        conn = self._conn
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS recorded_instances (
                form_id TEXT NOT NULL,
                instance_id TEXT NOT NULL,
                directory TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (form_id, instance_id)
            );

            CREATE TABLE IF NOT EXISTS preferences (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
        """)
        conn.commit()

    def close(self):
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    # Dedup store, one set of instance ids per form

    def has_recorded_instance(self, instance_id: str, form_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM recorded_instances WHERE form_id = ? AND instance_id = ?",
            (form_id, instance_id),
        ).fetchone()
        return row is not None

    def put_recorded_instance_directory(self, instance_id: str, directory: str, form_id: str):
        self._conn.execute(
            """INSERT INTO recorded_instances (form_id, instance_id, directory)
               VALUES (?, ?, ?)
               ON CONFLICT(form_id, instance_id) DO UPDATE SET directory = ?""",
            (form_id, instance_id, directory, directory),
        )
        self._conn.commit()

    def get_stats(self) -> List[Tuple]:
        rows = self._conn.execute(
            """SELECT form_id, COUNT(*) as cnt, MAX(created_at) as last_recorded
               FROM recorded_instances GROUP BY form_id ORDER BY form_id"""
        ).fetchall()
        return [tuple(r) for r in rows]

    # Key-value preferences

    def get(self, key: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT value FROM preferences WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def put(self, key: str, value: str):
        self._conn.execute(
            """INSERT INTO preferences (key, value, updated_at)
               VALUES (?, ?, CURRENT_TIMESTAMP)
               ON CONFLICT(key) DO UPDATE SET value = ?, updated_at = CURRENT_TIMESTAMP""",
            (key, value, value),
        )
        self._conn.commit()
