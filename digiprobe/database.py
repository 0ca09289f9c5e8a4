"""SQLite store for test sessions and their results."""
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from digiprobe.models import (
    CategoryColor,
    MapMarker,
    Sample,
    StoredResult,
    TestConfiguration,
    TestMode,
    TestSession,
)
from digiprobe.quality import border_color_of, glyph_of

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS test_sessions (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    isp_name       TEXT,
    public_ip      TEXT,
    operator_label TEXT NOT NULL,
    test_mode      TEXT NOT NULL,
    activity       TEXT,
    remark         TEXT,
    poi_name       TEXT,
    is_active      INTEGER NOT NULL DEFAULT 1,
    created_at     DATETIME NOT NULL,
    updated_at     DATETIME NOT NULL
);

CREATE TABLE IF NOT EXISTS test_results (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id     INTEGER NOT NULL REFERENCES test_sessions(id),
    lat            REAL,
    lng            REAL,
    ping           REAL NOT NULL,
    download_speed REAL NOT NULL,
    upload_speed   REAL NOT NULL,
    browsing_time  REAL NOT NULL,
    video_mos      REAL NOT NULL,
    category_color TEXT NOT NULL,
    created_at     DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_results_session ON test_results(session_id, created_at);
CREATE INDEX IF NOT EXISTS idx_sessions_created ON test_sessions(created_at);
"""

SESSION_COLUMNS = (
    "id, isp_name, public_ip, operator_label, test_mode, activity, remark, "
    "poi_name, is_active, created_at, updated_at"
)
RESULT_COLUMNS = (
    "id, session_id, lat, lng, ping, download_speed, upload_speed, "
    "browsing_time, video_mos, category_color, created_at"
)


def _utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)


def _blank_to_none(value: str) -> Optional[str]:
    value = (value or "").strip()
    return value or None


class Database:
    """Wrapper around a SQLite database for test sessions and results.

    For `:memory:` databases a single persistent connection is kept so that
    the schema and data survive across method calls.  For file-based
    databases, a new connection is opened per operation and closed
    immediately after to avoid file-descriptor leaks.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._persistent_conn: Optional[sqlite3.Connection] = None
        if db_path == ":memory:":
            self._persistent_conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._persistent_conn.row_factory = sqlite3.Row
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        if self._persistent_conn is not None:
            return self._persistent_conn
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _execute(self, sql: str, params: tuple = (), *, write: bool = False):
        """Execute *sql* and return (rows, lastrowid, rowcount)."""
        conn = self._connect()
        is_temp = self._persistent_conn is None
        try:
            if write:
                with conn:  # commits on success, rolls back on exception
                    cursor = conn.execute(sql, params)
                    return cursor.fetchall(), cursor.lastrowid, cursor.rowcount
            else:
                cursor = conn.execute(sql, params)
                return cursor.fetchall(), None, None
        finally:
            if is_temp:
                conn.close()

    def _init_schema(self) -> None:
        conn = self._connect()
        is_temp = self._persistent_conn is None
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            if is_temp:
                conn.close()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(
        self,
        config: TestConfiguration,
        isp_name: Optional[str] = None,
        public_ip: Optional[str] = None,
    ) -> int:
        """Insert a new active session and return its ID."""
        now = _utcnow().isoformat()
        sql = """
            INSERT INTO test_sessions
                (isp_name, public_ip, operator_label, test_mode, activity, remark,
                 poi_name, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
        """
        _, session_id, _ = self._execute(
            sql,
            (
                _blank_to_none(isp_name or ""),
                _blank_to_none(public_ip or ""),
                config.operator_label,
                TestMode(config.test_mode).value,
                _blank_to_none(config.activity),
                _blank_to_none(config.remark),
                _blank_to_none(config.poi_name),
                now,
                now,
            ),
            write=True,
        )
        logger.debug("Created session id=%d", session_id)
        return session_id  # type: ignore[return-value]

    def close_session(self, session_id: int) -> bool:
        """Mark a session inactive. Returns False if it does not exist."""
        _, _, updated = self._execute(
            "UPDATE test_sessions SET is_active = 0, updated_at = ? WHERE id = ?",
            (_utcnow().isoformat(), session_id),
            write=True,
        )
        return bool(updated)

    def get_session(self, session_id: int) -> Optional[TestSession]:
        rows, _, _ = self._execute(
            f"SELECT {SESSION_COLUMNS} FROM test_sessions WHERE id = ?",
            (session_id,),
        )
        return self._row_to_session(rows[0]) if rows else None

    def list_sessions(self, limit: int = 50) -> List[TestSession]:
        """Return the most recent *limit* sessions, newest first."""
        rows, _, _ = self._execute(
            f"SELECT {SESSION_COLUMNS} FROM test_sessions ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_session(row) for row in rows]

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def append_result(self, session_id: int, sample: Sample) -> int:
        """Insert a sample for *session_id* and return the new result ID."""
        position = sample.position
        sql = """
            INSERT INTO test_results
                (session_id, lat, lng, ping, download_speed, upload_speed,
                 browsing_time, video_mos, category_color, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        metrics = sample.metrics
        _, row_id, _ = self._execute(
            sql,
            (
                session_id,
                position.latitude if position else None,
                position.longitude if position else None,
                metrics.ping,
                metrics.download_speed,
                metrics.upload_speed,
                metrics.browsing_time,
                metrics.video_mos,
                sample.category_color.value,
                sample.timestamp.isoformat(),
            ),
            write=True,
        )
        logger.debug("Inserted result id=%d for session %d", row_id, session_id)
        return row_id  # type: ignore[return-value]

    def get_results(self, session_id: int) -> List[StoredResult]:
        """Return a session's results in the order they were taken."""
        rows, _, _ = self._execute(
            f"SELECT {RESULT_COLUMNS} FROM test_results WHERE session_id = ? "
            "ORDER BY created_at ASC, id ASC",
            (session_id,),
        )
        return [self._row_to_result(row) for row in rows]

    def get_markers(self, session_id: int) -> List[MapMarker]:
        """Return map markers for the session's positioned results."""
        session = self.get_session(session_id)
        if session is None:
            return []
        glyph = glyph_of(session.operator_label)
        markers = []
        for result in self.get_results(session_id):
            if result.lat is None or result.lng is None:
                continue
            markers.append(
                MapMarker(
                    id=result.id,
                    lat=result.lat,
                    lng=result.lng,
                    operator_label=session.operator_label,
                    letter=glyph["letter"],
                    letter_color=glyph["color"],
                    category_color=result.category_color,
                    border_color=border_color_of(result.category_color),
                    metrics=result.metrics,
                    timestamp=result.created_at,
                )
            )
        return markers

    def count(self, session_id: Optional[int] = None) -> int:
        """Return the number of stored results, optionally for one session."""
        if session_id is None:
            rows, _, _ = self._execute("SELECT COUNT(*) FROM test_results")
        else:
            rows, _, _ = self._execute(
                "SELECT COUNT(*) FROM test_results WHERE session_id = ?", (session_id,)
            )
        return rows[0][0]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup_old_data(self, retention_days: int) -> int:
        """Delete sessions (and their results) older than *retention_days*.

        0 means keep everything. Returns the number of sessions deleted.
        """
        if retention_days <= 0:
            logger.debug("Retention days is %d — skipping cleanup", retention_days)
            return 0

        cutoff = (_utcnow() - timedelta(days=retention_days)).isoformat()
        self._execute(
            "DELETE FROM test_results WHERE session_id IN "
            "(SELECT id FROM test_sessions WHERE created_at < ?)",
            (cutoff,),
            write=True,
        )
        _, _, deleted = self._execute(
            "DELETE FROM test_sessions WHERE created_at < ?",
            (cutoff,),
            write=True,
        )
        logger.info("Cleanup deleted %d sessions older than %s", deleted, cutoff)
        return deleted  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_session(row) -> TestSession:
        return TestSession(
            id=row["id"],
            isp_name=row["isp_name"],
            public_ip=row["public_ip"],
            operator_label=row["operator_label"],
            test_mode=TestMode(row["test_mode"]),
            activity=row["activity"],
            remark=row["remark"],
            poi_name=row["poi_name"],
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_result(row) -> StoredResult:
        return StoredResult(
            id=row["id"],
            session_id=row["session_id"],
            lat=row["lat"],
            lng=row["lng"],
            ping=row["ping"],
            download_speed=row["download_speed"],
            upload_speed=row["upload_speed"],
            browsing_time=row["browsing_time"],
            video_mos=row["video_mos"],
            category_color=CategoryColor(row["category_color"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
