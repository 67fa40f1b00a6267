"""
Database module for the JMA Warning Checker.

Handles SQLite persistence with:
- City warning reports (one active row per publisher/city/warning kind)
- Consumed bulletin references (for cache rotation)
- The feed's Last-Modified validator

Rows are soft-deleted by the checker; physical removal happens only in
the retention purge.
"""

import sqlite3
import threading
import logging
from dataclasses import dataclass
from typing import List, Dict, Any, Optional
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data") / "weather.sqlite3"


class StoreError(Exception):
    """Raised when a database operation fails."""
    pass


@dataclass
class CityReport:
    """A persisted warning report for one city and warning kind."""
    lmo: str
    city: str
    warning_kind: str
    status: str
    xml_file: str
    id: Optional[int] = None
    created_at: Optional[str] = None
    is_delete: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CityReport":
        return cls(
            id=row["id"],
            lmo=row["lmo"],
            city=row["city"],
            warning_kind=row["warning_kind"],
            status=row["status"],
            xml_file=row["xml_file"],
            created_at=row["created_at"],
            is_delete=bool(row["is_delete"]),
        )


class Database:
    """
    SQLite database wrapper with thread-safe operations.

    Every statement runs under one lock, so single-row reads and writes
    are atomic with respect to the scheduler and API threads.
    """

    def __init__(self, db_path: str = None) -> None:
        self._db_path = db_path or str(DEFAULT_DB_PATH)
        self._lock = threading.Lock()
        self._conn = None
        self._connect()
        self._init_schema()
        logger.info(f"Database initialized at {self._db_path}")

    def _connect(self) -> None:
        """Establish database connection with WAL mode."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(
                self._db_path,
                check_same_thread=False,
                isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self._db_path}: {e}") from e

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run one statement, translating driver errors. Caller holds the lock."""
        if self._conn is None:
            raise StoreError("Database connection is closed")
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreError(f"Database operation failed: {e}") from e

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._lock:
            # Feed validator history
            self._execute("""
                CREATE TABLE IF NOT EXISTS extra (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    last_modified TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
            """)

            # Bulletin documents consumed per publisher
            self._execute("""
                CREATE TABLE IF NOT EXISTS vpww54xml (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    xml_file TEXT NOT NULL,
                    lmo TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT (datetime('now')),
                    is_delete INTEGER NOT NULL DEFAULT 0
                )
            """)

            # Warning state per publisher/city/kind
            self._execute("""
                CREATE TABLE IF NOT EXISTS city_report (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    xml_file TEXT NOT NULL,
                    lmo TEXT NOT NULL,
                    city TEXT NOT NULL,
                    warning_kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT (datetime('now')),
                    is_delete INTEGER NOT NULL DEFAULT 0
                )
            """)

            self._execute("""
                CREATE INDEX IF NOT EXISTS idx_report_key
                ON city_report(lmo, city, warning_kind, is_delete)
            """)
            # At most one active report per publisher/city/kind
            self._execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_report_active
                ON city_report(lmo, city, warning_kind)
                WHERE is_delete = 0
            """)
            self._execute("""
                CREATE INDEX IF NOT EXISTS idx_reference_key
                ON vpww54xml(lmo, xml_file, is_delete)
            """)

    # =========================================================================
    # Feed Validator
    # =========================================================================

    def get_feed_last_modified(self) -> Optional[str]:
        """Most recent Last-Modified value seen on the feed."""
        with self._lock:
            row = self._execute(
                "SELECT last_modified FROM extra ORDER BY id DESC LIMIT 1"
            ).fetchone()
            return row["last_modified"] if row else None

    def set_feed_last_modified(self, last_modified: str) -> None:
        with self._lock:
            self._execute(
                "INSERT INTO extra (last_modified) VALUES (?)", (last_modified,)
            )

    # =========================================================================
    # City Report Operations
    # =========================================================================

    def find_active_report(self, lmo: str, city: str, warning_kind: str) -> Optional[CityReport]:
        """Get the active report for a publisher/city/kind combination."""
        with self._lock:
            row = self._execute("""
                SELECT * FROM city_report
                WHERE lmo = ? AND city = ? AND warning_kind = ? AND is_delete = 0
                ORDER BY id DESC
                LIMIT 1
            """, (lmo, city, warning_kind)).fetchone()
            return CityReport.from_row(row) if row else None

    def insert_report(self, report: CityReport) -> int:
        """Insert a new active report, returning its id."""
        with self._lock:
            cursor = self._execute("""
                INSERT INTO city_report (xml_file, lmo, city, warning_kind, status)
                VALUES (?, ?, ?, ?, ?)
            """, (report.xml_file, report.lmo, report.city, report.warning_kind, report.status))
            return cursor.lastrowid

    def update_report(self, report_id: int, xml_file: str, status: str) -> None:
        with self._lock:
            self._execute(
                "UPDATE city_report SET xml_file = ?, status = ? WHERE id = ?",
                (xml_file, status, report_id)
            )

    def soft_delete_reports(
        self,
        lmo: str,
        city: Optional[str] = None,
        status_filter: Optional[str] = None
    ) -> int:
        """Soft-delete active reports of a publisher, optionally narrowed by city and status."""
        sql = "UPDATE city_report SET is_delete = 1 WHERE lmo = ? AND is_delete = 0"
        params: list = [lmo]
        if city is not None:
            sql += " AND city = ?"
            params.append(city)
        if status_filter is not None:
            sql += " AND status = ?"
            params.append(status_filter)

        with self._lock:
            return self._execute(sql, tuple(params)).rowcount

    def get_active_reports(self, lmo: Optional[str] = None, city: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get active reports, optionally filtered."""
        sql = "SELECT * FROM city_report WHERE is_delete = 0"
        params: list = []
        if lmo is not None:
            sql += " AND lmo = ?"
            params.append(lmo)
        if city is not None:
            sql += " AND city = ?"
            params.append(city)
        sql += " ORDER BY lmo, city, warning_kind"

        with self._lock:
            cursor = self._execute(sql, tuple(params))
            return [dict(row) for row in cursor.fetchall()]

    # =========================================================================
    # Bulletin Reference Operations
    # =========================================================================

    def has_reference(self, lmo: str, xml_file: str) -> bool:
        with self._lock:
            row = self._execute("""
                SELECT 1 FROM vpww54xml
                WHERE lmo = ? AND xml_file = ? AND is_delete = 0
                LIMIT 1
            """, (lmo, xml_file)).fetchone()
            return row is not None

    def insert_reference(self, lmo: str, xml_file: str) -> bool:
        """Record a consumed bulletin; no-op if an active row already exists."""
        with self._lock:
            cursor = self._execute("""
                INSERT INTO vpww54xml (xml_file, lmo)
                SELECT ?, ?
                WHERE NOT EXISTS (
                    SELECT 1 FROM vpww54xml
                    WHERE lmo = ? AND xml_file = ? AND is_delete = 0
                )
            """, (xml_file, lmo, lmo, xml_file))
            return cursor.rowcount > 0

    def soft_delete_references(self, lmo: str) -> List[str]:
        """Soft-delete a publisher's references, returning the affected file names."""
        with self._lock:
            rows = self._execute(
                "SELECT DISTINCT xml_file FROM vpww54xml WHERE lmo = ? AND is_delete = 0",
                (lmo,)
            ).fetchall()
            self._execute(
                "UPDATE vpww54xml SET is_delete = 1 WHERE lmo = ? AND is_delete = 0",
                (lmo,)
            )
            return [row["xml_file"] for row in rows]

    def get_references(self, lmo: Optional[str] = None) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM vpww54xml WHERE is_delete = 0"
        params: tuple = ()
        if lmo is not None:
            sql += " AND lmo = ?"
            params = (lmo,)
        sql += " ORDER BY created_at DESC, id DESC"

        with self._lock:
            return [dict(row) for row in self._execute(sql, params).fetchall()]

    # =========================================================================
    # Retention
    # =========================================================================

    def purge_deleted(self, days: int) -> int:
        """Physically remove soft-deleted rows older than `days`."""
        modifier = f"-{int(days)} days"
        with self._lock:
            reports = self._execute("""
                DELETE FROM city_report
                WHERE is_delete = 1 AND datetime(created_at) < datetime('now', ?)
            """, (modifier,)).rowcount
            references = self._execute("""
                DELETE FROM vpww54xml
                WHERE is_delete = 1 AND datetime(created_at) < datetime('now', ?)
            """, (modifier,)).rowcount
            self._execute("""
                DELETE FROM extra
                WHERE id NOT IN (SELECT MAX(id) FROM extra)
                AND datetime(created_at) < datetime('now', ?)
            """, (modifier,))
        return reports + references

    def get_data_summary(self) -> Dict[str, Any]:
        """Get summary of all data in database."""
        with self._lock:
            active_reports = self._execute(
                "SELECT COUNT(*) FROM city_report WHERE is_delete = 0"
            ).fetchone()[0]

            deleted_reports = self._execute(
                "SELECT COUNT(*) FROM city_report WHERE is_delete = 1"
            ).fetchone()[0]

            active_references = self._execute(
                "SELECT COUNT(*) FROM vpww54xml WHERE is_delete = 0"
            ).fetchone()[0]

            cities = self._execute(
                "SELECT COUNT(DISTINCT city) FROM city_report WHERE is_delete = 0"
            ).fetchone()[0]

            return {
                "active_reports": active_reports,
                "deleted_reports": deleted_reports,
                "active_references": active_references,
                "cities_with_warnings": cities,
            }

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("Database connection closed")
