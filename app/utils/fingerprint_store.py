"""
SQLite fingerprint store.

Provides:
- A single connection handle owned by the process
- Serialized access to the fingerprint table
- Change and duplicate-content queries
- Error wrapping into StoreError
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from loguru import logger

from app.models.schemas import FileFingerprint
from app.utils.errors import StoreError

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS file_fingerprints (
        path TEXT PRIMARY KEY,
        hash TEXT NOT NULL,
        size INTEGER NOT NULL,
        mtime REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_file_fingerprints_hash ON file_fingerprints(hash)",
)


class FingerprintStore:
    """Persistent path -> content fingerprint table."""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        """
        Initialize fingerprint store.

        Args:
            db_path: SQLite database file, or ``:memory:``
        """
        self.db_path = str(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._closed = False
        # Every read and write goes through this lock so the admission path
        # and worker completions never interleave on one row.
        self._lock = threading.RLock()

    def connect(self):
        """Open the database and ensure the schema exists."""
        with self._lock:
            if self._conn is not None:
                return
            if self._closed:
                raise StoreError(f"Fingerprint store {self.db_path} was closed and cannot be reopened")
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Opening fingerprint store at {self.db_path}...")
            try:
                conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                if self.db_path != ":memory:":
                    conn.execute("PRAGMA journal_mode=WAL")
                for statement in SCHEMA:
                    conn.execute(statement)
                conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to open fingerprint store {self.db_path}: {e}") from e
            self._conn = conn
            logger.success("Fingerprint store ready")

    def close(self):
        """Close the database handle. The store cannot be used afterwards."""
        with self._lock:
            self._closed = True
            if self._conn:
                logger.info("Closing fingerprint store...")
                self._conn.close()
                self._conn = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        """Get connection, connecting on first use."""
        if self._conn is None:
            if self._closed:
                raise StoreError(f"Fingerprint store {self.db_path} is closed")
            self.connect()
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Serialized transaction; commits on success, rolls back on error."""
        with self._lock:
            conn = self.connection
            try:
                cursor = conn.cursor()
                yield cursor
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(f"Fingerprint store error: {e}") from e

    def execute_read(self, query: str, parameters: tuple = ()) -> List[sqlite3.Row]:
        """Execute read query and return all rows."""
        with self.transaction() as cur:
            cur.execute(query, parameters)
            return cur.fetchall()

    # -------------------------------------------------------------------------
    # Fingerprint operations
    # -------------------------------------------------------------------------

    def get(self, path: str) -> Optional[FileFingerprint]:
        """Return the stored fingerprint for ``path``, if any."""
        rows = self.execute_read(
            "SELECT path, hash, size, mtime FROM file_fingerprints WHERE path = ?",
            (path,),
        )
        if not rows:
            return None
        return _row_to_fingerprint(rows[0])

    def has_changed(self, path: str, content_hash: str) -> bool:
        """True if ``path`` was never stored or its stored hash differs."""
        rows = self.execute_read("SELECT hash FROM file_fingerprints WHERE path = ?", (path,))
        return not rows or rows[0]["hash"] != content_hash

    def is_duplicate_content(self, content_hash: str, excluding_path: Optional[str] = None) -> bool:
        """True if any path other than ``excluding_path`` holds ``content_hash``."""
        if excluding_path is None:
            rows = self.execute_read(
                "SELECT 1 FROM file_fingerprints WHERE hash = ? LIMIT 1",
                (content_hash,),
            )
        else:
            rows = self.execute_read(
                "SELECT 1 FROM file_fingerprints WHERE hash = ? AND path != ? LIMIT 1",
                (content_hash, excluding_path),
            )
        return bool(rows)

    def upsert(self, fingerprint: FileFingerprint):
        """Insert or replace the row for ``fingerprint.path`` atomically."""
        with self.transaction() as cur:
            cur.execute(
                """
                INSERT INTO file_fingerprints (path, hash, size, mtime)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    hash = excluded.hash,
                    size = excluded.size,
                    mtime = excluded.mtime
                """,
                (fingerprint.path, fingerprint.hash, fingerprint.size, fingerprint.mtime),
            )
        logger.debug(f"Fingerprint stored: {fingerprint.path} {fingerprint.hash[:8]}")

    def remove(self, path: str) -> bool:
        """
        Delete the row for ``path``.

        Returns:
            True if a row was deleted; removing an unknown path is not an error
        """
        with self.transaction() as cur:
            cur.execute("DELETE FROM file_fingerprints WHERE path = ?", (path,))
            removed = cur.rowcount > 0
        if removed:
            logger.debug(f"Fingerprint removed: {path}")
        return removed

    def find_all_paths_with_hash(self, content_hash: str) -> List[str]:
        """Every stored path sharing ``content_hash``."""
        rows = self.execute_read(
            "SELECT path FROM file_fingerprints WHERE hash = ? ORDER BY path",
            (content_hash,),
        )
        return [row["path"] for row in rows]

    def paths_under(self, root: str) -> List[str]:
        """Stored paths equal to ``root`` or beneath it."""
        root = root.rstrip("/\\")
        prefix = _escape_like(root)
        rows = self.execute_read(
            r"""
            SELECT path FROM file_fingerprints
            WHERE path = ? OR path LIKE ? ESCAPE '\' OR path LIKE ? ESCAPE '\'
            ORDER BY path
            """,
            (root, prefix + "/%", prefix + "\\\\%"),
        )
        return [row["path"] for row in rows]

    def duplicate_groups(self) -> Dict[str, List[str]]:
        """Map of hash -> paths for every hash stored under more than one path."""
        rows = self.execute_read(
            """
            SELECT hash FROM file_fingerprints
            GROUP BY hash HAVING COUNT(*) > 1
            ORDER BY hash
            """
        )
        return {row["hash"]: self.find_all_paths_with_hash(row["hash"]) for row in rows}

    def count(self) -> int:
        rows = self.execute_read("SELECT COUNT(*) AS total FROM file_fingerprints")
        return rows[0]["total"]

    def ping(self) -> bool:
        """Verify the store answers a trivial query."""
        try:
            self.execute_read("SELECT 1")
            return True
        except StoreError as e:
            logger.warning(f"Fingerprint store ping failed: {e}")
            return False


def _row_to_fingerprint(row: sqlite3.Row) -> FileFingerprint:
    return FileFingerprint(path=row["path"], hash=row["hash"], size=row["size"], mtime=row["mtime"])


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
