"""SQLite block storage shared by the logs of one process.

Blocks are keyed by (log key, index). A replica may know a block's hash
(from a verified tree head) before it holds the block's data, so data is
nullable.
"""

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA = """
-- One row per block of every log; data is NULL until downloaded
CREATE TABLE IF NOT EXISTS blocks (
    log_key TEXT NOT NULL,
    idx INTEGER NOT NULL,
    hash BLOB NOT NULL,
    data BLOB,
    PRIMARY KEY (log_key, idx)
);

-- Latest signed tree head per log
CREATE TABLE IF NOT EXISTS heads (
    log_key TEXT PRIMARY KEY,
    length INTEGER NOT NULL,
    root BLOB NOT NULL,
    signature BLOB NOT NULL
);
"""


@dataclass(frozen=True)
class TreeHead:
    """Signed summary of a log: its length and the root of its hash chain."""

    length: int
    root: bytes
    signature: bytes


class BlockStore:
    """SQLite-backed store for log blocks and tree heads."""

    def __init__(self, db_path: str | Path = ":memory:"):
        """Initialize the block store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    @property
    def persistent(self) -> bool:
        return str(self.db_path) != ":memory:"

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if self.persistent:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()

        logger.debug(f"BlockStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    def put_block(
        self, log_key: str, index: int, block_hash: bytes, data: bytes | None = None
    ) -> None:
        """Record a block's hash, and its data when available.

        Existing data is never overwritten with NULL.
        """
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO blocks (log_key, idx, hash, data) VALUES (?, ?, ?, ?)
            ON CONFLICT (log_key, idx) DO UPDATE SET
                hash = excluded.hash,
                data = COALESCE(excluded.data, blocks.data)
            """,
            (log_key, index, block_hash, data),
        )
        conn.commit()

    def put_hashes(self, log_key: str, start: int, hashes: list[bytes]) -> None:
        """Record the hashes of blocks [start, start + len(hashes))."""
        conn = self._ensure_connected()
        conn.executemany(
            """
            INSERT INTO blocks (log_key, idx, hash) VALUES (?, ?, ?)
            ON CONFLICT (log_key, idx) DO UPDATE SET hash = excluded.hash
            """,
            [(log_key, start + i, h) for i, h in enumerate(hashes)],
        )
        conn.commit()

    def get_data(self, log_key: str, index: int) -> bytes | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT data FROM blocks WHERE log_key = ? AND idx = ?",
            (log_key, index),
        ).fetchone()
        if row is None or row["data"] is None:
            return None
        return bytes(row["data"])

    def get_hash(self, log_key: str, index: int) -> bytes | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT hash FROM blocks WHERE log_key = ? AND idx = ?",
            (log_key, index),
        ).fetchone()
        return bytes(row["hash"]) if row else None

    def get_hashes(self, log_key: str, start: int, end: int) -> list[bytes]:
        """Hashes of blocks [start, end), in order."""
        conn = self._ensure_connected()
        cursor = conn.execute(
            """
            SELECT hash FROM blocks
            WHERE log_key = ? AND idx >= ? AND idx < ?
            ORDER BY idx ASC
            """,
            (log_key, start, end),
        )
        return [bytes(row["hash"]) for row in cursor]

    def has_data(self, log_key: str, index: int) -> bool:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT 1 FROM blocks WHERE log_key = ? AND idx = ? AND data IS NOT NULL",
            (log_key, index),
        ).fetchone()
        return row is not None

    def count_data(self, log_key: str) -> int:
        """Number of blocks of a log whose data is stored locally."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT COUNT(*) FROM blocks WHERE log_key = ? AND data IS NOT NULL",
            (log_key,),
        ).fetchone()
        return row[0]

    def get_head(self, log_key: str) -> TreeHead | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT length, root, signature FROM heads WHERE log_key = ?",
            (log_key,),
        ).fetchone()
        if row is None:
            return None
        return TreeHead(
            length=row["length"],
            root=bytes(row["root"]),
            signature=bytes(row["signature"]),
        )

    def put_head(self, log_key: str, head: TreeHead) -> None:
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO heads (log_key, length, root, signature) VALUES (?, ?, ?, ?)
            ON CONFLICT (log_key) DO UPDATE SET
                length = excluded.length,
                root = excluded.root,
                signature = excluded.signature
            """,
            (log_key, head.length, head.root, head.signature),
        )
        conn.commit()
