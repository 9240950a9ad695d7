"""SQLite backed persistence for dictation history."""

from __future__ import annotations

import enum
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .models import DEFAULT_SCREENSHOT_STATUS, HistoryItem

logger = logging.getLogger(__name__)

APP_DIR = Path.home() / ".freeflow"
DB_PATH = APP_DIR / "history.db"
AUDIO_DIR = APP_DIR / "audio"
SCHEMA_VERSION = 1
IN_MEMORY = ":memory:"

# Side files SQLite may leave next to the database.
SIDE_FILE_SUFFIXES = ("", "-wal", "-shm", "-journal")

COLUMNS = (
    "id",
    "timestamp",
    "raw_transcript",
    "final_transcript",
    "rewrite_prompt",
    "context_summary",
    "context_prompt",
    "context_screenshot_ref",
    "context_screenshot_status",
    "post_processing_status",
    "debug_status",
    "custom_vocabulary",
    "audio_file_ref",
)


class StorageError(RuntimeError):
    """Raised when something goes wrong while accessing the storage."""


class StoreState(str, enum.Enum):
    OPENED = "opened"
    RECOVERED = "recovered"
    VOLATILE = "volatile"


class HistoryStore:
    """Bounded, newest-first log of dictation results.

    Opening never fails: a corrupt database is wiped and reopened, and if that
    fails too the store silently keeps history in memory for the lifetime of
    the process (see :attr:`state`). The store only ever removes rows; audio
    references of removed rows are returned so the caller can delete the files.
    """

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self._conn, self.state = self._open_with_recovery()

    @property
    def is_persistent(self) -> bool:
        return self.state is not StoreState.VOLATILE

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------
    def _open_with_recovery(self) -> tuple[sqlite3.Connection, StoreState]:
        try:
            return _connect(self.db_path), StoreState.OPENED
        except (sqlite3.Error, OSError, StorageError) as exc:
            logger.warning("Failed to open history at %s (%s); attempting recovery.", self.db_path, exc)

        _destroy_database_files(self.db_path)
        try:
            return _connect(self.db_path), StoreState.RECOVERED
        except (sqlite3.Error, OSError, StorageError) as exc:
            logger.error("Failed to recover history at %s (%s); falling back to memory.", self.db_path, exc)

        return _connect(IN_MEMORY), StoreState.VOLATILE

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def load_all(self) -> List[HistoryItem]:
        """Return every item, newest first. Read failures yield an empty list."""

        try:
            with self._lock:
                rows = self._conn.execute(
                    f"SELECT {', '.join(COLUMNS)} FROM history ORDER BY timestamp DESC, seq ASC"
                ).fetchall()
            return [_row_to_item(row) for row in rows]
        except (sqlite3.Error, ValueError) as exc:
            logger.warning("Could not read history: %s", exc)
            return []

    def append(self, item: HistoryItem, max_count: int) -> List[str]:
        """Insert ``item`` and evict the oldest items beyond ``max_count``."""

        placeholders = ", ".join("?" for _ in COLUMNS)

        def insert_and_trim(conn: sqlite3.Connection) -> List[str]:
            conn.execute(
                f"INSERT INTO history({', '.join(COLUMNS)}) VALUES({placeholders})",
                _item_to_row(item),
            )
            return _evict(conn, max_count)

        return self._mutate(insert_and_trim)

    def delete(self, item_id: str) -> Optional[str]:
        """Remove one item; return its audio reference, if any."""

        def delete_one(conn: sqlite3.Connection) -> Optional[str]:
            row = conn.execute(
                "SELECT audio_file_ref FROM history WHERE id = ?", (item_id,)
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM history WHERE id = ?", (item_id,))
            return row["audio_file_ref"]

        return self._mutate(delete_one)

    def clear_all(self) -> List[str]:
        """Remove every item; return all audio references."""

        return self._mutate(lambda conn: _evict(conn, 0))

    def trim(self, max_count: int) -> List[str]:
        """Evict the oldest items beyond ``max_count`` (everything if <= 0)."""

        return self._mutate(lambda conn: _evict(conn, max_count))

    def _mutate(self, operation):
        with self._lock:
            try:
                with self._conn:
                    return operation(self._conn)
            except sqlite3.Error as exc:
                raise StorageError(f"History update failed: {exc}") from exc


def _connect(db_path: Union[Path, str]) -> sqlite3.Connection:
    if db_path != IN_MEMORY:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    try:
        conn.row_factory = sqlite3.Row
        if db_path != IN_MEMORY:
            conn.execute("PRAGMA journal_mode=WAL")
        _ensure_schema(conn)
    except BaseException:
        conn.close()
        raise
    return conn


def _ensure_schema(conn: sqlite3.Connection) -> None:
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS history (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                timestamp REAL NOT NULL,
                raw_transcript TEXT NOT NULL,
                final_transcript TEXT NOT NULL,
                rewrite_prompt TEXT,
                context_summary TEXT NOT NULL,
                context_prompt TEXT,
                context_screenshot_ref TEXT,
                context_screenshot_status TEXT NOT NULL,
                post_processing_status TEXT NOT NULL,
                debug_status TEXT NOT NULL,
                custom_vocabulary TEXT NOT NULL,
                audio_file_ref TEXT
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS history_timestamp ON history(timestamp)")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS metadata (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        row = conn.execute(
            "SELECT value FROM metadata WHERE key = ?", ("schema_version",)
        ).fetchone()
        if row is None:
            conn.execute(
                "INSERT INTO metadata(key, value) VALUES(?, ?)",
                ("schema_version", str(SCHEMA_VERSION)),
            )
        elif row["value"] != str(SCHEMA_VERSION):
            raise StorageError(f"Unsupported history schema version {row['value']}")


def _destroy_database_files(db_path: Path) -> None:
    for suffix in SIDE_FILE_SUFFIXES:
        path = db_path.with_name(db_path.name + suffix)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove %s: %s", path, exc)


def _evict(conn: sqlite3.Connection, max_count: int) -> List[str]:
    keep = max(max_count, 0)
    rows = conn.execute(
        "SELECT seq, audio_file_ref FROM history ORDER BY timestamp DESC, seq ASC LIMIT -1 OFFSET ?",
        (keep,),
    ).fetchall()
    if not rows:
        return []
    conn.executemany("DELETE FROM history WHERE seq = ?", [(row["seq"],) for row in rows])
    return _audio_refs(rows)


def _audio_refs(rows: Iterable[sqlite3.Row]) -> List[str]:
    return [row["audio_file_ref"] for row in rows if row["audio_file_ref"]]


def _item_to_row(item: HistoryItem) -> tuple:
    return (
        item.id,
        item.timestamp.timestamp(),
        item.raw_transcript,
        item.final_transcript,
        item.rewrite_prompt,
        item.context_summary,
        item.context_prompt,
        item.context_screenshot_ref,
        item.context_screenshot_status or DEFAULT_SCREENSHOT_STATUS,
        item.post_processing_status,
        item.debug_status,
        item.custom_vocabulary,
        item.audio_file_ref,
    )


def _row_to_item(row: sqlite3.Row) -> HistoryItem:
    return HistoryItem(
        id=row["id"],
        timestamp=datetime.fromtimestamp(row["timestamp"], tz=timezone.utc),
        raw_transcript=row["raw_transcript"] or "",
        final_transcript=row["final_transcript"] or "",
        rewrite_prompt=row["rewrite_prompt"],
        context_summary=row["context_summary"] or "",
        context_prompt=row["context_prompt"],
        context_screenshot_ref=row["context_screenshot_ref"],
        context_screenshot_status=row["context_screenshot_status"] or DEFAULT_SCREENSHOT_STATUS,
        post_processing_status=row["post_processing_status"] or "",
        debug_status=row["debug_status"] or "",
        custom_vocabulary=row["custom_vocabulary"] or "",
        audio_file_ref=row["audio_file_ref"],
    )
