"""Activity log and match history backed by SQLite.

Every action outcome is recorded with the rule and file it belongs to. The
match table keeps the last time each rule matched each file, which feeds the
dateLastMatched condition. Moves, renames and sorts can be undone.
"""

import logging
import shutil
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from ..domain.result import Failure, Result, Success
from ..exceptions import FileOperationError
from ..models.actions import ActionType

logger = logging.getLogger(__name__)

UNDOABLE_ACTIONS = (
    ActionType.MOVE.value,
    ActionType.RENAME.value,
    ActionType.SORT_INTO_SUBFOLDER.value,
)


@dataclass(slots=True, frozen=True)
class ActivityEntry:
    """One recorded action outcome."""
    id: int
    timestamp: datetime
    rule_id: str
    rule_name: str
    file_path: Path
    action_type: str
    status: str
    source_path: Optional[Path] = None
    destination_path: Optional[Path] = None
    error: Optional[str] = None
    undone: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ActivityEntry":
        return cls(
            id=row["id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            rule_id=row["rule_id"],
            rule_name=row["rule_name"],
            file_path=Path(row["file_path"]),
            action_type=row["action_type"],
            status=row["status"],
            source_path=Path(row["source_path"]) if row["source_path"] else None,
            destination_path=Path(row["destination_path"]) if row["destination_path"] else None,
            error=row["error"],
            undone=bool(row["undone"]),
        )


class ActivityLog:
    """Persistent record of rule matches and action outcomes."""

    def __init__(self, db_path: Optional[Path] = None):
        if db_path is None:
            data_dir = Path.home() / ".local" / "share" / "file-dispatch"
            data_dir.mkdir(parents=True, exist_ok=True)
            db_path = data_dir / "activity.db"

        self.db_path = db_path
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_database(self) -> None:
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS activity (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    rule_id TEXT NOT NULL,
                    rule_name TEXT NOT NULL,
                    file_path TEXT NOT NULL,
                    action_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    source_path TEXT,
                    destination_path TEXT,
                    error TEXT,
                    undone INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS matches (
                    rule_id TEXT NOT NULL,
                    file_path TEXT NOT NULL,
                    matched_at TEXT NOT NULL,
                    PRIMARY KEY (rule_id, file_path)
                );

                CREATE INDEX IF NOT EXISTS idx_activity_timestamp ON activity(timestamp);
                CREATE INDEX IF NOT EXISTS idx_matches_path ON matches(file_path);
            """)

    def record_match(self, rule_id: str, file_path: Path,
                     matched_at: Optional[datetime] = None) -> None:
        matched_at = matched_at or datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO matches (rule_id, file_path, matched_at) VALUES (?, ?, ?)
                   ON CONFLICT(rule_id, file_path) DO UPDATE SET matched_at = excluded.matched_at""",
                (rule_id, str(file_path), matched_at.isoformat()),
            )

    def last_match_time(self, file_path: Path) -> Optional[datetime]:
        """Most recent time any rule matched ``file_path``."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT MAX(matched_at) AS last FROM matches WHERE file_path = ?",
                (str(file_path),),
            ).fetchone()
        if row is None or row["last"] is None:
            return None
        return datetime.fromisoformat(row["last"])

    def record_outcomes(self, rule_id: str, rule_name: str, file_path: Path,
                        outcomes: Iterable) -> None:
        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (
                now,
                rule_id,
                rule_name,
                str(file_path),
                outcome.action_type.value,
                outcome.status.value,
                str(outcome.source_path) if outcome.source_path else None,
                str(outcome.destination_path) if outcome.destination_path else None,
                outcome.error,
            )
            for outcome in outcomes
        ]
        if not rows:
            return
        with self._connect() as conn:
            conn.executemany(
                """INSERT INTO activity
                   (timestamp, rule_id, rule_name, file_path, action_type, status,
                    source_path, destination_path, error)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                rows,
            )

    def recent(self, limit: int = 50) -> List[ActivityEntry]:
        """Latest entries first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM activity ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [ActivityEntry.from_row(row) for row in rows]

    def undo_last(self) -> Result[ActivityEntry, FileOperationError]:
        """Move the most recently moved, renamed or sorted file back."""
        placeholders = ", ".join("?" for _ in UNDOABLE_ACTIONS)
        with self._connect() as conn:
            row = conn.execute(
                f"""SELECT * FROM activity
                    WHERE status = 'success' AND undone = 0 AND action_type IN ({placeholders})
                    ORDER BY id DESC LIMIT 1""",
                UNDOABLE_ACTIONS,
            ).fetchone()

        if row is None:
            return Failure(FileOperationError("Nothing to undo"))

        entry = ActivityEntry.from_row(row)
        if entry.source_path is None or entry.destination_path is None:
            return Failure(FileOperationError(f"Entry {entry.id} has no paths to restore"))
        if not entry.destination_path.exists():
            return Failure(FileOperationError(f"File no longer exists: {entry.destination_path}"))
        if entry.source_path.exists():
            return Failure(FileOperationError(f"Original location is occupied: {entry.source_path}"))

        try:
            entry.source_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(entry.destination_path), str(entry.source_path))
        except OSError as e:
            return Failure(FileOperationError(f"Failed to undo {entry.action_type}: {e}"))

        with self._connect() as conn:
            conn.execute("UPDATE activity SET undone = 1 WHERE id = ?", (entry.id,))

        logger.info(f"Undid {entry.action_type}: {entry.destination_path} -> {entry.source_path}")
        return Success(entry)
