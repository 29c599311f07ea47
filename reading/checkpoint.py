"""
Deep Reader - Checkpoint Store
Per-thread reading history, keyed by the document/task thread id.

The reader only asks whether a thread has history and appends the opening
message and final output after a run. Store failures never affect gating.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import config
from concurrency.db_retry import db_retry
from core.database import Database


@dataclass
class CheckpointMessage:
    """One stored message of a reading thread."""
    role: str
    content: str


class CheckpointStore(ABC):
    """Interface for reading history persistence."""

    @abstractmethod
    def has_history(self, thread_id: str) -> bool:
        ...

    @abstractmethod
    def list(self, thread_id: str) -> List[CheckpointMessage]:
        ...

    @abstractmethod
    def append(self, thread_id: str, messages: List[CheckpointMessage]) -> None:
        ...


class InMemoryCheckpointStore(CheckpointStore):
    """Process-local store, used when persistence is not wanted."""

    def __init__(self):
        self._threads: Dict[str, List[CheckpointMessage]] = {}

    def has_history(self, thread_id: str) -> bool:
        return bool(self._threads.get(thread_id))

    def list(self, thread_id: str) -> List[CheckpointMessage]:
        return list(self._threads.get(thread_id, []))

    def append(self, thread_id: str, messages: List[CheckpointMessage]) -> None:
        self._threads.setdefault(thread_id, []).extend(messages)


class SqliteCheckpointStore(CheckpointStore):
    """Checkpoint store backed by the WAL-mode SQLite database."""

    def __init__(self, db_path: Optional[Path] = None, busy_timeout_ms: int = config.DB_BUSY_TIMEOUT_MS):
        self.db = Database(db_path or config.CHECKPOINT_DB_PATH, busy_timeout_ms)
        if not self.db.initialize():
            raise RuntimeError(f"Checkpoint database unavailable: {self.db.db_path}")

    @db_retry()
    def has_history(self, thread_id: str) -> bool:
        rows = self.db.execute(
            "SELECT 1 FROM checkpoint_messages WHERE thread_id = ? LIMIT 1",
            (thread_id,),
            fetch=True
        )
        return bool(rows)

    @db_retry()
    def list(self, thread_id: str) -> List[CheckpointMessage]:
        rows = self.db.execute(
            "SELECT role, content FROM checkpoint_messages WHERE thread_id = ? ORDER BY id",
            (thread_id,),
            fetch=True
        )
        return [CheckpointMessage(role=row["role"], content=row["content"]) for row in rows]

    @db_retry()
    def append(self, thread_id: str, messages: List[CheckpointMessage]) -> None:
        with self.db.get_connection() as conn:
            conn.executemany(
                "INSERT INTO checkpoint_messages (thread_id, role, content) VALUES (?, ?, ?)",
                [(thread_id, m.role, m.content) for m in messages]
            )
