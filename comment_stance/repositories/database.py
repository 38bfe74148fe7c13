from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS analyzed_comments (
    id TEXT PRIMARY KEY,
    video_id TEXT NOT NULL,
    comment_id TEXT NOT NULL,
    text TEXT NOT NULL,
    masked_username TEXT NOT NULL,
    original_username TEXT NOT NULL,
    published_at TEXT NOT NULL,
    stance TEXT NOT NULL CHECK (stance IN ('agree', 'disagree', 'neutral')),
    stance_source TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_analyzed_comments_video_id
ON analyzed_comments(video_id);

CREATE INDEX IF NOT EXISTS idx_analyzed_comments_video_created
ON analyzed_comments(video_id, created_at DESC);
"""


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA_SQL)
