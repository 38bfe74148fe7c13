from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

from comment_stance.repositories.database import Database


@dataclass(frozen=True)
class AnalyzedCommentRecord:
    video_id: str
    comment_id: str
    text: str
    masked_username: str
    original_username: str
    published_at: str
    stance: str
    stance_source: str


@dataclass(frozen=True)
class StoredAnalyzedComment:
    record_id: str
    record: AnalyzedCommentRecord
    created_at: str


class AnalyzedCommentRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def save(self, record: AnalyzedCommentRecord) -> str:
        record_id = f"cmt_{uuid4().hex}"
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO analyzed_comments (
                    id, video_id, comment_id, text, masked_username, original_username,
                    published_at, stance, stance_source, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    record.video_id,
                    record.comment_id,
                    record.text,
                    record.masked_username,
                    record.original_username,
                    record.published_at,
                    record.stance,
                    record.stance_source,
                    datetime.now(UTC).isoformat(),
                ),
            )
        return record_id

    def list_for_video(self, video_id: str, *, limit: int = 500) -> list[StoredAnalyzedComment]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM analyzed_comments
                WHERE video_id = ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (video_id, max(1, limit)),
            ).fetchall()

        return [
            StoredAnalyzedComment(
                record_id=str(row["id"]),
                record=AnalyzedCommentRecord(
                    video_id=str(row["video_id"]),
                    comment_id=str(row["comment_id"]),
                    text=str(row["text"]),
                    masked_username=str(row["masked_username"]),
                    original_username=str(row["original_username"]),
                    published_at=str(row["published_at"]),
                    stance=str(row["stance"]),
                    stance_source=str(row["stance_source"]),
                ),
                created_at=str(row["created_at"]),
            )
            for row in rows
        ]
