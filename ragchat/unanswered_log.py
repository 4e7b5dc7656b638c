"""
Unanswered-question log.

Every question the knowledge base could not ground is appended here together
with the best candidate fragments and their top score, so the corpus can be
improved later. Records are only ever inserted; the chat path never reads
them back.
"""
import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import List

from . import config
from .models.rag_models import UnansweredRecord

logger = logging.getLogger(__name__)


class UnansweredLog:
    def __init__(self, db_path: str = None):
        self.db_path = db_path or config.UNANSWERED_LOG_DB_PATH

    @contextmanager
    def get_conn(self):
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def init(self):
        """Initialize the unanswered log database"""
        directory = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(directory, exist_ok=True)
        with self.get_conn() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS unanswered (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                message TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                context_fragments TEXT NOT NULL,
                top_score REAL NOT NULL
            )
            """)

            # Create index for faster lookups
            try:
                conn.execute("CREATE INDEX IF NOT EXISTS idx_unanswered_session ON unanswered(session_id, id)")
            except sqlite3.OperationalError:
                pass

            conn.commit()

    def append(self, record: UnansweredRecord):
        """
        Append one unanswered question.

        Args:
            record: The question, when it was asked, the best candidate
                    fragments and their top similarity score.
        """
        with self.get_conn() as conn:
            conn.execute(
                "INSERT INTO unanswered (session_id, message, timestamp, context_fragments, top_score) VALUES (?, ?, ?, ?, ?)",
                (
                    record.session_id,
                    record.message,
                    record.timestamp.isoformat(),
                    json.dumps(list(record.context_fragments), ensure_ascii=False),
                    float(record.top_score),
                ),
            )
            conn.commit()
        logger.info(f"[UNANSWERED] Logged question for session {record.session_id} (top score {record.top_score:.3f})")

    def records_for(self, session_id: str) -> List[UnansweredRecord]:
        """Every record of one session, oldest first (triage tooling only)."""
        with self.get_conn() as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                """SELECT session_id, message, timestamp, context_fragments, top_score
                   FROM unanswered
                   WHERE session_id = ?
                   ORDER BY id ASC""",
                (session_id,)
            )
            return [
                UnansweredRecord(
                    session_id=row["session_id"],
                    message=row["message"],
                    timestamp=datetime.fromisoformat(row["timestamp"]),
                    context_fragments=tuple(json.loads(row["context_fragments"])),
                    top_score=row["top_score"],
                )
                for row in cursor.fetchall()
            ]
