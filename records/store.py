from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from schemas.api import SessionSummary, StoredTrial, TrialSubmission


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: datetime | str | None) -> str:
    if value is None:
        return _now()
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class TrialStore(Protocol):
    def save_trial(self, submission: TrialSubmission) -> StoredTrial:
        ...

    def mark_complete(self, session_id: str, total_trials: int, completed_at: datetime | str | None = None) -> SessionSummary:
        ...

    def get_session(self, session_id: str) -> Optional[SessionSummary]:
        ...

    def list_trials(self, session_id: str) -> List[StoredTrial]:
        ...


class InMemoryTrialStore:
    """Dict-backed store; trials are upserted on (session_id, trial_number)."""

    def __init__(self):
        self._sessions: Dict[str, SessionSummary] = {}
        self._trials: Dict[Tuple[str, int], StoredTrial] = {}

    def _ensure_session(self, session_id: str, user_agent: str = "", screen_resolution: str = "", first_trial_at: Optional[int] = None) -> SessionSummary:
        session = self._sessions.get(session_id)
        if session is None:
            session = SessionSummary(
                session_id=session_id,
                user_agent=user_agent,
                screen_resolution=screen_resolution,
                first_trial_at=first_trial_at,
                created_at=_now(),
            )
            self._sessions[session_id] = session
        return session

    def save_trial(self, submission: TrialSubmission) -> StoredTrial:
        trial = submission.trial
        session = self._ensure_session(
            submission.session_id,
            submission.user_agent,
            submission.screen_resolution,
            first_trial_at=trial.timestamp,
        )
        stored = StoredTrial(
            session_id=submission.session_id,
            trial_number=trial.trial_number,
            stimulus_id=trial.stimulus_id,
            character=trial.character,
            reaction_time=trial.reaction_time,
            timestamp=trial.timestamp,
            was_paused=trial.was_paused,
            timed_out=trial.timed_out,
            saved_at=_now(),
        )
        self._trials[(submission.session_id, trial.trial_number)] = stored
        if session.first_trial_at is None:
            session.first_trial_at = trial.timestamp
        session.last_trial_at = trial.timestamp
        return stored

    def mark_complete(self, session_id: str, total_trials: int, completed_at: datetime | str | None = None) -> SessionSummary:
        session = self._ensure_session(session_id)
        session.total_trials = total_trials
        if session.completed_at is None:
            session.completed_at = _iso(completed_at)
        return session

    def get_session(self, session_id: str) -> Optional[SessionSummary]:
        return self._sessions.get(session_id)

    def list_trials(self, session_id: str) -> List[StoredTrial]:
        trials = [t for (sid, _), t in self._trials.items() if sid == session_id]
        return sorted(trials, key=lambda t: t.trial_number)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        user_agent TEXT NOT NULL,
        screen_resolution TEXT NOT NULL,
        total_trials INTEGER NOT NULL DEFAULT 0,
        first_trial_at INTEGER,
        last_trial_at INTEGER,
        completed_at TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS trials (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        trial_number INTEGER NOT NULL,
        stimulus_id INTEGER NOT NULL,
        character TEXT,
        reaction_time REAL NOT NULL,
        timestamp INTEGER NOT NULL,
        was_paused BOOLEAN NOT NULL DEFAULT 0,
        timed_out BOOLEAN NOT NULL DEFAULT 0,
        saved_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (session_id) REFERENCES sessions(id),
        UNIQUE(session_id, trial_number)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_trials_session_id ON trials(session_id);",
    "CREATE INDEX IF NOT EXISTS idx_sessions_completed_at ON sessions(completed_at);",
]


class SqliteTrialStore:
    """SQLite-backed store mirroring the sessions/trials schema."""

    def __init__(self, path: str | Path, create_tables: bool = True):
        self.path = Path(path)
        if create_tables:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._ensure_tables()

    @contextmanager
    def _connection(self):
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._connection() as conn:
            for stmt in SCHEMA:
                conn.execute(stmt)

    def save_trial(self, submission: TrialSubmission) -> StoredTrial:
        trial = submission.trial
        saved_at = _now()
        with self._connection() as conn:
            # session row first, trials reference it
            conn.execute(
                "INSERT OR IGNORE INTO sessions (id, user_agent, screen_resolution, first_trial_at, created_at) VALUES (?, ?, ?, ?, ?)",
                (submission.session_id, submission.user_agent, submission.screen_resolution, trial.timestamp, saved_at),
            )
            conn.execute(
                """
                INSERT INTO trials (
                    session_id, trial_number, stimulus_id, character,
                    reaction_time, timestamp, was_paused, timed_out, saved_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (session_id, trial_number) DO UPDATE SET
                    stimulus_id = excluded.stimulus_id,
                    character = excluded.character,
                    reaction_time = excluded.reaction_time,
                    timestamp = excluded.timestamp,
                    was_paused = excluded.was_paused,
                    timed_out = excluded.timed_out,
                    saved_at = excluded.saved_at
                """,
                (
                    submission.session_id,
                    trial.trial_number,
                    trial.stimulus_id,
                    trial.character,
                    trial.reaction_time,
                    trial.timestamp,
                    1 if trial.was_paused else 0,
                    1 if trial.timed_out else 0,
                    saved_at,
                ),
            )
            conn.execute(
                "UPDATE sessions SET last_trial_at = ? WHERE id = ?",
                (trial.timestamp, submission.session_id),
            )
        return StoredTrial(
            session_id=submission.session_id,
            trial_number=trial.trial_number,
            stimulus_id=trial.stimulus_id,
            character=trial.character,
            reaction_time=trial.reaction_time,
            timestamp=trial.timestamp,
            was_paused=trial.was_paused,
            timed_out=trial.timed_out,
            saved_at=saved_at,
        )

    def mark_complete(self, session_id: str, total_trials: int, completed_at: datetime | str | None = None) -> SessionSummary:
        with self._connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO sessions (id, user_agent, screen_resolution, created_at) VALUES (?, '', '', ?)",
                (session_id, _now()),
            )
            conn.execute(
                "UPDATE sessions SET total_trials = ?, completed_at = COALESCE(completed_at, ?) WHERE id = ?",
                (total_trials, _iso(completed_at), session_id),
            )
        session = self.get_session(session_id)
        assert session is not None
        return session

    def get_session(self, session_id: str) -> Optional[SessionSummary]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        return SessionSummary(
            session_id=row["id"],
            user_agent=row["user_agent"],
            screen_resolution=row["screen_resolution"],
            total_trials=row["total_trials"],
            first_trial_at=row["first_trial_at"],
            last_trial_at=row["last_trial_at"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
        )

    def list_trials(self, session_id: str) -> List[StoredTrial]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM trials WHERE session_id = ? ORDER BY trial_number",
                (session_id,),
            ).fetchall()
        return [
            StoredTrial(
                session_id=row["session_id"],
                trial_number=row["trial_number"],
                stimulus_id=row["stimulus_id"],
                character=row["character"],
                reaction_time=row["reaction_time"],
                timestamp=row["timestamp"],
                was_paused=bool(row["was_paused"]),
                timed_out=bool(row["timed_out"]),
                saved_at=row["saved_at"],
            )
            for row in rows
        ]
