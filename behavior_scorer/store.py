"""SQLite persistence for sessions, scores and rule checks.

The scoring engine never writes here; callers (the CLI) persist a
``SessionScore`` after it has been computed. Deleting a session removes its
scores, and deleting a score removes its rule checks.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from behavior_scorer.errors import ScorerError
from behavior_scorer.scoring import RuleCheck, SessionScore
from behavior_scorer.validation import validate_session_id

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"
DEFAULT_LIST_LIMIT = 100


class StoreError(ScorerError):
    """Storage failure; ``transient`` is set per failure."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class RecordNotFoundError(StoreError):
    """Raised when a requested record does not exist."""


class StoreValidationError(StoreError, ValueError):
    """Raised when a record violates a storage constraint."""


@dataclass(frozen=True, slots=True)
class _Migration:
    version: int
    name: str
    sql: str


MIGRATIONS: tuple[_Migration, ...] = (
    _Migration(
        version=1,
        name="create_sessions_table",
        sql="""
        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            source TEXT NOT NULL DEFAULT 'unknown',
            transcript_path TEXT,
            metadata TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_sessions_created_at ON sessions(created_at);
        CREATE INDEX IF NOT EXISTS idx_sessions_source ON sessions(source);
        """,
    ),
    _Migration(
        version=2,
        name="create_scores_table",
        sql="""
        CREATE TABLE IF NOT EXISTS scores (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            scored_at TEXT NOT NULL,
            total_rules INTEGER NOT NULL DEFAULT 0,
            passed_rules INTEGER NOT NULL DEFAULT 0,
            score_percentage REAL NOT NULL DEFAULT 0.0,
            summary TEXT NOT NULL DEFAULT '',
            FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
        );
        CREATE INDEX IF NOT EXISTS idx_scores_session_id ON scores(session_id);
        CREATE INDEX IF NOT EXISTS idx_scores_scored_at ON scores(scored_at);
        CREATE INDEX IF NOT EXISTS idx_scores_percentage ON scores(score_percentage);
        """,
    ),
    _Migration(
        version=3,
        name="create_rule_checks_table",
        sql="""
        CREATE TABLE IF NOT EXISTS rule_checks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            score_id INTEGER NOT NULL,
            rule_id TEXT NOT NULL,
            rule_name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            passed INTEGER NOT NULL DEFAULT 0,
            confidence REAL NOT NULL DEFAULT 0.0,
            evidence TEXT,
            suggestion TEXT,
            FOREIGN KEY (score_id) REFERENCES scores(id) ON DELETE CASCADE
        );
        CREATE INDEX IF NOT EXISTS idx_rule_checks_score_id ON rule_checks(score_id);
        CREATE INDEX IF NOT EXISTS idx_rule_checks_rule_id ON rule_checks(rule_id);
        CREATE INDEX IF NOT EXISTS idx_rule_checks_passed ON rule_checks(passed);
        """,
    ),
)


@dataclass(frozen=True, slots=True)
class SessionRecord:
    id: str
    created_at: datetime
    updated_at: datetime
    source: str
    transcript_path: str | None = None
    metadata: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": _to_text(self.created_at),
            "updated_at": _to_text(self.updated_at),
            "source": self.source,
            "transcript_path": self.transcript_path,
            "metadata": self.metadata,
        }


@dataclass(frozen=True, slots=True)
class ScoreRecord:
    id: int
    session_id: str
    scored_at: datetime
    total_rules: int
    passed_rules: int
    score_percentage: float
    summary: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "scored_at": _to_text(self.scored_at),
            "total_rules": self.total_rules,
            "passed_rules": self.passed_rules,
            "score_percentage": self.score_percentage,
            "summary": self.summary,
        }


@dataclass(frozen=True, slots=True)
class RuleCheckRecord:
    id: int
    score_id: int
    rule_id: str
    rule_name: str
    description: str
    passed: bool
    confidence: float
    evidence: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "score_id": self.score_id,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "description": self.description,
            "passed": self.passed,
            "confidence": self.confidence,
            "evidence": self.evidence,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True, slots=True)
class ScoreDistribution:
    """Score counts per summary band (>=90, 75-90, 50-75, <50)."""

    excellent: int
    good: int
    moderate: int
    poor: int

    def to_dict(self) -> dict[str, int]:
        return {
            "excellent": self.excellent,
            "good": self.good,
            "moderate": self.moderate,
            "poor": self.poor,
        }


@dataclass(frozen=True, slots=True)
class StoreStats:
    sessions: int
    scores: int
    rule_checks: int
    avg_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessions": self.sessions,
            "scores": self.scores,
            "rule_checks": self.rule_checks,
            "avg_score": self.avg_score,
        }


class ScoreStore:
    """Thread-safe SQLite store. One connection, serialized by a lock."""

    def __init__(self, path: Path | str = MEMORY_DATABASE) -> None:
        target = str(path)
        if target != MEMORY_DATABASE:
            Path(target).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(target, timeout=30, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreError(f"database connection failed: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON;")
        self._lock = threading.Lock()
        self._path = target
        self._run_migrations()

    def __enter__(self) -> ScoreStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # Migrations

    def migration_version(self) -> int:
        with self._cursor() as cur:
            row = cur.execute("SELECT MAX(version) AS version FROM schema_migrations").fetchone()
        return int(row["version"] or 0)

    def _run_migrations(self) -> None:
        with self._transaction() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at TEXT NOT NULL
                )
                """
            )
            row = cur.execute("SELECT MAX(version) AS version FROM schema_migrations").fetchone()
            current = int(row["version"] or 0)

        for migration in MIGRATIONS:
            if migration.version <= current:
                continue
            with self._transaction() as cur:
                for statement in _split_statements(migration.sql):
                    cur.execute(statement)
                cur.execute(
                    "INSERT INTO schema_migrations (version, name, applied_at) VALUES (?, ?, ?)",
                    (migration.version, migration.name, _to_text(_now())),
                )
            logger.info(
                "Applied migration %d (%s) to %s", migration.version, migration.name, self._path
            )

    # Sessions

    def create_session(
        self,
        session_id: str,
        *,
        source: str = "unknown",
        transcript_path: str | None = None,
        metadata: str | None = None,
    ) -> SessionRecord:
        validate_session_id(session_id)
        now = _to_text(_now())
        with self._transaction() as cur:
            cur.execute(
                """
                INSERT INTO sessions (id, created_at, updated_at, source, transcript_path, metadata)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (session_id, now, now, source, transcript_path, metadata),
            )
        return self.get_session(session_id)

    def get_session(self, session_id: str) -> SessionRecord:
        with self._cursor() as cur:
            row = cur.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            raise RecordNotFoundError(f"Session not found: {session_id}")
        return _session_from_row(row)

    def list_sessions(self, limit: int = DEFAULT_LIST_LIMIT) -> list[SessionRecord]:
        with self._cursor() as cur:
            rows = cur.execute(
                "SELECT * FROM sessions ORDER BY created_at DESC, id LIMIT ?",
                (limit,),
            ).fetchall()
        return [_session_from_row(row) for row in rows]

    def update_session(
        self,
        session_id: str,
        *,
        source: str | None = None,
        transcript_path: str | None = None,
        metadata: str | None = None,
    ) -> SessionRecord:
        current = self.get_session(session_id)
        with self._transaction() as cur:
            cur.execute(
                """
                UPDATE sessions
                SET updated_at = ?, source = ?, transcript_path = ?, metadata = ?
                WHERE id = ?
                """,
                (
                    _to_text(_now()),
                    source if source is not None else current.source,
                    transcript_path if transcript_path is not None else current.transcript_path,
                    metadata if metadata is not None else current.metadata,
                    session_id,
                ),
            )
        return self.get_session(session_id)

    def delete_session(self, session_id: str) -> bool:
        with self._transaction() as cur:
            cur.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            return cur.rowcount > 0

    # Scores

    def create_score(
        self,
        session_id: str,
        *,
        total_rules: int,
        passed_rules: int,
        score_percentage: float,
        summary: str,
        scored_at: datetime | None = None,
    ) -> ScoreRecord:
        _validate_score_values(total_rules, passed_rules, score_percentage)
        with self._transaction() as cur:
            score_id = self._insert_score(
                cur,
                session_id,
                scored_at=scored_at or _now(),
                total_rules=total_rules,
                passed_rules=passed_rules,
                score_percentage=score_percentage,
                summary=summary,
            )
        return self.get_score(score_id)

    def save_session_score(
        self,
        score: SessionScore,
        *,
        source: str = "cli",
        transcript_path: str | None = None,
    ) -> ScoreRecord:
        """Persist a score and its rule checks, creating the session if needed."""
        _validate_score_values(score.total_rules, score.passed_rules, score.score_percentage)
        now = _to_text(_now())
        with self._transaction() as cur:
            cur.execute(
                """
                INSERT INTO sessions (id, created_at, updated_at, source, transcript_path)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    updated_at = excluded.updated_at,
                    transcript_path = COALESCE(excluded.transcript_path, sessions.transcript_path)
                """,
                (score.session_id, now, now, source, transcript_path),
            )
            score_id = self._insert_score(
                cur,
                score.session_id,
                scored_at=score.timestamp,
                total_rules=score.total_rules,
                passed_rules=score.passed_rules,
                score_percentage=score.score_percentage,
                summary=score.summary,
            )
            for check in score.rules:
                self._insert_rule_check(cur, score_id, check)
        return self.get_score(score_id)

    def get_score(self, score_id: int) -> ScoreRecord:
        with self._cursor() as cur:
            row = cur.execute("SELECT * FROM scores WHERE id = ?", (score_id,)).fetchone()
        if row is None:
            raise RecordNotFoundError(f"Score not found: {score_id}")
        return _score_from_row(row)

    def get_session_scores(self, session_id: str) -> list[ScoreRecord]:
        with self._cursor() as cur:
            rows = cur.execute(
                "SELECT * FROM scores WHERE session_id = ? ORDER BY scored_at DESC, id DESC",
                (session_id,),
            ).fetchall()
        return [_score_from_row(row) for row in rows]

    def get_latest_score(self, session_id: str) -> ScoreRecord:
        scores = self.get_session_scores(session_id)
        if not scores:
            raise RecordNotFoundError(f"No scores for session: {session_id}")
        return scores[0]

    def list_scores(self, limit: int = DEFAULT_LIST_LIMIT) -> list[ScoreRecord]:
        with self._cursor() as cur:
            rows = cur.execute(
                "SELECT * FROM scores ORDER BY scored_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_score_from_row(row) for row in rows]

    def delete_score(self, score_id: int) -> bool:
        with self._transaction() as cur:
            cur.execute("DELETE FROM scores WHERE id = ?", (score_id,))
            return cur.rowcount > 0

    # Rule checks

    def create_rule_check(self, score_id: int, check: RuleCheck) -> RuleCheckRecord:
        with self._transaction() as cur:
            check_id = self._insert_rule_check(cur, score_id, check)
        return self.get_rule_check(check_id)

    def get_rule_check(self, check_id: int) -> RuleCheckRecord:
        with self._cursor() as cur:
            row = cur.execute("SELECT * FROM rule_checks WHERE id = ?", (check_id,)).fetchone()
        if row is None:
            raise RecordNotFoundError(f"Rule check not found: {check_id}")
        return _rule_check_from_row(row)

    def get_score_rule_checks(self, score_id: int) -> list[RuleCheckRecord]:
        with self._cursor() as cur:
            rows = cur.execute(
                "SELECT * FROM rule_checks WHERE score_id = ? ORDER BY id",
                (score_id,),
            ).fetchall()
        return [_rule_check_from_row(row) for row in rows]

    def get_rule_history(
        self, rule_id: str, limit: int = DEFAULT_LIST_LIMIT
    ) -> list[RuleCheckRecord]:
        with self._cursor() as cur:
            rows = cur.execute(
                """
                SELECT rc.* FROM rule_checks rc
                JOIN scores s ON rc.score_id = s.id
                WHERE rc.rule_id = ?
                ORDER BY s.scored_at DESC, rc.id DESC
                LIMIT ?
                """,
                (rule_id, limit),
            ).fetchall()
        return [_rule_check_from_row(row) for row in rows]

    def get_rule_pass_rate(self, rule_id: str) -> float:
        """Percentage of recorded checks for rule_id that passed (0 when none)."""
        with self._cursor() as cur:
            row = cur.execute(
                """
                SELECT COUNT(*) AS total, SUM(CASE WHEN passed THEN 1 ELSE 0 END) AS passed
                FROM rule_checks WHERE rule_id = ?
                """,
                (rule_id,),
            ).fetchone()
        total = int(row["total"] or 0)
        if total == 0:
            return 0.0
        return int(row["passed"] or 0) / total * 100.0

    def delete_rule_check(self, check_id: int) -> bool:
        with self._transaction() as cur:
            cur.execute("DELETE FROM rule_checks WHERE id = ?", (check_id,))
            return cur.rowcount > 0

    # Analytics

    def get_average_score(self) -> float:
        with self._cursor() as cur:
            row = cur.execute("SELECT AVG(score_percentage) AS avg FROM scores").fetchone()
        return float(row["avg"] or 0.0)

    def get_score_distribution(self) -> ScoreDistribution:
        with self._cursor() as cur:
            row = cur.execute(
                """
                SELECT
                    SUM(CASE WHEN score_percentage >= 90 THEN 1 ELSE 0 END) AS excellent,
                    SUM(CASE WHEN score_percentage >= 75 AND score_percentage < 90
                        THEN 1 ELSE 0 END) AS good,
                    SUM(CASE WHEN score_percentage >= 50 AND score_percentage < 75
                        THEN 1 ELSE 0 END) AS moderate,
                    SUM(CASE WHEN score_percentage < 50 THEN 1 ELSE 0 END) AS poor
                FROM scores
                """
            ).fetchone()
        return ScoreDistribution(
            excellent=int(row["excellent"] or 0),
            good=int(row["good"] or 0),
            moderate=int(row["moderate"] or 0),
            poor=int(row["poor"] or 0),
        )

    def get_stats(self) -> StoreStats:
        with self._cursor() as cur:
            counts = {
                table: int(cur.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
                for table in ("sessions", "scores", "rule_checks")
            }
        return StoreStats(
            sessions=counts["sessions"],
            scores=counts["scores"],
            rule_checks=counts["rule_checks"],
            avg_score=self.get_average_score(),
        )

    # Internals

    def _insert_score(
        self,
        cur: sqlite3.Cursor,
        session_id: str,
        *,
        scored_at: datetime,
        total_rules: int,
        passed_rules: int,
        score_percentage: float,
        summary: str,
    ) -> int:
        cur.execute(
            """
            INSERT INTO scores (session_id, scored_at, total_rules, passed_rules,
                                score_percentage, summary)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (session_id, _to_text(scored_at), total_rules, passed_rules, score_percentage, summary),
        )
        return int(cur.lastrowid or 0)

    def _insert_rule_check(self, cur: sqlite3.Cursor, score_id: int, check: RuleCheck) -> int:
        cur.execute(
            """
            INSERT INTO rule_checks (score_id, rule_id, rule_name, description, passed,
                                     confidence, evidence, suggestion)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                score_id,
                check.rule_id,
                check.rule_name,
                check.description,
                int(check.passed),
                check.confidence,
                check.evidence,
                check.suggestion,
            ),
        )
        return int(cur.lastrowid or 0)

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        with self._lock, _translate_errors():
            cur = self._conn.cursor()
            try:
                yield cur
            finally:
                cur.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._lock, _translate_errors():
            cur = self._conn.cursor()
            try:
                yield cur
            except BaseException:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()
            finally:
                cur.close()


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as exc:
        raise StoreValidationError(f"Invalid data: {exc}") from exc
    except sqlite3.OperationalError as exc:
        raise StoreError(f"database operation failed: {exc}", transient=True) from exc
    except sqlite3.Error as exc:
        raise StoreError(f"database query failed: {exc}") from exc


def _validate_score_values(total_rules: int, passed_rules: int, score_percentage: float) -> None:
    if total_rules < 0 or passed_rules < 0:
        raise StoreValidationError("Rule counts must be non-negative")
    if passed_rules > total_rules:
        raise StoreValidationError(
            f"passed_rules ({passed_rules}) cannot exceed total_rules ({total_rules})"
        )
    if not 0.0 <= score_percentage <= 100.0:
        raise StoreValidationError(
            f"score_percentage must be within [0, 100], got {score_percentage}"
        )


def _split_statements(sql: str) -> list[str]:
    return [statement.strip() for statement in sql.split(";") if statement.strip()]


def _session_from_row(row: sqlite3.Row) -> SessionRecord:
    return SessionRecord(
        id=row["id"],
        created_at=_from_text(row["created_at"]),
        updated_at=_from_text(row["updated_at"]),
        source=row["source"],
        transcript_path=row["transcript_path"],
        metadata=row["metadata"],
    )


def _score_from_row(row: sqlite3.Row) -> ScoreRecord:
    return ScoreRecord(
        id=int(row["id"]),
        session_id=row["session_id"],
        scored_at=_from_text(row["scored_at"]),
        total_rules=int(row["total_rules"]),
        passed_rules=int(row["passed_rules"]),
        score_percentage=float(row["score_percentage"]),
        summary=row["summary"],
    )


def _rule_check_from_row(row: sqlite3.Row) -> RuleCheckRecord:
    return RuleCheckRecord(
        id=int(row["id"]),
        score_id=int(row["score_id"]),
        rule_id=row["rule_id"],
        rule_name=row["rule_name"],
        description=row["description"],
        passed=bool(row["passed"]),
        confidence=float(row["confidence"]),
        evidence=row["evidence"],
        suggestion=row["suggestion"],
    )


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _to_text(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _from_text(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
