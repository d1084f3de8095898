"""Tests for SQLite persistence of sessions, scores and rule checks."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from behavior_scorer.errors import InvalidInputError
from behavior_scorer.retry import is_transient
from behavior_scorer.scoring import BehaviorScorer, RuleCheck
from behavior_scorer.store import (
    MIGRATIONS,
    RecordNotFoundError,
    ScoreStore,
    StoreValidationError,
)

TRANSCRIPT = "Confidence level: Confident\nOBJECTIVE: Test\nQuery local-memory first"


def test_migrations_are_applied_once(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "scores.db"
    with ScoreStore(db_path) as store:
        assert store.migration_version() == MIGRATIONS[-1].version
    with ScoreStore(db_path) as store:
        assert store.migration_version() == MIGRATIONS[-1].version
        assert store.get_stats().sessions == 0


def test_session_crud_round_trip() -> None:
    with ScoreStore() as store:
        created = store.create_session("s1", source="test", transcript_path="/tmp/s1.md")
        assert created.source == "test"

        updated = store.update_session("s1", metadata='{"agent": "a"}')
        assert updated.metadata == '{"agent": "a"}'
        assert updated.transcript_path == "/tmp/s1.md"
        assert updated.updated_at >= created.updated_at

        assert [record.id for record in store.list_sessions()] == ["s1"]
        assert store.delete_session("s1") is True
        assert store.delete_session("s1") is False
        with pytest.raises(RecordNotFoundError):
            store.get_session("s1")


def test_create_session_validates_identifier_and_uniqueness() -> None:
    with ScoreStore() as store:
        with pytest.raises(InvalidInputError):
            store.create_session("../etc/passwd")
        store.create_session("dup")
        with pytest.raises(StoreValidationError, match="Invalid data"):
            store.create_session("dup")


def test_save_session_score_persists_score_and_checks() -> None:
    score = BehaviorScorer().score_session("saved", TRANSCRIPT)
    with ScoreStore() as store:
        record = store.save_session_score(score, source="cli", transcript_path="saved.md")
        checks = store.get_score_rule_checks(record.id)

        assert record.session_id == "saved"
        assert record.passed_rules == score.passed_rules
        assert record.scored_at == score.timestamp
        assert [check.rule_id for check in checks] == [check.rule_id for check in score.rules]
        assert store.get_session("saved").transcript_path == "saved.md"

        store.save_session_score(score)
        assert len(store.get_session_scores("saved")) == 2
        assert store.get_stats().sessions == 1


def test_deleting_session_cascades_to_scores_and_checks() -> None:
    score = BehaviorScorer().score_session("cascade", TRANSCRIPT)
    with ScoreStore() as store:
        record = store.save_session_score(score)
        assert store.delete_session("cascade") is True

        stats = store.get_stats()
        assert (stats.sessions, stats.scores, stats.rule_checks) == (0, 0, 0)
        with pytest.raises(RecordNotFoundError):
            store.get_score(record.id)


def test_deleting_score_cascades_to_rule_checks() -> None:
    with ScoreStore() as store:
        record = store.save_session_score(BehaviorScorer().score_session("one", TRANSCRIPT))
        assert store.delete_score(record.id) is True
        assert store.get_score_rule_checks(record.id) == []
        assert store.get_session("one").id == "one"


def test_create_score_rejects_invalid_values_and_unknown_session() -> None:
    with ScoreStore() as store:
        store.create_session("s1")
        with pytest.raises(StoreValidationError, match="score_percentage"):
            store.create_score(
                "s1", total_rules=8, passed_rules=4, score_percentage=120.0, summary="x"
            )
        with pytest.raises(StoreValidationError, match="cannot exceed"):
            store.create_score(
                "s1", total_rules=2, passed_rules=3, score_percentage=50.0, summary="x"
            )
        with pytest.raises(StoreValidationError):
            store.create_score(
                "missing", total_rules=1, passed_rules=1, score_percentage=100.0, summary="x"
            )


def test_latest_score_and_history_are_newest_first() -> None:
    base_time = datetime(2026, 1, 1, tzinfo=UTC)
    with ScoreStore() as store:
        store.create_session("s1")
        older = store.create_score(
            "s1",
            total_rules=8,
            passed_rules=2,
            score_percentage=25.0,
            summary="old",
            scored_at=base_time,
        )
        newer = store.create_score(
            "s1",
            total_rules=8,
            passed_rules=8,
            score_percentage=100.0,
            summary="new",
            scored_at=base_time + timedelta(hours=1),
        )

        assert store.get_latest_score("s1").id == newer.id
        assert [record.id for record in store.list_scores()] == [newer.id, older.id]
        with pytest.raises(RecordNotFoundError):
            store.get_latest_score("nobody")


def test_rule_checks_history_and_pass_rate() -> None:
    with ScoreStore() as store:
        store.create_session("s1")
        score = store.create_score(
            "s1", total_rules=1, passed_rules=1, score_percentage=100.0, summary="x"
        )
        passed = store.create_rule_check(score.id, _check("binary_decision", passed=True))
        store.create_rule_check(score.id, _check("binary_decision", passed=False))
        store.create_rule_check(score.id, _check("no_email_trust", passed=False))

        assert store.get_rule_check(passed.id).evidence == "Ship now? Y/N"
        assert len(store.get_rule_history("binary_decision")) == 2
        assert store.get_rule_pass_rate("binary_decision") == 50.0
        assert store.get_rule_pass_rate("unknown") == 0.0
        assert store.delete_rule_check(passed.id) is True
        assert store.get_rule_pass_rate("binary_decision") == 0.0


def test_average_and_distribution() -> None:
    with ScoreStore() as store:
        store.create_session("s1")
        for percentage in (95.0, 80.0, 60.0, 10.0):
            store.create_score(
                "s1",
                total_rules=8,
                passed_rules=1,
                score_percentage=percentage,
                summary="x",
            )

        assert store.get_average_score() == pytest.approx(61.25)
        distribution = store.get_score_distribution().to_dict()
        assert distribution == {"excellent": 1, "good": 1, "moderate": 1, "poor": 1}


def test_empty_store_analytics_are_zero() -> None:
    with ScoreStore() as store:
        assert store.get_average_score() == 0.0
        assert store.get_stats().to_dict() == {
            "sessions": 0,
            "scores": 0,
            "rule_checks": 0,
            "avg_score": 0.0,
        }


def test_store_errors_carry_retry_classification() -> None:
    with ScoreStore() as store:
        with pytest.raises(RecordNotFoundError) as exc_info:
            store.get_score(42)
    assert is_transient(exc_info.value) is False


def _check(rule_id: str, *, passed: bool) -> RuleCheck:
    return RuleCheck(
        rule_id=rule_id,
        rule_name=rule_id,
        description=f"Should follow {rule_id}",
        passed=passed,
        confidence=1.0 if passed else 0.0,
        evidence="Ship now? Y/N" if passed else None,
        suggestion=None if passed else f"Consider: Should follow {rule_id}",
    )
