"""Tests for the retry executor."""

from __future__ import annotations

import logging

import pytest

from behavior_scorer.errors import (
    InvalidInputError,
    MaxRetriesExceededError,
    PermanentError,
    TransientError,
)
from behavior_scorer.retry import (
    RetryConfig,
    is_transient,
    retry_with_backoff,
    score_session_with_retry,
)
from behavior_scorer.scoring import BehaviorScorer
from behavior_scorer.store import StoreError


@pytest.mark.asyncio
async def test_transient_failures_exhaust_attempts(caplog: pytest.LogCaptureFixture) -> None:
    calls = _Calls([TransientError("database is locked")] * 5)
    sleeps: list[float] = []

    with caplog.at_level(logging.WARNING, logger="behavior_scorer"):
        with pytest.raises(MaxRetriesExceededError) as exc_info:
            await retry_with_backoff(RetryConfig(max_attempts=3), calls, sleep=_record(sleeps))

    assert calls.count == 3
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, TransientError)
    assert sleeps == [1.0, 2.0]
    assert "All 3 retry attempts exhausted" in caplog.text


@pytest.mark.asyncio
async def test_permanent_failure_is_raised_after_one_attempt() -> None:
    calls = _Calls([PermanentError("bad config")])
    sleeps: list[float] = []

    with pytest.raises(PermanentError, match="bad config"):
        await retry_with_backoff(RetryConfig(max_attempts=5), calls, sleep=_record(sleeps))

    assert calls.count == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_recovers_after_transient_failure() -> None:
    calls = _Calls([TimeoutError("slow"), "done"])
    sleeps: list[float] = []

    result = await retry_with_backoff(RetryConfig(base_delay=0.5), calls, sleep=_record(sleeps))

    assert result == "done"
    assert calls.count == 2
    assert sleeps == [0.5]


@pytest.mark.asyncio
async def test_delay_is_capped_at_max_delay() -> None:
    config = RetryConfig(max_attempts=5, base_delay=10.0, max_delay=25.0, backoff_multiplier=3.0)
    sleeps: list[float] = []

    with pytest.raises(MaxRetriesExceededError):
        await retry_with_backoff(
            config, _Calls([TransientError("again")] * 5), sleep=_record(sleeps)
        )

    assert sleeps == [10.0, 25.0, 25.0, 25.0]
    assert config.delays() == sleeps


def test_classification_prefers_tags_over_message_text() -> None:
    assert is_transient(TransientError("anything")) is True
    assert is_transient(PermanentError("database timeout")) is False
    assert is_transient(InvalidInputError("Invalid session ID")) is False
    assert is_transient(StoreError("database operation failed", transient=True)) is True
    assert is_transient(RuntimeError("database connection reset")) is True
    assert is_transient(RuntimeError("request timeout")) is True
    assert is_transient(TimeoutError()) is True
    assert is_transient(RuntimeError("bad value")) is False


def test_message_fallback_is_case_sensitive() -> None:
    assert is_transient(RuntimeError("Database connection reset")) is False
    assert is_transient(RuntimeError("Timeout waiting for lock")) is False
    assert is_transient(RuntimeError("DATABASE unavailable")) is False


def test_retry_config_validation() -> None:
    with pytest.raises(ValueError):
        RetryConfig(max_attempts=0)
    with pytest.raises(ValueError):
        RetryConfig(backoff_multiplier=0.5)
    with pytest.raises(ValueError):
        RetryConfig(base_delay=-1.0)
    assert RetryConfig(max_attempts=1).delays() == []


@pytest.mark.asyncio
async def test_score_session_with_retry_does_not_retry_invalid_input() -> None:
    sleeps: list[float] = []
    with pytest.raises(InvalidInputError):
        await score_session_with_retry(
            BehaviorScorer(), "../etc/passwd", "text", sleep=_record(sleeps)
        )
    assert sleeps == []


@pytest.mark.asyncio
async def test_score_session_with_retry_returns_score() -> None:
    score = await score_session_with_retry(BehaviorScorer(), "ok", "OBJECTIVE: test")
    assert score.session_id == "ok"
    assert score.passed_rules >= 1


class _Calls:
    """Async operation that raises or returns the scripted outcomes in order."""

    def __init__(self, outcomes: list[object]) -> None:
        self._outcomes = list(outcomes)
        self.count = 0

    async def __call__(self) -> object:
        outcome = self._outcomes[self.count]
        self.count += 1
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _record(sleeps: list[float]):
    async def sleep(delay: float) -> None:
        sleeps.append(delay)

    return sleep
