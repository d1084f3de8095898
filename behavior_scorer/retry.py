"""Bounded exponential-backoff retry for scoring and storage operations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from behavior_scorer.errors import MaxRetriesExceededError, ScorerError
from behavior_scorer.scoring import BehaviorScorer, SessionScore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Only consulted for exceptions that carry no explicit transient tag.
TRANSIENT_MESSAGE_MARKERS = ("database", "timeout")


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Retry budget and backoff schedule. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("base_delay and max_delay must be non-negative")
        if self.backoff_multiplier < 1.0:
            raise ValueError(
                f"backoff_multiplier must be >= 1.0, got {self.backoff_multiplier}"
            )

    def delays(self) -> list[float]:
        """Return the sleeps taken between attempts when every attempt fails."""
        schedule: list[float] = []
        delay = min(self.base_delay, self.max_delay)
        for _ in range(self.max_attempts - 1):
            schedule.append(delay)
            delay = min(delay * self.backoff_multiplier, self.max_delay)
        return schedule


def is_transient(exc: BaseException) -> bool:
    """Classify a failure as retry-eligible.

    Tagged ``ScorerError`` instances are classified by their tag. Untagged
    exceptions count as transient when they are timeouts or their message
    mentions "database" or "timeout" (lowercase, matched case-sensitively).
    """
    tag = getattr(exc, "transient", None) if isinstance(exc, ScorerError) else None
    if tag is not None:
        return bool(tag)
    if isinstance(exc, TimeoutError):
        return True
    message = str(exc)
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


async def retry_with_backoff(
    config: RetryConfig,
    operation: Callable[[], Awaitable[T]],
    *,
    classify: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Run operation, retrying transient failures with capped exponential backoff.

    Permanent failures are re-raised unchanged after a single attempt. When
    the attempt budget is spent on transient failures, MaxRetriesExceededError
    is raised with the last failure attached.
    """
    delay = min(config.base_delay, config.max_delay)
    attempt = 0
    while True:
        attempt += 1
        try:
            result = await operation()
        except Exception as exc:
            if not classify(exc):
                logger.debug("Attempt %d failed with permanent error: %s", attempt, exc)
                raise
            if attempt >= config.max_attempts:
                logger.error(
                    "All %d retry attempts exhausted, last error: %s",
                    config.max_attempts,
                    exc,
                )
                raise MaxRetriesExceededError(exc, attempt) from exc
            logger.warning(
                "Attempt %d/%d failed with transient error, retrying in %.2fs: %s",
                attempt,
                config.max_attempts,
                delay,
                exc,
            )
            await sleep(delay)
            delay = min(delay * config.backoff_multiplier, config.max_delay)
            continue

        if attempt > 1:
            logger.info("Retry succeeded on attempt %d", attempt)
        return result


async def score_session_with_retry(
    scorer: BehaviorScorer,
    session_id: str,
    transcript: str,
    config: RetryConfig | None = None,
    *,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> SessionScore:
    """Score one session off the event loop, retrying transient failures."""
    effective = config or RetryConfig()
    return await retry_with_backoff(
        effective,
        lambda: asyncio.to_thread(scorer.score_session, session_id, transcript),
        sleep=sleep,
    )
