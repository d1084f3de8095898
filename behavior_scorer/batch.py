"""Concurrent batch scoring backed by the score cache."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any

from behavior_scorer.cache import ScoreCache
from behavior_scorer.scoring import BehaviorScorer, SessionScore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BatchResult:
    """One batch outcome: a score or the error that prevented it."""

    session_id: str
    score: SessionScore | None = None
    error: str | None = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.score is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "ok": self.ok,
            "cached": self.cached,
            "error": self.error,
            "score": self.score.to_dict() if self.score is not None else None,
        }


async def score_sessions_batch(
    scorer: BehaviorScorer,
    sessions: Sequence[tuple[str, str]],
    cache: ScoreCache,
    *,
    executor: Executor | None = None,
) -> list[BatchResult]:
    """Score (session_id, transcript) pairs concurrently.

    Cache hits are returned without touching the engine. Misses run in the
    executor (the loop default when None) as independent tasks; a failure in
    one never affects the others. Exactly one result is returned per input,
    in input order.
    """
    results: list[BatchResult | None] = [None] * len(sessions)
    pending: list[tuple[int, str]] = []
    tasks: list[asyncio.Task[SessionScore]] = []

    for index, (session_id, transcript) in enumerate(sessions):
        cached = await cache.get(session_id)
        if cached is not None:
            results[index] = BatchResult(session_id=session_id, score=cached, cached=True)
            continue
        pending.append((index, session_id))
        tasks.append(
            asyncio.create_task(
                _score_and_cache(scorer, cache, session_id, transcript, executor=executor)
            )
        )

    outcomes = await asyncio.gather(*tasks, return_exceptions=True)
    for (index, session_id), outcome in zip(pending, outcomes, strict=True):
        if isinstance(outcome, Exception):
            logger.warning("Failed to score %s: %s", session_id, outcome)
            results[index] = BatchResult(session_id=session_id, error=str(outcome))
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            results[index] = BatchResult(session_id=session_id, score=outcome)

    final = [result for result in results if result is not None]
    logger.info(
        "Batch scored %d session(s): %d cached, %d computed, %d failed",
        len(final),
        sum(1 for result in final if result.cached),
        sum(1 for result in final if result.ok and not result.cached),
        sum(1 for result in final if not result.ok),
    )
    return final


async def _score_and_cache(
    scorer: BehaviorScorer,
    cache: ScoreCache,
    session_id: str,
    transcript: str,
    *,
    executor: Executor | None,
) -> SessionScore:
    loop = asyncio.get_running_loop()
    score = await loop.run_in_executor(executor, scorer.score_session, session_id, transcript)
    await cache.set(session_id, score)
    return score
