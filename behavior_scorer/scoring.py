"""Rule evaluation engine."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from behavior_scorer.discovery import ScanOptions, iter_session_files
from behavior_scorer.errors import InvalidInputError
from behavior_scorer.rules import (
    CompiledRule,
    RuleDefinition,
    compile_rules,
    default_rule_definitions,
)
from behavior_scorer.rules.base import MatchSpan
from behavior_scorer.validation import (
    ensure_within,
    sanitize_path,
    session_id_from_filename,
    validate_session_id,
    validate_transcript,
)

logger = logging.getLogger(__name__)

MAX_EVIDENCE_CHARS = 200
EVIDENCE_ELLIPSIS = "..."


@dataclass(frozen=True, slots=True)
class RuleCheck:
    """Outcome of one rule for one transcript."""

    rule_id: str
    rule_name: str
    description: str
    passed: bool
    confidence: float
    evidence: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "description": self.description,
            "passed": self.passed,
            "confidence": self.confidence,
            "evidence": self.evidence,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True, slots=True)
class SessionScore:
    """Aggregate score for one transcript."""

    session_id: str
    timestamp: datetime
    total_rules: int
    passed_rules: int
    score_percentage: float
    rules: tuple[RuleCheck, ...]
    summary: str

    @property
    def failed_rules(self) -> int:
        return self.total_rules - self.passed_rules

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "timestamp": _format_timestamp(self.timestamp),
            "total_rules": self.total_rules,
            "passed_rules": self.passed_rules,
            "score_percentage": self.score_percentage,
            "rules": [check.to_dict() for check in self.rules],
            "summary": self.summary,
        }


class BehaviorScorer:
    """Scores transcripts against a fixed, weighted rule set.

    Patterns are compiled once at construction and never mutated afterwards,
    so a single scorer can be shared across threads and tasks.
    """

    def __init__(
        self,
        rules: Sequence[RuleDefinition] | None = None,
        *,
        base_path: Path | None = None,
    ) -> None:
        self._rules: tuple[RuleDefinition, ...] = tuple(
            rules if rules is not None else default_rule_definitions()
        )
        self._compiled: dict[str, CompiledRule] = compile_rules(self._rules)
        self._base_path = base_path

    @property
    def rules(self) -> tuple[RuleDefinition, ...]:
        return self._rules

    @property
    def compiled_rule_ids(self) -> frozenset[str]:
        return frozenset(self._compiled)

    @property
    def base_path(self) -> Path | None:
        return self._base_path

    def score_session(self, session_id: str, transcript: str) -> SessionScore:
        """Validate inputs and score one transcript.

        Raises InvalidInputError for a malformed session id or transcript.
        A rule whose pattern did not compile is reported as failed.
        """
        validate_session_id(session_id)
        validate_transcript(transcript)

        checks: list[RuleCheck] = []
        passed_count = 0
        total_weight = 0.0
        passed_weight = 0.0

        for definition in self._rules:
            compiled = self._compiled.get(definition.rule_id)
            match = compiled.matcher.search(transcript) if compiled is not None else None
            passed = match is not None

            total_weight += definition.weight
            if passed:
                passed_count += 1
                passed_weight += definition.weight

            checks.append(
                RuleCheck(
                    rule_id=definition.rule_id,
                    rule_name=definition.name,
                    description=definition.description,
                    passed=passed,
                    confidence=1.0 if passed else 0.0,
                    evidence=extract_evidence(transcript, match) if match is not None else None,
                    suggestion=None if passed else build_suggestion(definition),
                )
            )

        score_percentage = (passed_weight / total_weight) * 100.0 if total_weight > 0 else 0.0
        failed_count = len(checks) - passed_count
        logger.debug(
            "Scored session %s: %d/%d rules passed (%.1f%%)",
            session_id,
            passed_count,
            len(checks),
            score_percentage,
        )
        return SessionScore(
            session_id=session_id,
            timestamp=datetime.now(tz=UTC),
            total_rules=len(checks),
            passed_rules=passed_count,
            score_percentage=score_percentage,
            rules=tuple(checks),
            summary=generate_summary(score_percentage, failed_count),
        )

    def scan_and_score_directory(
        self,
        directory: Path,
        options: ScanOptions | None = None,
    ) -> list[SessionScore]:
        """Score every accepted transcript file under directory.

        When the scorer was built with a ``base_path`` the directory must
        resolve inside it, and a relative directory is taken relative to the
        base path. Files that cannot be read or scored are logged and
        skipped.
        """
        if self._base_path is not None:
            if not directory.is_absolute():
                sanitized = sanitize_path(self._base_path, str(directory))
                if sanitized is None:
                    raise InvalidInputError("Directory path is outside allowed base path")
                directory = sanitized
            root = ensure_within(self._base_path, directory)
        else:
            if not directory.is_dir():
                raise InvalidInputError(f"Invalid directory path: {directory}")
            root = directory

        scores: list[SessionScore] = []
        for path in iter_session_files(root, options):
            session_id = session_id_from_filename(path.name)
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Failed to read %s: %s", path, exc)
                continue
            try:
                scores.append(self.score_session(session_id, content))
            except InvalidInputError as exc:
                logger.warning("Failed to score %s: %s", session_id or path.name, exc)
        return scores


def extract_evidence(transcript: str, match: MatchSpan) -> str:
    """Return the line(s) surrounding a match, capped at 200 characters."""
    start = transcript.rfind("\n", 0, match.start()) + 1
    end = transcript.find("\n", match.end())
    if end == -1:
        end = len(transcript)
    excerpt = transcript[start:end]
    if len(excerpt) > MAX_EVIDENCE_CHARS:
        return excerpt[:MAX_EVIDENCE_CHARS] + EVIDENCE_ELLIPSIS
    return excerpt


def build_suggestion(definition: RuleDefinition) -> str:
    return f"Consider: {definition.description}"


def generate_summary(score_percentage: float, failed_count: int) -> str:
    """Pick a one-sentence summary by score band."""
    whole = int(score_percentage)
    if score_percentage >= 90.0:
        return f"Excellent adherence ({whole}%). All critical rules followed."
    if score_percentage >= 75.0:
        return f"Good adherence ({whole}%). {failed_count} minor improvements possible."
    if score_percentage >= 50.0:
        return f"Moderate adherence ({whole}%). {failed_count} rules need attention."
    return f"Needs improvement ({whole}%). {failed_count} critical rules missed."


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")
