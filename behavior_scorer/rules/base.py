"""Rule definition, category and compiled-rule models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


class MatchSpan(Protocol):
    """The part of a match object the engine reads (``re`` and ``re2`` both fit)."""

    def start(self) -> int: ...

    def end(self) -> int: ...


class Matcher(Protocol):
    def search(self, text: str) -> MatchSpan | None: ...


class RuleCategory(str, Enum):
    """Closed set of operating-rule categories."""

    STARTUP = "startup-behavior"
    RESPONSE = "response-style"
    CONFIDENCE = "confidence-reporting"
    SAFETY = "safety-constraint"
    COMMUNICATION = "communication-protocol"

    @classmethod
    def parse(cls, value: str | RuleCategory) -> RuleCategory:
        """Accept a category value ("safety-constraint") or member name ("safety")."""
        if isinstance(value, RuleCategory):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if normalized in (member.value, member.name.lower()):
                return member
        choices = ", ".join(member.value for member in cls)
        raise ValueError(f"Unknown rule category '{value}'. Expected one of: {choices}")


@dataclass(frozen=True, slots=True)
class RuleDefinition:
    """A named, weighted, pattern-based check against transcript text."""

    rule_id: str
    name: str
    description: str
    pattern: str
    weight: float
    category: RuleCategory

    def __post_init__(self) -> None:
        if not self.rule_id:
            raise ValueError("rule_id must be a non-empty string")
        if isinstance(self.weight, bool) or self.weight <= 0:
            raise ValueError(f"Rule '{self.rule_id}' weight must be positive, got {self.weight}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "name": self.name,
            "description": self.description,
            "pattern": self.pattern,
            "weight": self.weight,
            "category": self.category.value,
        }


@dataclass(frozen=True, slots=True)
class CompiledRule:
    """A rule id paired with its compiled matcher."""

    rule_id: str
    matcher: Matcher
