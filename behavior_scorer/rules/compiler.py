"""Compile rule patterns into matchers, isolating malformed patterns.

Patterns are compiled with RE2, which matches in time linear in the
transcript length. Patterns that need features RE2 does not implement
(lookaround, backreferences) fall back to the backtracking ``re`` engine.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

import re2

from behavior_scorer.rules.base import CompiledRule, Matcher, RuleDefinition

logger = logging.getLogger(__name__)


def compile_rules(definitions: Iterable[RuleDefinition]) -> dict[str, CompiledRule]:
    """Compile each rule pattern independently.

    A pattern that fails to compile is logged and left out of the returned
    mapping; the engine then treats that rule as always failing.
    """
    compiled: dict[str, CompiledRule] = {}
    for definition in definitions:
        matcher = compile_pattern(definition)
        if matcher is not None:
            compiled[definition.rule_id] = CompiledRule(rule_id=definition.rule_id, matcher=matcher)
    return compiled


def compile_pattern(definition: RuleDefinition) -> Matcher | None:
    """Return the compiled pattern for one rule, or None when it is malformed."""
    try:
        return re2.compile(definition.pattern)
    except re2.error as linear_exc:
        unsupported = str(linear_exc)

    try:
        matcher = re.compile(definition.pattern)
    except re.error as exc:
        logger.warning("Failed to compile regex for rule %s: %s", definition.rule_id, exc)
        return None
    logger.debug(
        "Rule %s compiled with the backtracking engine (%s)", definition.rule_id, unsupported
    )
    return matcher


def uses_linear_engine(rule: CompiledRule) -> bool:
    """True when the rule's matcher is RE2 rather than ``re``."""
    return not isinstance(rule.matcher, re.Pattern)
