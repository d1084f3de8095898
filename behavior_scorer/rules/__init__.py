"""Rules package."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace

from behavior_scorer.rules.base import CompiledRule, RuleCategory, RuleDefinition
from behavior_scorer.rules.compiler import compile_pattern, compile_rules, uses_linear_engine
from behavior_scorer.rules.defaults import default_rule_definitions

__all__ = [
    "CompiledRule",
    "RuleCategory",
    "RuleDefinition",
    "RuleInfo",
    "build_rule_definitions",
    "compile_pattern",
    "compile_rules",
    "default_rule_definitions",
    "list_rule_info",
    "uses_linear_engine",
]


@dataclass(frozen=True, slots=True)
class RuleInfo:
    """Rule metadata for listing and selection."""

    rule_id: str
    name: str
    description: str
    category: str
    weight: float
    pattern: str
    default_enabled: bool


def build_rule_definitions(
    *,
    enabled_rule_ids: list[str] | None = None,
    disabled_rule_ids: list[str] | None = None,
    weight_overrides: Mapping[str, float] | None = None,
    custom_rules: list[RuleDefinition] | None = None,
) -> list[RuleDefinition]:
    """Build the active rule set from the defaults plus selection and overrides.

    Custom rules are appended after the built-in ones. ``enabled_rule_ids``
    (when given) selects and orders the rules; ``disabled_rule_ids`` always
    removes them.
    """
    definitions = default_rule_definitions()
    registry = {definition.rule_id: definition for definition in definitions}
    for custom in custom_rules or []:
        if custom.rule_id in registry:
            raise ValueError(f"Duplicate rule id: {custom.rule_id}")
        registry[custom.rule_id] = custom
        definitions.append(custom)

    requested_ids = (
        set(enabled_rule_ids or [])
        | set(disabled_rule_ids or [])
        | set(weight_overrides or {})
    )
    unknown = [rule_id for rule_id in requested_ids if rule_id not in registry]
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ValueError(f"Unknown rule ids: {joined}")

    disabled_set = set(disabled_rule_ids or [])
    if enabled_rule_ids is None:
        selected_ids = [definition.rule_id for definition in definitions]
    else:
        selected_ids = _dedupe(enabled_rule_ids)

    built: list[RuleDefinition] = []
    for rule_id in selected_ids:
        if rule_id in disabled_set:
            continue
        definition = registry[rule_id]
        if weight_overrides and rule_id in weight_overrides:
            weight = weight_overrides[rule_id]
            if weight <= 0:
                raise ValueError(f"Weight for rule '{rule_id}' must be positive, got {weight}.")
            definition = replace(definition, weight=float(weight))
        built.append(definition)
    return built


def list_rule_info(active: list[RuleDefinition] | None = None) -> list[RuleInfo]:
    """Return metadata for the built-in rules followed by any extra active rules."""
    defaults = default_rule_definitions()
    default_ids = {definition.rule_id for definition in defaults}
    active_by_id = {definition.rule_id: definition for definition in active or []}
    listed = [active_by_id.get(definition.rule_id, definition) for definition in defaults]
    for definition in active or []:
        if definition.rule_id not in default_ids:
            listed.append(definition)

    return [
        RuleInfo(
            rule_id=definition.rule_id,
            name=definition.name,
            description=definition.description,
            category=definition.category.value,
            weight=definition.weight,
            pattern=definition.pattern,
            default_enabled=definition.rule_id in default_ids,
        )
        for definition in listed
    ]


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    output: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        output.append(item)
    return output
