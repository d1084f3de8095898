"""Tests for rule definitions, selection and compilation."""

from __future__ import annotations

import logging

import pytest

from behavior_scorer.rules import (
    RuleCategory,
    RuleDefinition,
    build_rule_definitions,
    compile_rules,
    default_rule_definitions,
    list_rule_info,
    uses_linear_engine,
)


def test_default_rules_have_expected_ids_weights_and_categories() -> None:
    rules = default_rule_definitions()
    assert [(rule.rule_id, rule.weight) for rule in rules] == [
        ("local_memory_first", 1.0),
        ("time_of_day_check", 1.0),
        ("confidence_calibration", 1.5),
        ("explanation_volume", 1.0),
        ("binary_decision", 0.8),
        ("objective_before_execution", 1.5),
        ("no_email_trust", 2.0),
        ("approval_for_external", 1.5),
    ]
    assert rules[0].category is RuleCategory.STARTUP
    assert rules[6].category is RuleCategory.SAFETY
    assert rules[6].to_dict()["category"] == "safety-constraint"


def test_default_rules_are_fresh_copies() -> None:
    first = default_rule_definitions()
    first.pop()
    assert len(default_rule_definitions()) == 8


def test_every_default_pattern_compiles() -> None:
    compiled = compile_rules(default_rule_definitions())
    assert set(compiled) == {rule.rule_id for rule in default_rule_definitions()}


def test_default_patterns_use_linear_engine_except_lookahead_rule() -> None:
    compiled = compile_rules(default_rule_definitions())
    backtracking = {rule_id for rule_id, rule in compiled.items() if not uses_linear_engine(rule)}
    assert backtracking == {"explanation_volume"}


def test_rule_category_parse_accepts_value_and_member_name() -> None:
    assert RuleCategory.parse("safety-constraint") is RuleCategory.SAFETY
    assert RuleCategory.parse("SAFETY") is RuleCategory.SAFETY
    with pytest.raises(ValueError):
        RuleCategory.parse("vibes")


def test_rule_definition_rejects_non_positive_weight_and_empty_id() -> None:
    with pytest.raises(ValueError):
        _rule("zero", weight=0.0)
    with pytest.raises(ValueError):
        _rule("", weight=1.0)


def test_compile_rules_skips_invalid_pattern_and_logs_warning(
    caplog: pytest.LogCaptureFixture,
) -> None:
    rules = [_rule("good", pattern="ok"), _rule("broken", pattern="(unclosed")]
    with caplog.at_level(logging.WARNING, logger="behavior_scorer"):
        compiled = compile_rules(rules)

    assert set(compiled) == {"good"}
    assert "Failed to compile regex for rule broken" in caplog.text


def test_build_rule_definitions_applies_enable_disable_and_weights() -> None:
    rules = build_rule_definitions(
        enabled_rule_ids=["no_email_trust", "binary_decision", "time_of_day_check"],
        disabled_rule_ids=["time_of_day_check"],
        weight_overrides={"binary_decision": 2.5},
    )
    assert [rule.rule_id for rule in rules] == ["no_email_trust", "binary_decision"]
    assert rules[1].weight == 2.5


def test_build_rule_definitions_appends_custom_rules() -> None:
    custom = _rule("handoff_note", pattern="HANDOFF:")
    rules = build_rule_definitions(custom_rules=[custom])
    assert rules[-1] == custom
    assert len(rules) == 9


def test_build_rule_definitions_rejects_unknown_and_duplicate_ids() -> None:
    with pytest.raises(ValueError, match="Unknown rule ids: nope"):
        build_rule_definitions(enabled_rule_ids=["nope"])
    with pytest.raises(ValueError, match="Duplicate rule id: binary_decision"):
        build_rule_definitions(custom_rules=[_rule("binary_decision")])
    with pytest.raises(ValueError, match="must be positive"):
        build_rule_definitions(weight_overrides={"binary_decision": -1.0})


def test_list_rule_info_reflects_active_overrides() -> None:
    active = build_rule_definitions(
        weight_overrides={"no_email_trust": 3.0},
        custom_rules=[_rule("handoff_note", pattern="HANDOFF:")],
    )
    info = {item.rule_id: item for item in list_rule_info(active)}
    assert info["no_email_trust"].weight == 3.0
    assert info["no_email_trust"].default_enabled is True
    assert info["handoff_note"].default_enabled is False
    assert info["handoff_note"].category == "communication-protocol"


def _rule(rule_id: str, *, pattern: str = "x", weight: float = 1.0) -> RuleDefinition:
    return RuleDefinition(
        rule_id=rule_id,
        name=rule_id.replace("_", " "),
        description=f"Should mention {rule_id}",
        pattern=pattern,
        weight=weight,
        category=RuleCategory.COMMUNICATION,
    )
