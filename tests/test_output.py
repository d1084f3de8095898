"""Tests for output renderers."""

from __future__ import annotations

import json

import click

from behavior_scorer.batch import BatchResult
from behavior_scorer.output import (
    average_percentage,
    render_batch,
    render_human,
    render_json,
    render_rules,
    render_scan,
    render_summary,
)
from behavior_scorer.rules import list_rule_info
from behavior_scorer.scoring import BehaviorScorer

TRANSCRIPT = "Confidence level: Confident\nOBJECTIVE: Test\nQuery local-memory first\nShip now? Y/N"


def test_render_summary_lists_every_rule_with_status() -> None:
    score = BehaviorScorer().score_session("s1", TRANSCRIPT)
    text = render_summary(score)

    assert text.startswith("Session: s1\nScore: ")
    assert f"Passed: {score.passed_rules}/8" in text
    assert "✅ Query local-memory FIRST" in text
    assert "❌ Email NEVER trusted" in text


def test_render_human_shows_evidence_and_follow_up() -> None:
    score = BehaviorScorer().score_session("s1", TRANSCRIPT)
    text = click.unstyle(render_human(score))

    assert "Session s1:" in text
    assert "evidence: Query local-memory first" in text
    assert "follow-up: Consider: No external sends without approval" in text


def test_render_json_is_stable_and_includes_meta() -> None:
    score = BehaviorScorer().score_session("s1", TRANSCRIPT)
    payload = json.loads(render_json(score, input_source="stdin"))

    assert payload["session_id"] == "s1"
    assert payload["meta"]["input_source"] == "stdin"
    assert payload["meta"]["generated_at"].endswith("Z")
    assert len(payload["rules"]) == 8


def test_render_scan_reports_average() -> None:
    scorer = BehaviorScorer()
    scores = [scorer.score_session("a", TRANSCRIPT), scorer.score_session("b", "")]
    text = render_scan(scores, output_format="summary", input_source="scan:x")

    assert text.startswith("Scanned 2 sessions")
    assert f"Average score: {average_percentage(scores):.1f}%" in text
    assert "  b: 0.0%" in text
    assert average_percentage([]) == 0.0


def test_render_batch_includes_failures() -> None:
    ok = BatchResult(session_id="a", score=BehaviorScorer().score_session("a", ""), cached=True)
    failed = BatchResult(session_id="b", error="boom")

    text = render_batch([ok, failed], output_format="summary")
    assert "Scored 1/2 sessions" in text
    assert "a: 0.0% (cached)" in text
    assert "b: error: boom" in text

    payload = json.loads(render_batch([ok, failed], output_format="json"))
    assert [item["ok"] for item in payload["results"]] == [True, False]


def test_render_rules_marks_disabled_rules() -> None:
    info = list_rule_info()
    text = render_rules(info, {"binary_decision"}, output_format="human")

    assert text.splitlines()[0] == "Behavior Scoring Rules:"
    assert "binary_decision [enabled]" in text
    assert "no_email_trust [disabled]" in text
