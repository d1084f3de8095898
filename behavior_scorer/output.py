"""Output rendering."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import click

from behavior_scorer import __version__
from behavior_scorer.batch import BatchResult
from behavior_scorer.rules import RuleInfo
from behavior_scorer.scoring import SessionScore
from behavior_scorer.store import ScoreRecord, StoreStats


def render_human(score: SessionScore) -> str:
    """Render a compact colorized summary."""
    band, color = _score_band(score.score_percentage)
    lines: list[str] = [
        click.style(
            f"Session {score.session_id}: {score.score_percentage:.1f}% ({band})",
            fg=color,
            bold=True,
        ),
        f"Passed {score.passed_rules}/{score.total_rules} rules. {score.summary}",
    ]

    passed = [check for check in score.rules if check.passed]
    failed = [check for check in score.rules if not check.passed]
    if passed:
        lines.append(click.style("Followed:", bold=True))
        for check in passed:
            lines.append(f"- [{check.rule_id}] {check.rule_name}")
            if check.evidence:
                lines.append(f"   evidence: {check.evidence}")
    if failed:
        lines.append(click.style("Missed:", bold=True))
        for check in failed:
            lines.append(click.style(f"- [{check.rule_id}] {check.rule_name}", fg="red"))
            if check.suggestion:
                lines.append(f"   follow-up: {check.suggestion}")
    return "\n".join(lines)


def render_summary(score: SessionScore) -> str:
    """Render the plain-text report used by the original scoring tool."""
    lines = [
        f"Session: {score.session_id}",
        f"Score: {score.score_percentage:.1f}%",
        f"Passed: {score.passed_rules}/{score.total_rules}",
        "",
        score.summary,
        "",
        "Rule Details:",
    ]
    for check in score.rules:
        status = "✅" if check.passed else "❌"
        lines.append(f"  {status} {check.rule_name}")
    return "\n".join(lines)


def render_json(score: SessionScore, *, input_source: str) -> str:
    """Render stable JSON output for CI and automation."""
    payload = score.to_dict()
    payload["meta"] = _meta(input_source=input_source)
    return json.dumps(payload, sort_keys=True)


def render_scan(scores: Sequence[SessionScore], *, output_format: str, input_source: str) -> str:
    """Render a directory scan in the requested format."""
    if output_format == "json":
        payload = {
            "scores": [score.to_dict() for score in scores],
            "average_score": average_percentage(scores),
            "meta": _meta(input_source=input_source),
        }
        return json.dumps(payload, sort_keys=True)

    lines = [
        f"Scanned {len(scores)} sessions",
        f"Average score: {average_percentage(scores):.1f}%",
        "",
        "Individual Scores:",
    ]
    for score in scores:
        row = f"  {score.session_id}: {score.score_percentage:.1f}%"
        if output_format == "human":
            _, color = _score_band(score.score_percentage)
            row = click.style(row, fg=color)
        lines.append(row)
    return "\n".join(lines)


def render_batch(results: Sequence[BatchResult], *, output_format: str) -> str:
    """Render batch results, failures included."""
    if output_format == "json":
        payload = {
            "results": [result.to_dict() for result in results],
            "meta": _meta(input_source="batch"),
        }
        return json.dumps(payload, sort_keys=True)

    ok_count = sum(1 for result in results if result.ok)
    lines = [f"Scored {ok_count}/{len(results)} sessions"]
    for result in results:
        if result.score is None:
            row = f"  {result.session_id}: error: {result.error}"
            lines.append(click.style(row, fg="red") if output_format == "human" else row)
            continue
        suffix = " (cached)" if result.cached else ""
        lines.append(f"  {result.session_id}: {result.score.score_percentage:.1f}%{suffix}")
    return "\n".join(lines)


def render_rules(rules: Sequence[RuleInfo], active_ids: set[str], *, output_format: str) -> str:
    if output_format == "json":
        payload = {
            "rules": [
                {
                    "rule_id": item.rule_id,
                    "name": item.name,
                    "description": item.description,
                    "category": item.category,
                    "weight": item.weight,
                    "pattern": item.pattern,
                    "default_enabled": item.default_enabled,
                    "enabled": item.rule_id in active_ids,
                }
                for item in rules
            ]
        }
        return json.dumps(payload, sort_keys=True)

    lines = ["Behavior Scoring Rules:"]
    for index, item in enumerate(rules, start=1):
        status = "enabled" if item.rule_id in active_ids else "disabled"
        lines.append(
            f"{index}. {item.rule_id} [{status}] (weight {item.weight:g}, {item.category})"
            f" - {item.description}"
        )
    return "\n".join(lines)


def render_history(
    records: Sequence[ScoreRecord],
    stats: StoreStats,
    *,
    output_format: str,
) -> str:
    if output_format == "json":
        payload = {
            "scores": [record.to_dict() for record in records],
            "stats": stats.to_dict(),
        }
        return json.dumps(payload, sort_keys=True)

    lines = [
        f"Stored sessions: {stats.sessions}, scores: {stats.scores}, "
        f"average: {stats.avg_score:.1f}%",
    ]
    if not records:
        lines.append("No scores recorded.")
        return "\n".join(lines)
    for record in records:
        scored_at = record.scored_at.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S")
        lines.append(
            f"  {scored_at}  {record.session_id}: {record.score_percentage:.1f}% "
            f"({record.passed_rules}/{record.total_rules})"
        )
    return "\n".join(lines)


def average_percentage(scores: Sequence[SessionScore]) -> float:
    if not scores:
        return 0.0
    return sum(score.score_percentage for score in scores) / len(scores)


def _meta(*, input_source: str) -> dict[str, Any]:
    return {
        "generated_at": datetime.now(tz=UTC)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z"),
        "input_source": input_source,
        "version": __version__,
    }


def _score_band(percentage: float) -> tuple[str, str]:
    if percentage >= 90.0:
        return ("EXCELLENT", "green")
    if percentage >= 75.0:
        return ("GOOD", "green")
    if percentage >= 50.0:
        return ("MODERATE", "yellow")
    return ("NEEDS IMPROVEMENT", "red")
