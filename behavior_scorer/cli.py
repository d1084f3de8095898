"""CLI entrypoint for behavior-scorer."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path
from typing import Annotated, NoReturn

import typer

from behavior_scorer import __version__
from behavior_scorer.batch import BatchResult, score_sessions_batch
from behavior_scorer.cache import ScoreCache
from behavior_scorer.config import (
    OUTPUT_FORMATS,
    AppConfig,
    default_config_template,
    load_app_config,
)
from behavior_scorer.errors import ScorerError
from behavior_scorer.log import LOG_LEVELS, configure_logging
from behavior_scorer.output import (
    render_batch,
    render_history,
    render_human,
    render_json,
    render_rules,
    render_scan,
    render_summary,
)
from behavior_scorer.retry import RetryConfig, retry_with_backoff, score_session_with_retry
from behavior_scorer.rules import RuleDefinition, build_rule_definitions, list_rule_info
from behavior_scorer.scoring import BehaviorScorer, SessionScore
from behavior_scorer.store import ScoreStore, StoreError
from behavior_scorer.validation import session_id_from_filename

app = typer.Typer(
    name="behavior-scorer",
    no_args_is_help=True,
    help="Score agent session transcripts against weighted behavior rules.",
)


def version_callback(value: bool) -> None:
    """Print version and exit when --version is provided."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option("--version", help="Show version and exit.", callback=version_callback),
    ] = False,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            help="Log level: debug|info|warning|error.",
            show_default="config or warning",
        ),
    ] = None,
) -> None:
    """Root command callback."""
    _ = version
    if log_level is not None:
        _choice_or_default(
            value=log_level,
            default="warning",
            allowed=set(LOG_LEVELS),
            field_name="--log-level",
        )
        configure_logging(log_level)
    ctx.obj = {"log_level": log_level}


@app.command("score")
def score_command(
    ctx: typer.Context,
    session: Annotated[str, typer.Option("--session", help="Session identifier.")],
    transcript: Annotated[
        Path | None, typer.Option(help="Path to the transcript file.")
    ] = None,
    stdin: Annotated[bool, typer.Option(help="Read the transcript from stdin.")] = False,
    repo: Annotated[Path, typer.Option(help="Project path used for config lookup.")] = Path("."),
    format: Annotated[
        str | None,
        typer.Option(help="Output format: human|json|summary.", show_default="human"),
    ] = None,
    fail_below: Annotated[
        int | None, typer.Option(help="Exit nonzero if the score is below this value.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="SQLite database to record into.")] = None,
    retries: Annotated[
        int | None, typer.Option(help="Maximum attempts for scoring and storage.")
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """Score one session transcript."""
    app_config = _load_config_or_raise(ctx, repo, config_file)
    output_format = _choice_or_default(
        value=format,
        default=app_config.format,
        allowed=set(OUTPUT_FORMATS),
        field_name="--format",
    )
    if transcript is not None and stdin:
        raise typer.BadParameter("Use either --transcript or --stdin, not both.")
    if transcript is None and not stdin:
        raise typer.BadParameter("Provide --transcript or --stdin.")

    retry_config = _retry_config_or_raise(app_config, retries)
    scorer = BehaviorScorer(_build_configured_rules_or_raise(app_config))

    if transcript is not None:
        try:
            text = transcript.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            _fail(f"Failed to read transcript file: {exc}")
        input_source = f"transcript:{transcript}"
    else:
        text = sys.stdin.read()
        input_source = "stdin"

    try:
        score = asyncio.run(score_session_with_retry(scorer, session, text, retry_config))
    except ScorerError as exc:
        _fail(f"Failed to score session: {exc}")

    db_path = _resolve_db_path(db, app_config, repo)
    if db_path is not None:
        _persist_or_fail(
            db_path,
            [score],
            retry_config,
            source="cli",
            transcript_path=str(transcript) if transcript is not None else None,
        )

    typer.echo(_render_score(score, output_format=output_format, input_source=input_source))

    threshold = fail_below if fail_below is not None else app_config.fail_below
    if threshold is not None and score.score_percentage < threshold:
        raise typer.Exit(code=1)


@app.command("scan")
def scan_command(
    ctx: typer.Context,
    directory: Annotated[Path, typer.Option("--directory", help="Directory of transcripts.")],
    repo: Annotated[Path, typer.Option(help="Project path used for config lookup.")] = Path("."),
    format: Annotated[
        str | None,
        typer.Option(help="Output format: human|json|summary.", show_default="human"),
    ] = None,
    max_depth: Annotated[
        int | None, typer.Option(help="Directory levels to descend (1 = top level only).")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="SQLite database to record into.")] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """Score every transcript file in a directory."""
    app_config = _load_config_or_raise(ctx, repo, config_file)
    output_format = _choice_or_default(
        value=format,
        default=app_config.format,
        allowed=set(OUTPUT_FORMATS),
        field_name="--format",
    )
    try:
        options = app_config.scan.to_options()
        if max_depth is not None:
            options = replace(options, max_depth=max_depth)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--max-depth") from exc

    scorer = BehaviorScorer(
        _build_configured_rules_or_raise(app_config),
        base_path=app_config.scan.resolve_base_path(repo.resolve()),
    )
    try:
        scores = scorer.scan_and_score_directory(directory, options)
    except ScorerError as exc:
        _fail(f"Failed to scan directory: {exc}")

    db_path = _resolve_db_path(db, app_config, repo)
    if db_path is not None:
        _persist_or_fail(db_path, scores, app_config.retry, source="scan")

    typer.echo(render_scan(scores, output_format=output_format, input_source=f"scan:{directory}"))


@app.command("batch")
def batch_command(
    ctx: typer.Context,
    paths: Annotated[list[Path], typer.Argument(help="Transcript files to score.")],
    repo: Annotated[Path, typer.Option(help="Project path used for config lookup.")] = Path("."),
    format: Annotated[
        str | None,
        typer.Option(help="Output format: human|json|summary.", show_default="human"),
    ] = None,
    ttl: Annotated[
        float | None, typer.Option("--ttl", help="Score cache time-to-live in seconds.")
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """Score many transcript files concurrently."""
    app_config = _load_config_or_raise(ctx, repo, config_file)
    output_format = _choice_or_default(
        value=format,
        default=app_config.format,
        allowed=set(OUTPUT_FORMATS),
        field_name="--format",
    )
    ttl_seconds = ttl if ttl is not None else app_config.cache.ttl_seconds
    if ttl_seconds <= 0:
        raise typer.BadParameter("--ttl must be > 0", param_hint="--ttl")

    scorer = BehaviorScorer(_build_configured_rules_or_raise(app_config))
    read_failures: dict[int, BatchResult] = {}
    sessions: list[tuple[str, str]] = []
    for index, path in enumerate(paths):
        session_id = session_id_from_filename(path.name)
        try:
            sessions.append((session_id, path.read_text(encoding="utf-8")))
        except (OSError, UnicodeDecodeError) as exc:
            read_failures[index] = BatchResult(
                session_id=session_id,
                error=f"Failed to read transcript file: {exc}",
            )

    scored = asyncio.run(_run_batch(scorer, sessions, ttl_seconds))
    results = _merge_in_order(len(paths), read_failures, scored)
    typer.echo(render_batch(results, output_format=output_format))

    failed = [result for result in results if not result.ok]
    if failed:
        typer.echo(f"Error: {len(failed)} session(s) could not be scored", err=True)
        raise typer.Exit(code=1)


@app.command("rules")
def rules_command(
    ctx: typer.Context,
    repo: Annotated[Path, typer.Option(help="Project path used for config lookup.")] = Path("."),
    format: Annotated[str, typer.Option(help="Output format: human|json.")] = "human",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """List the scoring rules and whether each is active."""
    output_format = _choice_or_default(
        value=format, default="human", allowed={"human", "json"}, field_name="--format"
    )
    app_config = _load_config_or_raise(ctx, repo, config_file)
    active_rules = _build_configured_rules_or_raise(app_config)
    active_ids = {rule.rule_id for rule in active_rules}
    typer.echo(render_rules(list_rule_info(active_rules), active_ids, output_format=output_format))


@app.command("history")
def history_command(
    ctx: typer.Context,
    repo: Annotated[Path, typer.Option(help="Project path used for config lookup.")] = Path("."),
    db: Annotated[Path | None, typer.Option("--db", help="SQLite database to read.")] = None,
    session: Annotated[
        str | None, typer.Option("--session", help="Only show scores for this session.")
    ] = None,
    limit: Annotated[int, typer.Option(help="Maximum number of scores to show.")] = 20,
    format: Annotated[str, typer.Option(help="Output format: human|json.")] = "human",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """Show recorded scores and aggregate statistics."""
    output_format = _choice_or_default(
        value=format, default="human", allowed={"human", "json"}, field_name="--format"
    )
    if limit < 1:
        raise typer.BadParameter("--limit must be >= 1", param_hint="--limit")
    app_config = _load_config_or_raise(ctx, repo, config_file)
    db_path = _resolve_db_path(db, app_config, repo)
    if db_path is None:
        raise typer.BadParameter("Provide --db or set storage.database in config.")
    if not db_path.exists():
        raise typer.BadParameter(f"Database does not exist: {db_path}", param_hint="--db")

    try:
        with ScoreStore(db_path) as store:
            if session is not None:
                records = store.get_session_scores(session)[:limit]
            else:
                records = store.list_scores(limit)
            stats = store.get_stats()
    except StoreError as exc:
        _fail(f"Failed to read history: {exc}")

    typer.echo(render_history(records, stats, output_format=output_format))


@app.command("config")
def config_command(
    ctx: typer.Context,
    repo: Annotated[Path, typer.Option(help="Project path used for config lookup.")] = Path("."),
    format: Annotated[str, typer.Option(help="Output format: human|json.")] = "human",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """Show resolved configuration."""
    output_format = _choice_or_default(
        value=format, default="human", allowed={"human", "json"}, field_name="--format"
    )
    app_config = _load_config_or_raise(ctx, repo, config_file)
    active_rules = _build_configured_rules_or_raise(app_config)
    payload = app_config.to_dict()
    payload["active_rule_ids"] = [rule.rule_id for rule in active_rules]

    if output_format == "json":
        typer.echo(json.dumps(payload, sort_keys=True))
        return

    lines = [
        "Resolved configuration:",
        f"- source: {payload['source'] or 'defaults'}",
        f"- format: {payload['format']}",
        f"- fail_below: {payload['fail_below']}",
        f"- log_level: {payload['log_level']}",
        f"- rules.enable: {payload['rules']['enable']}",
        f"- rules.disable: {payload['rules']['disable']}",
        f"- rules.weights: {payload['rules']['weights']}",
        f"- cache.ttl_seconds: {payload['cache']['ttl_seconds']}",
        f"- retry.max_attempts: {payload['retry']['max_attempts']}",
        f"- scan.base_path: {payload['scan']['base_path']}",
        f"- storage.database: {payload['storage']['database']}",
        f"- active_rule_ids: {payload['active_rule_ids']}",
    ]
    typer.echo("\n".join(lines))


@app.command("config-init")
def config_init_command(
    out: Annotated[Path, typer.Option(help="Output path for starter config TOML.")] = Path(
        ".behavior-scorer.toml"
    ),
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite if file already exists."),
    ] = False,
) -> None:
    """Create a starter config file."""
    out_path = out.resolve()
    if out_path.exists() and not force:
        raise typer.BadParameter(
            f"Refusing to overwrite existing file: {out_path}. Use --force to overwrite."
        )
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(default_config_template(), encoding="utf-8")
    typer.echo(f"Wrote starter config: {out_path}")


@app.command("config-validate")
def config_validate_command(
    ctx: typer.Context,
    repo: Annotated[Path, typer.Option(help="Project path used for config lookup.")] = Path("."),
    config_file: Annotated[
        Path,
        typer.Option("--config", help="Path to config TOML file to validate."),
    ] = Path(".behavior-scorer.toml"),
    format: Annotated[str, typer.Option(help="Output format: human|json.")] = "human",
) -> None:
    """Validate a config file, including custom rule patterns."""
    output_format = _choice_or_default(
        value=format, default="human", allowed={"human", "json"}, field_name="--format"
    )
    app_config = _load_config_or_raise(ctx, repo, config_file)
    active_rules = _build_configured_rules_or_raise(app_config)
    scorer = BehaviorScorer(active_rules)
    uncompiled = [
        rule.rule_id for rule in active_rules if rule.rule_id not in scorer.compiled_rule_ids
    ]
    if uncompiled:
        raise typer.BadParameter(
            f"Invalid regex pattern for rule(s): {', '.join(uncompiled)}",
            param_hint="config.rules",
        )

    payload = {
        "ok": True,
        "source": app_config.source,
        "active_rule_ids": [rule.rule_id for rule in active_rules],
    }
    if output_format == "json":
        typer.echo(json.dumps(payload, sort_keys=True))
        return
    typer.echo(
        "\n".join(
            [
                "Config is valid.",
                f"- source: {payload['source']}",
                f"- active_rule_ids: {payload['active_rule_ids']}",
            ]
        )
    )


def main() -> None:
    """Console script entrypoint."""
    app()


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def _load_config_or_raise(
    ctx: typer.Context, repo: Path, config_file: Path | None = None
) -> AppConfig:
    try:
        app_config = load_app_config(repo, config_path=config_file)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="config") from exc

    cli_level = (ctx.obj or {}).get("log_level")
    configure_logging(cli_level or app_config.log_level)
    return app_config


def _build_configured_rules_or_raise(app_config: AppConfig) -> list[RuleDefinition]:
    try:
        return build_rule_definitions(
            enabled_rule_ids=app_config.rule_enable,
            disabled_rule_ids=app_config.rule_disable,
            weight_overrides=app_config.rule_weights,
            custom_rules=app_config.custom_rules,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="config.rules") from exc


def _retry_config_or_raise(app_config: AppConfig, retries: int | None) -> RetryConfig:
    if retries is None:
        return app_config.retry
    try:
        return replace(app_config.retry, max_attempts=retries)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--retries") from exc


def _choice_or_default(
    *,
    value: str | None,
    default: str,
    allowed: set[str],
    field_name: str,
) -> str:
    resolved = (value or default).lower()
    if resolved not in allowed:
        choices = ", ".join(sorted(allowed))
        raise typer.BadParameter(f"{field_name} must be one of: {choices}", param_hint=field_name)
    return resolved


def _render_score(score: SessionScore, *, output_format: str, input_source: str) -> str:
    if output_format == "json":
        return render_json(score, input_source=input_source)
    if output_format == "summary":
        return render_summary(score)
    return render_human(score)


def _resolve_db_path(db: Path | None, app_config: AppConfig, repo: Path) -> Path | None:
    if db is not None:
        return db
    if app_config.storage.database is None:
        return None
    configured = Path(app_config.storage.database).expanduser()
    return configured if configured.is_absolute() else (repo / configured)


def _persist_or_fail(
    db_path: Path,
    scores: Sequence[SessionScore],
    retry_config: RetryConfig,
    *,
    source: str,
    transcript_path: str | None = None,
) -> None:
    try:
        asyncio.run(
            _persist_scores(
                db_path,
                scores,
                retry_config,
                source=source,
                transcript_path=transcript_path,
            )
        )
    except ScorerError as exc:
        _fail(f"Failed to save score: {exc}")


async def _persist_scores(
    db_path: Path,
    scores: Sequence[SessionScore],
    retry_config: RetryConfig,
    *,
    source: str,
    transcript_path: str | None,
) -> None:
    with ScoreStore(db_path) as store:
        for score in scores:
            await retry_with_backoff(
                retry_config,
                lambda score=score: asyncio.to_thread(
                    store.save_session_score,
                    score,
                    source=source,
                    transcript_path=transcript_path,
                ),
            )


async def _run_batch(
    scorer: BehaviorScorer,
    sessions: Sequence[tuple[str, str]],
    ttl_seconds: float,
) -> list[BatchResult]:
    """Score first occurrences, then repeats, so repeated files come from the cache.

    An id that appears with different transcripts is never deferred; each of
    its entries is scored.
    """
    cache = ScoreCache(ttl_seconds)
    transcripts_by_id: dict[str, set[str]] = {}
    for session_id, transcript in sessions:
        transcripts_by_id.setdefault(session_id, set()).add(transcript)

    first: list[int] = []
    repeats: list[int] = []
    seen: set[str] = set()
    for index, (session_id, _) in enumerate(sessions):
        if session_id in seen and len(transcripts_by_id[session_id]) == 1:
            repeats.append(index)
        else:
            first.append(index)
        seen.add(session_id)

    results: dict[int, BatchResult] = {}
    for indexes in (first, repeats):
        if not indexes:
            continue
        scored = await score_sessions_batch(scorer, [sessions[i] for i in indexes], cache)
        results.update(zip(indexes, scored, strict=True))
    return [results[index] for index in range(len(sessions))]


def _merge_in_order(
    total: int,
    read_failures: dict[int, BatchResult],
    scored: Sequence[BatchResult],
) -> list[BatchResult]:
    remaining = iter(scored)
    return [
        read_failures[index] if index in read_failures else next(remaining)
        for index in range(total)
    ]
