"""Configuration loading for behavior-scorer."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from behavior_scorer.cache import DEFAULT_TTL_SECONDS
from behavior_scorer.discovery import DEFAULT_EXTENSIONS, ScanOptions
from behavior_scorer.log import LOG_LEVELS
from behavior_scorer.retry import RetryConfig
from behavior_scorer.rules import RuleCategory, RuleDefinition
from behavior_scorer.validation import MAX_TRANSCRIPT_BYTES

CONFIG_FILENAMES = (".behavior-scorer.toml", "behavior-scorer.toml")
PYPROJECT_FILENAME = "pyproject.toml"
PYPROJECT_TOOL_KEYS = ("behavior_scorer", "behavior-scorer")
OUTPUT_FORMATS = ("human", "json", "summary")


@dataclass(slots=True)
class CacheConfig:
    """Score cache settings."""

    ttl_seconds: float = DEFAULT_TTL_SECONDS

    def to_dict(self) -> dict[str, Any]:
        return {"ttl_seconds": self.ttl_seconds}


@dataclass(slots=True)
class ScanConfig:
    """Directory scan confinement and filters."""

    base_path: str | None = None
    max_depth: int = 2
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    max_file_bytes: int = MAX_TRANSCRIPT_BYTES

    def to_options(self) -> ScanOptions:
        return ScanOptions(
            max_depth=self.max_depth,
            extensions=tuple(self.extensions),
            max_file_bytes=self.max_file_bytes,
        )

    def resolve_base_path(self, repo: Path) -> Path | None:
        if self.base_path is None:
            return None
        base = Path(self.base_path).expanduser()
        return base if base.is_absolute() else (repo / base)

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_path": self.base_path,
            "max_depth": self.max_depth,
            "extensions": list(self.extensions),
            "max_file_bytes": self.max_file_bytes,
        }


@dataclass(slots=True)
class StorageConfig:
    """SQLite persistence settings."""

    database: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"database": self.database}


@dataclass(slots=True)
class AppConfig:
    """Runtime configuration values resolved from project files."""

    format: str = "human"
    fail_below: int | None = None
    log_level: str = "warning"
    rule_enable: list[str] | None = None
    rule_disable: list[str] = field(default_factory=list)
    rule_weights: dict[str, float] = field(default_factory=dict)
    custom_rules: list[RuleDefinition] = field(default_factory=list)
    cache: CacheConfig = field(default_factory=CacheConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format,
            "fail_below": self.fail_below,
            "log_level": self.log_level,
            "rules": {
                "enable": list(self.rule_enable) if self.rule_enable is not None else None,
                "disable": list(self.rule_disable),
                "weights": dict(self.rule_weights),
                "custom": [rule.to_dict() for rule in self.custom_rules],
            },
            "cache": self.cache.to_dict(),
            "retry": {
                "max_attempts": self.retry.max_attempts,
                "base_delay": self.retry.base_delay,
                "max_delay": self.retry.max_delay,
                "backoff_multiplier": self.retry.backoff_multiplier,
            },
            "scan": self.scan.to_dict(),
            "storage": self.storage.to_dict(),
            "source": self.source,
        }


def load_app_config(repo: Path, config_path: Path | None = None) -> AppConfig:
    """Load config from explicit path or repository-local files with precedence."""
    repo = repo.resolve()
    if config_path is not None:
        resolved = config_path if config_path.is_absolute() else (repo / config_path)
        if not resolved.exists():
            raise ValueError(f"Config file does not exist: {resolved}")
        mapping = _extract_config_mapping(_load_toml(resolved), source_path=resolved)
        return _from_mapping(mapping, source=str(resolved))

    for filename in CONFIG_FILENAMES:
        resolved = repo / filename
        if resolved.exists():
            mapping = _extract_config_mapping(_load_toml(resolved), source_path=resolved)
            return _from_mapping(mapping, source=str(resolved))

    pyproject_path = repo / PYPROJECT_FILENAME
    if pyproject_path.exists():
        mapping = _extract_config_mapping(_load_toml(pyproject_path), source_path=pyproject_path)
        if mapping:
            return _from_mapping(mapping, source=str(pyproject_path))

    return AppConfig()


def default_config_template() -> str:
    """Return a starter config template."""
    return "\n".join(
        [
            'format = "human"',
            "fail_below = 50",
            'log_level = "warning"',
            "",
            "[rules]",
            "enable = [",
            '  "local_memory_first",',
            '  "time_of_day_check",',
            '  "confidence_calibration",',
            '  "explanation_volume",',
            '  "binary_decision",',
            '  "objective_before_execution",',
            '  "no_email_trust",',
            '  "approval_for_external",',
            '  "handoff_note",',
            "]",
            'disable = ["time_of_day_check"]',
            "",
            "[rules.weights]",
            "# no_email_trust = 3.0",
            "",
            "[[rules.custom]]",
            'id = "handoff_note"',
            'name = "Handoff note written"',
            'description = "Should leave a handoff note at the end of the session"',
            'pattern = "HANDOFF:|Next steps:"',
            "weight = 1.0",
            'category = "communication-protocol"',
            "",
            "[cache]",
            "ttl_seconds = 300",
            "",
            "[retry]",
            "max_attempts = 3",
            "base_delay = 1.0",
            "max_delay = 30.0",
            "backoff_multiplier = 2.0",
            "",
            "[scan]",
            '# base_path = "sessions"',
            "max_depth = 2",
            'extensions = [".md", ".json"]',
            "max_file_bytes = 10485760",
            "",
            "[storage]",
            '# database = ".behavior-scorer/scores.db"',
            "",
        ]
    )


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as file_obj:
            loaded = tomllib.load(file_obj)
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid TOML in {path}: {exc}") from exc
    if not isinstance(loaded, dict):
        return {}
    return loaded


def _extract_config_mapping(loaded: dict[str, Any], *, source_path: Path) -> dict[str, Any]:
    if source_path.name == PYPROJECT_FILENAME:
        section = _find_pyproject_tool_section(loaded)
        return section if section is not None else {}

    tool_section = _find_pyproject_tool_section(loaded)
    if tool_section is not None:
        return tool_section
    return loaded


def _find_pyproject_tool_section(loaded: dict[str, Any]) -> dict[str, Any] | None:
    tool = loaded.get("tool")
    if not isinstance(tool, dict):
        return None
    for key in PYPROJECT_TOOL_KEYS:
        section = tool.get(key)
        if isinstance(section, dict):
            return section
    return None


def _from_mapping(mapping: dict[str, Any], *, source: str) -> AppConfig:
    rules_mapping = _as_table(mapping.get("rules"), "rules")
    cache_mapping = _as_table(mapping.get("cache"), "cache")
    retry_mapping = _as_table(mapping.get("retry"), "retry")
    scan_mapping = _as_table(mapping.get("scan"), "scan")
    storage_mapping = _as_table(mapping.get("storage"), "storage")

    raw_fail = mapping.get("fail_below")
    if raw_fail is None:
        fail_value: int | None = None
    elif isinstance(raw_fail, int) and not isinstance(raw_fail, bool):
        if not 0 <= raw_fail <= 100:
            raise ValueError("fail_below must be between 0 and 100")
        fail_value = raw_fail
    else:
        raise ValueError("fail_below must be an integer")

    return AppConfig(
        format=_as_choice(mapping.get("format", "human"), set(OUTPUT_FORMATS), "format"),
        fail_below=fail_value,
        log_level=_as_choice(mapping.get("log_level", "warning"), set(LOG_LEVELS), "log_level"),
        rule_enable=_as_str_list_or_none(rules_mapping.get("enable")),
        rule_disable=_as_str_list(rules_mapping.get("disable")),
        rule_weights=_parse_rule_weights(rules_mapping.get("weights")),
        custom_rules=_parse_custom_rules(rules_mapping.get("custom")),
        cache=_parse_cache_config(cache_mapping),
        retry=_parse_retry_config(retry_mapping),
        scan=_parse_scan_config(scan_mapping),
        storage=StorageConfig(
            database=_as_optional_str(storage_mapping.get("database"), "storage.database")
        ),
        source=source,
    )


def _parse_rule_weights(value: Any) -> dict[str, float]:
    weights = _as_float_mapping(value, "rules.weights")
    for rule_id, weight in weights.items():
        if weight <= 0:
            raise ValueError(f"rules.weights.{rule_id} must be > 0")
    return weights


def _parse_custom_rules(value: Any) -> list[RuleDefinition]:
    items = _as_table_list(value, "rules.custom")
    parsed: list[RuleDefinition] = []
    for index, item in enumerate(items):
        field_name = f"rules.custom[{index}]"
        rule_id = _as_str(item.get("id"), f"{field_name}.id")
        weight = _as_float(item.get("weight", 1.0), f"{field_name}.weight")
        if weight <= 0:
            raise ValueError(f"{field_name}.weight must be > 0")
        try:
            category = RuleCategory.parse(_as_str(item.get("category"), f"{field_name}.category"))
        except ValueError as exc:
            raise ValueError(f"{field_name}.category: {exc}") from exc
        parsed.append(
            RuleDefinition(
                rule_id=rule_id,
                name=_as_str(item.get("name", rule_id), f"{field_name}.name"),
                description=_as_str(item.get("description", ""), f"{field_name}.description"),
                pattern=_as_str(item.get("pattern"), f"{field_name}.pattern"),
                weight=weight,
                category=category,
            )
        )
    return parsed


def _parse_cache_config(value: dict[str, Any]) -> CacheConfig:
    ttl = _as_float(value.get("ttl_seconds", DEFAULT_TTL_SECONDS), "cache.ttl_seconds")
    if ttl <= 0:
        raise ValueError("cache.ttl_seconds must be > 0")
    return CacheConfig(ttl_seconds=ttl)


def _parse_retry_config(value: dict[str, Any]) -> RetryConfig:
    defaults = RetryConfig()
    try:
        return RetryConfig(
            max_attempts=_as_int(
                value.get("max_attempts", defaults.max_attempts), "retry.max_attempts"
            ),
            base_delay=_as_float(value.get("base_delay", defaults.base_delay), "retry.base_delay"),
            max_delay=_as_float(value.get("max_delay", defaults.max_delay), "retry.max_delay"),
            backoff_multiplier=_as_float(
                value.get("backoff_multiplier", defaults.backoff_multiplier),
                "retry.backoff_multiplier",
            ),
        )
    except ValueError as exc:
        if str(exc).startswith("retry."):
            raise
        raise ValueError(f"retry: {exc}") from exc


def _parse_scan_config(value: dict[str, Any]) -> ScanConfig:
    max_depth = _as_int(value.get("max_depth", 2), "scan.max_depth")
    if max_depth < 1:
        raise ValueError("scan.max_depth must be >= 1")
    max_file_bytes = _as_int(value.get("max_file_bytes", MAX_TRANSCRIPT_BYTES), "scan.max_file_bytes")
    if max_file_bytes <= 0:
        raise ValueError("scan.max_file_bytes must be > 0")
    extensions = _as_str_list(value.get("extensions")) or list(DEFAULT_EXTENSIONS)
    return ScanConfig(
        base_path=_as_optional_str(value.get("base_path"), "scan.base_path"),
        max_depth=max_depth,
        extensions=[ext if ext.startswith(".") else f".{ext}" for ext in extensions],
        max_file_bytes=max_file_bytes,
    )


def _as_table(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{field_name} must be a table/object")
    return value


def _as_table_list(value: Any, field_name: str) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{field_name} must be a list of tables")
    output: list[dict[str, Any]] = []
    for item in value:
        if not isinstance(item, dict):
            raise ValueError(f"{field_name} must be a list of tables")
        output.append(item)
    return output


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("Expected a list of strings")
    items: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError("Expected a list of strings")
        items.append(item)
    return items


def _as_str_list_or_none(value: Any) -> list[str] | None:
    if value is None:
        return None
    return _as_str_list(value)


def _as_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")
    return value


def _as_optional_str(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, field_name)


def _as_choice(raw: Any, allowed: set[str], field_name: str) -> str:
    value = str(raw).lower()
    if value not in allowed:
        choices = ", ".join(sorted(allowed))
        raise ValueError(f"{field_name} must be one of: {choices}")
    return value


def _as_int(raw: Any, field_name: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValueError(f"{field_name} must be an integer")
    return raw


def _as_float_mapping(value: Any, field_name: str) -> dict[str, float]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{field_name} must be a table/object")

    parsed: dict[str, float] = {}
    for key, raw in value.items():
        if not isinstance(key, str):
            raise ValueError(f"{field_name} keys must be strings")
        parsed[key] = _as_float(raw, f"{field_name}.{key}")
    return parsed


def _as_float(raw: Any, field_name: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValueError(f"{field_name} must be a number")
    return float(raw)
