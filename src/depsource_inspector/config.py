from __future__ import annotations

import logging
import os
from dataclasses import replace
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

try:  # Python < 3.11 compatibility
    import tomllib  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - exercised in older runtimes
    import tomli as tomllib  # type: ignore

import yaml

from .types import (
    AnalysisSettings,
    CustomCheckSpec,
    EnforcementMode,
    EnforcementPolicy,
    Exemption,
    InspectorConfig,
    ScopeRule,
    Severity,
    SourcesSettings,
)

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    pass


def _load_raw(path: Path) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".toml":
            raw = tomllib.loads(text)
        else:
            raw = yaml.safe_load(text) or {}
    except (yaml.YAMLError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Unable to parse {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return raw


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _string_list(value: Any, name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{name}' must be a list of strings")
    return tuple(str(item).strip() for item in value)


def _non_negative_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{name}' must be an integer, got {value!r}") from None
    if number < 0:
        raise ConfigError(f"'{name}' must be >= 0, got {number}")
    return number


def _flag(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"'{name}' must be true or false, got {value!r}")
    return value


def _positive_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"'{name}' must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{name}' must be a number, got {value!r}") from None
    if number <= 0:
        raise ConfigError(f"'{name}' must be > 0, got {number}")
    return number


def _optional_path(value: Any) -> Optional[Path]:
    if value in (None, "", False):
        return None
    return Path(os.path.expanduser(str(value)))


def parse_expiry(value: Any) -> Optional[datetime]:
    """Parse an exemption expiry; a bare date expires at the start of that day (UTC)."""

    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            raise ConfigError(f"Invalid exemption expiry: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_exemption(entry: Any) -> Exemption:
    if not isinstance(entry, dict):
        raise ConfigError("Each exemption entry must be a mapping")
    dependency = str(entry.get("dependency") or entry.get("coordinate") or "").strip()
    if not dependency:
        raise ConfigError("Exemption entry is missing 'dependency'")
    if len(dependency.split(":")) > 3:
        raise ConfigError(f"Exemption dependency must be group[:artifact[:version]]: {dependency}")
    reason = str(entry.get("reason") or "").strip()
    approved_by = str(entry.get("approved_by") or entry.get("approvedBy") or "").strip()
    if not reason or not approved_by:
        raise ConfigError(f"Exemption for {dependency} needs both 'reason' and 'approved_by'")

    expires = parse_expiry(entry.get("expires", entry.get("expires_on")))
    permanent = _flag(entry.get("permanent", False), "exemptions.permanent")
    if not permanent and expires is None:
        raise ConfigError(f"Exemption for {dependency} must be permanent or carry an expiry")

    raw_max = entry.get("max_violations", entry.get("maxViolations"))
    max_violations = None if raw_max is None else _non_negative_int(raw_max, "max_violations")

    return Exemption(
        dependency=dependency,
        reason=reason,
        approved_by=approved_by,
        expires=expires,
        max_violations=max_violations,
        permanent=permanent,
    )


def _parse_custom_check(entry: Any) -> CustomCheckSpec:
    if not isinstance(entry, dict):
        raise ConfigError("Each custom check must be a mapping")
    name = str(entry.get("name") or "").strip()
    pattern = str(entry.get("pattern") or "")
    message = str(entry.get("message") or "").strip()
    if not name or not pattern or not message:
        raise ConfigError("Custom checks need 'name', 'pattern' and 'message'")
    try:
        severity = Severity.parse(entry.get("severity", "WARNING"))
    except ValueError as exc:
        raise ConfigError(f"Custom check {name}: {exc}") from None
    return CustomCheckSpec(
        name=name,
        pattern=pattern,
        message=message,
        severity=severity,
        suggestion=entry.get("suggestion"),
    )


def config_from_dict(raw: dict) -> InspectorConfig:
    defaults = InspectorConfig()

    scope_raw = _section(raw, "scope")
    scope = ScopeRule(
        include_groups=_string_list(
            scope_raw.get("include_groups", defaults.scope.include_groups), "scope.include_groups"
        ),
        exclude_groups=_string_list(scope_raw.get("exclude_groups"), "scope.exclude_groups"),
        configurations=_string_list(
            scope_raw.get("configurations", defaults.scope.configurations), "scope.configurations"
        ),
    )

    sources_raw = _section(raw, "sources")
    base_sources = defaults.sources
    sources = SourcesSettings(
        require_sources_jar=_flag(sources_raw.get("require_sources_jar", True), "sources.require_sources_jar"),
        fallback_to_git_clone=_flag(
            sources_raw.get("fallback_to_git_clone", False), "sources.fallback_to_git_clone"
        ),
        repositories=_string_list(sources_raw.get("repositories"), "sources.repositories"),
        local_repository=(
            _optional_path(sources_raw["local_repository"])
            if "local_repository" in sources_raw
            else base_sources.local_repository
        ),
        gradle_cache=(
            _optional_path(sources_raw["gradle_cache"])
            if "gradle_cache" in sources_raw
            else base_sources.gradle_cache
        ),
        cache_dir=_optional_path(sources_raw.get("cache_dir")) or base_sources.cache_dir,
        timeout=_positive_float(sources_raw.get("timeout", base_sources.timeout), "sources.timeout"),
    )

    analysis_raw = _section(raw, "analysis")
    extensions = _string_list(analysis_raw.get("source_extensions", [".java"]), "analysis.source_extensions")
    analysis = AnalysisSettings(
        checks=_string_list(analysis_raw.get("checks", defaults.analysis.checks), "analysis.checks"),
        source_extensions=tuple(ext if ext.startswith(".") else f".{ext}" for ext in extensions),
        fail_fast=_flag(analysis_raw.get("fail_fast", False), "analysis.fail_fast"),
        cache_enabled=_flag(analysis_raw.get("cache_enabled", True), "analysis.cache_enabled"),
        internal_package=str(analysis_raw.get("internal_package", defaults.analysis.internal_package)),
        custom_checks=tuple(
            _parse_custom_check(entry) for entry in analysis_raw.get("custom_checks") or []
        ),
    )

    reporting_raw = _section(raw, "reporting")
    try:
        mode = EnforcementMode.parse(reporting_raw.get("mode", "BLOCK"))
    except ValueError as exc:
        raise ConfigError(str(exc)) from None
    reporting = EnforcementPolicy(
        mode=mode,
        max_errors=_non_negative_int(reporting_raw.get("max_errors", 0), "reporting.max_errors"),
        max_warnings=_non_negative_int(reporting_raw.get("max_warnings", 10), "reporting.max_warnings"),
        fail_on_violation=_flag(reporting_raw.get("fail_on_violation", True), "reporting.fail_on_violation"),
        report_format=str(reporting_raw.get("report_format", "html")).lower(),
        unanalyzed_as_error=_flag(reporting_raw.get("unanalyzed_as_error", False), "reporting.unanalyzed_as_error"),
        generate_report=_flag(reporting_raw.get("generate_report", True), "reporting.generate_report"),
    )

    exemptions = tuple(parse_exemption(entry) for entry in raw.get("exemptions") or [])

    max_workers = raw.get("max_workers", defaults.max_workers)
    workers = _non_negative_int(max_workers, "max_workers")
    if workers < 1:
        raise ConfigError("'max_workers' must be at least 1")

    return InspectorConfig(
        enabled=_flag(raw.get("enabled", True), "enabled"),
        parallel=_flag(raw.get("parallel", True), "parallel"),
        max_workers=workers,
        scope=scope,
        sources=sources,
        analysis=analysis,
        reporting=reporting,
        exemptions=exemptions,
    )


def load_config(path: Path) -> InspectorConfig:
    config = config_from_dict(_load_raw(path))
    logger.debug("Loaded configuration from %s", path)
    return config


def apply_overrides(
    config: InspectorConfig,
    *,
    enabled: Optional[bool] = None,
    mode: Optional[str] = None,
    max_warnings: Optional[int] = None,
    max_errors: Optional[int] = None,
    max_workers: Optional[int] = None,
    cache_dir: Optional[Path] = None,
) -> InspectorConfig:
    """Return a copy of ``config`` with command-level overrides applied."""

    reporting = config.reporting
    if mode is not None:
        try:
            reporting = replace(reporting, mode=EnforcementMode.parse(mode))
        except ValueError as exc:
            raise ConfigError(str(exc)) from None
    if max_warnings is not None:
        reporting = replace(reporting, max_warnings=_non_negative_int(max_warnings, "max_warnings"))
    if max_errors is not None:
        reporting = replace(reporting, max_errors=_non_negative_int(max_errors, "max_errors"))

    sources = config.sources
    if cache_dir is not None:
        sources = replace(sources, cache_dir=cache_dir)

    updated = replace(config, reporting=reporting, sources=sources)
    if enabled is not None:
        updated = replace(updated, enabled=enabled)
    if max_workers is not None:
        if max_workers < 1:
            raise ConfigError("'max_workers' must be at least 1")
        updated = replace(updated, max_workers=max_workers)
    return updated
