from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click

from .checks import default_registry
from .config import ConfigError, apply_overrides, load_config
from .dependency_graph import GraphReadError, load_graph, merge_graphs
from .pipeline import run_pipeline
from .reporting import default_report_path, write_report
from .sources import SourceProvider
from .types import DependencyCoordinate, InspectorConfig

DEFAULT_REPORT_DIR = Path("build/reports/dependency-analysis")


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load(config_path: Optional[str]) -> InspectorConfig:
    if not config_path:
        return InspectorConfig()
    try:
        return load_config(Path(config_path))
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase log output (-v info, -vv debug).")
def main(verbose: int) -> None:
    """Dependency source compliance inspector."""
    _configure_logging(verbose)


@main.command()
@click.option(
    "--graph",
    "graphs",
    multiple=True,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=str),
    help="Resolved dependency graph (JSON or `gradle dependencies` output). Repeat for multi-module builds.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=str),
    help="YAML or TOML configuration file.",
)
@click.option("--enable/--disable", "enabled", default=None, help="Override whether analysis runs at all.")
@click.option(
    "--mode",
    type=click.Choice(["warn", "block"], case_sensitive=False),
    help="Override the enforcement mode.",
)
@click.option("--max-warnings", type=int, help="Override the warning threshold.")
@click.option("--max-errors", type=int, help="Override the error threshold.")
@click.option("--workers", type=int, help="Override the number of parallel workers.")
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=str),
    help="Directory holding extracted dependency sources.",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["json", "text", "markdown", "md", "html"], case_sensitive=False),
    help="Report format (defaults to reporting.report_format from configuration).",
)
@click.option(
    "--output",
    type=click.Path(dir_okay=False, writable=True, path_type=str),
    help="Report destination (defaults to build/reports/dependency-analysis/).",
)
def analyze(
    graphs: tuple[str, ...],
    config_path: Optional[str],
    enabled: Optional[bool],
    mode: Optional[str],
    max_warnings: Optional[int],
    max_errors: Optional[int],
    workers: Optional[int],
    cache_dir: Optional[str],
    fmt: Optional[str],
    output: Optional[str],
) -> None:
    """Analyze the sources of internal dependencies and enforce the policy."""

    try:
        config = apply_overrides(
            _load(config_path),
            enabled=enabled,
            mode=mode,
            max_warnings=max_warnings,
            max_errors=max_errors,
            max_workers=workers,
            cache_dir=Path(cache_dir) if cache_dir else None,
        )
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if not config.enabled:
        click.echo("Dependency analysis is disabled, skipping.")
        return

    try:
        graph = merge_graphs(load_graph(Path(path)) for path in graphs)
    except GraphReadError as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        report = run_pipeline(config, graph)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    # An explicit --output asks for a report even when configuration turns it off.
    destination: Optional[Path] = None
    if output or config.reporting.generate_report:
        report_format = (fmt or config.reporting.report_format).lower()
        destination = Path(output) if output else default_report_path(DEFAULT_REPORT_DIR, report_format)
        try:
            write_report(report, report_format, destination)
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc
    location = str(destination.resolve()) if destination else "not generated (reporting.generate_report is false)"

    verdict = report.verdict
    click.echo(
        f"Analyzed {report.analyzed_count}/{len(report.results)} dependencies: "
        f"{verdict.total_errors} error(s), {verdict.total_warnings} warning(s), "
        f"{len(verdict.unanalyzed)} unanalyzed, {len(verdict.exempted)} exempted."
    )
    for configuration in report.failed_configurations:
        click.echo(f"Configuration {configuration} could not be read and was skipped.", err=True)
    for exemption in verdict.expired_exemptions:
        click.echo(
            f"Exemption for {exemption.dependency} expired on "
            f"{exemption.expires.isoformat() if exemption.expires else 'unknown date'}; prune it.",
            err=True,
        )
    if destination is not None:
        click.echo(f"Report generated at: {location}")
    else:
        click.echo(f"Report {location}")
    click.echo(f"Verdict: {verdict.status.upper()}")

    if verdict.blocked:
        click.echo(f"Build FAILED due to compliance violations. See report at: {location}", err=True)
        raise SystemExit(1)


@main.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=str),
    help="Configuration file declaring custom checks.",
)
def checks(config_path: Optional[str]) -> None:
    """List every registered check and mark the enabled ones."""

    config = _load(config_path)
    try:
        registry = default_registry(config.analysis)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    enabled = set(config.analysis.checks)
    for name in registry.names():
        check = registry.get(name)
        marker = "*" if name in enabled else " "
        click.echo(f"{marker} {name} [{check.severity.value}] {check.summary}")


@main.command()
@click.option(
    "--config",
    "config_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=str),
)
@click.option("--fail-on-expired", is_flag=True, help="Exit non-zero when any exemption has expired.")
def exemptions(config_path: str, fail_on_expired: bool) -> None:
    """Validate configured exemptions and show which have expired."""

    config = _load(config_path)
    now = datetime.now(timezone.utc)
    expired = 0
    for exemption in config.exemptions:
        if exemption.permanent:
            status = "permanent"
        elif exemption.is_expired(now):
            status = "EXPIRED"
            expired += 1
        else:
            status = f"active until {exemption.expires.isoformat() if exemption.expires else '?'}"
        allowance = "all" if exemption.max_violations is None else str(exemption.max_violations)
        click.echo(
            f"{exemption.dependency}: {status}; allows {allowance} finding(s); "
            f"approved by {exemption.approved_by} ({exemption.reason})"
        )
    if not config.exemptions:
        click.echo("No exemptions configured.")
    if expired and fail_on_expired:
        raise SystemExit(1)


@main.group()
def cache() -> None:
    """Inspect or prune the extracted-sources cache."""


def _provider(config_path: Optional[str], cache_dir: Optional[str]) -> SourceProvider:
    config = _load(config_path)
    return SourceProvider(Path(cache_dir) if cache_dir else config.sources.cache_dir)


@cache.command("list")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=str))
@click.option("--cache-dir", type=click.Path(file_okay=False, path_type=str))
def cache_list(config_path: Optional[str], cache_dir: Optional[str]) -> None:
    """List cached dependency source trees."""

    entries = _provider(config_path, cache_dir).entries()
    if not entries:
        click.echo("Cache is empty.")
        return
    for entry in entries:
        click.echo(f"{entry.coordinate} extracted {entry.extracted_at.isoformat()} -> {entry.path}")


@cache.command("clear")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=str))
@click.option("--cache-dir", type=click.Path(file_okay=False, path_type=str))
def cache_clear(config_path: Optional[str], cache_dir: Optional[str]) -> None:
    """Remove every cached source tree."""

    provider = _provider(config_path, cache_dir)
    provider.clear()
    click.echo(f"Cleared {provider.cache_dir}")


@cache.command("invalidate")
@click.argument("coordinate")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=str))
@click.option("--cache-dir", type=click.Path(file_okay=False, path_type=str))
def cache_invalidate(coordinate: str, config_path: Optional[str], cache_dir: Optional[str]) -> None:
    """Drop one coordinate (group:artifact:version) from the cache."""

    try:
        parsed = DependencyCoordinate.parse(coordinate)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="COORDINATE") from exc
    if _provider(config_path, cache_dir).invalidate(parsed):
        click.echo(f"Invalidated {parsed}")
    else:
        click.echo(f"{parsed} was not cached")


if __name__ == "__main__":
    main()
