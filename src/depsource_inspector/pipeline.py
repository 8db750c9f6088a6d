from __future__ import annotations

import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .checks import CheckRegistry, default_registry
from .dependency_graph import DependencyGraph
from .policy import counted_contribution, decide
from .runner import analyze_dependencies
from .scope import GroupMatcher, resolve_scope
from .sources import SourceProvider, build_provider
from .types import AnalysisResult, DependencyCoordinate, InspectorConfig, Report

logger = logging.getLogger(__name__)

Fallback = Callable[[DependencyCoordinate, Path], Optional[Path]]


def run_pipeline(
    config: InspectorConfig,
    graph: DependencyGraph,
    *,
    registry: Optional[CheckRegistry] = None,
    provider: Optional[SourceProvider] = None,
    cache_dir: Optional[Path] = None,
    fallback: Optional[Fallback] = None,
    now: Optional[datetime] = None,
) -> Report:
    """Scope, resolve, analyze and decide for one build."""

    generated_at = now or datetime.now(timezone.utc)
    if not config.enabled:
        logger.info("Dependency analysis is disabled, skipping")
        return Report(
            results=[],
            verdict=decide([], config.exemptions, config.reporting, now=generated_at),
            generated_at=generated_at,
        )

    # Configuration problems surface before any resolution or I/O.
    registry = registry or default_registry(config.analysis)
    checks = registry.resolve(config.analysis.checks)
    GroupMatcher.from_rule(config.scope)

    scope = resolve_scope(graph, config.scope)
    if not scope.coordinates:
        logger.info("No dependency sources to analyze")
        return Report(
            results=[],
            verdict=decide([], config.exemptions, config.reporting, now=generated_at),
            generated_at=generated_at,
            failed_configurations=list(scope.failed_configurations),
        )

    running_errors = 0

    def exceeds_max_errors(result: AnalysisResult) -> bool:
        nonlocal running_errors
        errors, _ = counted_contribution(result, config.exemptions, config.reporting, generated_at)
        running_errors += errors
        return running_errors > config.reporting.max_errors

    stop_when = exceeds_max_errors if config.analysis.fail_fast else None

    with tempfile.TemporaryDirectory(prefix="depsource-run-") as run_dir:
        if not config.analysis.cache_enabled:
            # Extractions live and die with this run.
            cache_dir = Path(run_dir) / "sources"
        active_provider = provider or build_provider(
            config.sources, workdir=Path(run_dir), cache_dir=cache_dir, fallback=fallback
        )
        results = analyze_dependencies(
            scope.coordinates,
            active_provider,
            checks,
            extensions=config.analysis.source_extensions,
            max_workers=config.max_workers,
            parallel=config.parallel,
            require_sources=config.sources.require_sources_jar,
            stop_when=stop_when,
        )

    resolved = sum(1 for result in results if result.success)
    logger.info("Analyzed sources for %d/%d dependencies", resolved, len(results))

    verdict = decide(results, config.exemptions, config.reporting, now=generated_at)
    return Report(
        results=results,
        verdict=verdict,
        generated_at=generated_at,
        failed_configurations=list(scope.failed_configurations),
    )
