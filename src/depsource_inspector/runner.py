from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from .checks import Check
from .sources import SourceProvider, SourcesUnavailable
from .types import AnalysisResult, DependencyCoordinate, FailureKind, Finding, Severity

logger = logging.getLogger(__name__)

StopCondition = Callable[[AnalysisResult], bool]


def find_source_files(root: Path, extensions: Sequence[str] = (".java",)) -> List[Path]:
    """Return source files under ``root`` in a stable, path-sorted order."""

    suffixes = {ext.lower() for ext in extensions}
    files = [path for path in root.rglob("*") if path.is_file() and path.suffix.lower() in suffixes]
    return sorted(files, key=lambda path: path.relative_to(root).as_posix())


def _read_lines(path: Path) -> List[str]:
    return path.read_text(encoding="utf-8", errors="replace").splitlines()


def run_checks(
    coordinate: DependencyCoordinate,
    source_dir: Path,
    checks: Sequence[Check],
    extensions: Sequence[str] = (".java",),
) -> AnalysisResult:
    """Run every check over every source file of one dependency.

    Findings are ordered by file, then by check order, then as each detector
    reported them. A failing detector or unreadable file yields one synthetic
    ERROR finding and analysis continues with the rest of the dependency.
    """

    files = find_source_files(source_dir, extensions)
    if not files:
        logger.warning("No source files found in %s", coordinate)

    findings: List[Finding] = []
    for path in files:
        relative = path.relative_to(source_dir).as_posix()
        try:
            lines = _read_lines(path)
        except OSError as exc:
            logger.warning("Failed to read %s in %s: %s", relative, coordinate, exc)
            findings.append(
                Finding(
                    check="UnreadableSource",
                    severity=Severity.ERROR,
                    file=relative,
                    line=1,
                    message=f"Source file could not be read: {exc}",
                )
            )
            continue

        for check in checks:
            try:
                findings.extend(check.detect(relative, lines))
            except Exception as exc:
                logger.exception("Check %s failed on %s in %s", check.name, relative, coordinate)
                findings.append(
                    Finding(
                        check=check.name,
                        severity=Severity.ERROR,
                        file=relative,
                        line=1,
                        message=f"Detector {check.name} failed on {relative}: {exc}",
                    )
                )

    return AnalysisResult.ok(coordinate, findings)


def analyze_dependency(
    coordinate: DependencyCoordinate,
    provider: SourceProvider,
    checks: Sequence[Check],
    extensions: Sequence[str] = (".java",),
    require_sources: bool = True,
) -> AnalysisResult:
    """Provide sources for one dependency and analyze them end to end."""

    logger.info("Analyzing %s", coordinate)
    try:
        entry = provider.provide(coordinate)
    except SourcesUnavailable as exc:
        log = logger.warning if require_sources else logger.info
        log("Could not resolve sources for %s: %s", coordinate, exc.reason)
        return AnalysisResult.failed(coordinate, str(exc), FailureKind.SOURCES_UNAVAILABLE)
    except Exception as exc:
        logger.exception("Error resolving sources for %s", coordinate)
        return AnalysisResult.failed(coordinate, f"Source resolution failed: {exc}")

    try:
        return run_checks(coordinate, entry.path, checks, extensions)
    except Exception as exc:
        logger.exception("Failed to analyze %s", coordinate)
        return AnalysisResult.failed(coordinate, f"Analysis failed: {exc}")


def _sorted(results: Iterable[AnalysisResult]) -> List[AnalysisResult]:
    return sorted(results, key=lambda result: str(result.coordinate))


def analyze_dependencies(
    coordinates: Iterable[DependencyCoordinate],
    provider: SourceProvider,
    checks: Sequence[Check],
    *,
    extensions: Sequence[str] = (".java",),
    max_workers: int = 1,
    parallel: bool = True,
    require_sources: bool = True,
    stop_when: Optional[StopCondition] = None,
) -> List[AnalysisResult]:
    """Analyze many dependencies, optionally on a bounded worker pool.

    ``stop_when`` is evaluated on every collected result; once it returns
    true the remaining queued dependencies are cancelled and reported as
    ``CANCELLED`` failures while in-flight ones run to completion.
    """

    pending = sorted(set(coordinates), key=str)
    if max_workers < 1:
        raise ValueError("max_workers must be at least 1")

    def _analyze(coordinate: DependencyCoordinate) -> AnalysisResult:
        return analyze_dependency(coordinate, provider, checks, extensions, require_sources)

    results: List[AnalysisResult] = []
    stopped = False

    if not parallel or max_workers == 1 or len(pending) <= 1:
        for coordinate in pending:
            if stopped:
                results.append(_cancelled(coordinate))
                continue
            result = _analyze(coordinate)
            results.append(result)
            if stop_when is not None and stop_when(result):
                stopped = True
        return _sorted(results)

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="depsource") as executor:
        futures: dict[Future[AnalysisResult], DependencyCoordinate] = {
            executor.submit(_analyze, coordinate): coordinate for coordinate in pending
        }
        outstanding = set(futures)
        while outstanding:
            done, outstanding = wait(outstanding, return_when=FIRST_COMPLETED)
            for future in done:
                coordinate = futures[future]
                if future.cancelled():
                    results.append(_cancelled(coordinate))
                    continue
                result = future.result()
                results.append(result)
                if not stopped and stop_when is not None and stop_when(result):
                    stopped = True
                    cancelled = sum(1 for other in outstanding if other.cancel())
                    logger.warning("Error threshold exceeded; cancelled %d queued dependencies", cancelled)

    return _sorted(results)


def _cancelled(coordinate: DependencyCoordinate) -> AnalysisResult:
    return AnalysisResult.failed(
        coordinate,
        "Analysis cancelled after the error threshold was exceeded",
        FailureKind.CANCELLED,
    )
