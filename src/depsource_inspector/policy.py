from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from .types import (
    AnalysisResult,
    DependencyCoordinate,
    DependencySummary,
    EnforcementMode,
    EnforcementPolicy,
    Exemption,
    Verdict,
)
from .types_config import as_utc

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def match_exemption(
    coordinate: DependencyCoordinate, exemptions: Iterable[Exemption], now: datetime
) -> Optional[Exemption]:
    """Return the most specific active exemption covering ``coordinate``."""

    best: Optional[Exemption] = None
    for exemption in exemptions:
        if not exemption.matches(coordinate) or not exemption.is_active(now):
            continue
        if best is None or exemption.specificity > best.specificity:
            best = exemption
    return best


def cap_counts(errors: int, warnings: int, exemption: Optional[Exemption]) -> tuple[int, int]:
    """Apply an exemption allowance; errors consume the allowance before warnings."""

    if exemption is None:
        return errors, warnings
    if exemption.max_violations is None:
        return 0, 0
    allowance = exemption.max_violations
    waived_errors = min(errors, allowance)
    allowance -= waived_errors
    waived_warnings = min(warnings, allowance)
    return errors - waived_errors, warnings - waived_warnings


def _raw_counts(result: AnalysisResult, policy: EnforcementPolicy) -> tuple[int, int]:
    if not result.success:
        return (1 if policy.unanalyzed_as_error else 0), 0
    return result.error_count, result.warning_count


def counted_contribution(
    result: AnalysisResult,
    exemptions: Sequence[Exemption],
    policy: EnforcementPolicy,
    now: Optional[datetime] = None,
) -> tuple[int, int]:
    """Errors and warnings one result adds to the organisation-wide totals."""

    moment = as_utc(now or _now())
    errors, warnings = _raw_counts(result, policy)
    return cap_counts(errors, warnings, match_exemption(result.coordinate, exemptions, moment))


def is_blocked(policy: EnforcementPolicy, total_errors: int, total_warnings: int) -> bool:
    return (
        policy.mode == EnforcementMode.BLOCK
        and policy.fail_on_violation
        and (total_errors > policy.max_errors or total_warnings > policy.max_warnings)
    )


def decide(
    results: Sequence[AnalysisResult],
    exemptions: Sequence[Exemption],
    policy: EnforcementPolicy,
    now: Optional[datetime] = None,
) -> Verdict:
    """Turn analysis results into an enforcement verdict.

    This function has no side effects beyond logging; failing the build on a
    blocked verdict is left to the caller.
    """

    moment = as_utc(now or _now())
    summaries: List[DependencySummary] = []
    exempted: List[DependencyCoordinate] = []
    unanalyzed: List[DependencyCoordinate] = []
    used: set[int] = set()
    total_errors = 0
    total_warnings = 0

    for result in results:
        exemption = match_exemption(result.coordinate, exemptions, moment)
        if exemption is not None:
            used.add(id(exemption))
            exempted.append(result.coordinate)
        if not result.success:
            unanalyzed.append(result.coordinate)

        raw_errors, raw_warnings = _raw_counts(result, policy)
        counted_errors, counted_warnings = cap_counts(raw_errors, raw_warnings, exemption)
        total_errors += counted_errors
        total_warnings += counted_warnings

        summaries.append(
            DependencySummary(
                coordinate=result.coordinate,
                success=result.success,
                errors=result.error_count,
                warnings=result.warning_count,
                infos=result.info_count,
                counted_errors=counted_errors,
                counted_warnings=counted_warnings,
                exemption=exemption,
                error_message=result.error_message,
                failure_kind=result.failure_kind,
            )
        )

    expired = [exemption for exemption in exemptions if exemption.is_expired(moment)]
    for exemption in expired:
        logger.warning(
            "Exemption for %s (approved by %s) expired on %s; remove it from configuration",
            exemption.dependency,
            exemption.approved_by,
            exemption.expires.isoformat() if exemption.expires else "unknown date",
        )
    unused = [
        exemption for exemption in exemptions if exemption.is_active(moment) and id(exemption) not in used
    ]

    blocked = is_blocked(policy, total_errors, total_warnings)
    if total_errors or total_warnings:
        logger.warning("Found %d error(s) and %d warning(s) in dependencies", total_errors, total_warnings)

    return Verdict(
        total_errors=total_errors,
        total_warnings=total_warnings,
        blocked=blocked,
        mode=policy.mode,
        dependencies=tuple(summaries),
        exempted=tuple(exempted),
        unanalyzed=tuple(unanalyzed),
        expired_exemptions=tuple(expired),
        unused_exemptions=tuple(unused),
    )
