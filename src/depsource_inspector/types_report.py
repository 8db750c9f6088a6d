from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .types_config import EnforcementMode, Exemption
from .types_coordinates import AnalysisResult, DependencyCoordinate, FailureKind


@dataclass(frozen=True)
class DependencySummary:
    coordinate: DependencyCoordinate
    success: bool
    errors: int = 0
    warnings: int = 0
    infos: int = 0
    counted_errors: int = 0
    counted_warnings: int = 0
    exemption: Optional[Exemption] = None
    error_message: Optional[str] = None
    failure_kind: Optional[FailureKind] = None

    @property
    def exempted(self) -> bool:
        return self.exemption is not None

    def as_dict(self) -> dict:
        return {
            "dependency": str(self.coordinate),
            "success": self.success,
            "errors": self.errors,
            "warnings": self.warnings,
            "infos": self.infos,
            "counted_errors": self.counted_errors,
            "counted_warnings": self.counted_warnings,
            "exemption": self.exemption.as_dict() if self.exemption else None,
            "error_message": self.error_message,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
        }


@dataclass(frozen=True)
class Verdict:
    total_errors: int
    total_warnings: int
    blocked: bool
    mode: EnforcementMode
    dependencies: tuple[DependencySummary, ...] = ()
    exempted: tuple[DependencyCoordinate, ...] = ()
    unanalyzed: tuple[DependencyCoordinate, ...] = ()
    expired_exemptions: tuple[Exemption, ...] = ()
    unused_exemptions: tuple[Exemption, ...] = ()

    @property
    def status(self) -> str:
        if self.blocked:
            return "block"
        if self.total_errors or self.total_warnings or self.unanalyzed:
            return "warn"
        return "pass"

    def as_dict(self) -> dict:
        return {
            "status": self.status,
            "mode": self.mode.value,
            "totalErrors": self.total_errors,
            "totalWarnings": self.total_warnings,
            "blocked": self.blocked,
            "exempted": [str(coordinate) for coordinate in self.exempted],
            "unanalyzed": [str(coordinate) for coordinate in self.unanalyzed],
            "expiredExemptions": [exemption.as_dict() for exemption in self.expired_exemptions],
            "unusedExemptions": [exemption.as_dict() for exemption in self.unused_exemptions],
            "perDependency": [summary.as_dict() for summary in self.dependencies],
        }


@dataclass
class Report:
    results: list[AnalysisResult]
    verdict: Verdict
    generated_at: datetime
    failed_configurations: list[str] = field(default_factory=list)

    @property
    def analyzed_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def violating_count(self) -> int:
        return sum(1 for result in self.results if result.has_findings)
