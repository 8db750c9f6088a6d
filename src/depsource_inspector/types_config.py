from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Optional

from .types_coordinates import DependencyCoordinate, Severity


DEFAULT_INCLUDE_GROUPS = ("com.yourcompany.*",)
DEFAULT_CONFIGURATIONS = ("implementation", "api", "runtimeOnly")
DEFAULT_CHECKS = (
    "BannedPlatformApiUsage",
    "ImproperVerticleDeployment",
    "ThreadSafetyViolation",
)
DEFAULT_INTERNAL_PACKAGE = "com.yourcompany.platform.internal"


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""

    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


class EnforcementMode(str, Enum):
    WARN = "WARN"
    BLOCK = "BLOCK"

    @classmethod
    def parse(cls, value: "str | EnforcementMode") -> "EnforcementMode":
        if isinstance(value, EnforcementMode):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown enforcement mode: {value!r}") from None


@dataclass(frozen=True)
class ScopeRule:
    include_groups: tuple[str, ...] = DEFAULT_INCLUDE_GROUPS
    exclude_groups: tuple[str, ...] = ()
    configurations: tuple[str, ...] = DEFAULT_CONFIGURATIONS


@dataclass(frozen=True)
class SourcesSettings:
    require_sources_jar: bool = True
    fallback_to_git_clone: bool = False
    repositories: tuple[str, ...] = ()
    local_repository: Optional[Path] = field(
        default_factory=lambda: Path.home() / ".m2" / "repository"
    )
    gradle_cache: Optional[Path] = field(
        default_factory=lambda: Path.home() / ".gradle" / "caches" / "modules-2" / "files-2.1"
    )
    cache_dir: Path = Path(".depsource-cache")
    timeout: float = 30.0


@dataclass(frozen=True)
class CustomCheckSpec:
    """A regex check declared in configuration rather than code."""

    name: str
    pattern: str
    message: str
    severity: Severity = Severity.WARNING
    suggestion: Optional[str] = None


@dataclass(frozen=True)
class AnalysisSettings:
    checks: tuple[str, ...] = DEFAULT_CHECKS
    source_extensions: tuple[str, ...] = (".java",)
    fail_fast: bool = False
    cache_enabled: bool = True
    internal_package: str = DEFAULT_INTERNAL_PACKAGE
    custom_checks: tuple[CustomCheckSpec, ...] = ()


@dataclass(frozen=True)
class EnforcementPolicy:
    mode: EnforcementMode = EnforcementMode.BLOCK
    max_errors: int = 0
    max_warnings: int = 10
    fail_on_violation: bool = True
    report_format: str = "html"
    unanalyzed_as_error: bool = False
    generate_report: bool = True

    def as_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "max_errors": self.max_errors,
            "max_warnings": self.max_warnings,
            "fail_on_violation": self.fail_on_violation,
            "report_format": self.report_format,
            "unanalyzed_as_error": self.unanalyzed_as_error,
            "generate_report": self.generate_report,
        }


@dataclass(frozen=True)
class Exemption:
    """An approved waiver for one dependency or a family of dependencies.

    ``dependency`` is ``group[:artifact[:version]]`` where every part may use
    ``*`` wildcards and omitted parts match anything.
    """

    dependency: str
    reason: str
    approved_by: str
    expires: Optional[datetime] = None
    max_violations: Optional[int] = None
    permanent: bool = False

    @property
    def _parts(self) -> tuple[str, str, str]:
        parts = self.dependency.split(":")
        parts += ["*"] * (3 - len(parts))
        return parts[0], parts[1], parts[2]

    @property
    def is_wildcard(self) -> bool:
        return any("*" in part for part in self._parts)

    @property
    def specificity(self) -> int:
        # Higher is more specific; exact coordinates rank above any wildcard.
        return sum(1 for part in self._parts if "*" not in part)

    def matches(self, coordinate: DependencyCoordinate) -> bool:
        group, artifact, version = self._parts
        return (
            fnmatchcase(coordinate.group, group)
            and fnmatchcase(coordinate.artifact, artifact)
            and fnmatchcase(coordinate.version, version)
        )

    def is_active(self, now: datetime) -> bool:
        return self.permanent or (self.expires is not None and as_utc(now) < as_utc(self.expires))

    def is_expired(self, now: datetime) -> bool:
        return not self.permanent and self.expires is not None and as_utc(now) >= as_utc(self.expires)

    def as_dict(self) -> dict:
        return {
            "dependency": self.dependency,
            "reason": self.reason,
            "approved_by": self.approved_by,
            "expires": self.expires.isoformat() if self.expires else None,
            "max_violations": self.max_violations,
            "permanent": self.permanent,
        }


@dataclass(frozen=True)
class InspectorConfig:
    enabled: bool = True
    parallel: bool = True
    max_workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    scope: ScopeRule = field(default_factory=ScopeRule)
    sources: SourcesSettings = field(default_factory=SourcesSettings)
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)
    reporting: EnforcementPolicy = field(default_factory=EnforcementPolicy)
    exemptions: tuple[Exemption, ...] = ()
