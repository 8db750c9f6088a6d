from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional


class Severity(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"

    @classmethod
    def parse(cls, value: "str | Severity") -> "Severity":
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown severity: {value!r}") from None


class FailureKind(str, Enum):
    SOURCES_UNAVAILABLE = "sources_unavailable"
    ANALYSIS_FAILED = "analysis_failed"
    CANCELLED = "cancelled"


def _check_component(name: str, value: str) -> None:
    if not value or not value.strip():
        raise ValueError(f"Coordinate {name} must not be empty")
    # Dot-prefixed names are reserved for cache bookkeeping (staging, markers).
    if value.startswith(".") or "/" in value or "\\" in value:
        raise ValueError(f"Coordinate {name} is not a safe path component: {value!r}")


@dataclass(frozen=True)
class DependencyCoordinate:
    """Maven-style coordinates identifying one resolved dependency."""

    group: str
    artifact: str
    version: str

    def __post_init__(self) -> None:
        _check_component("group", self.group)
        _check_component("artifact", self.artifact)
        _check_component("version", self.version)

    @classmethod
    def parse(cls, text: str) -> "DependencyCoordinate":
        parts = text.strip().split(":")
        if len(parts) != 3:
            raise ValueError(f"Expected group:artifact:version, got {text!r}")
        return cls(*parts)

    @property
    def relative_path(self) -> Path:
        """Cache directory for this coordinate, unique per (group, artifact, version)."""

        return Path(self.group, self.artifact, self.version)

    def __str__(self) -> str:
        return f"{self.group}:{self.artifact}:{self.version}"


@dataclass(frozen=True)
class Finding:
    check: str
    severity: Severity
    file: str
    line: int
    message: str
    suggestion: Optional[str] = None

    def __post_init__(self) -> None:
        if self.line < 1:
            raise ValueError(f"Finding line must be >= 1, got {self.line}")
        object.__setattr__(self, "severity", Severity.parse(self.severity))

    def as_dict(self) -> dict:
        payload = {
            "check": self.check,
            "severity": self.severity.value,
            "file": self.file,
            "line": self.line,
            "message": self.message,
        }
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        return payload

    def __str__(self) -> str:
        suggestion = f" (Suggestion: {self.suggestion})" if self.suggestion else ""
        return (
            f"[{self.severity.value}] {self.check}: {self.message} "
            f"at {self.file}:{self.line}{suggestion}"
        )


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of analyzing one dependency.

    A successful result carries the findings in discovery order. A failed
    result carries an error message and never any findings.
    """

    coordinate: DependencyCoordinate
    findings: tuple[Finding, ...] = field(default_factory=tuple)
    error_message: Optional[str] = None
    failure_kind: Optional[FailureKind] = None

    def __post_init__(self) -> None:
        if self.error_message is not None and self.findings:
            raise ValueError("A failed analysis result cannot carry findings")
        if self.error_message is None and self.failure_kind is not None:
            raise ValueError("Only failed analysis results have a failure kind")

    @classmethod
    def ok(cls, coordinate: DependencyCoordinate, findings: Iterable[Finding]) -> "AnalysisResult":
        return cls(coordinate=coordinate, findings=tuple(findings))

    @classmethod
    def failed(
        cls,
        coordinate: DependencyCoordinate,
        message: str,
        kind: FailureKind = FailureKind.ANALYSIS_FAILED,
    ) -> "AnalysisResult":
        return cls(coordinate=coordinate, error_message=message, failure_kind=kind)

    @property
    def success(self) -> bool:
        return self.error_message is None

    def _count(self, severity: Severity) -> int:
        return sum(1 for finding in self.findings if finding.severity == severity)

    @property
    def error_count(self) -> int:
        return self._count(Severity.ERROR)

    @property
    def warning_count(self) -> int:
        return self._count(Severity.WARNING)

    @property
    def info_count(self) -> int:
        return self._count(Severity.INFO)

    @property
    def has_findings(self) -> bool:
        return bool(self.findings)

    def as_dict(self) -> dict:
        payload: dict = {
            "dependency": str(self.coordinate),
            "success": self.success,
            "findings": [finding.as_dict() for finding in self.findings],
        }
        if self.error_message is not None:
            payload["errorMessage"] = self.error_message
        return payload
