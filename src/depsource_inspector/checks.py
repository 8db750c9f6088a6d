from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from importlib.metadata import entry_points
from typing import Iterable, List, Optional, Sequence

from .config import ConfigError
from .types import AnalysisSettings, CustomCheckSpec, Finding, Severity
from .types_config import DEFAULT_INTERNAL_PACKAGE

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "depsource_inspector.checks"


def _is_comment(line: str) -> bool:
    stripped = line.lstrip()
    return stripped.startswith(("//", "/*", "*"))


class Check(ABC):
    """A named detector run against one source file at a time.

    Implementations must be pure: ``detect`` may only look at its arguments
    and must not keep state between calls, since the same instance is shared
    by every worker thread.
    """

    name: str
    summary: str = ""
    severity: Severity = Severity.WARNING

    @abstractmethod
    def detect(self, file_path: str, lines: Sequence[str]) -> List[Finding]:
        ...

    def finding(
        self,
        file_path: str,
        line: int,
        message: str,
        suggestion: Optional[str] = None,
        severity: Optional[Severity] = None,
    ) -> Finding:
        return Finding(
            check=self.name,
            severity=severity or self.severity,
            file=file_path,
            line=line,
            message=message,
            suggestion=suggestion,
        )


class BannedPlatformApiUsageCheck(Check):
    name = "BannedPlatformApiUsage"
    summary = "Direct usage of platform internal APIs is not allowed"
    severity = Severity.ERROR

    def __init__(self, internal_package: str = DEFAULT_INTERNAL_PACKAGE) -> None:
        self.internal_package = internal_package

    def detect(self, file_path: str, lines: Sequence[str]) -> List[Finding]:
        findings: List[Finding] = []
        for number, line in enumerate(lines, start=1):
            if _is_comment(line):
                continue
            if self.internal_package in line:
                findings.append(
                    self.finding(
                        file_path,
                        number,
                        "Direct usage of platform internal APIs is not allowed",
                        "Use public platform APIs instead",
                    )
                )
            if "io.vertx.core.Vertx" in line and "import" not in line and "deployVerticle" in line:
                findings.append(
                    self.finding(
                        file_path,
                        number,
                        "Direct Vertx.deployVerticle() usage is not allowed",
                        "Use PlatformVerticleDeployer.deploy() instead",
                    )
                )
        return findings


PACKAGE_DECLARATION = re.compile(r"^\s*package\s+([\w.]+)\s*;")
DEPLOY_CALL = re.compile(r"\.deployVerticle\s*\(")


class ImproperVerticleDeploymentCheck(Check):
    name = "ImproperVerticleDeployment"
    summary = "Verticles must be deployed through PlatformVerticleDeployer"
    severity = Severity.ERROR

    def __init__(self, internal_package: str = DEFAULT_INTERNAL_PACKAGE) -> None:
        self.internal_package = internal_package

    def _is_platform_code(self, file_path: str, lines: Sequence[str]) -> bool:
        if file_path.rsplit("/", 1)[-1] == "PlatformVerticleDeployer.java":
            return True
        for line in lines:
            declared = PACKAGE_DECLARATION.match(line)
            if declared:
                return declared.group(1).startswith(self.internal_package)
        return False

    def detect(self, file_path: str, lines: Sequence[str]) -> List[Finding]:
        if self._is_platform_code(file_path, lines):
            return []
        findings: List[Finding] = []
        for number, line in enumerate(lines, start=1):
            if _is_comment(line):
                continue
            if DEPLOY_CALL.search(line) and "PlatformVerticleDeployer" not in line:
                findings.append(
                    self.finding(
                        file_path,
                        number,
                        "Verticles must be deployed through PlatformVerticleDeployer",
                        "Replace with PlatformVerticleDeployer.deploy()",
                    )
                )
        return findings


STATIC_KEYWORD = re.compile(r"\bstatic\b")
FINAL_KEYWORD = re.compile(r"\bfinal\b")


class ThreadSafetyViolationCheck(Check):
    name = "ThreadSafetyViolation"
    summary = "Mutable static field may cause thread safety issues"
    severity = Severity.WARNING

    def detect(self, file_path: str, lines: Sequence[str]) -> List[Finding]:
        findings: List[Finding] = []
        for number, line in enumerate(lines, start=1):
            if _is_comment(line) or "//" in line:
                continue
            if not STATIC_KEYWORD.search(line) or FINAL_KEYWORD.search(line):
                continue
            assignment = line.find("=")
            if assignment < 0 or line[assignment : assignment + 2] == "==":
                continue
            # Static methods and initializer blocks open a paren or brace first.
            head = line[:assignment]
            if "(" in head or "{" in head:
                continue
            findings.append(
                self.finding(
                    file_path,
                    number,
                    "Mutable static field detected - potential thread safety issue",
                    "Consider using instance fields or making the field final",
                )
            )
        return findings


class PatternCheck(Check):
    """A line-oriented regex check declared in configuration."""

    def __init__(self, definition: CustomCheckSpec) -> None:
        try:
            self._pattern = re.compile(definition.pattern)
        except re.error as exc:
            raise ConfigError(f"Custom check {definition.name} has an invalid pattern: {exc}") from None
        self.name = definition.name
        self.summary = definition.message
        self.severity = definition.severity
        self._suggestion = definition.suggestion

    def detect(self, file_path: str, lines: Sequence[str]) -> List[Finding]:
        return [
            self.finding(file_path, number, self.summary, self._suggestion)
            for number, line in enumerate(lines, start=1)
            if self._pattern.search(line)
        ]


class CheckRegistry:
    def __init__(self, checks: Iterable[Check] = ()) -> None:
        self._checks: dict[str, Check] = {}
        for check in checks:
            self.register(check)

    def register(self, check: Check, replace: bool = False) -> None:
        if not replace and check.name in self._checks:
            raise ConfigError(f"Check {check.name} is already registered")
        self._checks[check.name] = check

    def __contains__(self, name: object) -> bool:
        return name in self._checks

    def get(self, name: str) -> Check:
        return self._checks[name]

    def names(self) -> List[str]:
        return sorted(self._checks)

    def resolve(self, names: Sequence[str]) -> List[Check]:
        """Map configured check names to detectors, rejecting unknown names up front."""

        unknown = [name for name in names if name not in self._checks]
        if unknown:
            raise ConfigError(
                f"Unknown check(s): {', '.join(unknown)}. Registered checks: {', '.join(self.names())}"
            )
        return [self._checks[name] for name in dict.fromkeys(names)]


def builtin_checks(internal_package: str = DEFAULT_INTERNAL_PACKAGE) -> List[Check]:
    return [
        BannedPlatformApiUsageCheck(internal_package),
        ImproperVerticleDeploymentCheck(internal_package),
        ThreadSafetyViolationCheck(),
    ]


def load_plugin_checks(group: str = ENTRY_POINT_GROUP) -> List[Check]:
    """Instantiate checks published by other distributions under ``group``."""

    loaded: List[Check] = []
    for entry_point in entry_points(group=group):
        try:
            target = entry_point.load()
            check = target() if isinstance(target, type) or not isinstance(target, Check) else target
        except Exception:
            logger.exception("Unable to load check plugin %s", entry_point.name)
            continue
        if not isinstance(check, Check):
            logger.warning("Entry point %s did not produce a Check; ignoring", entry_point.name)
            continue
        loaded.append(check)
    return loaded


def default_registry(analysis: AnalysisSettings | None = None, include_plugins: bool = True) -> CheckRegistry:
    settings = analysis or AnalysisSettings()
    registry = CheckRegistry(builtin_checks(settings.internal_package))
    if include_plugins:
        for check in load_plugin_checks():
            registry.register(check, replace=True)
    for definition in settings.custom_checks:
        registry.register(PatternCheck(definition), replace=True)
    return registry
