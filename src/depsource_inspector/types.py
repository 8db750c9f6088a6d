from __future__ import annotations

"""Shared data structures for dependency source inspection.

The definitions live in domain-focused modules; this module re-exports them
so callers have a single, stable import path.
"""

from .types_config import (
    DEFAULT_CHECKS,
    DEFAULT_CONFIGURATIONS,
    DEFAULT_INCLUDE_GROUPS,
    AnalysisSettings,
    CustomCheckSpec,
    EnforcementMode,
    EnforcementPolicy,
    Exemption,
    InspectorConfig,
    ScopeRule,
    SourcesSettings,
)
from .types_coordinates import AnalysisResult, DependencyCoordinate, FailureKind, Finding, Severity
from .types_report import DependencySummary, Report, Verdict

__all__ = [
    "AnalysisResult",
    "AnalysisSettings",
    "CustomCheckSpec",
    "DEFAULT_CHECKS",
    "DEFAULT_CONFIGURATIONS",
    "DEFAULT_INCLUDE_GROUPS",
    "DependencyCoordinate",
    "DependencySummary",
    "EnforcementMode",
    "EnforcementPolicy",
    "Exemption",
    "FailureKind",
    "Finding",
    "InspectorConfig",
    "Report",
    "ScopeRule",
    "Severity",
    "SourcesSettings",
    "Verdict",
]
