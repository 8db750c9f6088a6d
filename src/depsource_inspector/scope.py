from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Pattern

from .config import ConfigError
from .dependency_graph import DependencyGraph, GraphReadError
from .types import DependencyCoordinate, ScopeRule

logger = logging.getLogger(__name__)

VALID_PATTERN = re.compile(r"^[A-Za-z0-9._*-]+$")


@dataclass(frozen=True)
class ScopeResult:
    coordinates: frozenset[DependencyCoordinate]
    failed_configurations: tuple[str, ...] = ()


def compile_group_pattern(pattern: str) -> Pattern[str]:
    """Compile a glob-style group pattern anchored to the whole group."""

    if not pattern or not VALID_PATTERN.match(pattern):
        raise ConfigError(f"Malformed group pattern: {pattern!r}")
    regex = ".*".join(re.escape(chunk) for chunk in pattern.split("*"))
    return re.compile(rf"^{regex}$")


class GroupMatcher:
    def __init__(self, include: Iterable[str], exclude: Iterable[str]) -> None:
        self._include = [compile_group_pattern(p) for p in include]
        self._exclude = [compile_group_pattern(p) for p in exclude]

    @classmethod
    def from_rule(cls, rule: ScopeRule) -> "GroupMatcher":
        return cls(rule.include_groups, rule.exclude_groups)

    def in_scope(self, group: str) -> bool:
        if any(pattern.match(group) for pattern in self._exclude):
            return False
        return any(pattern.match(group) for pattern in self._include)


def resolve_scope(graph: DependencyGraph, rule: ScopeRule) -> ScopeResult:
    """Collect every in-scope coordinate reachable from the configured roots."""

    matcher = GroupMatcher.from_rule(rule)
    visited: set[object] = set()
    selected: set[DependencyCoordinate] = set()
    failed: list[str] = []

    for configuration in rule.configurations:
        if not graph.has_configuration(configuration):
            logger.info("Configuration %s not present in the dependency graph; skipping", configuration)
            continue
        try:
            roots = graph.roots(configuration)
        except GraphReadError as exc:
            logger.warning("Skipping configuration %s: %s", configuration, exc)
            failed.append(configuration)
            continue

        worklist = list(reversed(roots))
        while worklist:
            node = worklist.pop()
            if node.key in visited:
                continue
            visited.add(node.key)

            coordinate = node.coordinate
            if coordinate is not None and matcher.in_scope(coordinate.group):
                selected.add(coordinate)
            # Children are visited whether or not this node was selected.
            worklist.extend(reversed(node.children))

    logger.info("Found %d internal dependencies to analyze", len(selected))
    return ScopeResult(coordinates=frozenset(selected), failed_configurations=tuple(failed))
