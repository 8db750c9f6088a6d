"""Resolved dependency graphs handed over by the host build tool.

The build tool itself is outside this package: callers export its resolved
graph either as JSON or as the plain-text output of ``gradle dependencies``
and load it with :func:`load_graph`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Optional

from .types import DependencyCoordinate

logger = logging.getLogger(__name__)


class GraphReadError(RuntimeError):
    """A configuration of the graph could not be read or resolved."""


@dataclass
class DependencyNode:
    """One node of a resolved graph.

    ``coordinate`` is ``None`` for project (in-build) nodes and for entries
    that name no usable coordinate; both are traversed but never analyzed.
    """

    coordinate: Optional[DependencyCoordinate]
    children: List["DependencyNode"] = field(default_factory=list)
    name: str = ""

    @property
    def key(self) -> object:
        return self.coordinate if self.coordinate is not None else ("project", self.name)


@dataclass
class DependencyGraph:
    configurations: dict[str, List[DependencyNode]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def has_configuration(self, name: str) -> bool:
        return name in self.configurations or name in self.errors

    def roots(self, name: str) -> List[DependencyNode]:
        if name in self.errors:
            raise GraphReadError(f"Configuration '{name}' could not be resolved: {self.errors[name]}")
        if name not in self.configurations:
            raise GraphReadError(f"Configuration '{name}' is not present in the graph")
        return self.configurations[name]


def merge_graphs(graphs: Iterable[DependencyGraph]) -> DependencyGraph:
    merged = DependencyGraph()
    for graph in graphs:
        for name, roots in graph.configurations.items():
            merged.configurations.setdefault(name, []).extend(roots)
        for name, error in graph.errors.items():
            # A configuration that resolved in another module still counts.
            if name not in graph.configurations:
                merged.errors.setdefault(name, error)
    for name in list(merged.errors):
        if name in merged.configurations:
            del merged.errors[name]
    return merged


def _node_from_json(raw: Any) -> DependencyNode:
    if not isinstance(raw, dict):
        raise GraphReadError(f"Graph node must be an object, got {type(raw).__name__}")
    if raw.get("project"):
        coordinate = None
    elif raw.get("module"):
        try:
            coordinate = DependencyCoordinate.parse(str(raw["module"]))
        except ValueError as exc:
            raise GraphReadError(str(exc)) from None
    else:
        try:
            coordinate = DependencyCoordinate(
                str(raw.get("group", "")), str(raw.get("artifact", "")), str(raw.get("version", ""))
            )
        except ValueError as exc:
            raise GraphReadError(f"Invalid graph node {raw!r}: {exc}") from None
    raw_children = raw.get("children") or []
    if not isinstance(raw_children, list):
        raise GraphReadError(f"'children' must be a list, got {type(raw_children).__name__}")
    children = [_node_from_json(child) for child in raw_children]
    return DependencyNode(coordinate=coordinate, children=children, name=str(raw.get("project") or ""))


def parse_json_graph(data: Any) -> DependencyGraph:
    if not isinstance(data, dict):
        raise GraphReadError(f"Graph JSON must be an object, got {type(data).__name__}")
    graph = DependencyGraph()
    configurations = data.get("configurations")
    if not isinstance(configurations, dict):
        raise GraphReadError("Graph JSON must contain a 'configurations' object")

    for name, value in configurations.items():
        if isinstance(value, dict) and "error" in value:
            graph.errors[name] = str(value["error"])
            continue
        if not isinstance(value, list):
            graph.errors[name] = f"expected a list of nodes, got {type(value).__name__}"
            continue
        try:
            graph.configurations[name] = [_node_from_json(node) for node in value]
        except GraphReadError as exc:
            graph.errors[name] = str(exc)
    return graph


CONFIGURATION_HEADER = re.compile(r"^([A-Za-z][\w.-]*)(?: - .*)?$")
TREE_LINE = re.compile(r"^(?P<indent>(?:[| ] {4})*)[+\\]--- (?P<body>.+)$")
MARKERS = ("(*)", "(c)", "(n)")


def _parse_gradle_entry(body: str) -> tuple[Optional[DependencyCoordinate], str, str]:
    """Return (coordinate, project name, marker) for one tree entry."""

    text = body.strip()
    marker = ""
    if text.endswith(" FAILED"):
        return None, "", "FAILED"
    for candidate in MARKERS:
        if text.endswith(candidate):
            marker = candidate
            text = text[: -len(candidate)].strip()
            break

    if text.startswith("project "):
        return None, text[len("project ") :].strip(), marker

    requested, _, resolved = text.partition(" -> ")
    requested = requested.strip()
    resolved = resolved.strip()
    if resolved.startswith("project "):
        # Module substituted by a project of an included build.
        return None, resolved[len("project ") :].strip(), marker
    parts = requested.split(":")
    if resolved and ":" in resolved:
        # Module substitution: the resolved side is a full coordinate.
        parts = resolved.split(":")
        resolved = ""
    if len(parts) < 2:
        return None, "", "unparsable"
    group, artifact = parts[0], parts[1]
    version = resolved or (parts[2] if len(parts) > 2 else "")
    if not version or version.startswith("{"):
        return None, "", "unversioned"
    try:
        return DependencyCoordinate(group, artifact, version), "", marker
    except ValueError:
        return None, "", "unparsable"


def parse_gradle_dependencies(text: str) -> DependencyGraph:
    graph = DependencyGraph()
    current: Optional[str] = None
    # Stack of (depth, node); None marks a skipped subtree.
    stack: list[tuple[int, Optional[DependencyNode]]] = []

    for raw_line in text.splitlines():
        line = raw_line.rstrip()
        if not line:
            continue

        tree = TREE_LINE.match(line)
        if tree is None:
            header = CONFIGURATION_HEADER.match(line)
            if header and not line.startswith(("|", "+", "\\", " ")):
                current = header.group(1)
                graph.configurations.setdefault(current, [])
                stack = []
            continue
        if current is None:
            continue

        depth = len(tree.group("indent")) // 5
        while stack and stack[-1][0] >= depth:
            stack.pop()
        parent_skipped = bool(stack) and stack[-1][1] is None

        body = tree.group("body")
        coordinate, project, marker = _parse_gradle_entry(body)
        if parent_skipped or marker in {"(c)", "(n)", "FAILED"}:
            if marker == "FAILED":
                logger.warning("Gradle could not resolve %s in %s", body, current)
            stack.append((depth, None))
            continue
        if marker in {"unparsable", "unversioned"}:
            if marker == "unparsable":
                logger.warning("Unrecognized dependency %r in %s; traversing its children only", body, current)
            # Anonymous pass-through node so the subtree stays reachable.
            project = body

        node = DependencyNode(coordinate=coordinate, name=project)
        if stack:
            parent = stack[-1][1]
            assert parent is not None
            parent.children.append(node)
        else:
            graph.configurations[current].append(node)
        stack.append((depth, node))

    return graph


def load_graph(path: Path) -> DependencyGraph:
    if not path.exists():
        raise GraphReadError(f"Dependency graph not found: {path}")
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise GraphReadError(f"Unable to parse {path}: {exc}") from exc
        return parse_json_graph(data)
    return parse_gradle_dependencies(text)
