import json
from pathlib import Path

import pytest

from depsource_inspector.dependency_graph import (
    GraphReadError,
    load_graph,
    merge_graphs,
    parse_gradle_dependencies,
    parse_json_graph,
)
from depsource_inspector.scope import resolve_scope
from depsource_inspector.types import DependencyCoordinate, ScopeRule

GRADLE_OUTPUT = """
> Task :app:dependencies

------------------------------------------------------------
Project ':app'
------------------------------------------------------------

implementation - Implementation only dependencies for source set 'main'.
+--- com.acme:core:1.0
|    +--- com.acme:util:2.0 -> 2.1
|    \\--- org.slf4j:slf4j-api:1.7.36
+--- project :shared
|    \\--- com.acme:util:2.1 (*)
+--- com.acme:legacy:0.9 -> com.acme:modern:1.0
+--- com.acme:missing:3.0 FAILED
\\--- com.acme:platform-bom:1.0 (c)

runtimeOnly - Runtime only dependencies for source set 'main'.
No dependencies

(*) - dependencies omitted (listed previously)
"""


def test_parse_gradle_dependencies_builds_tree():
    graph = parse_gradle_dependencies(GRADLE_OUTPUT)

    roots = graph.roots("implementation")
    assert [str(node.coordinate) for node in roots if node.coordinate] == [
        "com.acme:core:1.0",
        "com.acme:modern:1.0",
    ]
    core = roots[0]
    assert [str(child.coordinate) for child in core.children] == [
        "com.acme:util:2.1",
        "org.slf4j:slf4j-api:1.7.36",
    ]
    project = roots[1]
    assert project.coordinate is None and project.name == ":shared"
    assert str(project.children[0].coordinate) == "com.acme:util:2.1"
    assert graph.roots("runtimeOnly") == []


def test_json_graph_records_configuration_errors():
    graph = parse_json_graph(
        {
            "configurations": {
                "implementation": [
                    {"group": "com.acme", "artifact": "core", "version": "1.0", "children": [{"module": "com.acme:util:2.0"}]}
                ],
                "api": {"error": "Could not resolve com.acme:gone:1.0"},
            }
        }
    )
    assert graph.has_configuration("api")
    with pytest.raises(GraphReadError):
        graph.roots("api")
    child = graph.roots("implementation")[0].children[0]
    assert child.coordinate == DependencyCoordinate("com.acme", "util", "2.0")


def test_merge_graphs_prefers_resolved_configurations():
    broken = parse_json_graph({"configurations": {"api": {"error": "offline"}}})
    healthy = parse_json_graph({"configurations": {"api": [{"module": "com.acme:core:1.0"}]}})
    merged = merge_graphs([broken, healthy])
    assert "api" not in merged.errors
    assert len(merged.roots("api")) == 1


def test_load_graph_by_suffix(tmp_path: Path):
    json_path = tmp_path / "graph.json"
    json_path.write_text(json.dumps({"configurations": {"api": []}}))
    text_path = tmp_path / "dependencies.txt"
    text_path.write_text(GRADLE_OUTPUT)

    assert load_graph(json_path).roots("api") == []
    assert load_graph(text_path).has_configuration("implementation")

    with pytest.raises(GraphReadError):
        load_graph(tmp_path / "absent.json")
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    with pytest.raises(GraphReadError):
        load_graph(broken)


def test_project_substitution_keeps_its_subtree():
    graph = parse_gradle_dependencies(
        "compileClasspath - Compile classpath for source set 'main'.\n"
        "+--- com.acme:lib:1.0 -> project :lib\n"
        "|    \\--- com.acme:util:2.0\n"
        "\\--- com.acme:core:1.0\n"
    )
    substituted, core = graph.roots("compileClasspath")
    assert substituted.coordinate is None and substituted.name == ":lib"
    assert str(substituted.children[0].coordinate) == "com.acme:util:2.0"

    scope = resolve_scope(graph, ScopeRule(include_groups=("com.acme",), configurations=("compileClasspath",)))
    assert sorted(str(coordinate) for coordinate in scope.coordinates) == ["com.acme:core:1.0", "com.acme:util:2.0"]


def test_groupless_module_does_not_abort_parsing():
    graph = parse_gradle_dependencies(
        "runtimeClasspath - Runtime classpath of source set 'main'.\n"
        "+--- :flatlib:1.0\n"
        "|    \\--- com.acme:util:2.0\n"
        "\\--- com.acme:core:1.0\n"
        "\n"
        "compileClasspath - Compile classpath for source set 'main'.\n"
        "\\--- com.acme:api:3.0\n"
    )
    flat, core = graph.roots("runtimeClasspath")
    assert flat.coordinate is None
    assert str(flat.children[0].coordinate) == "com.acme:util:2.0"
    assert str(core.coordinate) == "com.acme:core:1.0"
    assert str(graph.roots("compileClasspath")[0].coordinate) == "com.acme:api:3.0"


@pytest.mark.parametrize("payload", [[], "graph", 42])
def test_non_object_json_graph_is_a_graph_error(tmp_path: Path, payload):
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(payload))
    with pytest.raises(GraphReadError):
        load_graph(path)


def test_non_list_children_fail_only_their_configuration():
    graph = parse_json_graph(
        {
            "configurations": {
                "api": [{"module": "com.acme:core:1.0", "children": "com.acme:util:2.0"}],
                "implementation": [{"module": "com.acme:util:2.0"}],
            }
        }
    )
    with pytest.raises(GraphReadError):
        graph.roots("api")
    assert len(graph.roots("implementation")) == 1
