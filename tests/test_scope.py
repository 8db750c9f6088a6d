import pytest

from depsource_inspector.config import ConfigError
from depsource_inspector.dependency_graph import parse_json_graph
from depsource_inspector.scope import GroupMatcher, compile_group_pattern, resolve_scope
from depsource_inspector.types import DependencyCoordinate, ScopeRule


def _node(module: str, *children: dict) -> dict:
    return {"module": module, "children": list(children)}


def test_group_patterns_are_anchored_globs():
    pattern = compile_group_pattern("com.acme.*")
    assert pattern.match("com.acme.billing")
    assert not pattern.match("com.acmex")
    assert not pattern.match("org.com.acme.billing")
    assert compile_group_pattern("com.acme").match("com.acme")
    assert not compile_group_pattern("com.acme").match("comXacme")


@pytest.mark.parametrize("pattern", ["", "com.acme[", "com acme", "com/acme"])
def test_malformed_patterns_are_config_errors(pattern):
    with pytest.raises(ConfigError):
        compile_group_pattern(pattern)


def test_exclude_wins_over_include():
    matcher = GroupMatcher(["com.acme.*"], ["com.acme.platform"])
    assert matcher.in_scope("com.acme.wrappers")
    assert not matcher.in_scope("com.acme.platform")
    assert not matcher.in_scope("org.other")


def test_scope_traverses_through_out_of_scope_nodes():
    graph = parse_json_graph(
        {
            "configurations": {
                "implementation": [
                    _node(
                        "org.thirdparty:wrapper:1.0",
                        _node("com.acme.billing:core:1.0"),
                    ),
                    _node("com.acme.platform:runtime:2.0", _node("com.acme.billing:util:1.1")),
                ]
            }
        }
    )
    rule = ScopeRule(include_groups=("com.acme.*",), exclude_groups=("com.acme.platform",))
    scope = resolve_scope(graph, rule)
    assert scope.coordinates == {
        DependencyCoordinate.parse("com.acme.billing:core:1.0"),
        DependencyCoordinate.parse("com.acme.billing:util:1.1"),
    }


def test_diamond_graph_yields_each_coordinate_once():
    shared = _node("com.acme:d:1.0")
    graph = parse_json_graph(
        {
            "configurations": {
                "implementation": [_node("com.acme:b:1.0", shared), _node("com.acme:c:1.0", shared)],
                "api": [_node("com.acme:b:1.0", shared)],
            }
        }
    )
    scope = resolve_scope(graph, ScopeRule(include_groups=("com.acme",)))
    assert sorted(str(coordinate) for coordinate in scope.coordinates) == [
        "com.acme:b:1.0",
        "com.acme:c:1.0",
        "com.acme:d:1.0",
    ]


def test_unreadable_configuration_is_reported_and_skipped():
    graph = parse_json_graph(
        {
            "configurations": {
                "implementation": [_node("com.acme:core:1.0")],
                "api": {"error": "Could not resolve all dependencies"},
            }
        }
    )
    scope = resolve_scope(graph, ScopeRule(include_groups=("com.acme",)))
    assert scope.failed_configurations == ("api",)
    assert scope.coordinates == {DependencyCoordinate.parse("com.acme:core:1.0")}
