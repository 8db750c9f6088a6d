import pytest

from depsource_inspector.checks import (
    BannedPlatformApiUsageCheck,
    Check,
    CheckRegistry,
    ImproperVerticleDeploymentCheck,
    PatternCheck,
    ThreadSafetyViolationCheck,
    default_registry,
)
from depsource_inspector.config import ConfigError
from depsource_inspector.types import AnalysisSettings, CustomCheckSpec, Severity


def test_banned_platform_api_usage():
    lines = [
        "package com.acme.billing;",
        "import com.yourcompany.platform.internal.Secrets;",
        "// com.yourcompany.platform.internal is mentioned in a comment",
        "io.vertx.core.Vertx.vertx().deployVerticle(new Worker());",
    ]
    findings = BannedPlatformApiUsageCheck().detect("com/acme/Billing.java", lines)
    assert [finding.line for finding in findings] == [2, 4]
    assert all(finding.severity is Severity.ERROR for finding in findings)
    assert findings[1].suggestion == "Use PlatformVerticleDeployer.deploy() instead"


def test_improper_verticle_deployment():
    lines = [
        "package com.acme.billing;",
        "class Starter {",
        "  void start() { vertx.deployVerticle(new Worker()); }",
        "  void ok() { PlatformVerticleDeployer.deploy(vertx, new Worker()); }",
        "}",
    ]
    findings = ImproperVerticleDeploymentCheck().detect("com/acme/Starter.java", lines)
    assert [finding.line for finding in findings] == [3]
    assert findings[0].check == "ImproperVerticleDeployment"


def test_platform_code_may_deploy_directly():
    lines = ["package com.yourcompany.platform.internal.deploy;", "vertx.deployVerticle(v);"]
    check = ImproperVerticleDeploymentCheck()
    assert check.detect("x/Deployer.java", lines) == []
    assert check.detect("x/PlatformVerticleDeployer.java", ["vertx.deployVerticle(v);"]) == []


def test_thread_safety_violation():
    lines = [
        "class Counter {",
        "  private static int count = 0;",
        "  private static final int LIMIT = 10;",
        "  public static void reset() { count = 0; }",
        "  static boolean same = a == b;",
        "  static int cached; // assigned later = maybe",
        "  private int instance = 1;",
        "}",
    ]
    findings = ThreadSafetyViolationCheck().detect("Counter.java", lines)
    assert [finding.line for finding in findings] == [2, 5]
    assert all(finding.severity is Severity.WARNING for finding in findings)


def test_pattern_check_from_configuration():
    check = PatternCheck(
        CustomCheckSpec(name="NoSystemExit", pattern=r"System\.exit\(", message="Do not exit", severity=Severity.ERROR)
    )
    findings = check.detect("Main.java", ["int x = 1;", "System.exit(1);"])
    assert [(finding.check, finding.line) for finding in findings] == [("NoSystemExit", 2)]

    with pytest.raises(ConfigError):
        PatternCheck(CustomCheckSpec(name="Broken", pattern="(", message="m"))


def test_registry_rejects_unknown_names_and_deduplicates():
    registry = default_registry(include_plugins=False)
    assert registry.names() == ["BannedPlatformApiUsage", "ImproperVerticleDeployment", "ThreadSafetyViolation"]

    with pytest.raises(ConfigError) as excinfo:
        registry.resolve(["ThreadSafetyViolation", "NoSuchCheck"])
    assert "NoSuchCheck" in str(excinfo.value)

    resolved = registry.resolve(["ThreadSafetyViolation", "BannedPlatformApiUsage", "ThreadSafetyViolation"])
    assert [check.name for check in resolved] == ["ThreadSafetyViolation", "BannedPlatformApiUsage"]


class _Dummy(Check):
    name = "Dummy"

    def detect(self, file_path, lines):
        return []


def test_registry_duplicate_registration():
    registry = CheckRegistry([_Dummy()])
    with pytest.raises(ConfigError):
        registry.register(_Dummy())
    registry.register(_Dummy(), replace=True)
    assert "Dummy" in registry


def test_default_registry_includes_custom_checks_and_internal_package():
    settings = AnalysisSettings(
        internal_package="org.example.secret",
        custom_checks=(CustomCheckSpec(name="NoPrintln", pattern="println", message="Use a logger"),),
    )
    registry = default_registry(settings, include_plugins=False)
    assert "NoPrintln" in registry
    banned = registry.get("BannedPlatformApiUsage")
    assert banned.detect("A.java", ["import org.example.secret.Key;"])[0].line == 1
