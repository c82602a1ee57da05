"""Tests for dependency resolution and version floors."""

import pytest

from pagealign.core.dependencies import (
    GradleDependencyResolver,
    analyze_resolved_dependencies,
    get_resolved_dependencies,
    parse_dependency_tree,
    parse_lockfile,
)
from pagealign.exceptions import ProcessError
from pagealign.models.report import (
    Dependency,
    ResolutionOutcome,
    ResolutionResult,
    Severity,
)
from pagealign.utils.process import ProcessResult

LOCKFILE = """\
# This is a Gradle generated file for dependency locking.
# Manual edits can break the build and are not advised.
# This file is expected to be part of source control.
androidx.core:core:1.12.0=debugRuntimeClasspath,releaseRuntimeClasspath
com.facebook.react:react-android:0.74.3=releaseRuntimeClasspath
empty=
"""

TREE = """\
releaseRuntimeClasspath - Runtime classpath of compilation 'release' (target  (androidJvm)).
+--- project :nativescript-optimized
+--- androidx.camera:camera-core:1.3.0 -> 1.4.1
|    +--- androidx.annotation:annotation:1.2.0 -> 1.7.0 (*)
|    \\--- androidx.core:core:{strictly 1.12.0} -> 1.12.0 (c)
+--- com.google.mlkit:barcode-scanning:17.2.0
\\--- org.jetbrains.kotlin:kotlin-stdlib -> 1.9.22
"""

FLOORS = {
    "androidx.camera:camera-core": "1.4.0",
    "com.github.barteksc:pdfium-android": None,
}


def _dep(coordinate):
    group, name, version = coordinate.split(":")
    return Dependency(group=group, name=name, version=version)


class TestParsing:
    def test_parse_lockfile(self):
        assert [str(d) for d in parse_lockfile(LOCKFILE)] == [
            "androidx.core:core:1.12.0",
            "com.facebook.react:react-android:0.74.3",
        ]

    def test_parse_dependency_tree_takes_resolved_version(self):
        found = {d.module: d.version for d in parse_dependency_tree(TREE)}

        assert found["androidx.camera:camera-core"] == "1.4.1"
        assert found["androidx.annotation:annotation"] == "1.7.0"
        assert found["androidx.core:core"] == "1.12.0"
        assert found["com.google.mlkit:barcode-scanning"] == "17.2.0"
        assert found["org.jetbrains.kotlin:kotlin-stdlib"] == "1.9.22"
        assert "project:nativescript-optimized" not in found


class TestGetResolvedDependencies:
    def test_prefers_lockfile(self, project):
        (project / "app").mkdir()
        (project / "app" / "gradle.lockfile").write_text(LOCKFILE)
        calls = []

        def resolver(root, timeout):
            calls.append(root)
            return ResolutionResult(outcome=ResolutionOutcome.OK)

        result = get_resolved_dependencies(project, resolver)

        assert result.ok
        assert len(result.dependencies) == 2
        assert calls == []
        assert "gradle.lockfile" in result.source

    def test_falls_back_to_resolver(self, project):
        def resolver(root, timeout):
            assert timeout == 30
            return ResolutionResult(
                outcome=ResolutionOutcome.OK,
                dependencies=[_dep("androidx.core:core:1.12.0")],
            )

        result = get_resolved_dependencies(project, resolver, timeout=30)

        assert result.ok
        assert [str(d) for d in result.dependencies] == ["androidx.core:core:1.12.0"]

    def test_unavailable_resolver(self, project, unavailable_resolver):
        result = get_resolved_dependencies(project, unavailable_resolver)

        assert result.outcome == ResolutionOutcome.UNAVAILABLE
        assert result.dependencies == []
        assert result.error


class TestGradleDependencyResolver:
    def test_no_wrapper_is_unavailable(self, project):
        result = GradleDependencyResolver()(project, 5)

        assert result.outcome == ResolutionOutcome.UNAVAILABLE
        assert "wrapper" in result.error

    def test_timeout(self, project, monkeypatch):
        (project / "gradlew").write_text("#!/bin/sh\n")

        def fake_run_tool(command, **kwargs):
            raise ProcessError(command, -1, "Command timed out after 5s", timed_out=True)

        monkeypatch.setattr("pagealign.core.dependencies.run_tool", fake_run_tool)

        result = GradleDependencyResolver()(project, 5)

        assert result.outcome == ResolutionOutcome.TIMED_OUT
        assert result.dependencies == []

    def test_parses_wrapper_output(self, project, monkeypatch):
        (project / "android").mkdir()
        (project / "android" / "gradlew").write_text("#!/bin/sh\n")
        seen = {}

        def fake_run_tool(command, **kwargs):
            seen["command"] = command
            seen["cwd"] = kwargs.get("cwd")
            return ProcessResult(command=command, returncode=0, stdout=TREE, stderr="")

        monkeypatch.setattr("pagealign.core.dependencies.run_tool", fake_run_tool)

        result = GradleDependencyResolver()(project, 5)

        assert result.ok
        assert seen["cwd"] == str(project / "android")
        assert "releaseRuntimeClasspath" in seen["command"]
        assert len(result.dependencies) == 5


class TestAnalyze:
    @pytest.mark.parametrize(
        "version, expected",
        [
            ("1.3.4", Severity.HIGH),
            ("1.4.0", Severity.INFO),
            ("1.5.2", Severity.INFO),
            ("1.6.0", Severity.PASS),
            ("2.0.0", Severity.PASS),
        ],
    )
    def test_floor_comparison(self, version, expected):
        issues = analyze_resolved_dependencies(
            [_dep(f"androidx.camera:camera-core:{version}")], FLOORS
        )

        assert len(issues) == 1
        assert issues[0].severity == expected
        assert issues[0].rule == "dependency-version"
        assert issues[0].origin == f"androidx.camera:camera-core:{version}"

    def test_no_compliant_release(self):
        issues = analyze_resolved_dependencies(
            [_dep("com.github.barteksc:pdfium-android:1.9.0")], FLOORS
        )
        assert [issue.severity for issue in issues] == [Severity.HIGH]

    def test_unknown_modules_are_ignored(self):
        assert analyze_resolved_dependencies([_dep("androidx.core:core:1.0.0")], FLOORS) == []

    def test_unparsable_version_is_info(self):
        issues = analyze_resolved_dependencies(
            [_dep("androidx.camera:camera-core:latest.release")], FLOORS
        )
        assert [issue.severity for issue in issues] == [Severity.INFO]

    def test_prerelease_below_floor(self):
        issues = analyze_resolved_dependencies(
            [_dep("androidx.camera:camera-core:1.4.0-beta01")], FLOORS
        )
        assert [issue.severity for issue in issues] == [Severity.HIGH]

    def test_default_table(self):
        issues = analyze_resolved_dependencies(
            [_dep("com.facebook.react:react-android:0.74.3")]
        )
        assert [issue.severity for issue in issues] == [Severity.HIGH]
