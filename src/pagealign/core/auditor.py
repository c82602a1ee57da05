"""Orchestration of a full 16 KB compliance run over a project root."""

import asyncio
import logging
import os
from pathlib import Path

from pagealign.core.aggregator import ComplianceAggregator
from pagealign.core.archive import ArtifactArchiveScanner, find_artifacts
from pagealign.core.dependencies import (
    KNOWN_FLOORS,
    Resolver,
    analyze_resolved_dependencies,
    get_resolved_dependencies,
    skipped_resolution_issue,
)
from pagealign.core.gradle import (
    AntiRegressionResult,
    check_anti_regression,
    check_gradle,
    merge_protections,
)
from pagealign.core.inspector import (
    SegmentAlignmentInspector,
    ToolRunner,
    missing_tool_issue,
)
from pagealign.core.locator import LibraryLocator, manual_library_issues
from pagealign.exceptions import ToolNotFoundError
from pagealign.models.library import NativeLibrary
from pagealign.models.report import (
    Artifact,
    ComplianceReport,
    Dependency,
    Issue,
    ResolutionOutcome,
    ResolutionResult,
    Severity,
)
from pagealign.utils.android_sdk import find_objdump
from pagealign.utils.config import AuditOptions

logger = logging.getLogger(__name__)

BUILD_CONFIG_NAMES: frozenset[str] = frozenset(
    {
        "build.gradle",
        "build.gradle.kts",
        "app.gradle",
        "settings.gradle",
        "settings.gradle.kts",
        "gradle.properties",
        "gradle-wrapper.properties",
        "libs.versions.toml",
        "CMakeLists.txt",
        "Application.mk",
        "Android.mk",
    }
)

# Generated or vendored trees; their build files are not the project's own
SKIP_DIRS: frozenset[str] = frozenset(
    {
        ".git",
        ".gradle",
        ".cxx",
        ".idea",
        "build",
        "dist",
        "hooks",
        "node_modules",
        "platforms",
    }
)


def find_build_configs(root: Path) -> list[Path]:
    """Find build scripts and properties files under ``root``."""
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        found.extend(
            Path(dirpath) / name for name in sorted(filenames) if name in BUILD_CONFIG_NAMES
        )
    return found


def resolve_tool(options: AuditOptions) -> tuple[Path | None, str | None]:
    """Resolve the objdump path once for a run.

    Returns:
        ``(path, None)`` when found, else ``(None, reason)``.
    """
    if options.tool_path is not None:
        if options.tool_path.is_file():
            return options.tool_path, None
        return None, f"Configured objdump does not exist: {options.tool_path}"

    try:
        return find_objdump(), None
    except ToolNotFoundError as e:
        return None, str(e)


class ComplianceAuditor:
    """Run every audit stream over a project and aggregate the results."""

    def __init__(
        self,
        root: Path,
        options: AuditOptions | None = None,
        *,
        runner: ToolRunner | None = None,
        resolver: Resolver | None = None,
    ):
        """Initialize the auditor.

        Args:
            root: Project root directory.
            options: Run options; defaults come from the user config file.
            runner: Override for running objdump (tests).
            resolver: Override for Gradle dependency resolution (tests).
        """
        self.root = root.resolve()
        self.options = options or AuditOptions.from_config()
        self._runner = runner
        self._resolver = resolver

    async def _library_stream(
        self, tool_path: Path | None
    ) -> tuple[list[NativeLibrary], list[Artifact], list[Issue]]:
        locator = LibraryLocator(self.root)
        platform_libs, manual_libs = await asyncio.gather(
            asyncio.to_thread(locator.locate),
            asyncio.to_thread(locator.locate_manual),
        )

        by_path = {lib.path: lib for lib in platform_libs}
        # A library that is also dropped in by hand gets manual scrutiny
        by_path.update({lib.path: lib for lib in manual_libs})

        inspector = SegmentAlignmentInspector(
            tool_path,
            max_concurrency=self.options.max_concurrency,
            runner=self._runner,
        )
        libraries, issues = await inspector.inspect_all(by_path.values())
        issues += manual_library_issues(manual_libs)

        # Artifacts share the inspector so the concurrency bound is run-wide
        scanner = ArtifactArchiveScanner(inspector)
        artifact_paths = await asyncio.to_thread(
            find_artifacts, self.root, LibraryLocator.PLATFORM_SUBTREES
        )
        results = await asyncio.gather(*(scanner.scan(path) for path in artifact_paths))
        artifacts = [result.artifact for result in results]

        logger.info(
            "Inspected %d libraries and %d artifacts", len(libraries), len(artifacts)
        )
        return libraries, artifacts, issues

    def _read(self, path: Path) -> tuple[str | None, Issue | None]:
        try:
            return path.read_text(encoding="utf-8", errors="replace"), None
        except OSError as e:
            logger.warning("Cannot read %s: %s", path, e)
            return None, Issue(
                severity=Severity.WARN,
                rule="unreadable-file",
                message=f"Could not read build file: {e}",
                origin=str(path),
            )

    async def _config_stream(self) -> tuple[list[Issue], dict[str, bool]]:
        paths = await asyncio.to_thread(find_build_configs, self.root)
        issues: list[Issue] = []
        guard_results: list[AntiRegressionResult] = []

        for path in paths:
            text, read_issue = await asyncio.to_thread(self._read, path)
            if read_issue:
                issues.append(read_issue)
                continue
            origin = str(path)
            issues += check_gradle(text, origin)
            guard_result = check_anti_regression(text, origin)
            issues += guard_result.issues
            guard_results.append(guard_result)

        return issues, merge_protections(guard_results)

    async def _dependency_stream(self) -> tuple[list[Dependency], list[Issue]]:
        timeout = self.options.resolution_timeout
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    get_resolved_dependencies, self.root, self._resolver, timeout
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            result = ResolutionResult(
                outcome=ResolutionOutcome.TIMED_OUT,
                error=f"Dependency resolution exceeded {timeout}s",
            )

        if not result.ok:
            return [], [skipped_resolution_issue(result, str(self.root))]

        floors = KNOWN_FLOORS | self.options.dependency_floors
        return result.dependencies, analyze_resolved_dependencies(
            result.dependencies, floors
        )

    async def run(self) -> ComplianceReport:
        """Audit the project.

        Never raises for per-file problems; those are recorded as issues.
        """
        tool_path, missing_reason = resolve_tool(self.options)
        run_issues: list[Issue] = []
        if tool_path is None:
            logger.info("Alignment checks skipped: %s", missing_reason)
            run_issues.append(missing_tool_issue(str(self.root), missing_reason))

        (libraries, artifacts, library_issues), (
            config_issues,
            protections,
        ), (dependencies, dependency_issues) = await asyncio.gather(
            self._library_stream(tool_path),
            self._config_stream(),
            self._dependency_stream(),
        )

        return ComplianceAggregator(self.root).merge(
            run_issues,
            library_issues,
            config_issues,
            dependency_issues,
            native_libraries=libraries,
            artifacts=artifacts,
            dependencies=dependencies,
            protections=protections,
        )


def audit(root: Path, options: AuditOptions | None = None) -> ComplianceReport:
    """Run a compliance audit synchronously."""
    return asyncio.run(ComplianceAuditor(root, options).run())
