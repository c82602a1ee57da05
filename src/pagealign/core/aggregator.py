"""Merge issue streams into a ComplianceReport and derive the overall status."""

from collections.abc import Iterable, Mapping
from itertools import chain
from pathlib import Path

from pagealign.models.library import NativeLibrary
from pagealign.models.report import (
    Artifact,
    ComplianceReport,
    ComplianceStatus,
    Dependency,
    Issue,
    Severity,
)


def derive_status(issues: Iterable[Issue]) -> ComplianceStatus:
    """FAIL if any issue is high, else WARN if any is warn, else PASS."""
    severities = {issue.severity for issue in issues}
    if Severity.HIGH in severities:
        return ComplianceStatus.FAIL
    if Severity.WARN in severities:
        return ComplianceStatus.WARN
    return ComplianceStatus.PASS


def abi_coverage_issues(libraries: Iterable[NativeLibrary], origin: str) -> list[Issue]:
    """Require arm64-v8a once any native code ships.

    Needs the complete library set, so it runs after all discovery is done.
    """
    libraries = list(libraries)
    if not libraries or any(lib.is_arm64 for lib in libraries):
        return []

    found = sorted({lib.architecture.value for lib in libraries})
    return [
        Issue(
            severity=Severity.HIGH,
            rule="no-arm64",
            message=(
                f"{len(libraries)} native libraries ship but none for arm64-v8a "
                f"(found: {', '.join(found)})"
            ),
            origin=origin,
            context={"architectures": found},
        )
    ]


class ComplianceAggregator:
    """Collect issue streams from every audit and build the final report."""

    def __init__(self, root: Path | None = None):
        self.root = root

    def merge(
        self,
        *streams: Iterable[Issue],
        native_libraries: Iterable[NativeLibrary] = (),
        artifacts: Iterable[Artifact] = (),
        dependencies: Iterable[Dependency] = (),
        protections: Mapping[str, bool] | None = None,
    ) -> ComplianceReport:
        """Merge issue streams into a report.

        Artifact issues are included automatically. Issues are sorted by
        origin, rule and message so the result does not depend on the order
        streams finished in.
        """
        native_libraries = sorted(native_libraries, key=lambda lib: lib.path)
        artifacts = sorted(artifacts, key=lambda artifact: str(artifact.path))

        every_library = chain(
            native_libraries,
            (lib for artifact in artifacts for lib in artifact.contained_libraries),
        )
        origin = str(self.root) if self.root else "."

        issues = list(
            chain(
                chain.from_iterable(streams),
                (issue for artifact in artifacts for issue in artifact.issues),
                abi_coverage_issues(every_library, origin),
            )
        )
        issues.sort(key=lambda issue: issue.sort_key)

        return ComplianceReport(
            status=derive_status(issues),
            issues=issues,
            native_libraries=native_libraries,
            artifacts=artifacts,
            resolved_dependencies=sorted(dependencies, key=str),
            protections=dict(protections or {}),
            root=self.root,
        )
