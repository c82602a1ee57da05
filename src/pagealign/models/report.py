"""Pydantic models for issues, artifacts, dependencies and the final report."""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from pagealign.models.library import NativeLibrary


class Severity(str, Enum):
    """Severity of a single issue, lowest to highest."""

    PASS = "pass"
    INFO = "info"
    WARN = "warn"
    HIGH = "high"


class Issue(BaseModel):
    """A single finding produced by any audit stream."""

    severity: Severity
    """Severity level."""

    rule: str
    """Stable rule identifier (e.g. 'elf-alignment')."""

    message: str
    """Human-readable description."""

    origin: str
    """File path or ``<artifact>!/<entry>`` reference the issue is about."""

    context: dict[str, Any] = Field(default_factory=dict)
    """Rule-specific extra data (alignment, versions, suggested action)."""

    @property
    def sort_key(self) -> tuple[str, str, str]:
        """Ordering used for deterministic report output."""
        return (self.origin, self.rule, self.message)


class ArtifactKind(str, Enum):
    """Kind of packaged build output."""

    PACKAGE = "package"
    BUNDLE = "bundle"


class Artifact(BaseModel):
    """A packaged build output (APK/AAR/AAB) and what was found inside it."""

    path: Path
    """Path to the archive on disk."""

    kind: ArtifactKind
    """Package (.apk/.aar) or bundle (.aab)."""

    contained_libraries: list[NativeLibrary] = Field(default_factory=list)
    """Native libraries stored in the archive."""

    issues: list[Issue] = Field(default_factory=list)
    """Issues raised while scanning the archive."""


class Dependency(BaseModel):
    """A resolved Maven coordinate."""

    group: str
    name: str
    version: str

    @property
    def module(self) -> str:
        """Get the ``group:name`` key."""
        return f"{self.group}:{self.name}"

    def __str__(self) -> str:
        return f"{self.group}:{self.name}:{self.version}"


class ResolutionOutcome(str, Enum):
    """How dependency resolution ended."""

    OK = "ok"
    TIMED_OUT = "timed_out"
    UNAVAILABLE = "unavailable"


class ResolutionResult(BaseModel):
    """Result of resolving the project's dependency graph."""

    outcome: ResolutionOutcome
    dependencies: list[Dependency] = Field(default_factory=list)
    error: str | None = None
    source: str | None = None
    """Lockfile path or command the dependencies came from."""

    @property
    def ok(self) -> bool:
        """Check if dependencies were resolved."""
        return self.outcome == ResolutionOutcome.OK


class ComplianceStatus(str, Enum):
    """Overall result of a compliance run."""

    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class ComplianceReport(BaseModel):
    """Aggregated result of a compliance run."""

    status: ComplianceStatus
    """PASS, WARN or FAIL, derived from issue severities only."""

    issues: list[Issue] = Field(default_factory=list)
    """All issues, sorted by origin."""

    native_libraries: list[NativeLibrary] = Field(default_factory=list)
    """Libraries found in build trees and manual library folders."""

    artifacts: list[Artifact] = Field(default_factory=list)
    """Scanned APK/AAB/AAR archives."""

    resolved_dependencies: list[Dependency] = Field(default_factory=list)
    """Dependencies the version audit ran against."""

    protections: dict[str, bool] = Field(default_factory=dict)
    """Anti-regression guard name -> enabled."""

    root: Path | None = None
    """Project root that was audited."""

    scanned_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def count(self, severity: Severity) -> int:
        """Count issues of a given severity."""
        return sum(1 for issue in self.issues if issue.severity == severity)
