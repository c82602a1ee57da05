"""Pydantic models shared by the compliance engine."""

from pagealign.models.library import (
    AlignmentVerdict,
    Architecture,
    NativeLibrary,
    SourceKind,
)
from pagealign.models.report import (
    Artifact,
    ArtifactKind,
    ComplianceReport,
    ComplianceStatus,
    Dependency,
    Issue,
    ResolutionOutcome,
    ResolutionResult,
    Severity,
)

__all__ = [
    "AlignmentVerdict",
    "Architecture",
    "Artifact",
    "ArtifactKind",
    "ComplianceReport",
    "ComplianceStatus",
    "Dependency",
    "Issue",
    "NativeLibrary",
    "ResolutionOutcome",
    "ResolutionResult",
    "Severity",
    "SourceKind",
]
