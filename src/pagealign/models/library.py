"""Pydantic models for native libraries found in build outputs."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Architecture(str, Enum):
    """Android ABI of a native library."""

    ARM64_V8A = "arm64-v8a"
    ARMEABI_V7A = "armeabi-v7a"
    X86_64 = "x86_64"
    X86 = "x86"
    UNKNOWN = "unknown"


class SourceKind(str, Enum):
    """Where a native library was discovered."""

    MANUAL = "manual"
    PLATFORM_BUILD = "platformBuild"
    ARTIFACT = "artifact"


class AlignmentVerdict(str, Enum):
    """Outcome of the 16 KB segment alignment check."""

    COMPLIANT = "compliant"
    NON_COMPLIANT = "non-compliant"
    UNKNOWN = "unknown"


class NativeLibrary(BaseModel):
    """A native shared library (.so) and its alignment verdict."""

    model_config = ConfigDict(frozen=True)

    path: str
    """Absolute file path, or ``<artifact>!/<entry>`` for archive members."""

    architecture: Architecture = Architecture.UNKNOWN
    """ABI derived from the directory names in ``path``."""

    source_kind: SourceKind
    """Discovery source of the library."""

    alignment: AlignmentVerdict = AlignmentVerdict.UNKNOWN
    """16 KB alignment verdict; unknown until inspected."""

    max_alignment: int | None = None
    """Largest LOAD segment alignment in bytes, when inspected."""

    @property
    def is_arm64(self) -> bool:
        """Check if this library targets 64-bit ARM."""
        return self.architecture == Architecture.ARM64_V8A

    def with_verdict(
        self, verdict: AlignmentVerdict, max_alignment: int | None = None
    ) -> "NativeLibrary":
        """Return a copy carrying the given verdict."""
        return self.model_copy(
            update={"alignment": verdict, "max_alignment": max_alignment}
        )
