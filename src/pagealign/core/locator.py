"""Native library discovery in build outputs and manual library folders."""

import logging
from pathlib import Path

from pagealign.models.library import Architecture, NativeLibrary, SourceKind
from pagealign.models.report import Issue, Severity

logger = logging.getLogger(__name__)

# x86_64 must be tested before x86
ABI_DIRECTORIES: tuple[Architecture, ...] = (
    Architecture.ARM64_V8A,
    Architecture.ARMEABI_V7A,
    Architecture.X86_64,
    Architecture.X86,
)

SHARED_LIBRARY_SUFFIX = ".so"


def classify_architecture(path: str | Path) -> Architecture:
    """Classify a library by the ABI directory name in its path.

    Pure function of the path text: the first canonical ABI name found as a
    substring wins, anything else is ``unknown``.
    """
    text = str(path).replace("\\", "/")
    for abi in ABI_DIRECTORIES:
        if abi.value in text:
            return abi
    return Architecture.UNKNOWN


class LibraryLocator:
    """Find native shared libraries under a project root."""

    PLATFORM_SUBTREES: tuple[str, ...] = (
        "platforms/android",
        "app/build",
        "android/app/build",
    )
    """Build-output trees that hold compiled or merged native libraries."""

    MANUAL_DIRECTORIES: tuple[str, ...] = (
        "App_Resources/Android/libs",
        "App_Resources/Android/src/main/jniLibs",
        "app/src/main/jniLibs",
        "app/libs",
    )
    """Folders where prebuilt libraries are dropped in by hand."""

    def __init__(self, root: Path):
        """Initialize the locator.

        Args:
            root: Project root directory.
        """
        self.root = root.resolve()

    def _walk(self, base: Path, kind: SourceKind) -> set[NativeLibrary]:
        libraries: set[NativeLibrary] = set()
        if not base.is_dir():
            logger.debug("No %s tree at %s", kind.value, base)
            return libraries

        for path in base.rglob(f"*{SHARED_LIBRARY_SUFFIX}"):
            if not path.is_file():
                continue
            libraries.add(
                NativeLibrary(
                    path=str(path.resolve()),
                    # Directories above the project root say nothing about the ABI
                    architecture=classify_architecture(path.relative_to(self.root)),
                    source_kind=kind,
                )
            )
        return libraries

    def _collect(
        self, subtrees: tuple[str, ...], kind: SourceKind
    ) -> set[NativeLibrary]:
        # Overlapping subtrees yield equal models, so the set deduplicates by path
        libraries: set[NativeLibrary] = set()
        for subtree in subtrees:
            libraries |= self._walk(self.root / subtree, kind)
        return libraries

    def locate(self) -> set[NativeLibrary]:
        """Find libraries produced by the platform build.

        Returns:
            Libraries tagged ``platformBuild``; empty if no build tree exists.
        """
        libraries = self._collect(self.PLATFORM_SUBTREES, SourceKind.PLATFORM_BUILD)
        logger.debug("Found %d platform build libraries", len(libraries))
        return libraries

    def locate_manual(self) -> set[NativeLibrary]:
        """Find libraries bundled by hand, outside the build pipeline.

        Returns:
            Libraries tagged ``manual``.
        """
        libraries = self._collect(self.MANUAL_DIRECTORIES, SourceKind.MANUAL)
        logger.debug("Found %d manually bundled libraries", len(libraries))
        return libraries


def manual_library_issues(libraries: set[NativeLibrary]) -> list[Issue]:
    """Flag manually bundled libraries for closer review."""
    return [
        Issue(
            severity=Severity.INFO,
            rule="manual-native-library",
            message=(
                f"Manually bundled {library.architecture.value} library bypasses "
                "build-time verification; confirm its vendor ships a 16 KB "
                "aligned build"
            ),
            origin=library.path,
            context={"architecture": library.architecture.value},
        )
        for library in sorted(libraries, key=lambda lib: lib.path)
        if library.source_kind == SourceKind.MANUAL
    ]
