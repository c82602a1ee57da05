"""Resolved dependency audit against known 16 KB compliant versions."""

import logging
import platform
import re
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

from packaging.version import InvalidVersion, Version

from pagealign.exceptions import ProcessError, ResolutionError
from pagealign.models.report import (
    Dependency,
    Issue,
    ResolutionOutcome,
    ResolutionResult,
    Severity,
)
from pagealign.utils.process import run_tool

logger = logging.getLogger(__name__)

LOCKFILE_NAME = "gradle.lockfile"
LOCKFILE_DIRECTORIES: tuple[str, ...] = (
    ".",
    "app",
    "android/app",
    "platforms/android/app",
)
GRADLE_PROJECT_DIRECTORIES: tuple[str, ...] = (".", "android", "platforms/android")
RESOLVE_CONFIGURATION = "releaseRuntimeClasspath"

# group:name -> first release whose native libraries are 16 KB aligned.
# None marks libraries with no compliant release; replace them.
KNOWN_FLOORS: dict[str, str | None] = {
    "androidx.camera:camera-core": "1.4.0",
    "com.facebook.react:react-android": "0.77.0",
    "com.facebook.react:hermes-android": "0.77.0",
    "com.facebook.fresco:imagepipeline-native": "3.4.0",
    "com.facebook.soloader:soloader": "0.12.1",
    "com.google.mlkit:barcode-scanning": "17.3.0",
    "com.google.mlkit:face-detection": "16.1.7",
    "com.google.mlkit:text-recognition": "16.0.1",
    "io.sentry:sentry-android-ndk": "7.13.0",
    "io.realm:realm-android-library": "10.19.0",
    "net.zetetic:sqlcipher-android": "4.6.1",
    "org.tensorflow:tensorflow-lite": "2.17.0",
    "com.github.barteksc:pdfium-android": None,
    "net.zetetic:android-database-sqlcipher": None,
    "com.arthenica:ffmpeg-kit-full": None,
}

Resolver = Callable[[Path, float], ResolutionResult]

# +--- group:name:1.0 -> 1.2 (*)   /   \--- group:name -> 1.2 (c)
_TREE_LINE_RE = re.compile(
    r"[+\\]---\s+([\w.\-]+):([\w.\-]+)(?::(\{[^}]*\}|[^\s]+))?"
    r"(?:\s+->\s+([^\s]+))?"
)


def parse_lockfile(text: str) -> list[Dependency]:
    """Parse a Gradle dependency lockfile (``group:name:version=configs``)."""
    dependencies: list[Dependency] = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or line.startswith("empty="):
            continue
        coordinate = line.split("=", 1)[0]
        parts = coordinate.split(":")
        if len(parts) != 3:
            continue
        dependencies.append(Dependency(group=parts[0], name=parts[1], version=parts[2]))
    return dependencies


def parse_dependency_tree(text: str) -> list[Dependency]:
    """Parse ``gradle dependencies`` tree output into unique coordinates."""
    found: dict[str, Dependency] = {}
    for match in _TREE_LINE_RE.finditer(text):
        group, name, declared, resolved = match.groups()
        version = resolved or declared
        if not version or version.startswith("{"):
            continue
        dependency = Dependency(group=group, name=name, version=version)
        found[str(dependency)] = dependency
    return sorted(found.values(), key=str)


def find_lockfiles(root: Path) -> list[Path]:
    """List Gradle lockfiles in the conventional project locations."""
    return [
        lockfile
        for directory in LOCKFILE_DIRECTORIES
        if (lockfile := root / directory / LOCKFILE_NAME).is_file()
    ]


class GradleDependencyResolver:
    """Resolve dependencies by running the project's Gradle wrapper."""

    def __init__(self, configuration: str = RESOLVE_CONFIGURATION):
        self.configuration = configuration

    def _find_wrapper(self, root: Path) -> Path:
        name = "gradlew.bat" if platform.system() == "Windows" else "gradlew"
        for directory in GRADLE_PROJECT_DIRECTORIES:
            wrapper = root / directory / name
            if wrapper.is_file():
                return wrapper
        raise ResolutionError(f"No Gradle wrapper found under {root}")

    def _resolve(self, root: Path, timeout: float) -> tuple[list[Dependency], str]:
        wrapper = self._find_wrapper(root)
        command = [
            str(wrapper),
            "-q",
            ":app:dependencies",
            "--configuration",
            self.configuration,
        ]
        try:
            result = run_tool(command, timeout=timeout, cwd=str(wrapper.parent))
        except ProcessError as e:
            raise ResolutionError(str(e), timed_out=e.timed_out) from e
        return parse_dependency_tree(result.stdout), " ".join(command)

    def __call__(self, root: Path, timeout: float) -> ResolutionResult:
        try:
            dependencies, source = self._resolve(root, timeout)
        except ResolutionError as e:
            outcome = (
                ResolutionOutcome.TIMED_OUT if e.timed_out else ResolutionOutcome.UNAVAILABLE
            )
            logger.info("Dependency resolution skipped (%s): %s", outcome.value, e)
            return ResolutionResult(outcome=outcome, error=str(e))
        return ResolutionResult(
            outcome=ResolutionOutcome.OK, dependencies=dependencies, source=source
        )


def get_resolved_dependencies(
    root: Path,
    resolver: Resolver | None = None,
    timeout: float = 120.0,
) -> ResolutionResult:
    """Get the resolved dependency list of a project.

    Lockfiles are preferred; otherwise ``resolver`` (by default the Gradle
    wrapper) is called with ``timeout``. Failures come back as a
    ``timed_out``/``unavailable`` result with no dependencies.
    """
    lockfiles = find_lockfiles(root)
    if lockfiles:
        found: dict[str, Dependency] = {}
        try:
            for lockfile in lockfiles:
                for dependency in parse_lockfile(lockfile.read_text(encoding="utf-8")):
                    found[str(dependency)] = dependency
        except (OSError, UnicodeDecodeError) as e:
            return ResolutionResult(
                outcome=ResolutionOutcome.UNAVAILABLE,
                error=f"Could not read lockfile: {e}",
            )
        return ResolutionResult(
            outcome=ResolutionOutcome.OK,
            dependencies=sorted(found.values(), key=str),
            source=", ".join(str(p) for p in lockfiles),
        )

    resolver = resolver or GradleDependencyResolver()
    return resolver(root, timeout)


def skipped_resolution_issue(result: ResolutionResult, origin: str) -> Issue:
    """Record that the dependency audit did not run."""
    return Issue(
        severity=Severity.INFO,
        rule="dependency-resolution-skipped",
        message=f"Dependency audit skipped ({result.outcome.value}): {result.error}",
        origin=origin,
        context={"outcome": result.outcome.value},
    )


def _parse(version: str) -> Version | None:
    try:
        return Version(version)
    except InvalidVersion:
        return None


def analyze_resolved_dependencies(
    dependencies: Iterable[Dependency],
    floors: Mapping[str, str | None] = KNOWN_FLOORS,
) -> list[Issue]:
    """Compare resolved dependencies with minimum 16 KB compliant versions.

    Below the floor is ``high``; at the floor or one minor version above it is
    ``info``; anything newer is a ``pass`` confirmation. Modules missing from
    ``floors`` produce nothing.
    """
    issues: list[Issue] = []
    for dependency in sorted(dependencies, key=str):
        if dependency.module not in floors:
            continue

        origin = str(dependency)
        floor_text = floors[dependency.module]
        if floor_text is None:
            issues.append(
                Issue(
                    severity=Severity.HIGH,
                    rule="dependency-version",
                    message=(
                        f"{dependency.module} has no 16 KB compatible release; "
                        "replace it"
                    ),
                    origin=origin,
                    context={"version": dependency.version, "minimum": None},
                )
            )
            continue

        version, floor = _parse(dependency.version), _parse(floor_text)
        context = {"version": dependency.version, "minimum": floor_text}
        if version is None or floor is None:
            issues.append(
                Issue(
                    severity=Severity.INFO,
                    rule="dependency-version",
                    message=(
                        f"Cannot compare {dependency.module} version "
                        f"'{dependency.version}' with {floor_text}"
                    ),
                    origin=origin,
                    context=context,
                )
            )
        elif version < floor:
            issues.append(
                Issue(
                    severity=Severity.HIGH,
                    rule="dependency-version",
                    message=(
                        f"{dependency.module} {dependency.version} ships native "
                        f"libraries without 16 KB alignment; upgrade to "
                        f"{floor_text}+"
                    ),
                    origin=origin,
                    context=context,
                )
            )
        elif version.major == floor.major and version.minor <= floor.minor + 1:
            issues.append(
                Issue(
                    severity=Severity.INFO,
                    rule="dependency-version",
                    message=(
                        f"{dependency.module} {dependency.version} is at the 16 KB "
                        f"floor ({floor_text}); keep it from being downgraded"
                    ),
                    origin=origin,
                    context=context,
                )
            )
        else:
            issues.append(
                Issue(
                    severity=Severity.PASS,
                    rule="dependency-version",
                    message=f"{dependency.module} {dependency.version} is 16 KB compatible",
                    origin=origin,
                    context=context,
                )
            )
    return issues
