"""Heuristic audit of Gradle build scripts and related build configuration.

This is a best-effort, regex-based scanner. It extracts version tokens and
flags from ``build.gradle(.kts)``, ``gradle.properties``,
``gradle-wrapper.properties``, version catalogs and CMake/ndk-build files. It
does not parse Groovy or Kotlin and does not claim a script is correct; it
only reports settings that are known to matter for 16 KB page alignment.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from packaging.version import InvalidVersion, Version

from pagealign.models.report import Issue, Severity

# NDK r28 links with 16 KB max page size by default
NDK_MIN_VERSION = Version("28")
# AGP 8.5.1 zip-aligns uncompressed native libraries on 16 KB boundaries
AGP_MIN_VERSION = Version("8.5.1")
# Minimum Gradle for AGP 8.5
GRADLE_MIN_VERSION = Version("8.7")
TARGET_SDK_MIN = 35

_NDK_VERSION_RE = re.compile(
    r"""\bndkVersion\s*(?:=\s*)?["']?(\d+(?:\.\d+)*)""", re.IGNORECASE
)
_AGP_PATTERNS = (
    re.compile(r"""com\.android\.tools\.build:gradle:(\d+\.\d+[\w.\-]*)"""),
    re.compile(
        r"""id\s*\(?\s*["']com\.android\.(?:application|library)["']\s*\)?"""
        r"""\s*version\s*\(?\s*["'](\d+\.\d+[\w.\-]*)["']"""
    ),
    # libs.versions.toml
    re.compile(
        r"""^\s*(?:agp|androidGradlePlugin|android-gradle-plugin)\s*=\s*["'](\d+\.\d+[\w.\-]*)["']""",
        re.MULTILINE,
    ),
)
_GRADLE_WRAPPER_RE = re.compile(
    r"distributionUrl\s*=.*?gradle-(\d+(?:\.\d+)*)(?:-[\w]+)?-(?:bin|all)\.zip"
)
_TARGET_SDK_RE = re.compile(r"\btargetSdk(?:Version)?\s*(?:=\s*)?\(?\s*(\d+)")
_ABI_FILTERS_RE = re.compile(r"\babiFilters\b")
_ZIPALIGN_DISABLED_RE = re.compile(r"\b(?:is)?[zZ]ipAlignEnabled\s*(?:=\s*)?false\b")
_PAGE_SIZE_4K_RE = re.compile(
    r"-z\s*,?\s*(max-page-size|common-page-size)\s*=\s*(4096|0x1000)\b"
)
_PAGE_SIZE_16K_RE = re.compile(r"-z\s*,?\s*max-page-size\s*=\s*(16384|0x4000)\b")
_FLEXIBLE_ON_RE = re.compile(
    r"(?:ANDROID_SUPPORT_FLEXIBLE_PAGE_SIZES\s*=\s*ON"
    r"|APP_SUPPORT_FLEXIBLE_PAGE_SIZES\s*:?=\s*true)",
    re.IGNORECASE,
)
_FLEXIBLE_OFF_RE = re.compile(
    r"(?:ANDROID_SUPPORT_FLEXIBLE_PAGE_SIZES\s*=\s*OFF"
    r"|APP_SUPPORT_FLEXIBLE_PAGE_SIZES\s*:?=\s*false)",
    re.IGNORECASE,
)

_ABI_WINDOW = 200


def parse_version(text: str) -> Version | None:
    """Parse a version token, returning None when it is not PEP 440 compatible."""
    try:
        return Version(text)
    except InvalidVersion:
        return None


def _pinned_ndk(text: str) -> Version | None:
    match = _NDK_VERSION_RE.search(text)
    return parse_version(match.group(1)) if match else None


def _compensates_old_ndk(text: str) -> bool:
    return bool(_PAGE_SIZE_16K_RE.search(text) or _FLEXIBLE_ON_RE.search(text))


def _check_ndk(text: str, origin: str) -> list[Issue]:
    match = _NDK_VERSION_RE.search(text)
    if not match:
        return []

    raw = match.group(1)
    version = parse_version(raw)
    if version is None:
        return []

    context = {"version": raw, "minimum": str(NDK_MIN_VERSION)}
    if version >= NDK_MIN_VERSION:
        return [
            Issue(
                severity=Severity.PASS,
                rule="ndk-version",
                message=f"NDK {raw} builds 16 KB aligned libraries by default",
                origin=origin,
                context=context,
            )
        ]

    if _compensates_old_ndk(text):
        return [
            Issue(
                severity=Severity.INFO,
                rule="ndk-version",
                message=(
                    f"NDK {raw} is older than r28 but 16 KB page sizes are "
                    "requested explicitly"
                ),
                origin=origin,
                context=context,
            )
        ]

    return [
        Issue(
            severity=Severity.HIGH,
            rule="ndk-version",
            message=(
                f"NDK {raw} links native code for 4 KB pages; use NDK r28+ or "
                "pass -DANDROID_SUPPORT_FLEXIBLE_PAGE_SIZES=ON"
            ),
            origin=origin,
            context=context | {"action": "Set ndkVersion to 28.0.13004108 or newer"},
        )
    ]


def _check_agp(text: str, origin: str) -> list[Issue]:
    issues: list[Issue] = []
    seen: set[str] = set()
    for pattern in _AGP_PATTERNS:
        for match in pattern.finditer(text):
            raw = match.group(1)
            version = parse_version(raw)
            if version is None or raw in seen:
                continue
            seen.add(raw)
            context = {"version": raw, "minimum": str(AGP_MIN_VERSION)}
            if version < AGP_MIN_VERSION:
                issues.append(
                    Issue(
                        severity=Severity.HIGH,
                        rule="agp-version",
                        message=(
                            f"Android Gradle Plugin {raw} does not 16 KB zip-align "
                            f"uncompressed native libraries; upgrade to "
                            f"{AGP_MIN_VERSION}+"
                        ),
                        origin=origin,
                        context=context,
                    )
                )
            else:
                issues.append(
                    Issue(
                        severity=Severity.PASS,
                        rule="agp-version",
                        message=f"Android Gradle Plugin {raw} supports 16 KB alignment",
                        origin=origin,
                        context=context,
                    )
                )
    return issues


def _check_wrapper(text: str, origin: str) -> list[Issue]:
    match = _GRADLE_WRAPPER_RE.search(text)
    if not match:
        return []
    raw = match.group(1)
    version = parse_version(raw)
    if version is None:
        return []

    context = {"version": raw, "minimum": str(GRADLE_MIN_VERSION)}
    if version < GRADLE_MIN_VERSION:
        return [
            Issue(
                severity=Severity.HIGH,
                rule="gradle-wrapper-version",
                message=(
                    f"Gradle {raw} cannot run AGP {AGP_MIN_VERSION}; "
                    f"upgrade the wrapper to {GRADLE_MIN_VERSION}+"
                ),
                origin=origin,
                context=context,
            )
        ]
    return [
        Issue(
            severity=Severity.PASS,
            rule="gradle-wrapper-version",
            message=f"Gradle {raw} meets the minimum for 16 KB builds",
            origin=origin,
            context=context,
        )
    ]


def _check_packaging(text: str, origin: str) -> list[Issue]:
    issues: list[Issue] = []

    if _ZIPALIGN_DISABLED_RE.search(text):
        issues.append(
            Issue(
                severity=Severity.HIGH,
                rule="zipalign-disabled",
                message="zipAlignEnabled is false; native libraries will not be page aligned in the APK",
                origin=origin,
            )
        )

    for match in _PAGE_SIZE_4K_RE.finditer(text):
        issues.append(
            Issue(
                severity=Severity.HIGH,
                rule="page-size-4k",
                message=f"Linker flag forces {match.group(1)}={match.group(2)}",
                origin=origin,
                context={"flag": match.group(0)},
            )
        )

    if _PAGE_SIZE_16K_RE.search(text):
        issues.append(
            Issue(
                severity=Severity.PASS,
                rule="page-size-16k",
                message="Linker flag -z max-page-size=16384 is set",
                origin=origin,
            )
        )

    return issues


def _check_abi_filters(text: str, origin: str) -> list[Issue]:
    # Only module scripts with an android defaultConfig declare ABI filters
    if "defaultConfig" not in text:
        return []

    matches = list(_ABI_FILTERS_RE.finditer(text))
    if not matches:
        return [
            Issue(
                severity=Severity.INFO,
                rule="no-abi-filters",
                message="No abiFilters declared; every ABI of every dependency is packaged",
                origin=origin,
            )
        ]

    if any("arm64-v8a" in text[m.end() : m.end() + _ABI_WINDOW] for m in matches):
        return [
            Issue(
                severity=Severity.PASS,
                rule="abi-filters",
                message="abiFilters include arm64-v8a",
                origin=origin,
            )
        ]

    return [
        Issue(
            severity=Severity.WARN,
            rule="abi-filters-missing-arm64",
            message="abiFilters are declared without arm64-v8a",
            origin=origin,
        )
    ]


def _check_target_sdk(text: str, origin: str) -> list[Issue]:
    match = _TARGET_SDK_RE.search(text)
    if not match or int(match.group(1)) >= TARGET_SDK_MIN:
        return []
    return [
        Issue(
            severity=Severity.INFO,
            rule="target-sdk",
            message=(
                f"targetSdk {match.group(1)} is below {TARGET_SDK_MIN}; Play requires "
                "16 KB support for apps targeting Android 15+"
            ),
            origin=origin,
            context={"version": int(match.group(1))},
        )
    ]


def check_gradle(text: str, origin: str = "build.gradle") -> list[Issue]:
    """Scan build configuration text for 16 KB relevant versions and flags.

    Args:
        text: Contents of a build script, properties file or CMake file.
        origin: Path reported on every issue.

    Returns:
        Issues, including ``pass`` entries for confirmed-good settings.
    """
    issues: list[Issue] = []
    issues += _check_ndk(text, origin)
    issues += _check_agp(text, origin)
    issues += _check_wrapper(text, origin)
    issues += _check_packaging(text, origin)
    issues += _check_abi_filters(text, origin)
    issues += _check_target_sdk(text, origin)
    return issues


@dataclass(frozen=True)
class Guard:
    """A named anti-regression protection detected from build text."""

    name: str
    description: str
    enabled_by: tuple[re.Pattern[str], ...] = ()
    disabled_by: tuple[re.Pattern[str], ...] = ()
    default: bool = True
    required: bool = False
    severity: Severity = Severity.WARN

    def state(self, text: str) -> bool | None:
        """Explicit state in ``text``: False if disabled, True if enabled, else None."""
        if any(p.search(text) for p in self.disabled_by):
            return False
        if any(p.search(text) for p in self.enabled_by):
            return True
        return None


GUARDS: tuple[Guard, ...] = (
    Guard(
        name="lint_aligned_16kb",
        description="Lint check Aligned16KB is active",
        enabled_by=(
            re.compile(r"""(?:fatal|error|enable|checkOnly)\b[^\n]*["']Aligned16KB["']"""),
        ),
        disabled_by=(re.compile(r"""\bdisable\b[^\n]*["']Aligned16KB["']"""),),
        default=True,
        required=True,
        severity=Severity.WARN,
    ),
    Guard(
        name="uncompressed_native_libs",
        description="Native libraries are stored uncompressed and page aligned",
        enabled_by=(re.compile(r"\buseLegacyPackaging\s*(?:=\s*)?(?:\(\s*)?false\b"),),
        disabled_by=(
            re.compile(r"\buseLegacyPackaging\s*(?:=\s*)?(?:\(\s*)?true\b"),
            re.compile(r"\bextractNativeLibs\s*=\s*[\"']?true\b"),
            re.compile(r"android\.bundle\.enableUncompressedNativeLibs\s*=\s*false\b"),
        ),
        default=True,
        required=False,
    ),
    Guard(
        name="flexible_page_sizes",
        description="Native build requests flexible (16 KB) page sizes",
        enabled_by=(_FLEXIBLE_ON_RE, _PAGE_SIZE_16K_RE),
        disabled_by=(_FLEXIBLE_OFF_RE, _PAGE_SIZE_4K_RE),
        default=False,
        # Required only when an NDK older than r28 is pinned; see _is_required
        required=False,
        severity=Severity.HIGH,
    ),
    Guard(
        name="ndk_pinned",
        description="ndkVersion is pinned explicitly",
        enabled_by=(_NDK_VERSION_RE,),
        default=False,
        required=False,
    ),
)


@dataclass
class AntiRegressionResult:
    """Guard states found in one piece of build text."""

    issues: list[Issue] = field(default_factory=list)
    protections: dict[str, bool] = field(default_factory=dict)
    explicit: dict[str, bool] = field(default_factory=dict)
    """Only the guards the text mentions, for merging across files."""


def _is_required(guard: Guard, text: str) -> bool:
    if guard.name == "flexible_page_sizes":
        ndk = _pinned_ndk(text)
        return ndk is not None and ndk < NDK_MIN_VERSION
    return guard.required


def check_anti_regression(
    text: str, origin: str = "build.gradle"
) -> AntiRegressionResult:
    """Report which anti-regression guards a build file enables.

    Each guard is reported in ``protections``; a required guard that is
    disabled (explicitly or by default) yields one issue.
    """
    result = AntiRegressionResult()
    for guard in GUARDS:
        state = guard.state(text)
        if state is not None:
            result.explicit[guard.name] = state
        enabled = guard.default if state is None else state
        result.protections[guard.name] = enabled

        if not enabled and _is_required(guard, text):
            result.issues.append(
                Issue(
                    severity=guard.severity,
                    rule=f"protection-{guard.name.replace('_', '-')}",
                    message=f"Protection disabled: {guard.description}",
                    origin=origin,
                    context={"protection": guard.name},
                )
            )
    return result


def merge_protections(results: Iterable[AntiRegressionResult]) -> dict[str, bool]:
    """Combine guard states from many files.

    A guard disabled anywhere is disabled; otherwise enabled anywhere is
    enabled; otherwise its default applies.
    """
    explicit: dict[str, list[bool]] = {}
    for result in results:
        for name, state in result.explicit.items():
            explicit.setdefault(name, []).append(state)

    merged: dict[str, bool] = {}
    for guard in GUARDS:
        states = explicit.get(guard.name)
        if states is None:
            merged[guard.name] = guard.default
        else:
            merged[guard.name] = all(states)
    return merged
