"""Android SDK / NDK path detection utilities."""

import os
import platform
import shutil
from pathlib import Path

from pagealign.exceptions import ToolNotFoundError
from pagealign.utils.config import OBJDUMP_ENV_VAR

OBJDUMP_INSTALL_HINT = (
    "Install an Android NDK via the SDK Manager (set ANDROID_NDK_HOME or "
    "ANDROID_HOME), or pass --objdump / set PAGEALIGN_OBJDUMP"
)


def get_android_home() -> Path | None:
    """Get Android SDK root directory.

    Checks environment variables and common installation locations.

    Returns:
        Path to Android SDK root, or None if not found.
    """
    for env_var in ("ANDROID_HOME", "ANDROID_SDK_ROOT"):
        if value := os.environ.get(env_var):
            path = Path(value)
            if path.is_dir():
                return path

    system = platform.system()
    home = Path.home()

    common_locations: list[Path] = []
    if system == "Darwin":  # macOS
        common_locations = [
            home / "Library" / "Android" / "sdk",
            Path("/opt/android-sdk"),
        ]
    elif system == "Linux":
        common_locations = [
            home / "Android" / "Sdk",
            home / "android-sdk",
            Path("/opt/android-sdk"),
        ]
    elif system == "Windows":
        common_locations = [
            home / "AppData" / "Local" / "Android" / "Sdk",
            Path("C:/Android/sdk"),
        ]

    for location in common_locations:
        if location.is_dir():
            return location

    return None


def parse_ndk_version(name: str) -> tuple[int, ...] | None:
    """Parse an NDK directory name such as ``27.0.12077973``.

    Old-style names (``android-ndk-r25c``) are reduced to their major number.
    """
    name = name.removeprefix("android-ndk-")
    if name.startswith("r") and name[1:3].isdigit():
        return (int(name[1:3]),)
    try:
        return tuple(int(part) for part in name.split("."))
    except ValueError:
        return None


def get_ndk_roots() -> list[tuple[tuple[int, ...], Path]]:
    """List candidate NDK installations with their versions.

    Candidates, in probe order: ``ANDROID_NDK_HOME``, ``ANDROID_NDK_ROOT``,
    every ``<sdk>/ndk/<version>`` directory and the legacy ``<sdk>/ndk-bundle``.
    Directories whose version cannot be read sort as version 0.
    """
    roots: list[tuple[tuple[int, ...], Path]] = []

    for env_var in ("ANDROID_NDK_HOME", "ANDROID_NDK_ROOT"):
        if value := os.environ.get(env_var):
            path = Path(value)
            if path.is_dir():
                roots.append((parse_ndk_version(path.name) or (0,), path))

    android_home = get_android_home()
    if android_home:
        ndk_dir = android_home / "ndk"
        if ndk_dir.is_dir():
            for version_dir in ndk_dir.iterdir():
                if not version_dir.is_dir():
                    continue
                version = parse_ndk_version(version_dir.name)
                if version is None:
                    # Skip non-version directories
                    continue
                roots.append((version, version_dir))

        bundle = android_home / "ndk-bundle"
        if bundle.is_dir():
            roots.append(((0,), bundle))

    return roots


def _objdump_in_ndk(ndk_root: Path) -> Path | None:
    prebuilt = ndk_root / "toolchains" / "llvm" / "prebuilt"
    if not prebuilt.is_dir():
        return None

    binary = "llvm-objdump.exe" if platform.system() == "Windows" else "llvm-objdump"
    for host_dir in sorted(prebuilt.iterdir()):
        candidate = host_dir / "bin" / binary
        if candidate.is_file():
            return candidate
    return None


def find_objdump() -> Path:
    """Locate an llvm-objdump binary for reading ELF program headers.

    Resolution order: ``PAGEALIGN_OBJDUMP``, the newest NDK install found by
    :func:`get_ndk_roots`, then ``llvm-objdump``/``objdump`` on PATH. The
    result is recomputed on every call.

    Returns:
        Path to the objdump executable.

    Raises:
        ToolNotFoundError: If no usable objdump is found.
    """
    if value := os.environ.get(OBJDUMP_ENV_VAR):
        path = Path(value).expanduser()
        if path.is_file():
            return path

    # Return the latest NDK toolchain
    for _, ndk_root in sorted(get_ndk_roots(), key=lambda item: item[0], reverse=True):
        objdump = _objdump_in_ndk(ndk_root)
        if objdump:
            return objdump

    for name in ("llvm-objdump", "objdump"):
        if found := shutil.which(name):
            return Path(found)

    raise ToolNotFoundError("llvm-objdump", OBJDUMP_INSTALL_HINT)
