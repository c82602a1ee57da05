"""Native library inspection inside APK, AAB and AAR archives."""

import asyncio
import logging
import re
import struct
import tempfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from zipfile import ZIP_STORED, BadZipFile, ZipFile, ZipInfo

from pagealign.core.inspector import PAGE_SIZE_16K, SegmentAlignmentInspector
from pagealign.core.locator import classify_architecture
from pagealign.exceptions import ArchiveError
from pagealign.models.library import NativeLibrary, SourceKind
from pagealign.models.report import Artifact, ArtifactKind, Issue, Severity

logger = logging.getLogger(__name__)

# lib/<abi>/ in APKs, <module>/lib/<abi>/ in bundles, jni/<abi>/ in AARs
NATIVE_ENTRY_RE = re.compile(
    r"(?:^|/)(?:lib|jni)/(arm64-v8a|armeabi-v7a|x86_64|x86)/[^/]+\.so$"
)

ARTIFACT_KINDS: dict[str, ArtifactKind] = {
    ".apk": ArtifactKind.PACKAGE,
    ".aar": ArtifactKind.PACKAGE,
    ".aab": ArtifactKind.BUNDLE,
}

_LOCAL_HEADER = struct.Struct("<4s2B4HL2L2H")
_LOCAL_HEADER_MAGIC = b"PK\x03\x04"


def artifact_kind(path: Path) -> ArtifactKind | None:
    """Get the artifact kind for a file extension, or None if not an artifact."""
    return ARTIFACT_KINDS.get(path.suffix.lower())


def member_path(artifact_path: Path, entry: str) -> str:
    """Build the ``<artifact>!/<entry>`` reference used as a library path."""
    return f"{artifact_path}!/{entry}"


def find_artifacts(root: Path, subtrees: tuple[str, ...]) -> list[Path]:
    """Find APK/AAB files in Gradle ``outputs`` folders of the build trees."""
    found: set[Path] = set()
    for subtree in subtrees:
        base = root / subtree
        if not base.is_dir():
            continue
        for outputs in base.rglob("outputs"):
            if not outputs.is_dir():
                continue
            for suffix in ("*.apk", "*.aab"):
                found.update(p.resolve() for p in outputs.rglob(suffix) if p.is_file())
    return sorted(found)


@dataclass
class ArtifactScanResult:
    """Outcome of scanning one artifact."""

    artifact: Artifact

    @property
    def contained_libraries(self) -> list[NativeLibrary]:
        return self.artifact.contained_libraries

    @property
    def issues(self) -> list[Issue]:
        return self.artifact.issues


class ArtifactArchiveScanner:
    """Open a packaged artifact and route its native libraries to the inspector."""

    def __init__(self, inspector: SegmentAlignmentInspector):
        """Initialize the scanner.

        Args:
            inspector: Shared inspector; its tool path and concurrency limit
                apply to archive members as well.
        """
        self.inspector = inspector

    def _native_entries(self, archive: ZipFile) -> list[ZipInfo]:
        entries = [
            info
            for info in archive.infolist()
            if not info.is_dir() and NATIVE_ENTRY_RE.search(info.filename)
        ]
        return sorted(entries, key=lambda info: info.filename)

    def _data_offset(self, archive_path: Path, info: ZipInfo) -> int:
        """Read the local file header to find where the entry's bytes start."""
        with archive_path.open("rb") as f:
            f.seek(info.header_offset)
            header = f.read(_LOCAL_HEADER.size)
        if len(header) < _LOCAL_HEADER.size:
            raise ArchiveError(f"Truncated local header for {info.filename}")
        fields = _LOCAL_HEADER.unpack(header)
        if fields[0] != _LOCAL_HEADER_MAGIC:
            raise ArchiveError(f"Bad local header for {info.filename}")
        name_length, extra_length = fields[-2], fields[-1]
        return info.header_offset + _LOCAL_HEADER.size + name_length + extra_length

    def _zip_alignment_issue(
        self, artifact_path: Path, info: ZipInfo
    ) -> Issue | None:
        if info.compress_type != ZIP_STORED:
            # Compressed libraries are extracted at install time
            return None
        offset = self._data_offset(artifact_path, info)
        if offset % PAGE_SIZE_16K == 0:
            return None
        return Issue(
            severity=Severity.WARN,
            rule="zip-alignment",
            message=(
                f"Uncompressed library starts at offset {offset}, not on a 16 KB "
                "boundary; re-run zipalign -P 16 or use AGP 8.5.1+"
            ),
            origin=member_path(artifact_path, info.filename),
            context={"offset": offset},
        )

    def _extract(self, archive: ZipFile, info: ZipInfo, scratch: Path) -> Path:
        # Keep the ABI directory so the extracted path still classifies the same
        abi = classify_architecture(info.filename)
        target = scratch / abi.value / Path(info.filename).name
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with archive.open(info) as src, target.open("wb") as dst:
                while chunk := src.read(1 << 16):
                    dst.write(chunk)
        except (zlib.error, EOFError) as e:
            target.unlink(missing_ok=True)
            raise ArchiveError(f"Corrupt data in {info.filename}: {e}") from e
        return target

    async def _scan_entry(
        self,
        artifact_path: Path,
        archive: ZipFile,
        info: ZipInfo,
        scratch: Path,
        kind: ArtifactKind,
    ) -> tuple[NativeLibrary, list[Issue]]:
        library = NativeLibrary(
            path=member_path(artifact_path, info.filename),
            architecture=classify_architecture(info.filename),
            source_kind=SourceKind.ARTIFACT,
        )
        if not (self.inspector.enabled and library.is_arm64):
            return library, []

        issues: list[Issue] = []
        if kind == ArtifactKind.PACKAGE and artifact_path.suffix.lower() == ".apk":
            zip_issue = await asyncio.to_thread(
                self._zip_alignment_issue, artifact_path, info
            )
            if zip_issue:
                issues.append(zip_issue)

        extracted = await asyncio.to_thread(self._extract, archive, info, scratch)
        try:
            result = await self.inspector.inspect(library, file_path=extracted)
        finally:
            extracted.unlink(missing_ok=True)
        return result.library, issues + result.issues

    async def scan(self, artifact_path: Path) -> ArtifactScanResult:
        """Scan one artifact.

        The archive is opened read-only; members are extracted into a private
        temporary directory that is removed whether or not inspection succeeds.

        Returns:
            ArtifactScanResult; an unreadable archive yields a single ``warn``
            issue and no libraries.
        """
        kind = artifact_kind(artifact_path) or ArtifactKind.PACKAGE
        artifact = Artifact(path=artifact_path, kind=kind)

        try:
            archive = ZipFile(artifact_path, "r")
        except (BadZipFile, OSError) as e:
            logger.warning("Cannot open artifact %s: %s", artifact_path, e)
            artifact.issues.append(
                Issue(
                    severity=Severity.WARN,
                    rule="archive-unreadable",
                    message=f"Could not open artifact as a ZIP container: {e}",
                    origin=str(artifact_path),
                )
            )
            return ArtifactScanResult(artifact)

        # Sequential per artifact: ZipFile handles are not safe to share across
        # threads, and the inspector semaphore already bounds objdump calls
        with archive, tempfile.TemporaryDirectory(
            prefix=f"pagealign-{artifact_path.stem}-"
        ) as scratch_dir:
            scratch = Path(scratch_dir)
            for info in self._native_entries(archive):
                try:
                    library, issues = await self._scan_entry(
                        artifact_path, archive, info, scratch, kind
                    )
                except (BadZipFile, ArchiveError, OSError, RuntimeError) as e:
                    # RuntimeError: encrypted entries
                    logger.warning("Cannot extract %s: %s", info.filename, e)
                    library = NativeLibrary(
                        path=member_path(artifact_path, info.filename),
                        architecture=classify_architecture(info.filename),
                        source_kind=SourceKind.ARTIFACT,
                    )
                    issues = [
                        Issue(
                            severity=Severity.WARN,
                            rule="archive-entry-unreadable",
                            message=f"Could not extract native library: {e}",
                            origin=library.path,
                        )
                    ]
                artifact.contained_libraries.append(library)
                artifact.issues.extend(issues)

        artifact.issues.sort(key=lambda issue: issue.sort_key)
        logger.debug(
            "Scanned %s: %d native libraries",
            artifact_path,
            len(artifact.contained_libraries),
        )
        return ArtifactScanResult(artifact)


async def scan(
    artifact_path: Path,
    tool_path: Path | None,
    *,
    inspector: SegmentAlignmentInspector | None = None,
) -> ArtifactScanResult:
    """Scan a single artifact with a fresh inspector for ``tool_path``."""
    scanner = ArtifactArchiveScanner(inspector or SegmentAlignmentInspector(tool_path))
    return await scanner.scan(artifact_path)
