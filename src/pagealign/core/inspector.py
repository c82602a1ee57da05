"""ELF program-header inspection for 16 KB page alignment.

The program headers are read with ``llvm-objdump -p`` (any binutils-style
``objdump`` works too). Every ``LOAD`` line carries an ``align`` token such as
``2**14``; a library is compliant when the largest LOAD alignment is at least
16 KB. Using the largest value rather than the first LOAD entry avoids
under-reporting libraries whose segments differ.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from pagealign.core.locator import classify_architecture
from pagealign.exceptions import ElfParseError
from pagealign.models.library import AlignmentVerdict, NativeLibrary, SourceKind
from pagealign.models.report import Issue, Severity
from pagealign.utils.android_sdk import OBJDUMP_INSTALL_HINT
from pagealign.utils.process import ProcessResult, run_tool_async

logger = logging.getLogger(__name__)

PAGE_SIZE_16K = 16384
ELF_MAGIC = b"\x7fELF"

_LOAD_ALIGN_RE = re.compile(
    r"^\s*LOAD\b.*?\balign\s+(2\*\*\d+|0x[0-9a-fA-F]+|\d+)", re.MULTILINE
)

ToolRunner = Callable[[list[str]], Awaitable[ProcessResult]]


async def _default_runner(command: list[str]) -> ProcessResult:
    return await run_tool_async(command, check=False)


def parse_alignment(token: str) -> int:
    """Convert an objdump alignment token (``2**14``, ``0x4000``, ``16384``)."""
    if token.startswith("2**"):
        return 2 ** int(token[3:])
    if token.lower().startswith("0x"):
        return int(token, 16)
    return int(token)


def load_segment_alignments(objdump_output: str) -> list[int]:
    """Extract the alignment of every LOAD segment from ``objdump -p`` output.

    Raises:
        ElfParseError: If the output lists no LOAD segments.
    """
    alignments = [
        parse_alignment(match.group(1))
        for match in _LOAD_ALIGN_RE.finditer(objdump_output)
    ]
    if not alignments:
        raise ElfParseError("No LOAD segments with alignment found in program headers")
    return alignments


def is_compliant(max_alignment: int) -> bool:
    """Check the 16 KB page-size predicate for the largest LOAD alignment."""
    return max_alignment >= PAGE_SIZE_16K


def missing_tool_issue(origin: str, reason: str | None = None) -> Issue:
    """Build the single run-level issue emitted when objdump is unavailable."""
    context = {"action": OBJDUMP_INSTALL_HINT}
    if reason:
        context["reason"] = reason
    return Issue(
        severity=Severity.INFO,
        rule="alignment-tool-missing",
        message="llvm-objdump not found; ELF alignment checks were skipped",
        origin=origin,
        context=context,
    )


@dataclass
class InspectionResult:
    """Library with its verdict plus any issues raised while inspecting it."""

    library: NativeLibrary
    issues: list[Issue] = field(default_factory=list)


class SegmentAlignmentInspector:
    """Verify LOAD segment alignment of arm64 native libraries."""

    def __init__(
        self,
        tool_path: Path | None,
        *,
        max_concurrency: int = 8,
        runner: ToolRunner | None = None,
    ):
        """Initialize the inspector.

        Args:
            tool_path: Path to llvm-objdump, or None to skip all inspection.
            max_concurrency: Maximum number of objdump processes at once.
            runner: Coroutine used to run objdump; defaults to a subprocess.
        """
        self.tool_path = tool_path
        self._runner = runner or _default_runner
        self._semaphore = asyncio.Semaphore(max_concurrency)

    @property
    def enabled(self) -> bool:
        """Check if an introspection tool is configured."""
        return self.tool_path is not None

    def _check_magic(self, file_path: Path) -> None:
        with file_path.open("rb") as f:
            header = f.read(len(ELF_MAGIC))
        if header != ELF_MAGIC:
            raise ElfParseError(f"Not an ELF file (header {header!r})")

    async def _read_alignments(self, file_path: Path) -> list[int]:
        await asyncio.to_thread(self._check_magic, file_path)

        async with self._semaphore:
            result = await self._runner([str(self.tool_path), "-p", str(file_path)])

        if not result.success:
            raise ElfParseError(
                result.stderr.strip() or f"objdump exited with {result.returncode}"
            )
        return load_segment_alignments(result.stdout)

    async def inspect(
        self, library: NativeLibrary, file_path: Path | None = None
    ) -> InspectionResult:
        """Inspect a single library.

        Args:
            library: Library to inspect; its path is used as the issue origin.
            file_path: Readable location of the bytes, when ``library.path`` is
                not a real file (archive members extracted elsewhere).

        Returns:
            InspectionResult carrying a copy of the library with its verdict.
            Never raises: failures become ``warn`` issues.
        """
        if not self.enabled or not library.is_arm64:
            return InspectionResult(library)

        target = file_path or Path(library.path)
        try:
            alignments = await self._read_alignments(target)
        except OSError as e:
            logger.warning("Cannot read %s: %s", library.path, e)
            return InspectionResult(
                library,
                [
                    Issue(
                        severity=Severity.WARN,
                        rule="unreadable-file",
                        message=f"Could not read native library: {e}",
                        origin=library.path,
                    )
                ],
            )
        except Exception as e:
            # ElfParseError, ProcessError, bad align tokens, or a failing runner
            logger.warning("Cannot parse %s: %s", library.path, e)
            return InspectionResult(
                library,
                [
                    Issue(
                        severity=Severity.WARN,
                        rule="elf-parse-failure",
                        message=f"Could not read ELF program headers: {e}",
                        origin=library.path,
                    )
                ],
            )

        max_alignment = max(alignments)
        if is_compliant(max_alignment):
            logger.debug("%s aligned at %d bytes", library.path, max_alignment)
            return InspectionResult(
                library.with_verdict(AlignmentVerdict.COMPLIANT, max_alignment)
            )

        return InspectionResult(
            library.with_verdict(AlignmentVerdict.NON_COMPLIANT, max_alignment),
            [
                Issue(
                    severity=Severity.HIGH,
                    rule="elf-alignment",
                    message=(
                        f"LOAD segments aligned at {max_alignment} bytes; "
                        f"16 KB pages need at least {PAGE_SIZE_16K}"
                    ),
                    origin=library.path,
                    context={
                        "alignment": max_alignment,
                        "segments": alignments,
                        "action": (
                            "Rebuild with NDK r28+ or link with "
                            "-Wl,-z,max-page-size=16384"
                        ),
                    },
                )
            ],
        )

    async def verify(self, library_path: Path) -> list[Issue]:
        """Verify one library file and return its issues."""
        library = NativeLibrary(
            path=str(library_path),
            architecture=classify_architecture(library_path),
            source_kind=SourceKind.PLATFORM_BUILD,
        )
        return (await self.inspect(library)).issues

    async def inspect_all(
        self, libraries: Iterable[NativeLibrary]
    ) -> tuple[list[NativeLibrary], list[Issue]]:
        """Inspect many libraries concurrently.

        Returns:
            Libraries with verdicts sorted by path, and their issues sorted by
            origin so output does not depend on completion order.
        """
        ordered = sorted(libraries, key=lambda lib: lib.path)
        results = await asyncio.gather(*(self.inspect(lib) for lib in ordered))

        issues = [issue for result in results for issue in result.issues]
        issues.sort(key=lambda issue: issue.sort_key)
        return [result.library for result in results], issues


async def verify(
    library_path: Path,
    tool_path: Path | None,
    *,
    runner: ToolRunner | None = None,
) -> list[Issue]:
    """Verify the 16 KB alignment of a single library file."""
    inspector = SegmentAlignmentInspector(tool_path, runner=runner)
    return await inspector.verify(library_path)
