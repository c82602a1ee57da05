"""Shared pytest fixtures for pagealign tests."""

import struct
import zipfile
from pathlib import Path

import pytest

from pagealign.core.inspector import ELF_MAGIC
from pagealign.models.report import ResolutionOutcome, ResolutionResult
from pagealign.utils.config import AuditOptions
from pagealign.utils.process import ProcessResult

CORRUPT_PAYLOAD = b"corrupt"


def make_elf(path: Path, *alignments: int) -> Path:
    """Write a synthetic shared library whose LOAD alignments the fake tool reports."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = ",".join(str(a) for a in alignments).encode()
    path.write_bytes(ELF_MAGIC + b"\x02\x01\x01\x00" + payload)
    return path


def elf_bytes(*alignments: int) -> bytes:
    payload = ",".join(str(a) for a in alignments).encode()
    return ELF_MAGIC + b"\x02\x01\x01\x00" + payload


def objdump_output(name: str, alignments: list[int]) -> str:
    """Render ``llvm-objdump -p`` style output for the given LOAD alignments."""
    lines = [
        "",
        f"{name}:\tfile format elf64-littleaarch64",
        "",
        "Program Header:",
        "    PHDR off    0x0000000000000040 vaddr 0x0000000000000040 "
        "paddr 0x0000000000000040 align 2**3",
        "         filesz 0x0000000000000230 memsz 0x0000000000000230 flags r--",
    ]
    for alignment in alignments:
        lines.append(
            "    LOAD off    0x0000000000000000 vaddr 0x0000000000000000 "
            f"paddr 0x0000000000000000 align 2**{alignment.bit_length() - 1}"
        )
        lines.append(
            "         filesz 0x0000000000001000 memsz 0x0000000000001000 flags r-x"
        )
    lines += ["", "Dynamic Section:", "  SONAME               " + name]
    return "\n".join(lines)


class FakeObjdump:
    """Stand-in for llvm-objdump that reads alignments from synthetic files."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    async def __call__(self, command: list[str]) -> ProcessResult:
        self.calls.append(command)
        path = Path(command[-1])
        payload = path.read_bytes()[len(ELF_MAGIC) + 4 :]

        if payload == CORRUPT_PAYLOAD:
            return ProcessResult(
                command=command,
                returncode=1,
                stdout="",
                stderr=f"llvm-objdump: error: '{path}': The file was not recognized "
                "as a valid object file",
            )

        alignments = [int(a) for a in payload.decode().split(",") if a]
        return ProcessResult(
            command=command,
            returncode=0,
            stdout=objdump_output(path.name, alignments),
            stderr="",
        )


def build_archive(
    path: Path,
    entries: dict[str, bytes],
    compression: int = zipfile.ZIP_DEFLATED,
) -> Path:
    """Write a ZIP artifact with the given members."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", compression=compression) as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return path


def corrupt_member(path: Path, name: str, count: int = 20) -> Path:
    """Flip bytes in the middle of a member's compressed data, in place."""
    with zipfile.ZipFile(path) as archive:
        info = archive.getinfo(name)
    data = bytearray(path.read_bytes())
    name_length, extra_length = struct.unpack_from("<HH", data, info.header_offset + 26)
    start = info.header_offset + 30 + name_length + extra_length
    middle = start + info.compress_size // 2 - count // 2
    for i in range(max(middle, start), min(middle + count, start + info.compress_size)):
        data[i] ^= 0xFF
    path.write_bytes(bytes(data))
    return path


@pytest.fixture
def fake_objdump() -> FakeObjdump:
    """Fake introspection tool runner."""
    return FakeObjdump()


@pytest.fixture
def tool_path(tmp_path: Path) -> Path:
    """A placeholder llvm-objdump file so tool resolution succeeds."""
    path = tmp_path / "ndk-bin" / "llvm-objdump"
    path.parent.mkdir(parents=True)
    path.write_text("#!/bin/sh\n")
    return path


@pytest.fixture
def unavailable_resolver():
    """Dependency resolver that reports Gradle as unavailable."""

    def resolve(root: Path, timeout: float) -> ResolutionResult:
        return ResolutionResult(
            outcome=ResolutionOutcome.UNAVAILABLE, error="No Gradle wrapper found"
        )

    return resolve


@pytest.fixture
def options(tool_path: Path) -> AuditOptions:
    """Run options pointing at the placeholder tool."""
    return AuditOptions(tool_path=tool_path, max_concurrency=2, resolution_timeout=5)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """An empty project root."""
    root = tmp_path / "project"
    root.mkdir()
    return root
