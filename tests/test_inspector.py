"""Tests for ELF LOAD segment alignment inspection."""

import asyncio

import pytest

from pagealign.core.inspector import (
    SegmentAlignmentInspector,
    is_compliant,
    load_segment_alignments,
    missing_tool_issue,
    parse_alignment,
    verify,
)
from pagealign.exceptions import ElfParseError
from pagealign.models.library import (
    AlignmentVerdict,
    Architecture,
    NativeLibrary,
    SourceKind,
)
from pagealign.models.report import Severity

from conftest import CORRUPT_PAYLOAD, make_elf, objdump_output


def _library(path, architecture=Architecture.ARM64_V8A):
    return NativeLibrary(
        path=str(path), architecture=architecture, source_kind=SourceKind.PLATFORM_BUILD
    )


class TestParsing:
    @pytest.mark.parametrize(
        "token, expected",
        [("2**14", 16384), ("2**12", 4096), ("0x4000", 16384), ("65536", 65536)],
    )
    def test_parse_alignment(self, token, expected):
        assert parse_alignment(token) == expected

    def test_collects_every_load_segment(self):
        output = objdump_output("libfoo.so", [4096, 16384])
        assert load_segment_alignments(output) == [4096, 16384]

    def test_ignores_non_load_headers(self):
        output = objdump_output("libfoo.so", [16384])
        # PHDR align 2**3 must not be counted
        assert load_segment_alignments(output) == [16384]

    def test_gnu_objdump_hex_alignment(self):
        output = (
            "Program Header:\n"
            "    LOAD off    0x0000000000000000 vaddr 0x0000000000000000 "
            "paddr 0x0000000000000000 align 0x10000\n"
        )
        assert load_segment_alignments(output) == [65536]

    def test_no_load_segments(self):
        with pytest.raises(ElfParseError):
            load_segment_alignments("Dynamic Section:\n  NEEDED libc.so\n")

    @pytest.mark.parametrize(
        "alignment, expected",
        [(4096, False), (8192, False), (16384, True), (65536, True)],
    )
    def test_predicate(self, alignment, expected):
        assert is_compliant(alignment) is expected


class TestInspect:
    def test_aligned_library_is_compliant(self, tmp_path, tool_path, fake_objdump):
        path = make_elf(tmp_path / "lib/arm64-v8a/libfoo.so", 16384)
        inspector = SegmentAlignmentInspector(tool_path, runner=fake_objdump)

        result = asyncio.run(inspector.inspect(_library(path)))

        assert result.issues == []
        assert result.library.alignment == AlignmentVerdict.COMPLIANT
        assert result.library.max_alignment == 16384

    def test_4k_library_is_non_compliant(self, tmp_path, tool_path, fake_objdump):
        path = make_elf(tmp_path / "lib/arm64-v8a/libfoo.so", 4096)
        inspector = SegmentAlignmentInspector(tool_path, runner=fake_objdump)

        result = asyncio.run(inspector.inspect(_library(path)))

        assert result.library.alignment == AlignmentVerdict.NON_COMPLIANT
        assert len(result.issues) == 1
        assert result.issues[0].severity == Severity.HIGH
        assert result.issues[0].rule == "elf-alignment"
        assert result.issues[0].context["alignment"] == 4096

    def test_uses_maximum_alignment(self, tmp_path, tool_path, fake_objdump):
        """A 4 KB first segment does not fail a library whose max is 16 KB."""
        path = make_elf(tmp_path / "lib/arm64-v8a/libfoo.so", 4096, 16384)
        inspector = SegmentAlignmentInspector(tool_path, runner=fake_objdump)

        result = asyncio.run(inspector.inspect(_library(path)))

        assert result.library.alignment == AlignmentVerdict.COMPLIANT
        assert result.issues == []

    def test_non_arm64_is_not_checked(self, tmp_path, tool_path, fake_objdump):
        path = make_elf(tmp_path / "lib/armeabi-v7a/libfoo.so", 4096)
        inspector = SegmentAlignmentInspector(tool_path, runner=fake_objdump)

        result = asyncio.run(
            inspector.inspect(_library(path, Architecture.ARMEABI_V7A))
        )

        assert result.issues == []
        assert result.library.alignment == AlignmentVerdict.UNKNOWN
        assert fake_objdump.calls == []

    def test_not_an_elf_file(self, tmp_path, tool_path, fake_objdump):
        path = tmp_path / "lib/arm64-v8a/libfoo.so"
        path.parent.mkdir(parents=True)
        path.write_text("this is not a shared library")
        inspector = SegmentAlignmentInspector(tool_path, runner=fake_objdump)

        result = asyncio.run(inspector.inspect(_library(path)))

        assert [issue.rule for issue in result.issues] == ["elf-parse-failure"]
        assert result.issues[0].severity == Severity.WARN
        assert result.library.alignment == AlignmentVerdict.UNKNOWN
        assert fake_objdump.calls == []

    def test_tool_failure_is_parse_failure(self, tmp_path, tool_path, fake_objdump):
        path = tmp_path / "lib/arm64-v8a/libbad.so"
        make_elf(path)
        path.write_bytes(path.read_bytes() + CORRUPT_PAYLOAD)
        inspector = SegmentAlignmentInspector(tool_path, runner=fake_objdump)

        result = asyncio.run(inspector.inspect(_library(path)))

        assert len(result.issues) == 1
        assert result.issues[0].rule == "elf-parse-failure"
        assert "not recognized" in result.issues[0].message

    def test_missing_file_is_unreadable(self, tmp_path, tool_path, fake_objdump):
        inspector = SegmentAlignmentInspector(tool_path, runner=fake_objdump)

        result = asyncio.run(
            inspector.inspect(_library(tmp_path / "arm64-v8a/libgone.so"))
        )

        assert [issue.rule for issue in result.issues] == ["unreadable-file"]
        assert result.issues[0].severity == Severity.WARN

    def test_disabled_without_tool(self, tmp_path, fake_objdump):
        path = make_elf(tmp_path / "lib/arm64-v8a/libfoo.so", 4096)
        inspector = SegmentAlignmentInspector(None, runner=fake_objdump)

        result = asyncio.run(inspector.inspect(_library(path)))

        assert result.issues == []
        assert result.library.alignment == AlignmentVerdict.UNKNOWN
        assert fake_objdump.calls == []


class TestInspectAll:
    def test_bad_file_does_not_abort_batch(self, tmp_path, tool_path, fake_objdump):
        good = make_elf(tmp_path / "arm64-v8a/libgood.so", 16384)
        bad = make_elf(tmp_path / "arm64-v8a/libbad.so", 4096)
        broken = tmp_path / "arm64-v8a/libbroken.so"
        broken.write_text("garbage")
        inspector = SegmentAlignmentInspector(
            tool_path, max_concurrency=1, runner=fake_objdump
        )

        libraries, issues = asyncio.run(
            inspector.inspect_all([_library(good), _library(bad), _library(broken)])
        )

        verdicts = {lib.path: lib.alignment for lib in libraries}
        assert verdicts[str(good)] == AlignmentVerdict.COMPLIANT
        assert verdicts[str(bad)] == AlignmentVerdict.NON_COMPLIANT
        assert verdicts[str(broken)] == AlignmentVerdict.UNKNOWN
        assert sorted(issue.rule for issue in issues) == [
            "elf-alignment",
            "elf-parse-failure",
        ]

    def test_crashing_runner_does_not_abort_batch(self, tmp_path, tool_path, fake_objdump):
        good = make_elf(tmp_path / "arm64-v8a/libgood.so", 16384)
        crash = make_elf(tmp_path / "arm64-v8a/libcrash.so", 16384)

        async def runner(command):
            if command[-1] == str(crash):
                raise RuntimeError("objdump crashed")
            return await fake_objdump(command)

        inspector = SegmentAlignmentInspector(tool_path, runner=runner)

        libraries, issues = asyncio.run(
            inspector.inspect_all([_library(good), _library(crash)])
        )

        verdicts = {lib.path: lib.alignment for lib in libraries}
        assert verdicts[str(good)] == AlignmentVerdict.COMPLIANT
        assert verdicts[str(crash)] == AlignmentVerdict.UNKNOWN
        assert [(i.rule, i.severity, i.origin) for i in issues] == [
            ("elf-parse-failure", Severity.WARN, str(crash))
        ]

    def test_issue_order_is_stable(self, tmp_path, tool_path, fake_objdump):
        paths = [
            make_elf(tmp_path / f"arm64-v8a/lib{name}.so", 4096) for name in "zyxa"
        ]
        inspector = SegmentAlignmentInspector(tool_path, runner=fake_objdump)

        _, issues = asyncio.run(inspector.inspect_all(_library(p) for p in paths))

        origins = [issue.origin for issue in issues]
        assert origins == sorted(origins)


class TestVerify:
    def test_verify_returns_issues_for_path(self, tmp_path, tool_path, fake_objdump):
        path = make_elf(tmp_path / "jniLibs/arm64-v8a/libfoo.so", 4096)

        issues = asyncio.run(verify(path, tool_path, runner=fake_objdump))

        assert [issue.severity for issue in issues] == [Severity.HIGH]

    def test_verify_without_tool_is_silent(self, tmp_path):
        path = make_elf(tmp_path / "jniLibs/arm64-v8a/libfoo.so", 4096)
        assert asyncio.run(verify(path, None)) == []

    def test_missing_tool_issue_has_action(self):
        issue = missing_tool_issue("/project", "not installed")
        assert issue.rule == "alignment-tool-missing"
        assert issue.severity == Severity.INFO
        assert "action" in issue.context
        assert issue.context["reason"] == "not installed"
