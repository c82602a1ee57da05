"""CLI command running a full compliance check."""

import asyncio
import json
from contextlib import nullcontext
from pathlib import Path

import typer
from rich.table import Table

from pagealign.core.auditor import ComplianceAuditor
from pagealign.exceptions import PageAlignError
from pagealign.models.library import AlignmentVerdict
from pagealign.models.report import ComplianceReport, ComplianceStatus, Severity
from pagealign.utils.config import AuditOptions
from pagealign.utils.output import configure_logging, console

SEVERITY_STYLES: dict[Severity, str] = {
    Severity.HIGH: "bold red",
    Severity.WARN: "yellow",
    Severity.INFO: "blue",
    Severity.PASS: "green",
}

VERDICT_STYLES: dict[AlignmentVerdict, str] = {
    AlignmentVerdict.COMPLIANT: "green",
    AlignmentVerdict.NON_COMPLIANT: "red",
    AlignmentVerdict.UNKNOWN: "dim",
}


def _display_issues(report: ComplianceReport, show_passes: bool) -> None:
    issues = [
        issue
        for issue in report.issues
        if show_passes or issue.severity != Severity.PASS
    ]
    if not issues:
        return

    table = Table(title="Issues")
    table.add_column("Severity", width=8)
    table.add_column("Rule", style="cyan")
    table.add_column("Origin", overflow="fold")
    table.add_column("Message")

    for issue in issues:
        style = SEVERITY_STYLES[issue.severity]
        table.add_row(
            f"[{style}]{issue.severity.value}[/{style}]",
            issue.rule,
            issue.origin,
            issue.message,
        )

    console.print(table)


def _display_libraries(report: ComplianceReport) -> None:
    libraries = list(report.native_libraries)
    for artifact in report.artifacts:
        libraries.extend(artifact.contained_libraries)
    if not libraries:
        return

    table = Table(title=f"Native Libraries ({len(libraries)} files)")
    table.add_column("Path", overflow="fold")
    table.add_column("ABI", style="cyan")
    table.add_column("Source")
    table.add_column("Alignment")

    for lib in libraries:
        style = VERDICT_STYLES[lib.alignment]
        table.add_row(
            lib.path,
            lib.architecture.value,
            lib.source_kind.value,
            f"[{style}]{lib.alignment.value}[/{style}]",
        )

    console.print(table)


def _display_summary(report: ComplianceReport) -> None:
    if report.protections:
        console.print("\n[bold]Protections:[/bold]")
        for name, enabled in sorted(report.protections.items()):
            mark = "[green]on[/green]" if enabled else "[red]off[/red]"
            console.print(f"  {name}: {mark}")

    counts = ", ".join(
        f"{report.count(severity)} {severity.value}"
        for severity in (Severity.HIGH, Severity.WARN, Severity.INFO, Severity.PASS)
    )
    console.print(f"\nIssues: {counts}")

    if report.status == ComplianceStatus.PASS:
        console.print_success("Status: PASS")
    elif report.status == ComplianceStatus.WARN:
        console.print_warning("Status: WARN")
    else:
        console.print_error("Status: FAIL")


def check(
    root: Path = typer.Argument(
        Path("."),
        help="Project root to audit.",
        exists=True,
        file_okay=False,
        dir_okay=True,
        readable=True,
    ),
    objdump: Path | None = typer.Option(
        None,
        "--objdump",
        help="Path to llvm-objdump (default: newest NDK toolchain).",
    ),
    max_concurrency: int | None = typer.Option(
        None,
        "--max-concurrency",
        min=1,
        help="Maximum parallel objdump processes.",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        min=1,
        help="Seconds allowed for Gradle dependency resolution.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON.",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Also write the JSON report to this file.",
    ),
    show_passes: bool = typer.Option(
        False,
        "--show-passes",
        help="Include positive confirmations in the issue table.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable debug logging.",
    ),
) -> None:
    """Check native libraries and build configuration for 16 KB page support.

    Exits with status 1 when any high severity issue is found.
    """
    console.set_json_mode(json_output)
    configure_logging(verbose)

    options = AuditOptions.from_config(
        tool_path=objdump,
        max_concurrency=max_concurrency,
        resolution_timeout=timeout,
    )

    try:
        with console.status("Auditing native libraries...") if not json_output else nullcontext():
            report = asyncio.run(ComplianceAuditor(root, options).run())
    except PageAlignError as e:
        console.print_error(str(e))
        raise typer.Exit(2) from None

    data = report.model_dump(mode="json")
    if output:
        output.write_text(json.dumps(data, indent=2), encoding="utf-8")
        console.print_success(f"Report written to {output}")

    if json_output:
        typer.echo(json.dumps(data, indent=2))
    else:
        _display_issues(report, show_passes)
        _display_libraries(report)
        _display_summary(report)

    if report.status == ComplianceStatus.FAIL:
        raise typer.Exit(1)
