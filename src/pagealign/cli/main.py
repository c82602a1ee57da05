"""Root CLI application for pagealign."""

import typer

from pagealign import __version__
from pagealign.cli import check

app = typer.Typer(
    name="pagealign",
    help="Audit Android build outputs for 16 KB memory page size compliance.",
    no_args_is_help=True,
)

# Register subcommands
app.command("check")(check.check)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"pagealign {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """pagealign - 16 KB page size compliance checks."""
    pass


if __name__ == "__main__":
    app()
