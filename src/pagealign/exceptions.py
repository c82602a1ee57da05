"""Typed exception hierarchy for pagealign."""


class PageAlignError(Exception):
    """Base exception for all pagealign errors."""

    pass


class ToolNotFoundError(PageAlignError):
    """Raised when a required external tool is not installed."""

    def __init__(self, tool: str, install_hint: str | None = None):
        self.tool = tool
        self.install_hint = install_hint
        message = f"Required tool not found: {tool}"
        if install_hint:
            message += f"\nInstall: {install_hint}"
        super().__init__(message)


class ProcessError(PageAlignError):
    """Raised when a subprocess command fails."""

    def __init__(
        self,
        command: list[str],
        returncode: int,
        stderr: str,
        *,
        timed_out: bool = False,
    ):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        cmd_str = " ".join(command)
        super().__init__(f"Command failed (exit {returncode}): {cmd_str}\n{stderr}")


class ElfParseError(PageAlignError):
    """Raised when a file cannot be read as an ELF shared library."""

    pass


class ArchiveError(PageAlignError):
    """Raised when a packaged artifact cannot be opened as a ZIP container."""

    pass


class ResolutionError(PageAlignError):
    """Raised when the dependency graph of a project cannot be resolved."""

    def __init__(self, message: str, *, timed_out: bool = False):
        self.timed_out = timed_out
        super().__init__(message)
