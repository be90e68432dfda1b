"""Terminal output handling using Rich library.

This module provides the OutputHandler class for all CLI terminal output.
Uses Rich for spinners, tables and colored output. Supports verbosity
levels and the --no-color flag.
"""

from contextlib import contextmanager
from typing import Iterator, List, Optional

from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner
from rich.table import Table

from src.models.content import CommitResult
from src.models.repository import TreeEntry
from src.models.review import EditorialStatus, PullRequest

STATUS_STYLES = {
    EditorialStatus.DRAFT: "dim",
    EditorialStatus.PENDING_REVIEW: "yellow",
    EditorialStatus.PENDING_PUBLISH: "blue",
    EditorialStatus.PUBLISHED: "green",
}


class OutputHandler:
    """Handles all terminal output using Rich library.

    Attributes:
        verbosity: Verbosity level (0=summary, 1=info, 2=debug)
        console: Rich Console instance for output

    Example:
        >>> handler = OutputHandler(verbosity=1, no_color=False)
        >>> handler.success("Operation completed")
        >>> with handler.spinner("Listing files..."):
        ...     pass
    """

    def __init__(self, verbosity: int = 0, no_color: bool = False):
        """Initialize output handler.

        Args:
            verbosity: Verbosity level (0=summary, 1=info, 2=debug)
            no_color: Disable color output if True
        """
        self.verbosity = verbosity
        self.console = Console(
            no_color=no_color,
            highlight=False,
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}", style="red")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")

    def info(self, message: str) -> None:
        """Display info message (only if verbosity >= 1)."""
        if self.verbosity >= 1:
            self.console.print(message)

    def debug(self, message: str) -> None:
        """Display debug message (only if verbosity >= 2)."""
        if self.verbosity >= 2:
            self.console.print(f"[dim]{message}[/dim]")

    def print(self, message: str) -> None:
        self.console.print(message)

    @contextmanager
    def spinner(self, message: str) -> Iterator[None]:
        """Display spinner for single operations.

        Args:
            message: Message to display with spinner
        """
        spinner = Spinner("dots", text=message)
        with Live(spinner, console=self.console, refresh_per_second=10, transient=True):
            yield

    def print_entries(self, base_path: str, entries: List[TreeEntry]) -> None:
        """Display listed files as a table.

        Args:
            base_path: Directory that was listed
            entries: File entries returned by the tree resolver
        """
        if not entries:
            self.console.print(f"[yellow]No files under {base_path or '/'}[/yellow]")
            return

        table = Table(show_header=True, header_style="bold", box=None)
        table.add_column("Path")
        table.add_column("Sha", style="dim")
        for entry in entries:
            table.add_row(entry.path, entry.sha or "")
        self.console.print(table)
        self.console.print(f"\n{len(entries)} file(s)")

    def print_commit_result(self, result: CommitResult) -> None:
        """Display the outcome of a persist operation.

        Args:
            result: Result returned by the persist engine
        """
        self.console.print("\n[bold]Persist Summary:[/bold]")
        self.console.print(f"  Strategy: {result.strategy.value}")
        for path in result.written_paths:
            self.console.print(f"  [green]↑[/green] {path}")
        for branch, sha in result.heads.items():
            self.console.print(f"  Head of {branch}: {sha}")

    def print_workflow_status(
        self, slug: str, branch_name: str, status: EditorialStatus, pr: Optional[PullRequest] = None
    ) -> None:
        """Display editorial status of an entry.

        Args:
            slug: Entry slug
            branch_name: Workflow branch of the entry
            status: Reconciled editorial status
            pr: Pull request backing the entry, if any
        """
        style = STATUS_STYLES.get(status, "")
        self.console.print(f"[bold]{slug}[/bold]: [{style}]{status.value}[/{style}]")
        self.console.print(f"  Branch: {branch_name}")
        if pr is not None:
            location = f" ({pr.url})" if pr.url else ""
            self.console.print(f"  Pull request: #{pr.id} {pr.state.value}{location}")
