"""Console output built on Rich.

Provides:
- Color-coded step / status messages
- Verbosity level control
- Dry-run indicators
- Summary panels and check tables
"""

from enum import IntEnum
from typing import Any, Iterable

from rich import box
from rich.console import Console as RichConsole
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table


class Verbosity(IntEnum):
    """Output verbosity levels."""
    QUIET = 0    # Errors only
    NORMAL = 1   # Standard output
    VERBOSE = 2  # Additional details
    DEBUG = 3    # Everything


class Console:
    """Centralized console output for provisioning runs.

    Errors and warnings go to stderr, everything else to stdout.
    """

    def __init__(self) -> None:
        self._console = RichConsole(highlight=False)
        self._err_console = RichConsole(stderr=True, highlight=False)
        self.verbosity = Verbosity.NORMAL
        self.dry_run = False
        self.no_color = False

    def configure(
        self,
        verbosity: int = 1,
        dry_run: bool = False,
        no_color: bool = False,
    ) -> None:
        """Apply runtime output settings."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        self.dry_run = dry_run
        self.no_color = no_color
        if no_color:
            self._console = RichConsole(highlight=False, no_color=True)
            self._err_console = RichConsole(stderr=True, highlight=False, no_color=True)

    def info(self, message: str) -> None:
        if self.verbosity >= Verbosity.NORMAL:
            self._console.print(f"[green][INFO][/green] {message}")

    def success(self, message: str) -> None:
        if self.verbosity >= Verbosity.NORMAL:
            self._console.print(f"[green][OK][/green] {message}")

    def warn(self, message: str) -> None:
        self._err_console.print(f"[yellow][WARN][/yellow] {message}", soft_wrap=True)

    def error(self, message: str) -> None:
        self._err_console.print(f"[red][ERROR][/red] {message}", soft_wrap=True)

    def debug(self, message: str) -> None:
        if self.verbosity >= Verbosity.DEBUG:
            self._console.print(f"[cyan][DEBUG][/cyan] {message}")

    def step(self, message: str) -> None:
        """Print a step indicator (blue arrow)."""
        if self.verbosity >= Verbosity.NORMAL:
            self._console.print(f"[blue]->[/blue] {message}")

    def dry_run_msg(self, message: str) -> None:
        """Print what a dry run would have done."""
        if self.dry_run:
            self._console.print(f"[blue][DRY-RUN][/blue] Would: {message}")

    def hint(self, message: str) -> None:
        self._err_console.print(f"[cyan]Hint:[/cyan] {message}", soft_wrap=True)

    def detail(self, message: str) -> None:
        """Print an indented detail line under an error."""
        self._err_console.print(f"  [dim]{message}[/dim]", soft_wrap=True)

    def print(self, message: Any = "", **kwargs: Any) -> None:
        """Print raw message or Rich renderable."""
        self._console.print(message, **kwargs)

    def rule(self, title: str = "") -> None:
        self._console.rule(title)

    def table(
        self,
        title: str,
        columns: list[str],
        rows: Iterable[list[str]],
        box_style: box.Box = box.ROUNDED,
    ) -> None:
        """Print a formatted table."""
        table = Table(title=title, box=box_style)
        for col in columns:
            table.add_column(col)
        for row in rows:
            table.add_row(*row)
        self._console.print(table)

    def sql(self, sql: str, title: str = "SQL") -> None:
        """Print formatted SQL code."""
        syntax = Syntax(sql, "sql", theme="monokai", line_numbers=False)
        self._console.print(Panel(syntax, title=title, border_style="green"))

    def yaml(self, yaml_text: str, title: str = "Configuration") -> None:
        """Print formatted YAML."""
        syntax = Syntax(yaml_text, "yaml", theme="monokai", line_numbers=False)
        self._console.print(Panel(syntax, title=title, border_style="cyan"))

    def summary(self, title: str, items: dict[str, Any]) -> None:
        """Print a summary panel with key-value pairs."""
        content_lines = []
        for key, value in items.items():
            if isinstance(value, bool):
                value_str = "[green]Yes[/green]" if value else "[red]No[/red]"
            else:
                value_str = str(value)
            content_lines.append(f"[bold]{key}:[/bold] {value_str}")

        self._console.print(Panel("\n".join(content_lines), title=title, border_style="blue"))

    def confirm(
        self,
        message: str,
        default: bool = False,
        skip_confirm: bool = False,
    ) -> bool:
        """Ask a yes/no question.

        Args:
            message: Question to ask
            default: Answer used when the user just presses Enter
            skip_confirm: Return True without prompting

        Returns:
            True if confirmed
        """
        if skip_confirm:
            return True

        suffix = escape("[Y/n]" if default else "[y/N]")
        try:
            response = self._console.input(f"{message} {suffix}: ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            return False

        if not response:
            return default
        return response in ("y", "yes")


# Global console instance
console = Console()
