"""Console output for the CLI, as rich text or JSON."""

import json
import sys
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from .utils import format_size


class OutputFormatter:
    """Formats CLI output.

    Human-readable text goes to stdout through a rich console; errors and
    warnings go to stderr. With ``json_output`` only :meth:`output_json`
    writes to stdout, so the output stays machine-readable.
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)

    def _text_enabled(self) -> bool:
        return not self.quiet and not self.json_output

    def print(self, message: str = "") -> None:
        if self._text_enabled():
            self.console.print(message)

    def info(self, message: str) -> None:
        if self._text_enabled():
            self.console.print(message)

    def success(self, message: str) -> None:
        if self._text_enabled():
            self.console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        if not self.quiet:
            self.err_console.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {message}")

    def output_json(self, data: Any) -> None:
        """Write data as JSON to stdout."""
        sys.stdout.write(json.dumps(data, indent=2, default=str))
        sys.stdout.write("\n")
        sys.stdout.flush()

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        """Print a titled two-column summary."""
        if not self._text_enabled():
            return
        table = Table(title=title, show_header=False, title_style="bold")
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        for field, value in items:
            table.add_row(field, value)
        self.console.print(table)

    @staticmethod
    def format_size(size_bytes: int) -> str:
        return format_size(size_bytes)
