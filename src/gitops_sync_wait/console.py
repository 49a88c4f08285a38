"""Styled terminal output for gitops-sync-wait.

All progress and diagnostics go through the shared Rich console below. It
writes to stderr: stdout is left to ``--version`` and to callers piping the
process, while CI output variables go to their own file.
"""

from collections.abc import Generator
from contextlib import contextmanager

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

_THEME = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "highlight": "cyan bold",
        "muted": "dim",
        "label": "bold",
        "value": "cyan",
    }
)

console = Console(theme=_THEME, stderr=True)

# Message kind -> (theme style, icon)
_MARKERS: dict[str, tuple[str, str]] = {
    "info": ("info", "ℹ"),
    "success": ("success", "✓"),
    "warning": ("warning", "⚠"),
    "error": ("error", "✗"),
    "action": ("info", "→"),
    "step": ("muted", "•"),
}


def _emit(kind: str, message: str) -> None:
    style, icon = _MARKERS[kind]
    console.print(f"[{style}]{icon}[/{style}] {message}")


def info(message: str) -> None:
    """Print an informational message, e.g. the workloads found."""
    _emit("info", message)


def success(message: str) -> None:
    """Print a success message, e.g. a detected sync or a finished rollout."""
    _emit("success", message)


def warning(message: str) -> None:
    """Print a warning, e.g. a read error that will be retried."""
    _emit("warning", message)


def error(message: str) -> None:
    """Print an error, e.g. a failed rollout or an invalid configuration."""
    _emit("error", message)


def action(message: str) -> None:
    """Print the start of a phase (connecting, waiting for sync, waiting for rollout)."""
    _emit("action", message)


def step(message: str) -> None:
    """Print a detail line belonging to the preceding message."""
    _emit("step", message)


def highlight(text: str) -> str:
    """Return ``text`` wrapped in highlight markup.

    Workload names, selectors and marker values come from the cluster or the
    command line, so square brackets in them are escaped rather than parsed
    as markup.

    Args:
        text: The text to highlight.

    Returns:
        Rich markup rendering ``text`` highlighted.

    """
    return f"[highlight]{escape(text)}[/highlight]"


@contextmanager
def spinner(message: str) -> Generator[None, None, None]:
    """Show a spinner with ``message`` while the block runs."""
    with console.status(f"[info]{message}[/info]", spinner="dots"):
        yield


def summary_panel(title: str, items: dict[str, str], *, border_style: str = "green") -> None:
    """Print a titled panel of label/value rows.

    Args:
        title: Panel title.
        items: Row labels mapped to their values; values are printed literally.
        border_style: Rich style of the panel border, e.g. red for a failed run.

    """
    table = Table.grid(padding=(0, 2))
    table.add_column(style="label")
    table.add_column(style="value")
    for label, value in items.items():
        table.add_row(f"{label}:", escape(value))

    console.print(Panel(table, title=f"[bold]{title}[/bold]", border_style=border_style))


def newline() -> None:
    """Print an empty line."""
    console.print()
