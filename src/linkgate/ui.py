from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.text import Text

from linkgate.types import JobResult, JobState

_T = TypeVar("_T")

console = Console()

STATE_STYLES: dict[JobState, str] = {
    JobState.SUCCESS: "bold bright_green",
    JobState.SKIPPED: "bold bright_cyan",
    JobState.CANCELLED: "bold bright_yellow",
    JobState.FAILURE: "bold bright_white on red",
}


def neon_enabled() -> bool:
    return os.getenv("LINKGATE_NEON", "1") == "1"


def configure_logging(verbose: bool = False) -> None:
    """Route library logging through rich; quiet unless ``verbose``."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


@dataclass(frozen=True)
class NeonSpinner:
    message: str

    def run(self, fn: Callable[[], _T]) -> _T:
        if not neon_enabled():
            return fn()

        with Progress(
            SpinnerColumn(style="bright_magenta"),
            TextColumn("[bold bright_cyan]{task.description}[/bold bright_cyan]"),
            transient=True,
            console=console,
        ) as prog:
            task_id = prog.add_task(self.message, total=None)
            try:
                return fn()
            finally:
                prog.update(task_id, completed=1)


def render_result(result: JobResult) -> None:
    """Print a one-screen summary of a finished job."""
    style = STATE_STYLES.get(result.state, "bold")
    console.print(Text(f"linkcheck: {result.state.value.upper()}", style=style))
    if result.message:
        console.print(Text(result.message))
    for step in result.steps:
        mark = {"ok": "✔", "failed": "✘", "cancelled": "…"}[step.status]
        console.print(Text(f"  {mark} {step.name}  {step.detail}".rstrip(), style="dim" if step.status == "ok" else ""))
