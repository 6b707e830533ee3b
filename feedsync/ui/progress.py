"""Terminal progress helpers with Rich-based rendering."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)


@dataclass
class ProgressState:
    total: int
    success: int = 0
    failed: int = 0
    current: str | None = None


class ProgressReporter:
    """Render progress and maintain counters for CLI feedback.

    Falls back to counting silently when disabled or when stdout is not a
    terminal, so :attr:`state` always holds the counts.
    """

    def __init__(self, enabled: bool = True, label: str = "publish") -> None:
        self.enabled = enabled
        self.label = label
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None
        self.state: ProgressState | None = None

    def start(self, total: int) -> None:
        self.state = ProgressState(total=total)
        if not self.enabled:
            return
        console = Console()
        if not console.is_terminal:
            self.enabled = False
            return
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[label]:<10}"),
            BarColumn(bar_width=None, complete_style="green"),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            TextColumn("[green]✓{task.fields[success]:>3}", justify="right"),
            TextColumn("[red]✗{task.fields[failed]:>3}", justify="right"),
            TextColumn("[dim]{task.fields[current]}"),
            transient=True,
            console=console,
        )
        try:
            self._progress.__enter__()
        except LiveError:
            # Another live display owns the console.
            self.enabled = False
            self._progress = None
            return
        self._task_id = self._progress.add_task(
            self.label, total=total, label=self.label, success=0, failed=0, current=""
        )

    def advance(self, success: bool, current: str | None = None) -> None:
        if self.state is None:
            raise RuntimeError("ProgressReporter.start must be called before advance")
        if success:
            self.state.success += 1
        else:
            self.state.failed += 1
        self.state.current = current
        if self._progress is not None and self._task_id is not None:
            display = (current or "")[:50]
            self._progress.update(
                self._task_id,
                advance=1,
                success=self.state.success,
                failed=self.state.failed,
                current=display,
            )

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress.__exit__(None, None, None)
            self._progress = None
        self._task_id = None


__all__ = ["ProgressReporter", "ProgressState"]
