"""Progress display for batch commands.

Bridges coordinator progress notifications to a Rich progress bar.
"""

from __future__ import annotations

import contextlib
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

if TYPE_CHECKING:  # pragma: no cover
    from rich.console import Console

    from certmgr.models import BatchProgress


class ProgressManager:
    """Progress manager for CLI."""

    def __init__(self, console: Console):
        """Initialize progress manager.

        Args:
            console: Rich console for output

        """
        self.console = console

    def create_progress(self) -> Progress:
        """Create a batch progress bar.

        Returns:
            Progress instance

        """
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("{task.fields[current_file]}"),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            console=self.console,
        )

    @contextlib.contextmanager
    def track_batch(self, description: str) -> Iterator[Callable[[BatchProgress], None]]:
        """Context manager yielding a coordinator progress callback.

        Args:
            description: Label shown next to the bar

        Yields:
            Callback to pass as ``on_progress``

        """
        progress = self.create_progress()
        task_id = progress.add_task(description, total=100, current_file="")

        def on_progress(update: BatchProgress) -> None:
            progress.update(
                task_id,
                completed=update.percent_complete,
                current_file=f"{update.current_item}/{update.total_items} {update.current_file}",
            )

        with progress:
            yield on_progress
