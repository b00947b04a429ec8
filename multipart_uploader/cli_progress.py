"""Console rendering and progress helpers for the uploader CLI."""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
)
from rich.table import Table

from .models import ProgressSnapshot, UploadResult

console = Console()


def _echo(message: str) -> None:
    console.print(message)


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def _format_eta(seconds: Optional[int]) -> str:
    if seconds is None:
        return "--:--"
    minutes, secs = divmod(max(int(seconds), 0), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]mpu-up[/bold green]",
        subtitle="[dim]multipart uploader[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_result(result: UploadResult) -> None:
    """Print the final outcome; the COMPLETE payload is printed as JSON."""
    if result.success:
        _echo(f"[green]Uploaded:[/green] {result.filename} ({result.parts} parts)")
        if result.payload is not None:
            console.print_json(json.dumps(result.payload, default=str))
        return

    kind = f" [{result.error_kind}]" if result.error_kind else ""
    _echo(f"[red]Failed:[/red] {result.filename}{kind} - {result.error}")


class UploadProgressDisplay:
    """Single-file progress bar driven by ProgressSnapshot."""

    def __init__(self, filename: str, total_bytes: int):
        self.filename = filename
        self.total_bytes = total_bytes
        self._task_id: Optional[TaskID] = None
        self._last: Optional[ProgressSnapshot] = None
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[phase]:<8}", justify="left"),
            TextColumn("{task.fields[filename]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("{task.fields[transferred]}"),
            TextColumn("ETA {task.fields[eta]}"),
            expand=False,
            console=console,
        )

    @property
    def last_snapshot(self) -> Optional[ProgressSnapshot]:
        return self._last

    def _transferred(self, uploaded: int) -> str:
        return f"{_human_size(uploaded)}/{_human_size(self.total_bytes)}"

    def start(self) -> None:
        if self._task_id is not None:
            return
        self._progress.start()
        self._task_id = self._progress.add_task(
            "upload",
            filename=self.filename[:60],
            phase="checksum",
            transferred=self._transferred(0),
            eta=_format_eta(None),
            total=100,
        )

    def update(self, snapshot: ProgressSnapshot) -> None:
        if self._task_id is None:
            self.start()
        self._last = snapshot
        self._progress.update(
            self._task_id,
            completed=snapshot.percent,
            phase=snapshot.phase,
            eta=_format_eta(snapshot.eta_seconds),
            transferred=self._transferred(snapshot.uploaded_bytes),
        )

    def stop(self) -> None:
        if self._task_id is None:
            return
        self._progress.stop()
        self._task_id = None

    def get_callback(self):
        def callback(snapshot: ProgressSnapshot) -> None:
            self.update(snapshot)

        return callback
