"""Progress sinks for long-running downloads.

A sink is any callable accepting ``(fraction, label)`` with ``fraction`` in
``0..1``.  Progress is cosmetic: a missing sink is fine, and a sink that
raises is logged and ignored rather than failing the download.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn, TimeRemainingColumn

LOGGER = logging.getLogger("ProdToolkit.StaticData.progress")


class ProgressSink(Protocol):
    def __call__(self, fraction: float, label: str) -> None: ...


def report_progress(sink: Optional[ProgressSink], fraction: float, label: str) -> None:
    """Forward an update to ``sink`` if one is installed."""

    if sink is None:
        return
    try:
        sink(max(0.0, min(fraction, 1.0)), label)
    except Exception as exc:  # noqa: BLE001 - progress must never fail a download
        LOGGER.debug("progress sink raised", extra={"stage": "progress", "error": str(exc)})


class LoggingProgressSink:
    """Emit an INFO record each time progress crosses another ``step``."""

    def __init__(self, logger: Optional[logging.Logger] = None, step: float = 0.1) -> None:
        if not 0 < step <= 1:
            raise ValueError("step must be in (0, 1]")
        self.logger = logger or LOGGER
        self.step = step
        self._next = step

    def __call__(self, fraction: float, label: str) -> None:
        if fraction + 1e-9 < self._next:
            return
        self.logger.info(
            "download progress",
            extra={"stage": "download", "label": label, "percent": round(fraction * 100, 1)},
        )
        while self._next <= fraction + 1e-9:
            self._next += self.step


class RichProgressSink:
    """Render a single rich progress bar; use as a context manager."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self._progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>5.1f}%"),
            TimeRemainingColumn(),
            console=console,
            transient=True,
        )
        self._task: Optional[TaskID] = None

    def __enter__(self) -> "RichProgressSink":
        self._progress.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self._progress.stop()

    def __call__(self, fraction: float, label: str) -> None:
        if self._task is None:
            self._task = self._progress.add_task(label, total=1.0)
        self._progress.update(self._task, completed=fraction, description=label)


__all__ = ["ProgressSink", "report_progress", "LoggingProgressSink", "RichProgressSink"]
