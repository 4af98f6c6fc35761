"""Rich live dashboard for batch verification progress."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text

from tsvc_verifiers.orchestrate.state import JobManifest, JobState


STATE_STYLES: dict[str, str] = {
    JobState.pending: "dim",
    JobState.running: "yellow",
    JobState.completed: "green",
    JobState.failed: "bold red",
    JobState.timed_out: "bold magenta",
    JobState.cancelled: "magenta",
}

LOG_PREFIX_STYLES: dict[str, str] = {
    "RUN": "bold cyan",
    "JOB": "bold",
}

LOG_EVENT_STYLES: dict[str, str] = {
    "started": "cyan",
    "dispatch": "cyan",
    "complete": "bold green",
    "failed": "bold red",
    "timed_out": "bold magenta",
    "cancelled": "magenta",
    "finished": "bold cyan",
}


def _format_elapsed(started_at: str | None) -> str:
    if not started_at:
        return "-"
    try:
        start = datetime.fromisoformat(started_at)
    except ValueError:
        return "-"
    total_seconds = int((datetime.now(timezone.utc) - start).total_seconds())
    minutes, seconds = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"


def build_table(jobs: Iterable[JobManifest], *, caption: str | None = None) -> Table:
    job_list = list(jobs)
    counts: dict[str, int] = {}
    for job in job_list:
        counts[job.state] = counts.get(job.state, 0) + 1

    table = Table(title=Text("Verification", style="bold cyan"), caption=caption, expand=True)
    table.add_column("Run", no_wrap=True, style="bold")
    table.add_column("Pair", no_wrap=True, style="dim")
    table.add_column("State", no_wrap=True)
    table.add_column("Elapsed", no_wrap=True, style="dim")
    for job in job_list:
        if job.state != JobState.running:
            continue
        table.add_row(
            Text(job.identifier),
            Text(f"{job.baseline}/{job.candidate}", style="dim"),
            Text(job.state, style=STATE_STYLES.get(job.state, "")),
            _format_elapsed(job.started_at),
        )
    summary = " ".join(f"{state}={counts[state]}" for state in STATE_STYLES if counts.get(state))
    table.add_row(Text("TOTAL", style="dim"), Text("-", style="dim"), Text(summary or "-", style="dim"), "-")
    return table


def format_log_message(message: str) -> Text:
    text = Text(message)
    parts = message.split(" ", maxsplit=2)
    prefix = parts[0]
    prefix_style = LOG_PREFIX_STYLES.get(prefix)
    if prefix_style:
        text.stylize(prefix_style, 0, len(prefix))
    if len(parts) >= 2:
        event = parts[1]
        event_style = LOG_EVENT_STYLES.get(event)
        if event_style:
            start = len(prefix) + 1
            text.stylize(event_style, start, start + len(event))
    return text


@dataclass
class BatchDashboard:
    refresh_hz: float = 1.0
    enabled: bool = True

    def __post_init__(self) -> None:
        self._console = Console(log_path=False, highlight=False)
        self._live = Live(
            build_table([]),
            refresh_per_second=self.refresh_hz,
            transient=False,
            console=self._console,
        )

    def start(self) -> None:
        if self.enabled:
            self._live.start()

    def update(self, jobs: Iterable[JobManifest], *, caption: str | None = None) -> None:
        if self.enabled:
            self._live.update(build_table(jobs, caption=caption))

    def stop(self) -> None:
        if self.enabled:
            self._live.stop()

    def log(self, message: str) -> None:
        if self.enabled:
            self._console.log(format_log_message(message))


__all__ = ["BatchDashboard", "build_table", "format_log_message"]
