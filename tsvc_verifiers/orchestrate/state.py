"""Workspace layout, job state tracking and artifact persistence."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping
import json
import os
import uuid


class JobState:
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"
    timed_out = "timed_out"
    cancelled = "cancelled"


FINAL_STATES = {JobState.completed, JobState.failed, JobState.timed_out, JobState.cancelled}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _write_json_atomic(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp-{uuid.uuid4().hex}")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    os.replace(tmp_path, path)


def write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(text)


@dataclass(frozen=True)
class WorkspaceLayout:
    """Filesystem conventions for compiler outputs, corpora and run artifacts.

    Every path is relative to ``root`` so a layout rooted at ``Path(".")``
    produces the short relative paths that end up in recorded command lines.
    """

    root: Path = Path(".")

    def object_path(self, compiler: str, benchmark: str) -> Path:
        return self.root / compiler / f"{benchmark}.s"

    def corpus_path(self, name: str) -> Path:
        return self.root / "testcases" / name

    @property
    def rodata_path(self) -> Path:
        return self.root / "rodata"

    @property
    def misc_dir(self) -> Path:
        return self.root / "misc"

    @property
    def traces_dir(self) -> Path:
        return self.root / "traces"

    @property
    def times_dir(self) -> Path:
        return self.root / "times"

    def ensure_dirs(self) -> None:
        for directory in (self.misc_dir, self.traces_dir, self.times_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def artifacts(self, identifier: str) -> "RunArtifacts":
        return RunArtifacts(self, identifier)


@dataclass(frozen=True)
class RunArtifacts:
    layout: WorkspaceLayout
    identifier: str

    @property
    def command_path(self) -> Path:
        return self.layout.misc_dir / f"{self.identifier}.cmd"

    @property
    def stderr_path(self) -> Path:
        return self.layout.misc_dir / f"{self.identifier}.err"

    @property
    def result_path(self) -> Path:
        return self.layout.misc_dir / f"{self.identifier}.json"

    @property
    def trace_path(self) -> Path:
        return self.layout.traces_dir / self.identifier

    @property
    def timing_path(self) -> Path:
        return self.layout.times_dir / self.identifier


@dataclass
class JobManifest:
    identifier: str
    benchmark: str
    baseline: str
    candidate: str
    state: str = JobState.pending
    state_entered_at: str | None = field(default_factory=_now)
    started_at: str | None = None
    completed_at: str | None = None
    exit_code: int | None = None
    equivalent: bool | None = None
    error: str | None = None

    def set_state(self, state: str) -> None:
        now = _now()
        if state != self.state:
            self.state = state
            self.state_entered_at = now
        if state == JobState.running and self.started_at is None:
            self.started_at = now
        if state in FINAL_STATES:
            self.completed_at = now

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def write_job_result(artifacts: RunArtifacts, payload: Mapping[str, Any]) -> None:
    _write_json_atomic(artifacts.result_path, payload)


def write_timing(artifacts: RunArtifacts, *, duration_s: float, exit_code: int | None, state: str) -> None:
    exit_text = str(exit_code) if exit_code is not None else "-"
    write_text(
        artifacts.timing_path,
        f"elapsed_s={duration_s:.3f}\nexit_code={exit_text}\nstate={state}\nfinished_at={_now()}\n",
    )


def read_benchmark_list(path: Path) -> list[str]:
    """Return the non-empty, trimmed lines of a benchmark list file."""
    with open(path, "r", encoding="utf-8") as handle:
        return [line.strip() for line in handle if line.strip()]


__all__ = [
    "FINAL_STATES",
    "JobManifest",
    "JobState",
    "RunArtifacts",
    "WorkspaceLayout",
    "read_benchmark_list",
    "write_job_result",
    "write_text",
    "write_timing",
]
