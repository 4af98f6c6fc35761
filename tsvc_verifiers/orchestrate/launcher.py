"""Verify-oracle job execution: command records, subprocess supervision, results."""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Mapping, Sequence
import asyncio
import logging
import os
import shlex
import signal
import subprocess
import threading
import time

from tsvc_verifiers.orchestrate.config import DEFAULT_VERIFY_COMMAND
from tsvc_verifiers.orchestrate.oracle import parse_verify_output
from tsvc_verifiers.orchestrate.resolver import RunConfig
from tsvc_verifiers.orchestrate.state import (
    JobState,
    RunArtifacts,
    WorkspaceLayout,
    write_job_result,
    write_text,
    write_timing,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LauncherSettings:
    verify_command: Sequence[str] = DEFAULT_VERIFY_COMMAND
    env: Mapping[str, str] | None = None
    job_timeout_s: float | None = None
    term_timeout_s: float = 5.0


@dataclass(frozen=True)
class JobResult:
    identifier: str
    state: str
    exit_code: int | None
    duration_s: float
    trace_path: Path
    equivalent: bool | None = None
    oracle_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == JobState.completed

    def to_dict(self) -> dict[str, object]:
        return {
            "identifier": self.identifier,
            "state": self.state,
            "exit_code": self.exit_code,
            "duration_s": self.duration_s,
            "trace_path": str(self.trace_path),
            "equivalent": self.equivalent,
            "oracle_error": self.oracle_error,
        }


@dataclass
class OracleProcess:
    """A running oracle whose stdout/stderr go straight to its artifact files."""

    identifier: str
    process: asyncio.subprocess.Process
    trace_handle: IO[str]
    stderr_handle: IO[str]

    def close(self) -> None:
        self.trace_handle.close()
        self.stderr_handle.close()


def build_command(config: RunConfig, verify_command: Sequence[str] = DEFAULT_VERIFY_COMMAND) -> list[str]:
    return [*verify_command, *config.oracle_args()]


async def start_oracle(
    identifier: str,
    command: Sequence[str],
    artifacts: RunArtifacts,
    *,
    env: Mapping[str, str] | None,
) -> OracleProcess:
    trace_handle = open(artifacts.trace_path, "w", encoding="utf-8")
    stderr_handle = open(artifacts.stderr_path, "w", encoding="utf-8")
    kwargs: dict[str, object] = {}
    if os.name == "posix":
        kwargs["start_new_session"] = True
    elif os.name == "nt":
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            env={**os.environ, **env} if env else None,
            stdout=trace_handle,
            stderr=stderr_handle,
            **kwargs,
        )
    except BaseException:
        trace_handle.close()
        stderr_handle.close()
        raise
    return OracleProcess(identifier, process, trace_handle, stderr_handle)


def _signal_oracle(proc: OracleProcess, *, kill: bool) -> bool:
    """Signal the oracle's whole process group; False if it is already gone."""
    try:
        if os.name == "posix":
            os.killpg(proc.process.pid, signal.SIGKILL if kill else signal.SIGTERM)
        elif kill:
            proc.process.kill()
        else:
            proc.process.terminate()
    except ProcessLookupError:
        return False
    return True


async def stop_oracle(proc: OracleProcess, *, grace_s: float) -> None:
    if proc.process.returncode is not None or not _signal_oracle(proc, kill=False):
        return
    try:
        await asyncio.wait_for(proc.process.wait(), timeout=grace_s)
        return
    except asyncio.TimeoutError:
        logger.warning("Oracle for %s ignored SIGTERM for %.1fs; killing.", proc.identifier, grace_s)
    if _signal_oracle(proc, kill=True):
        await proc.process.wait()


async def supervise_oracle(proc: OracleProcess, *, timeout_s: float | None, grace_s: float) -> str:
    """Wait for the oracle to exit and return the job's final state.

    An oracle still running after ``timeout_s`` is stopped and reported as
    ``timed_out``. If the wait itself is cancelled the process group is stopped
    before the cancellation propagates, so no oracle outlives its job.
    """
    try:
        await asyncio.wait_for(proc.process.wait(), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.warning("Oracle for %s exceeded %.1fs; terminating.", proc.identifier, timeout_s)
        await stop_oracle(proc, grace_s=grace_s)
        return JobState.timed_out
    except asyncio.CancelledError:
        await stop_oracle(proc, grace_s=grace_s)
        raise
    return JobState.completed if proc.process.returncode == 0 else JobState.failed


class JobLauncher:
    """Run the verify oracle for one resolved configuration and identifier."""

    def __init__(self, layout: WorkspaceLayout, settings: LauncherSettings | None = None) -> None:
        self._layout = layout
        self._settings = settings or LauncherSettings()

    @property
    def layout(self) -> WorkspaceLayout:
        return self._layout

    def prepare(self, config: RunConfig, identifier: str) -> tuple[RunArtifacts, list[str]]:
        """Create the artifact directories and persist the exact command line."""
        self._layout.ensure_dirs()
        artifacts = self._layout.artifacts(identifier)
        command = build_command(config, self._settings.verify_command)
        write_text(artifacts.command_path, shlex.join(command))
        return artifacts, command

    async def run_job(self, config: RunConfig, identifier: str) -> JobResult:
        artifacts, command = self.prepare(config, identifier)
        logger.info("Recording data in %s", artifacts.trace_path)
        logger.debug("Oracle command: %s", shlex.join(command))
        started = time.monotonic()
        try:
            proc = await start_oracle(identifier, command, artifacts, env=self._settings.env)
        except OSError as exc:
            logger.error("Failed to start oracle for %s: %s", identifier, exc)
            write_text(artifacts.stderr_path, f"failed to start oracle: {exc}\n")
            return self._record(artifacts, state=JobState.failed, exit_code=None, duration_s=time.monotonic() - started)
        except asyncio.CancelledError:
            self._record(artifacts, state=JobState.cancelled, exit_code=None, duration_s=time.monotonic() - started)
            raise
        try:
            state = await supervise_oracle(
                proc,
                timeout_s=self._settings.job_timeout_s,
                grace_s=self._settings.term_timeout_s,
            )
        except asyncio.CancelledError:
            proc.close()
            self._record(
                artifacts,
                state=JobState.cancelled,
                exit_code=proc.process.returncode,
                duration_s=time.monotonic() - started,
            )
            raise
        proc.close()
        return self._record(
            artifacts,
            state=state,
            exit_code=proc.process.returncode,
            duration_s=time.monotonic() - started,
        )

    def record_cancelled(self, config: RunConfig, identifier: str) -> JobResult:
        """Leave a complete record for a job cancelled before its oracle started."""
        artifacts, _ = self.prepare(config, identifier)
        write_text(artifacts.stderr_path, "cancelled before the oracle started\n")
        return self._record(artifacts, state=JobState.cancelled, exit_code=None, duration_s=0.0)

    def dispatch(self, config: RunConfig, identifier: str) -> asyncio.Task[JobResult]:
        """Start ``run_job`` as a detached task; the caller joins on the handle."""
        return asyncio.create_task(self.run_job(config, identifier), name=identifier)

    def launch(
        self, config: RunConfig, identifier: str, *, concurrent: bool = False
    ) -> JobResult | asyncio.Task[JobResult] | Future[JobResult]:
        """Run one job, blocking until the oracle exits unless ``concurrent`` is set.

        A concurrent launch returns immediately with a handle: an ``asyncio.Task``
        when called from a running event loop, otherwise a ``Future`` completed by
        a worker thread that runs the job on its own loop.
        """
        if not concurrent:
            return asyncio.run(self.run_job(config, identifier))
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return self._launch_in_thread(config, identifier)
        return self.dispatch(config, identifier)

    def _launch_in_thread(self, config: RunConfig, identifier: str) -> Future[JobResult]:
        future: Future[JobResult] = Future()

        def _worker() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(asyncio.run(self.run_job(config, identifier)))
            except Exception as exc:
                future.set_exception(exc)

        threading.Thread(target=_worker, name=f"oracle-{identifier}").start()
        return future

    def _record(self, artifacts: RunArtifacts, *, state: str, exit_code: int | None, duration_s: float) -> JobResult:
        outcome = parse_verify_output(_read_text(artifacts.trace_path))
        result = JobResult(
            identifier=artifacts.identifier,
            state=state,
            exit_code=exit_code,
            duration_s=duration_s,
            trace_path=artifacts.trace_path,
            equivalent=outcome.equivalent,
            oracle_error=outcome.error,
        )
        write_timing(artifacts, duration_s=duration_s, exit_code=exit_code, state=state)
        write_job_result(artifacts, result.to_dict())
        if state == JobState.completed:
            logger.info("Job %s finished in %.1fs equivalent=%s", artifacts.identifier, duration_s, outcome.equivalent)
        else:
            logger.warning("Job %s ended %s exit=%s after %.1fs", artifacts.identifier, state, exit_code, duration_s)
        return result


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return ""


__all__ = [
    "JobLauncher",
    "JobResult",
    "LauncherSettings",
    "OracleProcess",
    "build_command",
    "start_oracle",
    "stop_oracle",
    "supervise_oracle",
]
