"""Single-run and batch dispatch of verify jobs."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Iterable, Mapping

from tsvc_verifiers.orchestrate.config import UsageError, VerifyOptions
from tsvc_verifiers.orchestrate.dashboard import BatchDashboard
from tsvc_verifiers.orchestrate.launcher import JobLauncher, JobResult
from tsvc_verifiers.orchestrate.naming import ArtifactNamer
from tsvc_verifiers.orchestrate.resolver import BASELINE_COMPILER, CompilerPair, RunConfig, require_file, resolve
from tsvc_verifiers.orchestrate.state import FINAL_STATES, JobManifest, JobState, read_benchmark_list

logger = logging.getLogger(__name__)

SCOPE_COMPILERS: Mapping[str, tuple[str, ...]] = {
    "gcc": ("gcc",),
    "llvm": ("llvm",),
    "all": ("gcc", "llvm"),
}


def verify(benchmark: str, pair: CompilerPair, options: VerifyOptions, launcher: JobLauncher) -> JobResult:
    """Resolve, name and run one verification, blocking until the oracle exits."""
    logger.info("Running benchmark %s with compilers %s/%s", benchmark, pair.baseline, pair.candidate)
    config = resolve(benchmark, pair, options, launcher.layout)
    identifier = ArtifactNamer(launcher.layout.traces_dir).allocate(config.prefix)
    return launcher.launch(config, identifier)


class BatchDriver:
    """Dispatch one concurrent verify job per (benchmark, compiler) and join them all."""

    def __init__(
        self,
        launcher: JobLauncher,
        options: VerifyOptions,
        *,
        max_parallel: int | None = None,
        dashboard: BatchDashboard | None = None,
    ) -> None:
        self._launcher = launcher
        self._options = options
        self._max_parallel = max_parallel
        self._dashboard = dashboard or BatchDashboard(enabled=False)
        self._namer = ArtifactNamer(launcher.layout.traces_dir)
        self._manifests: dict[str, JobManifest] = {}

    @property
    def jobs(self) -> list[JobManifest]:
        """Manifests of the most recent batch, in dispatch order."""
        return list(self._manifests.values())

    def plan(self, benchmarks: Iterable[str], scope: str) -> list[RunConfig]:
        """Resolve every job up front so a missing file aborts before any spawn."""
        compilers = SCOPE_COMPILERS.get(scope)
        if compilers is None:
            raise UsageError(f"Unknown compiler scope {scope!r}; expected one of {sorted(SCOPE_COMPILERS)}.")
        configs: list[RunConfig] = []
        for benchmark in benchmarks:
            for compiler in compilers:
                pair = CompilerPair(BASELINE_COMPILER, compiler)
                configs.append(resolve(benchmark, pair, self._options, self._launcher.layout))
        return configs

    def run_all(self, list_path: Path, scope: str) -> list[JobResult]:
        return asyncio.run(self.run_all_async(list_path, scope))

    async def run_all_async(self, list_path: Path, scope: str) -> list[JobResult]:
        benchmarks = read_benchmark_list(require_file(list_path))
        configs = self.plan(benchmarks, scope)
        self._manifests = {}
        semaphore = asyncio.Semaphore(self._max_parallel) if self._max_parallel else None
        self._dashboard.start()
        self._dashboard.log(f"RUN started jobs={len(configs)} scope={scope} list={list_path}")
        refresh_task = self._start_dashboard_refresh()
        try:
            jobs = [(config, self._dispatch(config, semaphore)) for config in configs]
            try:
                results = list(await asyncio.gather(*(task for _, task in jobs)))
            except asyncio.CancelledError:
                await self._finish_cancelled(jobs)
                raise
        finally:
            if refresh_task:
                refresh_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await refresh_task
            self._dashboard.stop()
        failed = sum(1 for result in results if not result.succeeded)
        self._dashboard.log(f"RUN finished jobs={len(results)} failed={failed}")
        logger.info("Batch finished: %d job(s), %d not completed.", len(results), failed)
        return results

    def _dispatch(self, config: RunConfig, semaphore: asyncio.Semaphore | None) -> asyncio.Task[JobResult]:
        identifier = self._namer.allocate(config.prefix)
        manifest = JobManifest(
            identifier=identifier,
            benchmark=config.benchmark,
            baseline=config.pair.baseline,
            candidate=config.pair.candidate,
        )
        self._manifests[identifier] = manifest
        self._dashboard.log(f"JOB dispatch run={identifier}")
        return asyncio.create_task(self._run_one(config, manifest, semaphore), name=identifier)

    async def _run_one(
        self, config: RunConfig, manifest: JobManifest, semaphore: asyncio.Semaphore | None
    ) -> JobResult:
        try:
            async with (semaphore if semaphore is not None else contextlib.nullcontext()):
                self._set_state(manifest, JobState.running)
                result = await self._launcher.run_job(config, manifest.identifier)
        except asyncio.CancelledError:
            self._cancel(config, manifest)
            raise
        manifest.exit_code = result.exit_code
        manifest.equivalent = result.equivalent
        manifest.error = result.oracle_error
        self._set_state(manifest, result.state)
        return result

    def _cancel(self, config: RunConfig, manifest: JobManifest) -> None:
        # A job that never reached the launcher still owns its identifier.
        if manifest.state == JobState.pending:
            self._launcher.record_cancelled(config, manifest.identifier)
        self._set_state(manifest, JobState.cancelled)

    async def _finish_cancelled(self, jobs: list[tuple[RunConfig, asyncio.Task[JobResult]]]) -> None:
        """Let cancelled jobs unwind, then record those whose task never ran."""
        for _, task in jobs:
            task.cancel()
        await asyncio.gather(*(task for _, task in jobs), return_exceptions=True)
        for config, task in jobs:
            manifest = self._manifests[task.get_name()]
            if manifest.state not in FINAL_STATES:
                self._cancel(config, manifest)

    def _set_state(self, manifest: JobManifest, state: str) -> None:
        manifest.set_state(state)
        if state == JobState.completed:
            self._dashboard.log(f"JOB complete run={manifest.identifier} equivalent={manifest.equivalent}")
        elif state != JobState.running:
            self._dashboard.log(f"JOB {state} run={manifest.identifier} exit={manifest.exit_code}")
        self._dashboard.update(self._manifests.values())

    def _start_dashboard_refresh(self) -> asyncio.Task[None] | None:
        if not self._dashboard.enabled:
            return None

        async def refresh_loop() -> None:
            interval_s = 1.0 / max(0.1, self._dashboard.refresh_hz)
            while True:
                await asyncio.sleep(interval_s)
                self._dashboard.update(self._manifests.values())

        return asyncio.create_task(refresh_loop())


__all__ = ["BatchDriver", "SCOPE_COMPILERS", "verify"]
