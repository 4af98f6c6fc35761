"""Fail-fast regression sweep of compiled benchmarks over the sandbox oracle."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence
import logging
import os
import subprocess

from tsvc_verifiers.orchestrate.config import DEFAULT_SANDBOX_COMMAND
from tsvc_verifiers.orchestrate.oracle import abnormal_signal, is_abnormal
from tsvc_verifiers.orchestrate.resolver import BASELINE_COMPILER, SWEEP_CORPUS, require_file
from tsvc_verifiers.orchestrate.state import WorkspaceLayout, read_benchmark_list

logger = logging.getLogger(__name__)

SWEEP_INDICES = range(16)
SWEEP_COMPILERS: tuple[str, ...] = (BASELINE_COMPILER, "gcc", "llvm")

SandboxOracle = Callable[[Path, Path, int], str]


@dataclass(frozen=True)
class SweepVerdict:
    compiler: str
    benchmark: str
    good: bool
    failing_index: int | None = None
    signal: str | None = None

    def __str__(self) -> str:
        if self.good:
            return f"{self.compiler}/{self.benchmark} GOOD"
        return f"{self.compiler}/{self.benchmark} BAD index={self.failing_index}"


class SubprocessSandbox:
    """Invoke the sandbox oracle once per test-case index and return its stdout.

    With ``timeout_s`` set, a sandbox run that hangs is killed and whatever it
    printed so far is returned, so one stuck index cannot stall a sweep.
    """

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_SANDBOX_COMMAND,
        *,
        env: Mapping[str, str] | None = None,
        timeout_s: float | None = None,
    ):
        self._command = list(command)
        self._env = {**os.environ, **env} if env else None
        self._timeout_s = timeout_s

    def __call__(self, target: Path, testcases: Path, index: int) -> str:
        args = [
            *self._command,
            "--testcases", str(testcases),
            "--target", str(target),
            "--index", str(index),
        ]
        try:
            completed = subprocess.run(
                args,
                env=self._env,
                text=True,
                stdout=subprocess.PIPE,
                errors="replace",
                timeout=self._timeout_s,
            )
        except subprocess.TimeoutExpired as exc:
            logger.warning("Sandbox on %s index %d exceeded %.1fs; killed.", target, index, self._timeout_s)
            partial = exc.stdout or ""
            if isinstance(partial, bytes):
                partial = partial.decode("utf-8", errors="replace")
            return partial
        return completed.stdout or ""


def sweep(
    compiler: str,
    benchmark: str,
    testcases: Path,
    *,
    oracle: SandboxOracle,
    layout: WorkspaceLayout | None = None,
) -> SweepVerdict:
    layout = layout or WorkspaceLayout()
    target = layout.object_path(compiler, benchmark)
    for index in SWEEP_INDICES:
        output = oracle(target, testcases, index)
        if is_abnormal(output):
            return SweepVerdict(compiler, benchmark, good=False, failing_index=index, signal=abnormal_signal(output))
    return SweepVerdict(compiler, benchmark, good=True)


def check_all_testcases(
    list_path: Path,
    *,
    oracle: SandboxOracle,
    layout: WorkspaceLayout | None = None,
    compilers: Iterable[str] = SWEEP_COMPILERS,
    report: Callable[[SweepVerdict], None] | None = None,
) -> list[SweepVerdict]:
    layout = layout or WorkspaceLayout()
    testcases = layout.corpus_path(SWEEP_CORPUS)
    compilers = tuple(compilers)
    verdicts: list[SweepVerdict] = []
    for benchmark in read_benchmark_list(require_file(list_path)):
        for compiler in compilers:
            verdict = sweep(compiler, benchmark, testcases, oracle=oracle, layout=layout)
            if not verdict.good:
                logger.debug("%s signal=%s", verdict, verdict.signal or "-")
            if report is not None:
                report(verdict)
            verdicts.append(verdict)
    return verdicts


__all__ = [
    "SWEEP_COMPILERS",
    "SWEEP_INDICES",
    "SandboxOracle",
    "SubprocessSandbox",
    "SweepVerdict",
    "check_all_testcases",
    "sweep",
]
