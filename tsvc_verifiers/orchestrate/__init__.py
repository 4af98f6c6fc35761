"""Verify-job orchestration: resolution, naming, launching, batching and sweeps."""

from tsvc_verifiers.orchestrate.batch import BatchDriver, verify
from tsvc_verifiers.orchestrate.config import PlanConfig, UsageError, VerifyOptions, load_plan
from tsvc_verifiers.orchestrate.launcher import JobLauncher, JobResult, LauncherSettings
from tsvc_verifiers.orchestrate.naming import ArtifactNamer
from tsvc_verifiers.orchestrate.resolver import BenchmarkSpec, CompilerPair, MissingArtifact, RunConfig, resolve
from tsvc_verifiers.orchestrate.state import WorkspaceLayout
from tsvc_verifiers.orchestrate.sweep import SubprocessSandbox, SweepVerdict, check_all_testcases, sweep

__all__ = [
    "ArtifactNamer",
    "BatchDriver",
    "BenchmarkSpec",
    "CompilerPair",
    "JobLauncher",
    "JobResult",
    "LauncherSettings",
    "MissingArtifact",
    "PlanConfig",
    "RunConfig",
    "SubprocessSandbox",
    "SweepVerdict",
    "UsageError",
    "VerifyOptions",
    "WorkspaceLayout",
    "check_all_testcases",
    "load_plan",
    "resolve",
    "sweep",
    "verify",
]
