"""CLI entrypoint for the verification orchestrator."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from rich.console import Console
from rich.table import Table

from tsvc_verifiers.orchestrate.batch import BatchDriver, verify
from tsvc_verifiers.orchestrate.config import ConfigFormatError, PlanConfig, UsageError, build_options, load_plan
from tsvc_verifiers.orchestrate.dashboard import BatchDashboard
from tsvc_verifiers.orchestrate.launcher import JobLauncher, JobResult, LauncherSettings
from tsvc_verifiers.orchestrate.resolver import CompilerPair, MissingArtifact
from tsvc_verifiers.orchestrate.state import WorkspaceLayout
from tsvc_verifiers.orchestrate.sweep import SubprocessSandbox, check_all_testcases
from tsvc_verifiers.utils.shared import ensure_root_logging, load_env_file

logger = logging.getLogger(__name__)

PROG = "tsvc-verify"
BATCH_SCOPES = {"verify-all": "all", "verify-gcc": "gcc", "verify-llvm": "llvm"}


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=Path, help="Optional plan file (YAML/JSON) with run defaults.")
    common.add_argument("--root", type=Path, help="Workspace root holding compiler outputs (default: cwd).")
    common.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging.")

    verify_opts = argparse.ArgumentParser(add_help=False)
    verify_opts.add_argument("--target-bound", type=int, metavar="N", help="Oracle target bound (default: 30).")
    verify_opts.add_argument("--rewrite-bound", type=int, metavar="N", help="Oracle rewrite bound (default: 30).")
    verify_opts.add_argument("--shadow-registers", action="store_true", help="Pass --shadow_registers to the oracle.")
    verify_opts.add_argument(
        "--job-timeout-s",
        type=float,
        default=None,
        help="Terminate an oracle run after this many seconds (default: no timeout).",
    )

    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Run equivalence verification between compiled TSVC benchmark variants.",
    )
    commands = parser.add_subparsers(dest="command", required=True, metavar="command")

    single = commands.add_parser(
        "verify",
        parents=[common, verify_opts],
        help="Verify one benchmark between two compilers.",
    )
    single.add_argument("compiler1", help="Baseline (target) compiler id.")
    single.add_argument("compiler2", help="Candidate (rewrite) compiler id.")
    single.add_argument("benchmark")

    for name, scope in BATCH_SCOPES.items():
        batch = commands.add_parser(
            name,
            parents=[common, verify_opts],
            help=f"Verify every benchmark in a list against baseline ({scope}).",
        )
        batch.add_argument("list", type=Path, help="File with one benchmark name per line.")
        batch.add_argument("--max-parallel", type=int, default=None, help="Cap concurrent oracle runs.")
        batch.add_argument("--no-dashboard", action="store_true", help="Disable the live progress table.")

    sweep_cmd = commands.add_parser(
        "check-tc-all",
        parents=[common],
        help="Sweep sandbox test cases 0-15 for baseline, gcc and llvm builds.",
    )
    sweep_cmd.add_argument("list", type=Path, help="File with one benchmark name per line.")
    sweep_cmd.add_argument(
        "--job-timeout-s",
        type=float,
        default=None,
        help="Kill a sandbox run after this many seconds (default: no timeout).",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    ensure_root_logging("DEBUG" if args.verbose else "INFO")
    try:
        plan = load_plan(args.config) if args.config else PlanConfig()
        return _dispatch(args, plan)
    except MissingArtifact as exc:
        parser.print_usage()
        print(f"Could not find file {exc.path}")
        return 1
    except FileNotFoundError as exc:
        parser.print_usage()
        print(exc)
        return 1
    except (UsageError, ConfigFormatError, ValueError) as exc:
        parser.error(str(exc))
    except KeyboardInterrupt:
        logger.warning("Run interrupted by user.")
        return 1


def _dispatch(args: argparse.Namespace, plan: PlanConfig) -> int:
    layout = WorkspaceLayout(args.root or plan.root or Path("."))
    env = load_env_file(plan.env_file)
    job_timeout_s = args.job_timeout_s if args.job_timeout_s is not None else plan.job_timeout_s
    if job_timeout_s is not None and job_timeout_s <= 0:
        raise UsageError("--job-timeout-s must be positive.")

    if args.command == "check-tc-all":
        oracle = SubprocessSandbox(plan.sandbox_command, env=env, timeout_s=job_timeout_s)
        check_all_testcases(args.list, oracle=oracle, layout=layout, report=print)
        return 0

    options = build_options(
        plan,
        target_bound=args.target_bound,
        rewrite_bound=args.rewrite_bound,
        shadow_registers=args.shadow_registers,
    )
    launcher = JobLauncher(
        layout,
        LauncherSettings(verify_command=tuple(plan.verify_command), env=env or None, job_timeout_s=job_timeout_s),
    )

    if args.command == "verify":
        result = verify(args.benchmark, CompilerPair(args.compiler1, args.compiler2), options, launcher)
        _print_results([result])
        return 0

    max_parallel = args.max_parallel if args.max_parallel is not None else plan.max_parallel
    if max_parallel is not None and max_parallel < 1:
        raise UsageError("--max-parallel must be at least 1.")
    driver = BatchDriver(
        launcher,
        options,
        max_parallel=max_parallel,
        dashboard=BatchDashboard(enabled=not args.no_dashboard),
    )
    results = driver.run_all(args.list, BATCH_SCOPES[args.command])
    _print_results(results)
    return 0


def _print_results(results: Sequence[JobResult]) -> None:
    table = Table(title="Verification runs")
    table.add_column("Run", no_wrap=True, style="bold")
    table.add_column("State", no_wrap=True)
    table.add_column("Exit", no_wrap=True)
    table.add_column("Equivalent", no_wrap=True)
    table.add_column("Elapsed", no_wrap=True, style="dim")
    table.add_column("Trace", style="dim")
    for result in results:
        equivalent = "-" if result.equivalent is None else ("yes" if result.equivalent else "no")
        table.add_row(
            result.identifier,
            result.state,
            "-" if result.exit_code is None else str(result.exit_code),
            equivalent,
            f"{result.duration_s:.1f}s",
            str(result.trace_path),
        )
    Console().print(table)


__all__ = ["build_parser", "main"]


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
