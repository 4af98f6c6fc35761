import asyncio
import json
from pathlib import Path

import pytest

from tsvc_verifiers.orchestrate.batch import BatchDriver, verify
from tsvc_verifiers.orchestrate.config import UsageError, VerifyOptions
from tsvc_verifiers.orchestrate.launcher import JobLauncher, LauncherSettings
from tsvc_verifiers.orchestrate.resolver import CompilerPair, MissingArtifact
from tsvc_verifiers.orchestrate.state import JobState

SLOW_ORACLE = """
import sys
import time
from pathlib import Path

rewrite = Path(sys.argv[sys.argv.index("--rewrite") + 1])
time.sleep(0.3)
print("Equivalent: " + ("no" if rewrite.parent.name == "llvm" else "yes"))
"""

HANGING_ORACLE = """
import time

print("VERSION: fake", flush=True)
time.sleep(60)
"""

ALL_S000_ABC = [
    "s000_baseline_gcc.0",
    "s000_baseline_llvm.0",
    "abc_baseline_gcc.0",
    "abc_baseline_llvm.0",
]


def _write_list(root: Path, text: str) -> Path:
    path = root / "benchmarks.txt"
    path.write_text(text, encoding="utf-8")
    return path


def test_run_all_dispatches_each_benchmark_and_compiler(workspace, make_script) -> None:
    launcher = JobLauncher(workspace, LauncherSettings(verify_command=make_script(SLOW_ORACLE)))
    driver = BatchDriver(launcher, VerifyOptions())
    list_path = _write_list(workspace.root, "s000\n\n   abc  \n")

    results = driver.run_all(list_path, "all")

    assert [result.identifier for result in results] == [
        "s000_baseline_gcc.0",
        "s000_baseline_llvm.0",
        "abc_baseline_gcc.0",
        "abc_baseline_llvm.0",
    ]
    assert all(result.state == JobState.completed for result in results)
    assert [result.equivalent for result in results] == [True, False, True, False]
    for result in results:
        assert result.trace_path.exists()
        assert workspace.artifacts(result.identifier).command_path.exists()


@pytest.mark.parametrize(("scope", "candidate"), [("gcc", "gcc"), ("llvm", "llvm")])
def test_run_all_single_compiler_scope(workspace, make_script, scope: str, candidate: str) -> None:
    launcher = JobLauncher(workspace, LauncherSettings(verify_command=make_script(SLOW_ORACLE)))
    list_path = _write_list(workspace.root, "s176\n")

    results = BatchDriver(launcher, VerifyOptions()).run_all(list_path, scope)

    assert [result.identifier for result in results] == [f"s176_baseline_{candidate}.0"]


def test_repeated_batches_never_overwrite(workspace, make_script) -> None:
    launcher = JobLauncher(workspace, LauncherSettings(verify_command=make_script(SLOW_ORACLE)))
    list_path = _write_list(workspace.root, "s000\n")
    driver = BatchDriver(launcher, VerifyOptions())

    first = driver.run_all(list_path, "gcc")
    second = driver.run_all(list_path, "gcc")

    assert first[0].identifier == "s000_baseline_gcc.0"
    assert second[0].identifier == "s000_baseline_gcc.1"
    assert [job.identifier for job in driver.jobs] == ["s000_baseline_gcc.1"]
    assert first[0].trace_path.read_text(encoding="utf-8").strip() == "Equivalent: yes"


def test_jobs_run_concurrently(workspace, make_script) -> None:
    script = make_script(
        """
        import os
        import sys
        import time
        from pathlib import Path

        marker_dir = Path(sys.argv[1])
        marker = marker_dir / str(os.getpid())
        marker.write_text("start")
        deadline = time.monotonic() + 10
        while len(list(marker_dir.iterdir())) < 4 and time.monotonic() < deadline:
            time.sleep(0.05)
        print("peers=" + str(len(list(marker_dir.iterdir()))))
        """
    )
    marker_dir = workspace.root / "markers"
    marker_dir.mkdir()
    launcher = JobLauncher(workspace, LauncherSettings(verify_command=[*script, str(marker_dir)]))
    list_path = _write_list(workspace.root, "s000\nabc\n")

    results = BatchDriver(launcher, VerifyOptions()).run_all(list_path, "all")

    assert all("peers=4" in result.trace_path.read_text(encoding="utf-8") for result in results)


def test_unknown_scope_is_usage_error(workspace) -> None:
    driver = BatchDriver(JobLauncher(workspace), VerifyOptions())

    with pytest.raises(UsageError):
        driver.plan(["s000"], "icc")


def test_missing_file_aborts_before_any_spawn(workspace, make_script) -> None:
    (workspace.root / "llvm" / "abc.s").unlink()
    launcher = JobLauncher(workspace, LauncherSettings(verify_command=make_script(SLOW_ORACLE)))
    list_path = _write_list(workspace.root, "s000\nabc\n")

    with pytest.raises(MissingArtifact) as excinfo:
        BatchDriver(launcher, VerifyOptions()).run_all(list_path, "all")

    assert excinfo.value.path == workspace.root / "llvm" / "abc.s"
    assert not workspace.traces_dir.exists()


def test_missing_list_file(workspace) -> None:
    driver = BatchDriver(JobLauncher(workspace), VerifyOptions())

    with pytest.raises(MissingArtifact):
        driver.run_all(workspace.root / "nope.txt", "all")


@pytest.mark.asyncio
async def test_max_parallel_limits_running_jobs(workspace, make_script, monkeypatch) -> None:
    launcher = JobLauncher(workspace, LauncherSettings(verify_command=make_script(SLOW_ORACLE)))
    running = 0
    peak = 0

    async def fake_run_job(config, identifier):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.05)
        running -= 1
        return await original(config, identifier)

    original = launcher.run_job
    monkeypatch.setattr(launcher, "run_job", fake_run_job)
    list_path = _write_list(workspace.root, "s000\nabc\ns176\n")

    results = await BatchDriver(launcher, VerifyOptions(), max_parallel=1).run_all_async(list_path, "all")

    assert len(results) == 6
    assert peak == 1


def test_verify_allocates_and_blocks(workspace, make_script) -> None:
    launcher = JobLauncher(workspace, LauncherSettings(verify_command=make_script(SLOW_ORACLE)))
    workspace.traces_dir.mkdir()
    (workspace.traces_dir / "s000_gcc_llvm.0").write_text("", encoding="utf-8")

    result = verify("s000", CompilerPair("gcc", "llvm"), VerifyOptions(target_bound=5), launcher)

    assert result.identifier == "s000_gcc_llvm.1"
    assert result.state == JobState.completed
    command = workspace.artifacts(result.identifier).command_path.read_text(encoding="utf-8")
    assert "--target_bound 5" in command
    assert "--rodata" in command


def _assert_cancelled_records(workspace, identifiers: list[str]) -> None:
    for identifier in identifiers:
        artifacts = workspace.artifacts(identifier)
        assert artifacts.command_path.exists(), identifier
        assert artifacts.stderr_path.exists(), identifier
        assert artifacts.timing_path.exists(), identifier
        record = json.loads(artifacts.result_path.read_text(encoding="utf-8"))
        assert record["state"] == JobState.cancelled, identifier


@pytest.mark.asyncio
async def test_cancelled_batch_leaves_record_for_queued_jobs(workspace, make_script) -> None:
    settings = LauncherSettings(verify_command=make_script(HANGING_ORACLE), term_timeout_s=2.0)
    driver = BatchDriver(JobLauncher(workspace, settings), VerifyOptions(), max_parallel=1)
    list_path = _write_list(workspace.root, "s000\nabc\n")

    batch = asyncio.create_task(driver.run_all_async(list_path, "all"))
    first = workspace.artifacts("s000_baseline_gcc.0")
    for _ in range(200):
        if first.command_path.exists():
            break
        await asyncio.sleep(0.05)
    await asyncio.sleep(0.5)
    batch.cancel()
    with pytest.raises(asyncio.CancelledError):
        await batch

    _assert_cancelled_records(workspace, ALL_S000_ABC)
    assert [job.identifier for job in driver.jobs] == ALL_S000_ABC
    assert all(job.state == JobState.cancelled for job in driver.jobs)


@pytest.mark.asyncio
async def test_batch_cancelled_before_jobs_start(workspace, make_script) -> None:
    launcher = JobLauncher(workspace, LauncherSettings(verify_command=make_script(HANGING_ORACLE)))
    driver = BatchDriver(launcher, VerifyOptions())
    list_path = _write_list(workspace.root, "s000\nabc\n")

    batch = asyncio.create_task(driver.run_all_async(list_path, "all"))
    await asyncio.sleep(0)
    batch.cancel()
    with pytest.raises(asyncio.CancelledError):
        await batch

    _assert_cancelled_records(workspace, ALL_S000_ABC)
    for identifier in ALL_S000_ABC:
        artifacts = workspace.artifacts(identifier)
        assert artifacts.trace_path.read_text(encoding="utf-8") == ""
        assert "before the oracle started" in artifacts.stderr_path.read_text(encoding="utf-8")
