import sys
from pathlib import Path
from textwrap import dedent
from typing import Callable

import pytest

from tsvc_verifiers.orchestrate.state import WorkspaceLayout


def populate_workspace(root: Path, benchmarks: list[str], *, compilers=("baseline", "gcc", "llvm")) -> WorkspaceLayout:
    for compiler in compilers:
        (root / compiler).mkdir(parents=True, exist_ok=True)
        for benchmark in benchmarks:
            (root / compiler / f"{benchmark}.s").write_text(f"  .text\n{benchmark}:\n  retq\n", encoding="utf-8")
    (root / "testcases").mkdir(parents=True, exist_ok=True)
    for corpus in ("256", "128", "16"):
        (root / "testcases" / corpus).write_text("CPU STATE\n", encoding="utf-8")
    (root / "rodata").write_text("", encoding="utf-8")
    return WorkspaceLayout(root)


@pytest.fixture
def workspace(tmp_path: Path) -> WorkspaceLayout:
    return populate_workspace(tmp_path / "ws", ["s000", "s176", "abc", "sum1d", "vpvts"])


@pytest.fixture
def make_workspace(tmp_path: Path) -> Callable[..., WorkspaceLayout]:
    def _make(benchmarks: list[str], *, name: str = "custom", **kwargs) -> WorkspaceLayout:
        return populate_workspace(tmp_path / name, benchmarks, **kwargs)

    return _make


@pytest.fixture
def make_script(tmp_path: Path) -> Callable[[str], list[str]]:
    """Write a throwaway Python program and return the argv prefix that runs it."""
    counter = {"n": 0}

    def _make(body: str) -> list[str]:
        counter["n"] += 1
        path = tmp_path / f"fake_oracle_{counter['n']}.py"
        path.write_text(dedent(body), encoding="utf-8")
        return [sys.executable, str(path)]

    return _make
