"""Resolve oracle invocation parameters for one benchmark and compiler pair."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from tsvc_verifiers.orchestrate.config import VerifyOptions
from tsvc_verifiers.orchestrate.state import WorkspaceLayout

BASELINE_COMPILER = "baseline"

DEFAULT_DEF_INS: tuple[str, ...] = ("%rdi", "%rbp", "%rsp", "%rbx", "%r12", "%r13", "%r14", "%r15")
DEFAULT_LIVE_OUTS: tuple[str, ...] = ("%rbx", "%rsp", "%rbp", "%r12", "%r13", "%r14", "%r15")

LARGE_CORPUS = "256"
SMALL_CORPUS = "128"
SWEEP_CORPUS = "16"

# s176 has a doubly-nested loop; the larger corpus makes it far too slow.
CORPUS_OVERRIDES: Mapping[str, str] = {
    "s176": SMALL_CORPUS,
}

LIVE_OUT_OVERRIDES: Mapping[str, tuple[str, ...]] = {
    "sum1d": ("%rax",) + DEFAULT_LIVE_OUTS,
}

DEF_IN_OVERRIDES: Mapping[str, tuple[str, ...]] = {
    "vpvts": ("%rdi", "%rsi") + DEFAULT_DEF_INS[1:],
}

RODATA_COMPILERS: Mapping[str, frozenset[str]] = {
    "s000": frozenset({"gcc", "llvm"}),
    "s1112": frozenset({"gcc", "llvm"}),
    "s116": frozenset({"gcc", "llvm"}),
    "s1221": frozenset({"gcc"}),
    "s122": frozenset({"gcc"}),
    "s315": frozenset({"baseline", "gcc", "llvm"}),
    "s318": frozenset({"baseline", "gcc", "llvm"}),
    "s3251": frozenset({"llvm"}),
    "s351": frozenset({"baseline", "gcc", "llvm"}),
    "s452": frozenset({"gcc"}),
    "s453": frozenset({"gcc"}),
    "stacktest": frozenset({"gcc", "llvm"}),
    "testing": frozenset({"baseline", "gcc", "llvm"}),
}

ASSUMPTION = "(t_%rdi<=15)"


class MissingArtifact(FileNotFoundError):
    """Raised when a file required to launch a run does not exist."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Could not find file {path}")
        self.path = path


@dataclass(frozen=True)
class CompilerPair:
    baseline: str
    candidate: str

    def prefix(self, benchmark: str) -> str:
        return f"{benchmark}_{self.baseline}_{self.candidate}"


@dataclass(frozen=True)
class BenchmarkSpec:
    name: str
    live_outs: tuple[str, ...] = DEFAULT_LIVE_OUTS
    def_ins: tuple[str, ...] = DEFAULT_DEF_INS
    rodata_compilers: frozenset[str] = frozenset()

    @classmethod
    def lookup(cls, name: str) -> "BenchmarkSpec":
        return cls(
            name=name,
            live_outs=LIVE_OUT_OVERRIDES.get(name, DEFAULT_LIVE_OUTS),
            def_ins=DEF_IN_OVERRIDES.get(name, DEFAULT_DEF_INS),
            rodata_compilers=RODATA_COMPILERS.get(name, frozenset()),
        )

    @property
    def corpus(self) -> str:
        return corpus_for(self.name)

    def requires_rodata(self, pair: CompilerPair) -> bool:
        return pair.baseline in self.rodata_compilers or pair.candidate in self.rodata_compilers


@dataclass(frozen=True)
class RunConfig:
    benchmark: str
    pair: CompilerPair
    target: Path
    rewrite: Path
    testcases: Path
    target_bound: int
    rewrite_bound: int
    live_outs: tuple[str, ...]
    def_ins: tuple[str, ...]
    assume: str = ASSUMPTION
    shadow_registers: bool = False
    rodata: Path | None = None
    strategy: str = "ddec"
    solver: str = "z3"
    alias_strategy: str = "flat"
    max_jumps: int = 129000

    @property
    def prefix(self) -> str:
        return self.pair.prefix(self.benchmark)

    def oracle_args(self) -> list[str]:
        """Serialize into the verify oracle's command-line form (program excluded)."""
        args = [
            "--strategy", self.strategy,
            "--solver", self.solver,
            "--alias_strategy", self.alias_strategy,
            "--target", str(self.target),
            "--rewrite", str(self.rewrite),
            "--testcases", str(self.testcases),
            "--vector_invariants",
            "--heap_out",
            "--max_jumps", str(self.max_jumps),
            "--live_out", format_regset(self.live_outs),
            "--def_in", format_regset(self.def_ins),
            "--target_bound", str(self.target_bound),
            "--rewrite_bound", str(self.rewrite_bound),
            "--assume", self.assume,
        ]
        if self.shadow_registers:
            args.append("--shadow_registers")
        if self.rodata is not None:
            args.extend(["--rodata", str(self.rodata)])
        return args


def format_regset(registers: tuple[str, ...]) -> str:
    return "{ " + " ".join(registers) + " }"


def corpus_for(benchmark: str) -> str:
    return CORPUS_OVERRIDES.get(benchmark, LARGE_CORPUS)


def require_file(path: Path) -> Path:
    if not path.exists():
        raise MissingArtifact(path)
    return path


def resolve(
    benchmark: str,
    pair: CompilerPair,
    options: VerifyOptions,
    layout: WorkspaceLayout,
) -> RunConfig:
    """Compute the full oracle configuration, validating every input file first."""
    spec = BenchmarkSpec.lookup(benchmark)
    target = require_file(layout.object_path(pair.baseline, benchmark))
    rewrite = require_file(layout.object_path(pair.candidate, benchmark))
    testcases = require_file(layout.corpus_path(spec.corpus))
    rodata = require_file(layout.rodata_path) if spec.requires_rodata(pair) else None
    return RunConfig(
        benchmark=benchmark,
        pair=pair,
        target=target,
        rewrite=rewrite,
        testcases=testcases,
        target_bound=options.target_bound,
        rewrite_bound=options.rewrite_bound,
        live_outs=spec.live_outs,
        def_ins=spec.def_ins,
        shadow_registers=options.shadow_registers,
        rodata=rodata,
    )


__all__ = [
    "BASELINE_COMPILER",
    "BenchmarkSpec",
    "CORPUS_OVERRIDES",
    "CompilerPair",
    "DEFAULT_DEF_INS",
    "DEFAULT_LIVE_OUTS",
    "DEF_IN_OVERRIDES",
    "LARGE_CORPUS",
    "LIVE_OUT_OVERRIDES",
    "MissingArtifact",
    "RODATA_COMPILERS",
    "RunConfig",
    "SMALL_CORPUS",
    "SWEEP_CORPUS",
    "corpus_for",
    "format_regset",
    "require_file",
    "resolve",
]
