"""Parsing helpers for the textual output of the verify and sandbox oracles."""

from __future__ import annotations

from dataclasses import dataclass
import re

ABNORMAL_MARKER = "Control returned abnormally"

_EQUIVALENT_RE = re.compile(r"^Equivalent:\s*(yes|no)\s*$", re.MULTILINE)
_ERROR_RE = re.compile(r"^Encountered error:[ \t]*\n(?P<message>.+?)(?=\n[ \t]*\n|\Z)", re.MULTILINE | re.DOTALL)
_SIGNAL_RE = re.compile(r"Control returned abnormally with signal (?P<code>\d+) \[(?P<name>[^\]]*)\]")


@dataclass(frozen=True)
class VerifyOutcome:
    equivalent: bool | None
    error: str | None = None


def parse_verify_output(text: str) -> VerifyOutcome:
    """Extract the equivalence verdict (or error) from a verify trace.

    ``equivalent`` stays ``None`` when the oracle never printed a verdict, e.g.
    because it crashed or was killed.
    """
    error_match = _ERROR_RE.search(text)
    if error_match:
        return VerifyOutcome(equivalent=None, error=error_match.group("message").strip() or None)
    matches = _EQUIVALENT_RE.findall(text)
    if not matches:
        return VerifyOutcome(equivalent=None)
    return VerifyOutcome(equivalent=matches[-1] == "yes")


def is_abnormal(text: str) -> bool:
    return ABNORMAL_MARKER in text


def abnormal_signal(text: str) -> str | None:
    """Return ``"<code> [<name>]"`` for an abnormal sandbox run, if reported."""
    match = _SIGNAL_RE.search(text)
    if not match:
        return None
    return f"{match.group('code')} [{match.group('name')}]"


__all__ = ["ABNORMAL_MARKER", "VerifyOutcome", "abnormal_signal", "is_abnormal", "parse_verify_output"]
