"""Collision-free run identifier allocation."""

from __future__ import annotations

from pathlib import Path
import logging
import os

logger = logging.getLogger(__name__)


class ArtifactNamer:
    """Allocate ``{prefix}.{n}`` identifiers under a trace directory.

    Each candidate is claimed by creating its trace file with ``O_EXCL``, so two
    allocators racing on the same prefix (coroutines, threads or separate
    processes) can never both win the same identifier.
    """

    def __init__(self, traces_dir: Path) -> None:
        self._traces_dir = traces_dir

    def allocate(self, prefix: str) -> str:
        self._traces_dir.mkdir(parents=True, exist_ok=True)
        num = 0
        while True:
            identifier = f"{prefix}.{num}"
            try:
                fd = os.open(self._traces_dir / identifier, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                num += 1
                continue
            os.close(fd)
            logger.debug("Allocated run identifier %s", identifier)
            return identifier


__all__ = ["ArtifactNamer"]
