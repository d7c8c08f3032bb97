"""Track temporary paths created by a command and remove them on exit."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List

__all__ = ["CleanupRegistry"]

LOGGER = logging.getLogger(__name__)


class CleanupRegistry:
    """Ordered collection of temporary files and directories owned by one command.

    ``perform`` is idempotent: paths are forgotten once they have been handled,
    so calling it from both an error path and the context close hook is safe.
    When ``enabled`` is false the paths are kept and listed in a warning.
    """

    def __init__(self, *, enabled: bool = True) -> None:
        self.enabled = enabled
        self._paths: List[Path] = []

    @property
    def paths(self) -> List[Path]:
        return list(self._paths)

    def add(self, path: Path) -> Path:
        """Register ``path`` for removal and return it unchanged."""

        path = Path(path)
        if path not in self._paths:
            self._paths.append(path)
        return path

    def perform(self) -> None:
        if not self._paths:
            return
        paths, self._paths = self._paths, []
        if not self.enabled:
            LOGGER.warning(
                "not cleaning up: %s",
                ", ".join(str(path) for path in paths),
                extra={"stage": "cleanup"},
            )
            return
        for path in reversed(paths):
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path, ignore_errors=True)
            elif path.exists() or path.is_symlink():
                path.unlink()
            else:
                continue
            LOGGER.debug("removed %s", path, extra={"stage": "cleanup"})
