"""Install flow: fetch a package version, unpack its archives, merge into a directory."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from .archives import DEFAULT_MAX_COMPRESSION_RATIO, unpack_archives
from .catalog import PackageCatalog
from .cleanup import CleanupRegistry
from .errors import ArgumentError
from .net import RegistryGateway
from .transfer import fetch_package

__all__ = ["install_package"]

LOGGER = logging.getLogger(__name__)


def _ensure_writable_dir(path: Path) -> Path:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ArgumentError(f"can't create install directory {path}: {exc}") from exc
    if not path.is_dir():
        raise ArgumentError(f"install destination is not a directory: {path}")
    if not os.access(path, os.W_OK | os.X_OK):
        raise ArgumentError(f"install directory is not writable: {path}")
    return path


def install_package(
    gateway: RegistryGateway,
    catalog: PackageCatalog,
    project: str,
    package: Optional[str],
    version: Optional[str],
    install_dir: Path,
    cleanup: CleanupRegistry,
    *,
    max_compression_ratio: float = DEFAULT_MAX_COMPRESSION_RATIO,
) -> List[Path]:
    """Fetch ``package``/``version`` and install its contents into ``install_dir``.

    Files are downloaded and verified in a scratch directory, recognised
    archives are unpacked (and dropped), and the resulting tree is merged into
    ``install_dir`` over any existing content.  Both scratch directories are
    registered with ``cleanup``.

    Returns:
        The installed top-level paths inside ``install_dir``.
    """

    install_dir = _ensure_writable_dir(Path(install_dir))
    download_dir = cleanup.add(Path(tempfile.mkdtemp(prefix="pkgregistry-download-")))
    unpack_dir = cleanup.add(Path(tempfile.mkdtemp(prefix="pkgregistry-unpack-")))

    fetch_package(gateway, catalog, project, package, version, download_dir)
    unpack_archives(download_dir, unpack_dir, max_compression_ratio=max_compression_ratio)
    for remaining in sorted(download_dir.iterdir()):
        shutil.move(str(remaining), str(unpack_dir / remaining.name))

    installed: List[Path] = []
    for entry in sorted(unpack_dir.iterdir()):
        target = install_dir / entry.name
        if entry.is_dir() and not entry.is_symlink():
            shutil.copytree(entry, target, dirs_exist_ok=True)
        else:
            shutil.copy2(entry, target)
        installed.append(target)
    LOGGER.info(
        "installed %d item(s) into %s",
        len(installed),
        install_dir,
        extra={"stage": "install", "install_dir": str(install_dir)},
    )
    return installed
