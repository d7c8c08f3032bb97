# === NAVMAP v1 ===
# {
#   "module": "RegistryOps.PackageRegistry.transfer",
#   "purpose": "Download and upload generic package files with SHA-256 verification",
#   "sections": [
#     {"id": "checksums", "name": "Checksums", "anchor": "SUM", "kind": "helpers"},
#     {"id": "fetch", "name": "fetch_package", "anchor": "function-fetch-package", "kind": "function"},
#     {"id": "upload", "name": "upload_files", "anchor": "function-upload-files", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Fetch/Upload engine for generic package files.

Downloads are verified against the ``file_sha256`` the registry reports for
each file.  A mismatch raises :class:`IntegrityError` and leaves the bad file
where it was written so the operator can inspect it.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path, PurePosixPath
from typing import Any, List, Optional, Sequence

from .catalog import PackageCatalog, generic_file_endpoint
from .errors import ArgumentError, IntegrityError
from .net import RegistryGateway
from .projects import ProjectResolver, normalize_project_ref

__all__ = [
    "DRY_RUN_MARKER",
    "sha256_file",
    "verify_checksum",
    "default_package_name",
    "fetch_package",
    "upload_files",
]

LOGGER = logging.getLogger(__name__)

DRY_RUN_MARKER = "[DRY-RUN]"

# ============================================================================
# CHECKSUMS (SUM)
# ============================================================================


def sha256_file(path: Path) -> str:
    """Compute the SHA-256 digest for the provided file."""

    hasher = hashlib.sha256()
    with path.open("rb") as stream:
        for chunk in iter(lambda: stream.read(1 << 20), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def verify_checksum(path: Path, expected: str) -> str:
    """Return the digest of ``path`` or raise :class:`IntegrityError` when it differs."""

    actual = sha256_file(path)
    wanted = expected.strip().lower()
    if actual != wanted:
        raise IntegrityError(
            f"checksum mismatch for {path}: expected {wanted}, got {actual}",
            path=str(path),
            expected=wanted,
            actual=actual,
        )
    return actual


def default_package_name(project: str) -> str:
    """Return the last path component of ``project`` (``group/tool`` -> ``tool``)."""

    return PurePosixPath(normalize_project_ref(project)).name


# ============================================================================
# FETCH
# ============================================================================


def fetch_package(
    gateway: RegistryGateway,
    catalog: PackageCatalog,
    project: str,
    package: Optional[str],
    version: Optional[str],
    dest_dir: Path,
) -> List[Path]:
    """Download every file of a package version into ``dest_dir``.

    Args:
        gateway: Gateway used for the file downloads.
        catalog: Catalog used to select the package version and list its files.
        project: ``group/repo`` reference.
        package: Package name; defaults to the last component of ``project``.
        version: Exact version; the newest version is used when omitted.
        dest_dir: Destination directory, created when missing.

    Returns:
        Paths of the verified files in registry order.

    Raises:
        PackageNotFoundError: If no matching version or no files exist.
        HttpError: If a download fails.
        IntegrityError: If a downloaded file does not match its checksum.
    """

    name = package or default_package_name(project)
    info = catalog.info(project, name, version)
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    fetched: List[Path] = []
    for record in info.files:
        target = dest_dir / record.file_name
        endpoint = generic_file_endpoint(
            info.project_id, info.package.name, info.package.version, record.file_name
        )
        LOGGER.info(
            "fetching %s/%s/%s",
            info.package.name,
            info.package.version,
            record.file_name,
            extra={"stage": "fetch", "package": info.package.name, "version": info.package.version},
        )
        written = gateway.download(endpoint, target)
        verify_checksum(target, record.file_sha256)
        LOGGER.debug(
            "verified %s (%d bytes, sha256 %s)",
            target,
            written,
            record.file_sha256,
            extra={"stage": "fetch"},
        )
        fetched.append(target)
    return fetched


# ============================================================================
# UPLOAD
# ============================================================================


def upload_files(
    gateway: RegistryGateway,
    resolver: ProjectResolver,
    project: str,
    package: str,
    version: str,
    files: Sequence[Path],
    *,
    destructive: bool,
) -> List[Any]:
    """PUT ``files`` to the generic package ``package``/``version`` in input order.

    All paths are checked before anything is sent.  The first failing upload
    raises and later files are not attempted.  Without ``destructive`` every
    upload is only logged.
    """

    if not package:
        raise ArgumentError("missing package name")
    if not version:
        raise ArgumentError("missing package version")
    if not files:
        raise ArgumentError("no files to upload")
    paths = [Path(item) for item in files]
    for path in paths:
        if not path.is_file():
            raise ArgumentError(f"not a regular file: {path}")

    project_id = resolver.resolve(project)
    answers: List[Any] = []
    for path in paths:
        endpoint = generic_file_endpoint(project_id, package, version, path.name)
        if not destructive:
            LOGGER.info(
                "%s would upload %s to %s/%s",
                DRY_RUN_MARKER,
                path,
                package,
                version,
                extra={"stage": "upload", "dry_run": True},
            )
            continue
        LOGGER.info(
            "uploading %s to %s/%s",
            path,
            package,
            version,
            extra={"stage": "upload", "package": package, "version": version},
        )
        answers.append(gateway.upload(endpoint, path, params={"select": "package_file"}))
    return answers
