# === NAVMAP v1 ===
# {
#   "module": "RegistryOps.PackageRegistry.archives",
#   "purpose": "Reproducible archive creation and hardened extraction",
#   "sections": [
#     {"id": "formats", "name": "Format dispatch", "anchor": "FMT", "kind": "constants"},
#     {"id": "timestamps", "name": "Timestamps", "anchor": "TS", "kind": "helpers"},
#     {"id": "create", "name": "Archive creation", "anchor": "CRE", "kind": "api"},
#     {"id": "extract", "name": "Safe extraction", "anchor": "EXT", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Archive codec for package payloads.

Archives built here are reproducible: members are sorted, ownership is reset,
and every timestamp (including the gzip header) is pinned, so the same tree
and timestamp always give the same bytes.  Extraction refuses absolute paths,
``..`` components, links and device nodes, and rejects archives whose
uncompressed size exceeds the configured compression ratio.
"""

from __future__ import annotations

import gzip
import logging
import lzma
import os
import shutil
import stat
import tarfile
import time
import zipfile
import zlib
from contextlib import ExitStack
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Dict, List, Optional, Sequence, Tuple

from .errors import ArchiveError, ArgumentError, UnsupportedFormatError
from .settings import RegistrySettings

__all__ = [
    "ARCHIVE_SUFFIXES",
    "archive_format",
    "is_archive",
    "archive_timestamp",
    "set_tree_mtime",
    "create_archive",
    "extract_archive",
    "unpack_archives",
]

LOGGER = logging.getLogger(__name__)

# ============================================================================
# FORMAT DISPATCH (FMT)
# ============================================================================

# suffix -> (container, compression); longest suffixes first
_FORMATS: Tuple[Tuple[str, str, str], ...] = (
    (".tar.gz", "tar", "gz"),
    (".tar.bz2", "tar", "bz2"),
    (".tar.xz", "tar", "xz"),
    (".tgz", "tar", "gz"),
    (".tbz2", "tar", "bz2"),
    (".tbz", "tar", "bz2"),
    (".txz", "tar", "xz"),
    (".tar", "tar", ""),
    (".zip", "zip", ""),
)

ARCHIVE_SUFFIXES = tuple(suffix for suffix, _, _ in _FORMATS)

DEFAULT_MAX_COMPRESSION_RATIO = 100.0

_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


def archive_format(path: Path) -> Optional[Tuple[str, str]]:
    """Return ``(container, compression)`` for ``path`` or ``None`` when unsupported."""

    lower_name = Path(path).name.lower()
    for suffix, container, compression in _FORMATS:
        if lower_name.endswith(suffix):
            return container, compression
    return None


def is_archive(path: Path) -> bool:
    return archive_format(path) is not None


def _require_format(path: Path) -> Tuple[str, str]:
    fmt = archive_format(path)
    if fmt is None:
        raise UnsupportedFormatError(
            f"unsupported archive format: {path} (expected one of {', '.join(ARCHIVE_SUFFIXES)})"
        )
    return fmt


# ============================================================================
# TIMESTAMPS (TS)
# ============================================================================


def archive_timestamp(settings: RegistrySettings) -> int:
    """Pick the timestamp archived files are pinned to.

    ``CI_COMMIT_TIMESTAMP`` (ISO-8601) wins, then ``GIT_COMMIT_TIMESTAMP``
    (epoch seconds), then the current time.
    """

    if settings.commit_timestamp:
        text = settings.commit_timestamp.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ArgumentError(
                f"invalid CI_COMMIT_TIMESTAMP {settings.commit_timestamp!r}"
            ) from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp())
    if settings.git_commit_timestamp is not None:
        return int(settings.git_commit_timestamp)
    return int(time.time())


def set_tree_mtime(root: Path, timestamp: int) -> int:
    """Set atime and mtime of ``root`` and everything below it; return the entry count."""

    root = Path(root)
    if not root.is_dir():
        raise ArgumentError(f"not a directory: {root}")
    count = 0
    for path in [root, *root.rglob("*")]:
        os.utime(path, (timestamp, timestamp), follow_symlinks=False)
        count += 1
    return count


# ============================================================================
# ARCHIVE CREATION (CRE)
# ============================================================================


def _collect_members(
    src_dir: Path, patterns: Sequence[str], exclude: Optional[Path]
) -> List[Tuple[str, Path]]:
    if not patterns:
        raise ArgumentError("no file patterns given")
    base = os.path.normpath(src_dir.absolute())
    members: Dict[str, Path] = {}
    for pattern in patterns:
        matches = sorted(src_dir.glob(pattern))
        if not matches:
            raise ArgumentError(f"pattern {pattern!r} matches nothing in {src_dir}")
        for match in matches:
            candidates = [match]
            if match.is_dir():
                candidates.extend(match.rglob("*"))
            for candidate in candidates:
                if exclude is not None and candidate.resolve() == exclude:
                    continue
                relative = os.path.relpath(os.path.normpath(candidate.absolute()), base)
                name = Path(relative).as_posix()
                if name == ".." or name.startswith("../"):
                    raise ArgumentError(f"{candidate} is outside {src_dir}")
                if name == ".":
                    continue
                members[name] = candidate
    return sorted(members.items())


def _normalize_tarinfo(info: tarfile.TarInfo, timestamp: int) -> tarfile.TarInfo:
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    info.mtime = timestamp
    return info


def _write_tar(
    stream: BinaryIO, mode: str, members: List[Tuple[str, Path]], timestamp: int
) -> None:
    with tarfile.open(
        fileobj=stream, mode=mode, format=tarfile.GNU_FORMAT, dereference=True
    ) as tar:
        for name, path in members:
            info = _normalize_tarinfo(tar.gettarinfo(str(path), arcname=name), timestamp)
            if info.isfile():
                with path.open("rb") as handle:
                    tar.addfile(info, handle)
            elif info.isdir():
                tar.addfile(info)
            else:
                raise ArgumentError(f"refusing to archive special file {path}")


def _write_zip(
    archive_path: Path, members: List[Tuple[str, Path]], timestamp: int
) -> None:
    date_time = max(time.gmtime(timestamp)[:6], _ZIP_EPOCH)
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, path in members:
            mode = path.stat().st_mode
            if stat.S_ISDIR(mode):
                info = zipfile.ZipInfo(name + "/", date_time=date_time)
                info.create_system = 3
                info.external_attr = (stat.S_IMODE(mode) | stat.S_IFDIR) << 16 | 0x10
                archive.writestr(info, b"")
            elif stat.S_ISREG(mode):
                info = zipfile.ZipInfo(name, date_time=date_time)
                info.create_system = 3
                info.external_attr = (stat.S_IMODE(mode) | stat.S_IFREG) << 16
                info.compress_type = zipfile.ZIP_DEFLATED
                with path.open("rb") as source, archive.open(info, "w", force_zip64=True) as target:
                    shutil.copyfileobj(source, target)
            else:
                raise ArgumentError(f"refusing to archive special file {path}")


def create_archive(
    archive_path: Path,
    src_dir: Path,
    patterns: Sequence[str],
    *,
    timestamp: int,
) -> List[str]:
    """Write a reproducible archive of ``patterns`` (globs relative to ``src_dir``).

    Directories matched by a pattern are added recursively.  The archive
    format follows the extension of ``archive_path``.

    Returns:
        The sorted member names written to the archive.

    Raises:
        UnsupportedFormatError: For an unknown extension.
        ArgumentError: If ``src_dir`` is not a directory or a pattern matches nothing.
    """

    archive_path = Path(archive_path)
    src_dir = Path(src_dir)
    container, compression = _require_format(archive_path)
    if not src_dir.is_dir():
        raise ArgumentError(f"not a directory: {src_dir}")
    members = _collect_members(src_dir, patterns, archive_path.resolve())
    archive_path.parent.mkdir(parents=True, exist_ok=True)

    if container == "zip":
        _write_zip(archive_path, members, timestamp)
    else:
        with ExitStack() as stack:
            stream: BinaryIO = stack.enter_context(archive_path.open("wb"))
            mode = "w"
            if compression == "gz":
                stream = stack.enter_context(
                    gzip.GzipFile(filename="", mode="wb", fileobj=stream, mtime=0)
                )
            elif compression:
                mode = f"w:{compression}"
            _write_tar(stream, mode, members, timestamp)

    LOGGER.info(
        "created %s with %d member(s)",
        archive_path,
        len(members),
        extra={"stage": "archive", "archive": str(archive_path), "members": len(members)},
    )
    return [name for name, _ in members]


# ============================================================================
# SAFE EXTRACTION (EXT)
# ============================================================================


def _validate_member_path(member_name: str) -> Path:
    """Validate archive member paths to prevent traversal attacks."""

    normalized = member_name.replace("\\", "/")
    relative = PurePosixPath(normalized)
    if relative.is_absolute() or (normalized[1:2] == ":"):
        raise ArchiveError(f"unsafe absolute path in archive: {member_name}")
    parts = [part for part in relative.parts if part != "."]
    if not parts:
        raise ArchiveError(f"empty path in archive: {member_name!r}")
    if ".." in parts:
        raise ArchiveError(f"unsafe path in archive: {member_name}")
    return Path(*parts)


def _check_compression_ratio(
    *, total_uncompressed: int, compressed_size: int, archive: Path, limit: float
) -> None:
    """Ensure compressed archives do not expand beyond the permitted ratio."""

    if compressed_size <= 0:
        return
    ratio = total_uncompressed / float(compressed_size)
    if ratio > limit:
        LOGGER.error(
            "archive compression ratio too high",
            extra={
                "stage": "extract",
                "archive": str(archive),
                "ratio": round(ratio, 2),
                "limit": limit,
            },
        )
        raise ArchiveError(
            f"archive {archive} expands to {total_uncompressed} bytes, "
            f"exceeding {limit:g}:1 compression ratio"
        )


def _extract_zip(zip_path: Path, destination: Path, limit: float) -> List[Path]:
    extracted: List[Path] = []
    try:
        with zipfile.ZipFile(zip_path) as archive:
            members = archive.infolist()
            safe_members: List[Tuple[zipfile.ZipInfo, Path, int]] = []
            total_uncompressed = 0
            for member in members:
                member_path = _validate_member_path(member.filename)
                mode = (member.external_attr >> 16) & 0xFFFF
                if stat.S_ISLNK(mode):
                    raise ArchiveError(f"unsafe link in archive: {member.filename}")
                if stat.S_IFMT(mode) and not (stat.S_ISREG(mode) or stat.S_ISDIR(mode)):
                    raise ArchiveError(f"special file in archive: {member.filename}")
                if not member.is_dir():
                    total_uncompressed += int(member.file_size)
                safe_members.append((member, member_path, stat.S_IMODE(mode)))
            _check_compression_ratio(
                total_uncompressed=total_uncompressed,
                compressed_size=zip_path.stat().st_size,
                archive=zip_path,
                limit=limit,
            )
            for member, member_path, permissions in safe_members:
                target_path = destination / member_path
                if member.is_dir():
                    target_path.mkdir(parents=True, exist_ok=True)
                    continue
                target_path.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(member, "r") as source, target_path.open("wb") as target:
                    shutil.copyfileobj(source, target)
                if permissions:
                    target_path.chmod(permissions)
                extracted.append(target_path)
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"failed to extract zip archive {zip_path}: {exc}") from exc
    return extracted


def _extract_tar(tar_path: Path, destination: Path, limit: float) -> List[Path]:
    extracted: List[Path] = []
    try:
        with tarfile.open(tar_path, mode="r:*") as archive:
            safe_members: List[Tuple[tarfile.TarInfo, Path]] = []
            total_uncompressed = 0
            for member in archive.getmembers():
                member_path = _validate_member_path(member.name)
                if member.isdir():
                    safe_members.append((member, member_path))
                    continue
                if member.islnk() or member.issym():
                    raise ArchiveError(f"unsafe link in archive: {member.name}")
                if member.isdev():
                    raise ArchiveError(f"special file in archive: {member.name}")
                if not member.isfile():
                    raise ArchiveError(f"unsupported tar member type: {member.name}")
                total_uncompressed += int(member.size)
                safe_members.append((member, member_path))
            _check_compression_ratio(
                total_uncompressed=total_uncompressed,
                compressed_size=tar_path.stat().st_size,
                archive=tar_path,
                limit=limit,
            )
            for member, member_path in safe_members:
                target_path = destination / member_path
                if member.isdir():
                    target_path.mkdir(parents=True, exist_ok=True)
                    continue
                target_path.parent.mkdir(parents=True, exist_ok=True)
                extracted_file = archive.extractfile(member)
                if extracted_file is None:
                    raise ArchiveError(f"failed to extract member: {member.name}")
                with extracted_file as source, target_path.open("wb") as target:
                    shutil.copyfileobj(source, target)
                target_path.chmod(stat.S_IMODE(member.mode) or 0o644)
                extracted.append(target_path)
    except (tarfile.TarError, EOFError, gzip.BadGzipFile, lzma.LZMAError, zlib.error) as exc:
        raise ArchiveError(f"failed to extract tar archive {tar_path}: {exc}") from exc
    return extracted


def extract_archive(
    archive: Path,
    dest: Path,
    *,
    max_compression_ratio: float = DEFAULT_MAX_COMPRESSION_RATIO,
) -> List[Path]:
    """Extract ``archive`` into ``dest`` and return the regular files written.

    Raises:
        UnsupportedFormatError: For an unknown extension.
        ArchiveError: If the archive is corrupt, unsafe, or too highly compressed.
    """

    archive = Path(archive)
    dest = Path(dest)
    container, _ = _require_format(archive)
    if not archive.is_file():
        raise ArchiveError(f"archive not found: {archive}")
    dest.mkdir(parents=True, exist_ok=True)
    if container == "zip":
        extracted = _extract_zip(archive, dest, max_compression_ratio)
    else:
        extracted = _extract_tar(archive, dest, max_compression_ratio)
    LOGGER.debug(
        "extracted %s",
        archive,
        extra={"stage": "extract", "archive": str(archive), "files": len(extracted)},
    )
    return extracted


def unpack_archives(
    src_dir: Path,
    dest_dir: Path,
    *,
    max_compression_ratio: float = DEFAULT_MAX_COMPRESSION_RATIO,
) -> List[Path]:
    """Extract every archive at the top level of ``src_dir`` into ``dest_dir``.

    Each archive is removed once extracted.  Returns the archive paths handled.
    """

    unpacked: List[Path] = []
    for path in sorted(Path(src_dir).iterdir()):
        if not path.is_file() or not is_archive(path):
            continue
        LOGGER.info("unpacking %s", path.name, extra={"stage": "extract", "archive": str(path)})
        extract_archive(path, dest_dir, max_compression_ratio=max_compression_ratio)
        path.unlink()
        unpacked.append(path)
    return unpacked
