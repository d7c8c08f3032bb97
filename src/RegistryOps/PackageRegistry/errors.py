"""Exception hierarchy shared across project resolution, transfers, and pruning.

The package registry client talks to a remote API, writes artifacts to disk,
and deletes package versions.  Every failure mode is fatal for the command
that hit it, so this module groups the failures into a small hierarchy that
lets the CLI print a single ``FATAL`` line while callers that need finer
control (tests, the retention engine's per-package isolation) can still react
to specific subclasses.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "PackageRegistryError",
    "ArgumentError",
    "ResolutionError",
    "HttpError",
    "MalformedResponseError",
    "PackageNotFoundError",
    "IntegrityError",
    "PolicyError",
    "UnsupportedFormatError",
    "ArchiveError",
]


class PackageRegistryError(RuntimeError):
    """Base exception for every package registry client failure."""


class ArgumentError(PackageRegistryError):
    """Raised when command arguments or configuration values are missing or malformed."""


class ResolutionError(PackageRegistryError):
    """Raised when a project reference does not map to a visible registry project."""


class HttpError(PackageRegistryError):
    """Raised when a registry call fails, times out, or answers outside 2xx/3xx."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.body = body


class MalformedResponseError(PackageRegistryError):
    """Raised when a registry payload cannot be decoded into the expected records."""


class PackageNotFoundError(PackageRegistryError):
    """Raised when no package (or package file) matches the requested name/version."""


class IntegrityError(PackageRegistryError):
    """Raised when a downloaded file does not match its registry-reported checksum."""

    def __init__(self, message: str, *, path: str, expected: str, actual: str) -> None:
        super().__init__(message)
        self.path = path
        self.expected = expected
        self.actual = actual


class PolicyError(PackageRegistryError):
    """Raised when a retention policy is invalid (non-positive age, bad pattern)."""


class UnsupportedFormatError(PackageRegistryError):
    """Raised when an archive extension is not in the supported dispatch table."""


class ArchiveError(PackageRegistryError):
    """Raised when an archive is corrupt or contains unsafe members."""


# === NAVMAP v1 ===
# {
#   "module": "RegistryOps.PackageRegistry.errors",
#   "purpose": "Define the exception hierarchy used across resolution, transfer, and prune",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "network", "name": "Resolution & HTTP Errors", "anchor": "NET", "kind": "api"},
#     {"id": "integrity", "name": "Integrity & Archive Errors", "anchor": "INT", "kind": "api"},
#     {"id": "policy", "name": "Policy & Argument Errors", "anchor": "POL", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
