"""Operator client for a GitLab-style generic package registry.

The package resolves project paths to registry ids, lists package versions,
fetches and verifies artifacts, uploads new ones, builds reproducible archives,
and prunes old versions under a retention policy.  Public names are imported
lazily so that ``python -m RegistryOps.PackageRegistry`` and the CLI only pay
for the modules a command actually needs.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any, Dict

__version__ = "0.1.0"

_EXPORTS: Dict[str, str] = {
    "PackageRegistryError": "errors",
    "ArgumentError": "errors",
    "ResolutionError": "errors",
    "HttpError": "errors",
    "MalformedResponseError": "errors",
    "PackageNotFoundError": "errors",
    "IntegrityError": "errors",
    "PolicyError": "errors",
    "UnsupportedFormatError": "errors",
    "ArchiveError": "errors",
    "RegistrySettings": "settings",
    "load_settings": "settings",
    "RegistryGateway": "net",
    "ProjectIdCache": "projects",
    "ProjectResolver": "projects",
    "walk_pages": "pagination",
    "PackageRecord": "records",
    "PackageFileRecord": "records",
    "PackageCatalog": "catalog",
    "fetch_package": "transfer",
    "upload_files": "transfer",
    "install_package": "install",
    "RetentionPolicy": "retention",
    "RetentionEngine": "retention",
    "evaluate_package": "retention",
    "create_archive": "archives",
    "extract_archive": "archives",
    "unpack_archives": "archives",
}

__all__ = ["__version__", *_EXPORTS]


def __getattr__(name: str) -> Any:
    """Lazily import public names from their defining module."""

    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    value = getattr(import_module(f"{__name__}.{module_name}"), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(_EXPORTS))
