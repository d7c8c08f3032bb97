# === NAVMAP v1 ===
# {
#   "module": "RegistryOps.PackageRegistry.catalog",
#   "purpose": "Typed access to package listings and package file metadata",
#   "sections": [
#     {"id": "endpoints", "name": "Endpoints", "anchor": "END", "kind": "constants"},
#     {"id": "packageinfo", "name": "PackageInfo", "anchor": "class-packageinfo", "kind": "class"},
#     {"id": "packagecatalog", "name": "PackageCatalog", "anchor": "class-packagecatalog", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Package Catalog: listing, selection and file metadata for registry packages.

The catalog sits between the CLI commands and the raw registry API.  Every
listing goes through :func:`walk_pages` with the server doing the ordering
(``order_by=version``, ``sort=desc``); the catalog never re-sorts versions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .errors import PackageNotFoundError
from .net import RegistryGateway, quote_segment
from .pagination import DEFAULT_PAGE_SIZE, walk_pages
from .projects import ProjectResolver
from .records import PackageFileRecord, PackageRecord, parse_file_records, parse_package_records

__all__ = ["NAME_SCAN_MAX_PAGES", "PackageInfo", "PackageCatalog", "packages_endpoint"]

LOGGER = logging.getLogger(__name__)

# ============================================================================
# ENDPOINTS (END)
# ============================================================================

NAME_SCAN_MAX_PAGES = 200


def packages_endpoint(project_id: int) -> str:
    return f"projects/{project_id}/packages"


def package_files_endpoint(project_id: int, package_id: int) -> str:
    return f"projects/{project_id}/packages/{package_id}/package_files"


def generic_file_endpoint(project_id: int, package: str, version: str, file_name: str) -> str:
    return (
        f"projects/{project_id}/packages/generic/"
        f"{quote_segment(package)}/{quote_segment(version)}/{quote_segment(file_name)}"
    )


@dataclass(frozen=True)
class PackageInfo:
    """A selected package version together with its files."""

    project_id: int
    package: PackageRecord
    files: Tuple[PackageFileRecord, ...]


class PackageCatalog:
    """Query package versions and files for a project reference."""

    def __init__(self, gateway: RegistryGateway, resolver: ProjectResolver) -> None:
        self.gateway = gateway
        self.resolver = resolver

    def list_versions(
        self,
        project: str,
        name: Optional[str] = None,
        version: Optional[str] = None,
        *,
        max_pages: int = 1,
    ) -> List[PackageRecord]:
        """Return package records newest version first, as ordered by the server.

        ``name`` and ``version`` are passed to the registry as filters; the
        registry matches names by substring, so callers needing an exact name
        compare against ``record.name`` themselves.
        """

        project_id = self.resolver.resolve(project)
        params: Dict[str, object] = {"order_by": "version", "sort": "desc"}
        if name:
            params["package_name"] = name
        if version:
            params["package_version"] = version
        records: List[PackageRecord] = []
        for page in walk_pages(
            self.gateway,
            packages_endpoint(project_id),
            params,
            page_size=DEFAULT_PAGE_SIZE,
            max_pages=max_pages,
        ):
            records.extend(parse_package_records(page))
        LOGGER.debug(
            "listed %d package record(s) for %s",
            len(records),
            project,
            extra={"stage": "catalog", "project": project, "package": name},
        )
        return records

    def latest(self, project: str, name: str) -> Optional[PackageRecord]:
        for record in self.list_versions(project, name, max_pages=1):
            if record.name == name:
                return record
        return None

    def list_names(self, project: str) -> List[str]:
        records = self.list_versions(project, max_pages=NAME_SCAN_MAX_PAGES)
        return sorted({record.name for record in records})

    def package_files(self, project: str, record: PackageRecord) -> List[PackageFileRecord]:
        project_id = self.resolver.resolve(project)
        payload = self.gateway.get_json(package_files_endpoint(project_id, record.id))
        return parse_file_records(payload, record.version)

    def select(self, project: str, name: str, version: Optional[str] = None) -> PackageRecord:
        """Return the first record named exactly ``name`` (and ``version`` when given)."""

        for record in self.list_versions(project, name, version, max_pages=1):
            if record.name != name:
                continue
            if version is not None and record.version != version:
                continue
            return record
        wanted = f"{name}/{version}" if version else name
        raise PackageNotFoundError(f"no package {wanted!r} in project {project!r}")

    def info(self, project: str, name: str, version: Optional[str] = None) -> PackageInfo:
        record = self.select(project, name, version)
        files = self.package_files(project, record)
        if not files:
            raise PackageNotFoundError(
                f"package {record.name}/{record.version} in project {project!r} has no files"
            )
        return PackageInfo(
            project_id=self.resolver.resolve(project),
            package=record,
            files=tuple(files),
        )
