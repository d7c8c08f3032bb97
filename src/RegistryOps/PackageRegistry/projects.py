"""Project reference normalization and id resolution."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from .errors import ArgumentError, MalformedResponseError, ResolutionError
from .net import RegistryGateway
from .settings import VERBOSE, RegistrySettings

__all__ = ["normalize_project_ref", "ProjectIdCache", "ProjectResolver"]

LOGGER = logging.getLogger(__name__)

PROJECTS_ENDPOINT = "projects"
PROJECTS_QUERY = {"membership": "true", "simple": "true", "order_by": "name"}


def normalize_project_ref(ref: str) -> str:
    """Return the canonical lower-case form of a ``group/repo`` reference."""

    normalized = (ref or "").strip().strip("/").lower()
    if not normalized:
        raise ArgumentError("missing project reference (group/repo)")
    return normalized


class ProjectIdCache:
    """Map of normalized project references to registry ids for one invocation.

    Entries are never invalidated; a reference resolved once keeps its id until
    the cache object is discarded.
    """

    def __init__(self, seed: Optional[Dict[str, int]] = None) -> None:
        self._ids: Dict[str, int] = {}
        for ref, project_id in (seed or {}).items():
            self.store(ref, project_id)

    @classmethod
    def from_settings(cls, settings: RegistrySettings) -> "ProjectIdCache":
        """Seed the cache with the CI job's own project when both values are known."""

        cache = cls()
        if settings.project_path and settings.project_id is not None:
            cache.store(settings.project_path, settings.project_id)
        return cache

    def get(self, ref: str) -> Optional[int]:
        return self._ids.get(normalize_project_ref(ref))

    def store(self, ref: str, project_id: int) -> None:
        key = normalize_project_ref(ref)
        self._ids.setdefault(key, int(project_id))

    def __contains__(self, ref: object) -> bool:
        return isinstance(ref, str) and normalize_project_ref(ref) in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class ProjectResolver:
    """Resolve ``group/repo`` references to numeric project ids.

    A cache miss costs exactly one call to the membership project listing;
    the result is stored in the shared :class:`ProjectIdCache`.
    """

    def __init__(self, gateway: RegistryGateway, cache: ProjectIdCache) -> None:
        self.gateway = gateway
        self.cache = cache

    def resolve(self, ref: str) -> int:
        key = normalize_project_ref(ref)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        payload = self.gateway.get_json(PROJECTS_ENDPOINT, params=PROJECTS_QUERY)
        if not isinstance(payload, list):
            raise MalformedResponseError("project listing is not a JSON array")
        for entry in payload:
            if not isinstance(entry, dict):
                continue
            path = entry.get("path_with_namespace")
            if isinstance(path, str) and path.lower() == key:
                try:
                    project_id = int(entry["id"])
                except (KeyError, TypeError, ValueError) as exc:
                    raise MalformedResponseError(f"project {path!r} has no usable id") from exc
                self.cache.store(key, project_id)
                LOGGER.log(
                    VERBOSE,
                    "resolved %s to project id %d",
                    key,
                    project_id,
                    extra={"stage": "resolve", "project": key, "project_id": project_id},
                )
                return project_id
        raise ResolutionError(f"can't find project {ref!r}; check the path and token permissions")
