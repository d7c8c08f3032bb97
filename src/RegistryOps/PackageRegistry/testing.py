"""Testing utilities for exercising the registry client without a network.

:class:`FakeRegistry` is an in-memory stand-in for the registry API served
through ``httpx.MockTransport``.  It keeps projects, package versions and
their files, answers generic file downloads with a redirect to a separate
storage host (as the real registry does), records every request, and lets a
test replace any single endpoint with a canned response.
"""

from __future__ import annotations

import contextlib
import hashlib
import itertools
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union
from urllib.parse import unquote

import httpx

from .net import configure_transport, reset_transport
from .settings import RegistrySettings

__all__ = [
    "FAKE_API_URL",
    "FAKE_TOKEN",
    "RequestRecord",
    "FakePackage",
    "FakeRegistry",
    "use_fake_registry",
]

FAKE_API_URL = "https://registry.test/api/v4"
FAKE_STORAGE_HOST = "storage.test"
FAKE_TOKEN = "fake-job-token"

StubResponse = Union[httpx.Response, Exception]


@dataclass(frozen=True)
class RequestRecord:
    """One request seen by the fake registry."""

    method: str
    path: str
    params: Dict[str, str]
    headers: Dict[str, str]
    body: bytes = b""


@dataclass
class FakePackage:
    id: int
    project_id: int
    name: str
    version: str
    created_at: str
    files: Dict[str, bytes] = field(default_factory=dict)
    checksum_overrides: Dict[str, str] = field(default_factory=dict)
    file_ids: Dict[str, int] = field(default_factory=dict)

    def as_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "package_type": "generic",
            "created_at": self.created_at,
        }


class FakeRegistry:
    """In-memory registry API implementing the endpoints the client uses."""

    def __init__(self, base_url: str = FAKE_API_URL) -> None:
        self.base_url = base_url.rstrip("/")
        self._base_path = httpx.URL(self.base_url).path.rstrip("/")
        self.projects: Dict[str, int] = {}
        self.packages: List[FakePackage] = []
        self.requests: List[RequestRecord] = []
        self._stubs: Dict[Tuple[str, str], List[Optional[StubResponse]]] = {}
        self._ids = itertools.count(1000)

    # -- setup --------------------------------------------------------------

    def add_project(self, path: str, project_id: int) -> int:
        self.projects[path] = project_id
        return project_id

    def add_package(
        self,
        project_id: int,
        name: str,
        version: str,
        created_at: str = "2024-01-01T00:00:00.000Z",
        files: Optional[Mapping[str, bytes]] = None,
        *,
        checksum_overrides: Optional[Mapping[str, str]] = None,
    ) -> FakePackage:
        """Append a package version; listings return versions in insertion order."""

        package = FakePackage(
            id=next(self._ids),
            project_id=project_id,
            name=name,
            version=version,
            created_at=created_at,
            files=dict(files or {}),
            checksum_overrides=dict(checksum_overrides or {}),
        )
        for file_name in package.files:
            package.file_ids[file_name] = next(self._ids)
        self.packages.append(package)
        return package

    def stub(
        self,
        method: str,
        path: str,
        response: StubResponse,
        *,
        times: int = 1,
        after: int = 0,
    ) -> None:
        """Answer ``times`` calls of ``method path`` with ``response``.

        The first ``after`` calls are served normally.

        ``response`` may be an exception (e.g. ``httpx.ConnectError``) to
        simulate a transport failure.
        """

        self._stubs.setdefault((method.upper(), path.strip("/")), []).extend(
            [None] * after + [response] * times
        )

    def settings(self, **overrides: Any) -> RegistrySettings:
        values: Dict[str, Any] = {"api_url": self.base_url, "job_token": FAKE_TOKEN}
        values.update(overrides)
        return RegistrySettings.model_validate(values)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # -- queries ------------------------------------------------------------

    def calls(self, method: Optional[str] = None, prefix: str = "") -> List[RequestRecord]:
        return [
            record
            for record in self.requests
            if (method is None or record.method == method.upper())
            and record.path.startswith(prefix.strip("/"))
        ]

    def package(self, package_id: int) -> Optional[FakePackage]:
        for package in self.packages:
            if package.id == package_id:
                return package
        return None

    # -- request handling ---------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = request.read()
        if request.url.host == FAKE_STORAGE_HOST:
            return self._storage(request)

        raw_path = request.url.raw_path.decode("ascii").split("?", 1)[0]
        if not raw_path.startswith(self._base_path):
            return httpx.Response(404, json={"message": "404 Not Found"})
        relative = raw_path[len(self._base_path):].strip("/")
        segments = [unquote(part) for part in relative.split("/")] if relative else []
        path = "/".join(segments)
        params = dict(request.url.params.multi_items())
        self.requests.append(
            RequestRecord(
                method=request.method,
                path=path,
                params=params,
                headers={key.lower(): value for key, value in request.headers.items()},
                body=body,
            )
        )

        queued = self._stubs.get((request.method, path))
        stub = queued.pop(0) if queued else None
        if isinstance(stub, Exception):
            raise stub
        if stub is not None:
            return stub

        if request.headers.get("JOB-TOKEN") is None and request.headers.get("PRIVATE-TOKEN") is None:
            return httpx.Response(401, json={"message": "401 Unauthorized"})
        return self._route(request, segments, params)

    def _route(
        self, request: httpx.Request, segments: List[str], params: Dict[str, str]
    ) -> httpx.Response:
        method = request.method
        if segments == ["projects"] and method == "GET":
            return httpx.Response(
                200,
                json=[
                    {"id": project_id, "path_with_namespace": path}
                    for path, project_id in sorted(self.projects.items())
                ],
            )
        if len(segments) < 3 or segments[0] != "projects" or segments[2] != "packages":
            return _not_found()
        try:
            project_id = int(segments[1])
        except ValueError:
            return _not_found()
        rest = segments[3:]

        if not rest and method == "GET":
            return self._list_packages(project_id, params)
        if len(rest) == 4 and rest[0] == "generic":
            _, name, version, file_name = rest
            if method == "GET":
                return self._redirect_download(project_id, name, version, file_name)
            if method == "PUT":
                return self._upload(project_id, name, version, file_name, request.content)
        if len(rest) == 2 and rest[1] == "package_files" and method == "GET":
            return self._list_files(project_id, rest[0])
        if len(rest) == 1 and method == "DELETE":
            return self._delete(project_id, rest[0])
        return _not_found()

    def _list_packages(self, project_id: int, params: Dict[str, str]) -> httpx.Response:
        name = params.get("package_name")
        version = params.get("package_version")
        matching = [
            package.as_json()
            for package in self.packages
            if package.project_id == project_id
            and (not name or name in package.name)
            and (not version or package.version == version)
        ]
        per_page = int(params.get("per_page", "20"))
        page = int(params.get("page", "1"))
        start = (page - 1) * per_page
        return httpx.Response(200, json=matching[start : start + per_page])

    def _find(self, project_id: int, name: str, version: str) -> Optional[FakePackage]:
        for package in self.packages:
            if package.project_id == project_id and package.name == name and package.version == version:
                return package
        return None

    def _list_files(self, project_id: int, package_id: str) -> httpx.Response:
        package = self.package(int(package_id))
        if package is None or package.project_id != project_id:
            return _not_found()
        files = []
        for file_name, content in package.files.items():
            files.append(
                {
                    "id": package.file_ids[file_name],
                    "package_id": package.id,
                    "created_at": package.created_at,
                    "file_name": file_name,
                    "size": len(content),
                    "file_sha256": package.checksum_overrides.get(
                        file_name, hashlib.sha256(content).hexdigest()
                    ),
                }
            )
        return httpx.Response(200, json=files)

    def _redirect_download(
        self, project_id: int, name: str, version: str, file_name: str
    ) -> httpx.Response:
        package = self._find(project_id, name, version)
        if package is None or file_name not in package.files:
            return _not_found()
        location = f"https://{FAKE_STORAGE_HOST}/{package.id}/{package.file_ids[file_name]}"
        return httpx.Response(302, headers={"Location": location})

    def _storage(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.strip("/").split("/")
        if len(parts) == 2 and all(part.isdigit() for part in parts):
            package = self.package(int(parts[0]))
            if package is not None:
                for file_name, file_id in package.file_ids.items():
                    if file_id == int(parts[1]):
                        return httpx.Response(200, content=package.files[file_name])
        return _not_found()

    def _upload(
        self, project_id: int, name: str, version: str, file_name: str, content: bytes
    ) -> httpx.Response:
        package = self._find(project_id, name, version)
        if package is None:
            package = self.add_package(project_id, name, version, "2024-06-01T00:00:00.000Z")
        package.files[file_name] = content
        package.file_ids.setdefault(file_name, next(self._ids))
        return httpx.Response(
            201,
            json={
                "id": package.file_ids[file_name],
                "package_id": package.id,
                "file_name": file_name,
                "size": len(content),
                "file_sha256": hashlib.sha256(content).hexdigest(),
            },
        )

    def _delete(self, project_id: int, package_id: str) -> httpx.Response:
        package = self.package(int(package_id)) if package_id.isdigit() else None
        if package is None or package.project_id != project_id:
            return _not_found()
        self.packages.remove(package)
        return httpx.Response(204)


def _not_found() -> httpx.Response:
    return httpx.Response(404, content=json.dumps({"message": "404 Not Found"}).encode())


@contextlib.contextmanager
def use_fake_registry(registry: FakeRegistry) -> Iterator[FakeRegistry]:
    """Route every :class:`RegistryGateway` built inside the block to ``registry``."""

    configure_transport(registry.transport)
    try:
        yield registry
    finally:
        reset_transport()
