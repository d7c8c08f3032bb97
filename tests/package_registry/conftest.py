"""Shared fixtures for the package registry client tests.

Every test runs against :class:`FakeRegistry`; the environment variables the
settings model reads are cleared so a CI runner's own ``CI_*`` values never
leak into a test.
"""

from __future__ import annotations

import logging
from typing import Iterator

import pytest

from RegistryOps.PackageRegistry.catalog import PackageCatalog
from RegistryOps.PackageRegistry.logging_utils import LOGGER_NAME
from RegistryOps.PackageRegistry.net import RegistryGateway, reset_transport
from RegistryOps.PackageRegistry.projects import ProjectIdCache, ProjectResolver
from RegistryOps.PackageRegistry.settings import RegistrySettings
from RegistryOps.PackageRegistry.testing import FakeRegistry

PROJECT = "group/tool"
PROJECT_ID = 42

_SETTINGS_ENV = (
    "CI_API_V4_URL",
    "PKGREGISTRY_API_URL",
    "CI_JOB_TOKEN",
    "PKGREGISTRY_JOB_TOKEN",
    "GITLAB_TOKEN",
    "PKGREGISTRY_PRIVATE_TOKEN",
    "CI_PROJECT_PATH",
    "CI_PROJECT_ID",
    "GITLAB_API_TIMEOUT",
    "PKGREGISTRY_API_TIMEOUT",
    "GITLAB_TX_TIMEOUT",
    "PKGREGISTRY_TRANSFER_TIMEOUT",
    "DOWNLOAD_DIR",
    "PKGREGISTRY_DOWNLOAD_DIR",
    "DO_CLEANUP",
    "PKGREGISTRY_CLEANUP",
    "CI_COMMIT_TIMESTAMP",
    "GIT_COMMIT_TIMESTAMP",
    "PKGREGISTRY_MAX_COMPRESSION_RATIO",
    "DO_IT",
    "PKGREGISTRY_DO_IT",
    "PRINT_HEADERS",
    "PRUNE_OLDER_THAN_DAYS",
    "PRUNE_PROTECT_VERSIONS",
    "PRUNE_RETAIN_LATEST_VERSION",
    "PKGREGISTRY_LOG_LEVEL",
    "PKGREGISTRY_LOG_DIR",
)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_pkgregistry_managed", False):
            logger.removeHandler(handler)
            if isinstance(handler, logging.FileHandler):
                handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    reset_transport()


@pytest.fixture
def registry() -> FakeRegistry:
    fake = FakeRegistry()
    fake.add_project("Group/Tool", PROJECT_ID)
    fake.add_project("group/other", 7)
    return fake


@pytest.fixture
def settings(registry: FakeRegistry) -> RegistrySettings:
    return registry.settings()


@pytest.fixture
def gateway(registry: FakeRegistry, settings: RegistrySettings) -> Iterator[RegistryGateway]:
    gw = RegistryGateway(settings, transport=registry.transport)
    yield gw
    gw.close()


@pytest.fixture
def resolver(gateway: RegistryGateway) -> ProjectResolver:
    return ProjectResolver(gateway, ProjectIdCache())


@pytest.fixture
def catalog(gateway: RegistryGateway, resolver: ProjectResolver) -> PackageCatalog:
    return PackageCatalog(gateway, resolver)
