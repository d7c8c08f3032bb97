"""Tests for the install flow."""

from __future__ import annotations

import io
import os
import tarfile

import pytest

from RegistryOps.PackageRegistry.cleanup import CleanupRegistry
from RegistryOps.PackageRegistry.errors import ArgumentError
from RegistryOps.PackageRegistry.install import install_package


def _tarball(members):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o755 if name.endswith(".sh") else 0o644
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


@pytest.fixture
def packaged(registry):
    registry.add_package(
        42,
        "tool",
        "1.0",
        files={
            "tool.tar.gz": _tarball({"bin/tool.sh": b"#!/bin/sh\necho tool\n", "share/doc.txt": b"docs"}),
            "README.txt": b"readme",
        },
    )
    return registry


def test_install_unpacks_and_merges(gateway, catalog, packaged, tmp_path):
    install_dir = tmp_path / "opt"
    (install_dir / "share").mkdir(parents=True)
    (install_dir / "share" / "existing.txt").write_text("keep")
    cleanup = CleanupRegistry()

    installed = install_package(
        gateway, catalog, "group/tool", "tool", "1.0", install_dir, cleanup
    )

    assert sorted(path.name for path in installed) == ["README.txt", "bin", "share"]
    assert (install_dir / "bin" / "tool.sh").read_bytes().startswith(b"#!/bin/sh")
    assert os.access(install_dir / "bin" / "tool.sh", os.X_OK)
    assert (install_dir / "share" / "doc.txt").read_text() == "docs"
    assert (install_dir / "share" / "existing.txt").read_text() == "keep"
    assert (install_dir / "README.txt").read_text() == "readme"
    assert not (install_dir / "tool.tar.gz").exists()


def test_install_registers_and_removes_scratch_dirs(gateway, catalog, packaged, tmp_path):
    cleanup = CleanupRegistry()
    install_package(gateway, catalog, "group/tool", "tool", "1.0", tmp_path / "opt", cleanup)
    scratch = cleanup.paths
    assert len(scratch) == 2
    assert all(path.is_dir() for path in scratch)

    cleanup.perform()

    assert not any(path.exists() for path in scratch)


def test_install_dir_must_be_a_directory(gateway, catalog, packaged, tmp_path):
    target = tmp_path / "file"
    target.write_text("x")
    cleanup = CleanupRegistry()
    with pytest.raises(ArgumentError):
        install_package(gateway, catalog, "group/tool", "tool", "1.0", target, cleanup)
    assert cleanup.paths == []
