"""Tests for checksum-verified downloads and gated uploads."""

from __future__ import annotations

import hashlib
import logging

import httpx
import pytest

from RegistryOps.PackageRegistry.errors import ArgumentError, HttpError, IntegrityError
from RegistryOps.PackageRegistry.transfer import (
    default_package_name,
    fetch_package,
    sha256_file,
    upload_files,
    verify_checksum,
)


def test_sha256_file(tmp_path):
    target = tmp_path / "blob.bin"
    target.write_bytes(b"registry")
    assert sha256_file(target) == hashlib.sha256(b"registry").hexdigest()


def test_verify_checksum_is_case_insensitive(tmp_path):
    target = tmp_path / "blob.bin"
    target.write_bytes(b"registry")
    assert verify_checksum(target, hashlib.sha256(b"registry").hexdigest().upper())


def test_default_package_name_is_last_path_component():
    assert default_package_name("Group/Sub/Tool") == "tool"


class TestFetch:
    def test_fetch_downloads_and_verifies_every_file(self, gateway, catalog, registry, tmp_path):
        registry.add_package(42, "tool", "1.0", files={"tool.tgz": b"payload", "tool.sig": b"sig"})
        dest = tmp_path / "out"

        fetched = fetch_package(gateway, catalog, "group/tool", "tool", "1.0", dest)

        assert fetched == [dest / "tool.tgz", dest / "tool.sig"]
        assert (dest / "tool.tgz").read_bytes() == b"payload"
        assert (dest / "tool.sig").read_bytes() == b"sig"
        downloads = registry.calls("GET", "projects/42/packages/generic")
        assert [call.path.rsplit("/", 1)[-1] for call in downloads] == ["tool.tgz", "tool.sig"]

    def test_package_defaults_to_repository_name(self, gateway, catalog, registry, tmp_path):
        registry.add_package(42, "tool", "2.0", files={"new.bin": b"new"})
        registry.add_package(42, "tool", "1.0", files={"old.bin": b"old"})
        fetched = fetch_package(gateway, catalog, "Group/Tool", None, None, tmp_path)
        assert [path.name for path in fetched] == ["new.bin"]

    def test_checksum_mismatch_raises_and_keeps_file(self, gateway, catalog, registry, tmp_path):
        registry.add_package(
            42,
            "tool",
            "1.0",
            files={"tool.tgz": b"tampered"},
            checksum_overrides={"tool.tgz": hashlib.sha256(b"original").hexdigest()},
        )
        with pytest.raises(IntegrityError) as excinfo:
            fetch_package(gateway, catalog, "group/tool", "tool", "1.0", tmp_path)
        assert excinfo.value.actual == hashlib.sha256(b"tampered").hexdigest()
        assert (tmp_path / "tool.tgz").read_bytes() == b"tampered"

    def test_download_failure_is_http_error(self, gateway, catalog, registry, tmp_path):
        registry.add_package(42, "tool", "1.0", files={"tool.tgz": b"x"})
        registry.stub(
            "GET",
            "projects/42/packages/generic/tool/1.0/tool.tgz",
            httpx.Response(500, text="storage down"),
        )
        with pytest.raises(HttpError) as excinfo:
            fetch_package(gateway, catalog, "group/tool", "tool", "1.0", tmp_path)
        assert excinfo.value.status_code == 500

    def test_version_segments_are_percent_encoded(self, gateway, catalog, registry, tmp_path):
        registry.add_package(42, "tool", "1.0+build.5", files={"a b.txt": b"a"})
        fetched = fetch_package(gateway, catalog, "group/tool", "tool", "1.0+build.5", tmp_path)
        assert fetched == [tmp_path / "a b.txt"]


class TestUpload:
    def _files(self, tmp_path):
        first = tmp_path / "tool.tgz"
        second = tmp_path / "tool.sig"
        first.write_bytes(b"archive")
        second.write_bytes(b"signature")
        return [first, second]

    def test_upload_puts_files_in_order(self, gateway, resolver, registry, tmp_path):
        files = self._files(tmp_path)
        answers = upload_files(
            gateway, resolver, "group/tool", "tool", "1.0", files, destructive=True
        )
        puts = registry.calls("PUT")
        assert [call.path for call in puts] == [
            "projects/42/packages/generic/tool/1.0/tool.tgz",
            "projects/42/packages/generic/tool/1.0/tool.sig",
        ]
        assert all(call.params == {"select": "package_file"} for call in puts)
        assert puts[0].body == b"archive"
        assert [answer["file_name"] for answer in answers] == ["tool.tgz", "tool.sig"]

    def test_dry_run_sends_nothing(self, gateway, resolver, registry, tmp_path, caplog):
        caplog.set_level(logging.INFO, logger="RegistryOps.PackageRegistry")
        answers = upload_files(
            gateway, resolver, "group/tool", "tool", "1.0", self._files(tmp_path), destructive=False
        )
        assert answers == []
        assert registry.calls("PUT") == []
        assert sum("[DRY-RUN]" in message for message in caplog.messages) == 2

    def test_failure_stops_remaining_uploads(self, gateway, resolver, registry, tmp_path):
        registry.stub(
            "PUT",
            "projects/42/packages/generic/tool/1.0/tool.tgz",
            httpx.Response(400, json={"message": "bad"}),
        )
        with pytest.raises(HttpError):
            upload_files(
                gateway, resolver, "group/tool", "tool", "1.0", self._files(tmp_path), destructive=True
            )
        assert len(registry.calls("PUT")) == 1

    def test_missing_file_rejected_before_sending(self, gateway, resolver, registry, tmp_path):
        files = self._files(tmp_path) + [tmp_path / "missing.bin"]
        with pytest.raises(ArgumentError):
            upload_files(gateway, resolver, "group/tool", "tool", "1.0", files, destructive=True)
        assert registry.requests == []

    @pytest.mark.parametrize("package, version", [("", "1.0"), ("tool", "")])
    def test_missing_coordinates_rejected(self, gateway, resolver, tmp_path, package, version):
        with pytest.raises(ArgumentError):
            upload_files(
                gateway, resolver, "group/tool", package, version, self._files(tmp_path), destructive=True
            )

    def test_no_files_rejected(self, gateway, resolver):
        with pytest.raises(ArgumentError):
            upload_files(gateway, resolver, "group/tool", "tool", "1.0", [], destructive=True)
