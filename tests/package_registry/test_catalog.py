"""Tests for package records and the package catalog."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from RegistryOps.PackageRegistry.errors import MalformedResponseError, PackageNotFoundError
from RegistryOps.PackageRegistry.records import (
    PackageRecord,
    parse_file_records,
    parse_package_records,
    parse_timestamp,
)

LISTING = "projects/42/packages"


class TestRecords:
    def test_package_record_is_immutable(self):
        record = PackageRecord.model_validate(
            {"id": 1, "created_at": "2024-05-01T10:00:00.000Z", "name": "tool", "version": "1.0"}
        )
        with pytest.raises(Exception):
            record.version = "2.0"  # type: ignore[misc]

    def test_created_at_parses_iso_with_zulu(self):
        record = PackageRecord(id=1, created_at="2024-05-01T10:00:00.000Z", name="tool", version="1.0")
        assert record.created_at_datetime() == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "value, expected_microsecond",
        [
            ("2024-05-01T10:00:00.1Z", 100000),
            ("2024-05-01T10:00:00.12345Z", 123450),
            ("2024-05-01T10:00:00.123456789+00:00", 123456),
            ("2024-05-01T10:00:00Z", 0),
        ],
    )
    def test_any_fraction_length_parses(self, value, expected_microsecond):
        parsed = parse_timestamp(value)
        assert parsed is not None
        assert parsed.replace(microsecond=0) == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
        assert parsed.microsecond == expected_microsecond

    @pytest.mark.parametrize("value", ["yesterday", "1970-01-01T00:00:00Z", "1960-01-01T00:00:00Z"])
    def test_unusable_timestamps_parse_to_none(self, value):
        assert parse_timestamp(value) is None

    @pytest.mark.parametrize(
        "entry",
        [
            {"created_at": "2024-01-01T00:00:00Z", "name": "tool", "version": "1.0"},
            {"id": 1, "created_at": "2024-01-01T00:00:00Z", "name": "", "version": "1.0"},
            {"id": 1, "created_at": "2024-01-01T00:00:00Z", "name": "tool", "version": None},
            {"id": 1, "name": "tool", "version": "1.0"},
            "not-an-object",
        ],
    )
    def test_incomplete_package_records_are_rejected(self, entry):
        with pytest.raises(MalformedResponseError):
            parse_package_records([entry])

    def test_file_records_take_the_package_version(self):
        files = parse_file_records(
            [{"id": 5, "file_name": "tool.tgz", "file_sha256": "ABCDEF", "size": 3}], "1.2.3"
        )
        assert files[0].version == "1.2.3"
        assert files[0].file_sha256 == "abcdef"

    @pytest.mark.parametrize("name", ["../evil", "dir/file", ".."])
    def test_file_names_with_paths_are_rejected(self, name):
        with pytest.raises(MalformedResponseError):
            parse_file_records([{"id": 5, "file_name": name, "file_sha256": "00"}], "1.0")

    def test_file_record_without_checksum_is_rejected(self):
        with pytest.raises(MalformedResponseError):
            parse_file_records([{"id": 5, "file_name": "tool.tgz"}], "1.0")


class TestListVersions:
    def test_query_parameters(self, catalog, registry):
        registry.add_package(42, "tool", "2.0")
        catalog.list_versions("group/tool", "tool", "2.0")
        call = registry.calls("GET", LISTING)[0]
        assert call.params == {
            "package_name": "tool",
            "package_version": "2.0",
            "order_by": "version",
            "sort": "desc",
            "per_page": "100",
            "page": "1",
        }

    def test_version_filter_omitted_when_not_given(self, catalog, registry):
        catalog.list_versions("group/tool")
        call = registry.calls("GET", LISTING)[0]
        assert "package_version" not in call.params
        assert "package_name" not in call.params

    def test_server_order_is_kept(self, catalog, registry):
        for version in ("3.0", "1.0", "2.0"):
            registry.add_package(42, "tool", version)
        versions = [record.version for record in catalog.list_versions("group/tool", "tool")]
        assert versions == ["3.0", "1.0", "2.0"]

    def test_malformed_entry_fails_the_listing(self, catalog, registry):
        registry.stub("GET", LISTING, httpx.Response(200, json=[{"id": 1, "name": "tool"}]))
        with pytest.raises(MalformedResponseError):
            catalog.list_versions("group/tool", "tool")


class TestLatestAndNames:
    def test_latest_requires_exact_name(self, catalog, registry):
        registry.add_package(42, "tool-extra", "9.0")
        registry.add_package(42, "tool", "2.0")
        registry.add_package(42, "tool", "1.0")
        latest = catalog.latest("group/tool", "tool")
        assert latest is not None
        assert (latest.name, latest.version) == ("tool", "2.0")

    def test_latest_returns_none_without_match(self, catalog, registry):
        registry.add_package(42, "tool-extra", "9.0")
        assert catalog.latest("group/tool", "tool") is None

    def test_list_names_is_sorted_and_distinct(self, catalog, registry):
        for name in ("zeta", "alpha", "zeta", "mid"):
            registry.add_package(42, name, "1.0")
        assert catalog.list_names("group/tool") == ["alpha", "mid", "zeta"]


class TestInfo:
    def test_info_selects_exact_version_and_lists_files(self, catalog, registry):
        registry.add_package(42, "tool", "1.10", files={"a.txt": b"a"})
        registry.add_package(42, "tool", "1.1", files={"b.txt": b"bb", "c.txt": b"c"})
        info = catalog.info("group/tool", "tool", "1.1")
        assert info.project_id == 42
        assert info.package.version == "1.1"
        assert [f.file_name for f in info.files] == ["b.txt", "c.txt"]
        assert all(f.version == "1.1" for f in info.files)

    def test_info_defaults_to_newest_version(self, catalog, registry):
        registry.add_package(42, "tool", "2.0", files={"new.txt": b"n"})
        registry.add_package(42, "tool", "1.0", files={"old.txt": b"o"})
        assert catalog.info("group/tool", "tool").package.version == "2.0"

    def test_info_unknown_package(self, catalog, registry):
        registry.add_package(42, "tool", "1.0", files={"a.txt": b"a"})
        with pytest.raises(PackageNotFoundError):
            catalog.info("group/tool", "tool", "9.9")

    def test_info_without_files(self, catalog, registry):
        registry.add_package(42, "tool", "1.0")
        with pytest.raises(PackageNotFoundError):
            catalog.info("group/tool", "tool", "1.0")
