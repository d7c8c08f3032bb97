"""Tests for environment-backed settings and CLI-style overrides."""

from __future__ import annotations

import logging

import pytest

from RegistryOps.PackageRegistry.errors import ArgumentError
from RegistryOps.PackageRegistry.settings import (
    DEFAULT_API_URL,
    DEFAULT_PROTECTED_VERSION_PATTERNS,
    VERBOSE,
    RegistrySettings,
    load_settings,
)


class TestDefaults:
    def test_defaults_without_environment(self):
        settings = RegistrySettings()
        assert settings.api_url == DEFAULT_API_URL
        assert settings.api_timeout == 10.0
        assert settings.transfer_timeout == 120.0
        assert settings.prune_older_than_days == 7
        assert settings.prune_protect_versions == DEFAULT_PROTECTED_VERSION_PATTERNS
        assert settings.prune_retain_latest is True
        assert settings.destructive is False
        assert settings.cleanup is True
        assert settings.print_headers is True
        assert settings.log_dir is None

    def test_settings_are_frozen(self):
        settings = RegistrySettings()
        with pytest.raises(Exception):
            settings.destructive = True  # type: ignore[misc]


class TestEnvironmentNames:
    def test_ci_variables_are_honoured(self, monkeypatch):
        monkeypatch.setenv("CI_API_V4_URL", "https://gitlab.example.com/api/v4/")
        monkeypatch.setenv("CI_JOB_TOKEN", "job-secret")
        monkeypatch.setenv("CI_PROJECT_PATH", "Group/Tool")
        monkeypatch.setenv("CI_PROJECT_ID", "42")
        monkeypatch.setenv("DO_IT", "1")
        monkeypatch.setenv("DO_CLEANUP", "0")

        settings = RegistrySettings()

        assert settings.api_url == "https://gitlab.example.com/api/v4"
        assert settings.job_token is not None
        assert settings.job_token.get_secret_value() == "job-secret"
        assert settings.project_path == "Group/Tool"
        assert settings.project_id == 42
        assert settings.destructive is True
        assert settings.cleanup is False

    def test_prefixed_names_are_honoured(self, monkeypatch):
        monkeypatch.setenv("PKGREGISTRY_API_TIMEOUT", "2.5")
        monkeypatch.setenv("PKGREGISTRY_PRIVATE_TOKEN", "glpat-abc")
        settings = RegistrySettings()
        assert settings.api_timeout == 2.5
        assert settings.auth_header() == ("PRIVATE-TOKEN", "glpat-abc")

    def test_protected_patterns_newline_separated(self, monkeypatch):
        monkeypatch.setenv("PRUNE_PROTECT_VERSIONS", "^v\n\n^rel-\n")
        assert RegistrySettings().prune_protect_versions == ("^v", "^rel-")

    def test_protected_patterns_json_list(self, monkeypatch):
        monkeypatch.setenv("PRUNE_PROTECT_VERSIONS", '["^v", "-stable$"]')
        assert RegistrySettings().prune_protect_versions == ("^v", "-stable$")

    def test_empty_variables_fall_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("CI_API_V4_URL", "")
        assert RegistrySettings().api_url == DEFAULT_API_URL


class TestAuthHeader:
    def test_job_token_wins_over_private_token(self):
        settings = RegistrySettings.model_validate({"job_token": "job", "private_token": "pat"})
        assert settings.auth_header() == ("JOB-TOKEN", "job")

    def test_private_token_used_alone(self):
        settings = RegistrySettings.model_validate({"private_token": "pat"})
        assert settings.auth_header() == ("PRIVATE-TOKEN", "pat")

    def test_missing_tokens_raise_argument_error(self):
        with pytest.raises(ArgumentError, match="GITLAB_TOKEN or CI_JOB_TOKEN"):
            RegistrySettings().auth_header()


class TestLoadSettings:
    def test_overrides_beat_environment(self, monkeypatch):
        monkeypatch.setenv("PRUNE_OLDER_THAN_DAYS", "3")
        monkeypatch.setenv("GITLAB_TOKEN", "from-env")
        settings = load_settings(prune_older_than_days=10, private_token="from-cli")
        assert settings.prune_older_than_days == 10
        assert settings.private_token is not None
        assert settings.private_token.get_secret_value() == "from-cli"

    def test_none_overrides_keep_environment(self, monkeypatch):
        monkeypatch.setenv("PRUNE_OLDER_THAN_DAYS", "3")
        settings = load_settings(prune_older_than_days=None, api_url=None)
        assert settings.prune_older_than_days == 3
        assert settings.api_url == DEFAULT_API_URL

    def test_invalid_values_raise_argument_error(self, monkeypatch):
        monkeypatch.setenv("GITLAB_API_TIMEOUT", "-1")
        with pytest.raises(ArgumentError, match="invalid configuration"):
            load_settings()

    def test_invalid_override_raises_argument_error(self):
        with pytest.raises(ArgumentError):
            load_settings(log_level="chatty")


class TestLogLevel:
    @pytest.mark.parametrize(
        "name, expected",
        [("debug", logging.DEBUG), ("VERBOSE", VERBOSE), ("info", logging.INFO), ("WARNING", logging.WARNING)],
    )
    def test_level_names_map_to_integers(self, name, expected):
        settings = RegistrySettings.model_validate({"log_level": name})
        assert settings.log_level_int() == expected
