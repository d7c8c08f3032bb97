# === NAVMAP v1 ===
# {
#   "module": "RegistryOps.PackageRegistry.settings",
#   "purpose": "Environment-backed configuration for the package registry client",
#   "sections": [
#     {"id": "constants", "name": "Defaults", "anchor": "DEF", "kind": "constants"},
#     {"id": "registrysettings", "name": "RegistrySettings", "anchor": "class-registrysettings", "kind": "class"},
#     {"id": "load-settings", "name": "load_settings", "anchor": "function-load-settings", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Environment-backed configuration for the package registry client.

Every knob the operator can set through the environment lives on
:class:`RegistrySettings`.  The historical CI variable names (``CI_API_V4_URL``,
``GITLAB_TOKEN``, ``PRUNE_OLDER_THAN_DAYS`` …) are honoured unprefixed so the
client drops into existing pipelines, and most fields also accept a
``PKGREGISTRY_`` prefixed spelling.  Command-line flags are layered on top by
:func:`load_settings`, which re-validates the environment values with the
flags applied.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
from typing import Annotated, Any, Optional, Tuple

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .errors import ArgumentError

__all__ = [
    "DEFAULT_API_URL",
    "DEFAULT_PROTECTED_VERSION_PATTERNS",
    "VERBOSE",
    "RegistrySettings",
    "load_settings",
]

# ============================================================================
# DEFAULTS (DEF)
# ============================================================================

DEFAULT_API_URL = "https://gitlab.com/api/v4"
DEFAULT_API_TIMEOUT = 10.0
DEFAULT_TRANSFER_TIMEOUT = 120.0
DEFAULT_PRUNE_OLDER_THAN_DAYS = 7
DEFAULT_PROTECTED_VERSION_PATTERNS: Tuple[str, ...] = (r"^(v|rel-|release-).+",)

VERBOSE = 15

_VALID_LOG_LEVELS = {"DEBUG", "VERBOSE", "INFO", "WARNING", "ERROR"}


def _env(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class RegistrySettings(BaseSettings):
    """Runtime configuration for registry access, transfers, and retention."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
        frozen=True,
    )

    # --- registry access ----------------------------------------------------
    api_url: str = Field(
        default=DEFAULT_API_URL,
        validation_alias=_env("CI_API_V4_URL", "PKGREGISTRY_API_URL"),
        description="Registry REST API base URL",
    )
    job_token: Optional[SecretStr] = Field(
        default=None,
        validation_alias=_env("CI_JOB_TOKEN", "PKGREGISTRY_JOB_TOKEN"),
        description="CI job token (preferred over the personal token)",
    )
    private_token: Optional[SecretStr] = Field(
        default=None,
        validation_alias=_env("GITLAB_TOKEN", "PKGREGISTRY_PRIVATE_TOKEN"),
        description="Personal access token",
    )
    project_path: Optional[str] = Field(
        default=None,
        validation_alias=_env("CI_PROJECT_PATH"),
        description="Path of the current CI project; seeds the project id cache",
    )
    project_id: Optional[int] = Field(
        default=None,
        validation_alias=_env("CI_PROJECT_ID"),
        description="Id of the current CI project; seeds the project id cache",
    )
    api_timeout: float = Field(
        default=DEFAULT_API_TIMEOUT,
        gt=0.0,
        validation_alias=_env("GITLAB_API_TIMEOUT", "PKGREGISTRY_API_TIMEOUT"),
        description="Per-call timeout for metadata API requests (seconds)",
    )
    transfer_timeout: float = Field(
        default=DEFAULT_TRANSFER_TIMEOUT,
        gt=0.0,
        validation_alias=_env("GITLAB_TX_TIMEOUT", "PKGREGISTRY_TRANSFER_TIMEOUT"),
        description="Per-call timeout for uploads and downloads (seconds)",
    )

    # --- local filesystem ---------------------------------------------------
    download_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()),
        validation_alias=_env("DOWNLOAD_DIR", "PKGREGISTRY_DOWNLOAD_DIR"),
        description="Fetch/install destination directory",
    )
    cleanup: bool = Field(
        default=True,
        validation_alias=_env("DO_CLEANUP", "PKGREGISTRY_CLEANUP"),
        description="Remove temporary files on exit",
    )
    commit_timestamp: Optional[str] = Field(
        default=None,
        validation_alias=_env("CI_COMMIT_TIMESTAMP"),
        description="ISO-8601 commit time used for reproducible archives",
    )
    git_commit_timestamp: Optional[int] = Field(
        default=None,
        validation_alias=_env("GIT_COMMIT_TIMESTAMP"),
        description="Commit time as Unix epoch seconds, used when CI_COMMIT_TIMESTAMP is unset",
    )
    max_compression_ratio: float = Field(
        default=100.0,
        ge=1.0,
        validation_alias=_env("PKGREGISTRY_MAX_COMPRESSION_RATIO"),
        description="Reject archives expanding beyond this uncompressed/compressed ratio",
    )

    # --- behaviour ----------------------------------------------------------
    destructive: bool = Field(
        default=False,
        validation_alias=_env("DO_IT", "PKGREGISTRY_DO_IT"),
        description="Really perform registry deletes and uploads",
    )
    print_headers: bool = Field(
        default=True,
        validation_alias=_env("PRINT_HEADERS"),
        description="Print table headers",
    )
    prune_older_than_days: int = Field(
        default=DEFAULT_PRUNE_OLDER_THAN_DAYS,
        validation_alias=_env("PRUNE_OLDER_THAN_DAYS"),
        description="Prune package versions older than this many days",
    )
    prune_protect_versions: Annotated[Tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_PROTECTED_VERSION_PATTERNS,
        validation_alias=_env("PRUNE_PROTECT_VERSIONS"),
        description="Regexes of versions that are never pruned",
    )
    prune_retain_latest: bool = Field(
        default=True,
        validation_alias=_env("PRUNE_RETAIN_LATEST_VERSION"),
        description="Keep the newest version of each package regardless of age",
    )

    # --- logging ------------------------------------------------------------
    log_level: str = Field(
        default="INFO",
        validation_alias=_env("PKGREGISTRY_LOG_LEVEL"),
        description="Logging level (DEBUG, VERBOSE, INFO, WARNING, ERROR)",
    )
    log_dir: Optional[Path] = Field(
        default=None,
        validation_alias=_env("PKGREGISTRY_LOG_DIR"),
        description="Directory for JSONL log files; unset disables file logging",
    )

    @field_validator("api_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalise the API base so endpoints can be appended verbatim."""
        stripped = v.strip().rstrip("/")
        if not stripped:
            raise ValueError("api_url must not be empty")
        return stripped

    @field_validator("prune_protect_versions", mode="before")
    @classmethod
    def split_patterns(cls, v: Any) -> Any:
        """Accept a JSON list or newline-separated patterns from the environment."""
        if isinstance(v, str):
            text = v.strip()
            if text.startswith("["):
                try:
                    decoded = json.loads(text)
                except json.JSONDecodeError as exc:
                    raise ValueError(f"invalid JSON pattern list: {exc}") from exc
                return tuple(str(item) for item in decoded)
            return tuple(line for line in (part.strip() for part in text.splitlines()) if line)
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Normalize and validate logging level."""
        upper = str(v).upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_VALID_LOG_LEVELS)}, got '{v}'")
        return upper

    def auth_header(self) -> Tuple[str, str]:
        """Return the single authentication header, preferring the job token."""

        if self.job_token is not None and self.job_token.get_secret_value():
            return "JOB-TOKEN", self.job_token.get_secret_value()
        if self.private_token is not None and self.private_token.get_secret_value():
            return "PRIVATE-TOKEN", self.private_token.get_secret_value()
        raise ArgumentError(
            "can't determine registry auth header; specify either GITLAB_TOKEN or CI_JOB_TOKEN"
        )

    def log_level_int(self) -> int:
        """Convert the level string to a logging module integer."""

        if self.log_level == "VERBOSE":
            return VERBOSE
        return getattr(logging, self.log_level, logging.INFO)


def load_settings(**overrides: Any) -> RegistrySettings:
    """Build settings from the environment with ``overrides`` taking precedence.

    ``None`` overrides are ignored so CLI options that were not given fall back
    to the environment.  The environment is read once, then the overrides are
    validated by field name on top of it.  Validation failures surface as
    :class:`ArgumentError`.
    """

    provided = {key: value for key, value in overrides.items() if value is not None}
    try:
        base = RegistrySettings()
        if not provided:
            return base
        merged = base.model_dump()
        merged.update(provided)
        return RegistrySettings.model_validate(merged)
    except PydanticValidationError as exc:
        raise ArgumentError(f"invalid configuration: {exc}") from exc
