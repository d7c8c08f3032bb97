"""Typed records decoded from registry package listings."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import MalformedResponseError

__all__ = [
    "PackageRecord",
    "PackageFileRecord",
    "parse_timestamp",
    "parse_package_records",
    "parse_file_records",
]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")


def _six_digit_fraction(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 registry timestamp; ``None`` if unparsable or not after the epoch."""

    text = (value or "").strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # fromisoformat before 3.11 only takes 3 or 6 fraction digits
    text = _FRACTION.sub(_six_digit_fraction, text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed <= _EPOCH:
        return None
    return parsed


class PackageRecord(BaseModel):
    """One package version as listed by ``/projects/{id}/packages``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    created_at: str
    name: str = Field(min_length=1)
    version: str = Field(min_length=1)

    @field_validator("name", "version", "created_at", mode="before")
    @classmethod
    def _require_text(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("field is required")
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = str(v)
        if isinstance(v, str) and not v.strip():
            raise ValueError("field must not be blank")
        return v

    def created_at_datetime(self) -> Optional[datetime]:
        return parse_timestamp(self.created_at)


class PackageFileRecord(BaseModel):
    """One file attached to a package version."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    created_at: str = ""
    size: int = 0
    version: str
    file_name: str = Field(min_length=1)
    file_sha256: str = Field(min_length=1)

    @field_validator("created_at", mode="before")
    @classmethod
    def _default_created_at(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("size", mode="before")
    @classmethod
    def _default_size(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("file_name")
    @classmethod
    def _bare_file_name(cls, v: str) -> str:
        if "/" in v or "\\" in v or v in {".", ".."}:
            raise ValueError(f"file_name must be a bare file name, got {v!r}")
        return v

    @field_validator("file_sha256")
    @classmethod
    def _normalize_digest(cls, v: str) -> str:
        return v.strip().lower()


def parse_package_records(payload: Iterable[Any]) -> List[PackageRecord]:
    """Validate a decoded listing page into :class:`PackageRecord` objects."""

    records: List[PackageRecord] = []
    for entry in payload:
        try:
            records.append(PackageRecord.model_validate(entry))
        except ValidationError as exc:
            raise MalformedResponseError(f"invalid package record {entry!r}: {exc}") from exc
    return records


def parse_file_records(payload: Any, version: str) -> List[PackageFileRecord]:
    """Validate a package file listing, stamping each entry with ``version``."""

    if not isinstance(payload, list):
        raise MalformedResponseError("package file listing is not a JSON array")
    records: List[PackageFileRecord] = []
    for entry in payload:
        if not isinstance(entry, dict):
            raise MalformedResponseError(f"invalid package file record {entry!r}")
        try:
            records.append(PackageFileRecord.model_validate({**entry, "version": version}))
        except ValidationError as exc:
            raise MalformedResponseError(f"invalid package file record {entry!r}: {exc}") from exc
    return records
