# === NAVMAP v1 ===
# {
#   "module": "RegistryOps.PackageRegistry.retention",
#   "purpose": "Decide which package versions to prune and delete them",
#   "sections": [
#     {"id": "policy", "name": "RetentionPolicy", "anchor": "class-retentionpolicy", "kind": "class"},
#     {"id": "decisions", "name": "Decisions", "anchor": "DEC", "kind": "class"},
#     {"id": "evaluate-package", "name": "evaluate_package", "anchor": "function-evaluate-package", "kind": "function"},
#     {"id": "retentionengine", "name": "RetentionEngine", "anchor": "class-retentionengine", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Retention engine for package versions.

Responsibilities:
- Evaluate every version of a package against a :class:`RetentionPolicy`
- Keep young, protected and latest versions; mark the rest for deletion
- Delete marked versions in destructive mode, one package at a time

Rules are applied per record in this order, the first one that applies wins:

1. unparsable ``created_at``  -> retained (``malformed_timestamp``)
2. not older than the cut-off -> retained (``too_young``)
3. version matches a protected pattern -> retained (``protected``)
4. ``retain_latest`` and first record and nothing deleted yet -> retained (``latest``)
5. otherwise -> deleted

:func:`evaluate_package` is pure; dry runs and destructive runs share it so
both see the same decisions.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Tuple

from .catalog import PackageCatalog, packages_endpoint
from .errors import PackageNotFoundError, PackageRegistryError, PolicyError
from .net import RegistryGateway
from .records import PackageRecord
from .settings import VERBOSE, RegistrySettings
from .transfer import DRY_RUN_MARKER

__all__ = [
    "PRUNE_MAX_PAGES",
    "RetainReason",
    "RetentionPolicy",
    "PruneDecision",
    "PackagePruneSummary",
    "format_duration",
    "evaluate_package",
    "RetentionEngine",
]

LOGGER = logging.getLogger(__name__)

PRUNE_MAX_PAGES = 1000


# ============================================================================
# POLICY
# ============================================================================


@dataclass(frozen=True)
class RetentionPolicy:
    """Immutable pruning policy.

    Attributes:
        max_age_days: Versions created before ``now - max_age_days`` may be deleted.
        protected_version_patterns: Regexes checked in order with ``re.search``.
        retain_latest: Keep the first (newest) version of each package.
    """

    max_age_days: int
    protected_version_patterns: Tuple[str, ...] = ()
    retain_latest: bool = True
    _compiled: Tuple[Pattern[str], ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.max_age_days, bool) or not isinstance(self.max_age_days, int):
            raise PolicyError(f"max age must be an integer number of days, got {self.max_age_days!r}")
        if self.max_age_days < 1:
            raise PolicyError(f"invalid max age: {self.max_age_days} days; must be >= 1")
        patterns = tuple(p for p in self.protected_version_patterns if p)
        compiled = []
        for pattern in patterns:
            try:
                compiled.append(re.compile(pattern))
            except re.error as exc:
                raise PolicyError(f"invalid protected version pattern {pattern!r}: {exc}") from exc
        object.__setattr__(self, "protected_version_patterns", patterns)
        object.__setattr__(self, "_compiled", tuple(compiled))

    @classmethod
    def from_settings(
        cls, settings: RegistrySettings, extra_patterns: Sequence[str] = ()
    ) -> "RetentionPolicy":
        return cls(
            max_age_days=settings.prune_older_than_days,
            protected_version_patterns=(*settings.prune_protect_versions, *extra_patterns),
            retain_latest=settings.prune_retain_latest,
        )

    def protecting_pattern(self, version: str) -> Optional[str]:
        """Return the first pattern matching ``version``, if any."""

        for compiled in self._compiled:
            if compiled.search(version):
                return compiled.pattern
        return None

    def cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self.max_age_days)


# ============================================================================
# DECISIONS (DEC)
# ============================================================================


class RetainReason(str, Enum):
    MALFORMED_TIMESTAMP = "malformed_timestamp"
    TOO_YOUNG = "too_young"
    PROTECTED = "protected"
    LATEST = "latest"


@dataclass(frozen=True)
class PruneDecision:
    """Outcome for one package record; ``reason`` is ``None`` for deletions."""

    record: PackageRecord
    reason: Optional[RetainReason] = None
    pattern: Optional[str] = None
    age_seconds: Optional[int] = None

    @property
    def deleted(self) -> bool:
        return self.reason is None

    @property
    def retained(self) -> bool:
        return self.reason is not None


@dataclass
class PackagePruneSummary:
    """Per-package prune result."""

    name: str
    decisions: List[PruneDecision] = field(default_factory=list)
    executed: bool = False
    deleted_count: int = 0
    error: Optional[str] = None

    @property
    def evaluated_count(self) -> int:
        return len(self.decisions)

    @property
    def to_delete(self) -> List[PruneDecision]:
        return [decision for decision in self.decisions if decision.deleted]

    @property
    def retained(self) -> List[PruneDecision]:
        return [decision for decision in self.decisions if decision.retained]

    @property
    def failed(self) -> bool:
        return self.error is not None


def format_duration(seconds: int) -> str:
    """Render ``seconds`` as ``HHh MMm SSs`` (hours are not wrapped into days)."""

    seconds = max(int(seconds), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}h {minutes:02d}m {secs:02d}s"


def evaluate_package(
    records: Sequence[PackageRecord], policy: RetentionPolicy, now: datetime
) -> List[PruneDecision]:
    """Classify ``records`` (one package, newest version first) under ``policy``."""

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    cutoff = policy.cutoff(now)
    decisions: List[PruneDecision] = []
    deleted = 0
    for position, record in enumerate(records):
        created = record.created_at_datetime()
        if created is None:
            decisions.append(PruneDecision(record, RetainReason.MALFORMED_TIMESTAMP))
            continue
        age = int((now - created).total_seconds())
        if created >= cutoff:
            decisions.append(PruneDecision(record, RetainReason.TOO_YOUNG, age_seconds=age))
            continue
        pattern = policy.protecting_pattern(record.version)
        if pattern is not None:
            decisions.append(
                PruneDecision(record, RetainReason.PROTECTED, pattern=pattern, age_seconds=age)
            )
            continue
        if policy.retain_latest and position == 0 and deleted == 0:
            decisions.append(PruneDecision(record, RetainReason.LATEST, age_seconds=age))
            continue
        deleted += 1
        decisions.append(PruneDecision(record, age_seconds=age))
    return decisions


# ============================================================================
# ENGINE
# ============================================================================


def _group_by_name(records: Sequence[PackageRecord]) -> Dict[str, List[PackageRecord]]:
    groups: Dict[str, List[PackageRecord]] = {}
    for record in records:
        groups.setdefault(record.name, []).append(record)
    return groups


def _describe(decision: PruneDecision) -> str:
    record = decision.record
    text = f"{record.name}, version={record.version}, created_at={record.created_at}"
    if decision.age_seconds is not None:
        text += f", age: {format_duration(decision.age_seconds)}"
    return text


class RetentionEngine:
    """Apply a :class:`RetentionPolicy` to the packages of a project."""

    def __init__(
        self,
        gateway: RegistryGateway,
        catalog: PackageCatalog,
        policy: RetentionPolicy,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.gateway = gateway
        self.catalog = catalog
        self.policy = policy
        self._clock = clock

    def prune(
        self, project: str, package: Optional[str] = None, *, destructive: bool
    ) -> List[PackagePruneSummary]:
        """Evaluate and (when ``destructive``) delete old versions.

        A failed delete ends work on that package; its summary carries the
        error and the remaining packages are still processed.

        Raises:
            PackageNotFoundError: If the project has no packages, or none named ``package``.
        """

        records = self.catalog.list_versions(project, package, max_pages=PRUNE_MAX_PAGES)
        if not records:
            raise PackageNotFoundError(f"no packages found for {project!r}, package={package!r}")
        groups = _group_by_name(records)
        if package:
            if package not in groups:
                raise PackageNotFoundError(f"no packages found for {project!r}, package={package!r}")
            groups = {package: groups[package]}

        now = self._clock()
        LOGGER.info(
            "current time: %s; will prune packages older than %d days, max creation date: %s",
            now.isoformat(timespec="seconds"),
            self.policy.max_age_days,
            self.policy.cutoff(now).isoformat(timespec="seconds"),
            extra={"stage": "prune", "project": project},
        )
        project_id = self.catalog.resolver.resolve(project) if destructive else None
        summaries = []
        for name, group in groups.items():
            summaries.append(self._prune_package(project_id, name, group, now, destructive))
        return summaries

    def _prune_package(
        self,
        project_id: Optional[int],
        name: str,
        records: List[PackageRecord],
        now: datetime,
        destructive: bool,
    ) -> PackagePruneSummary:
        summary = PackagePruneSummary(
            name=name, decisions=evaluate_package(records, self.policy, now), executed=destructive
        )
        for decision in summary.decisions:
            if decision.retained:
                label = decision.reason.value if decision.reason else ""
                if decision.pattern:
                    label = f"{label}: {decision.pattern}"
                LOGGER.log(VERBOSE, "skipping [%s]: %s", label, _describe(decision))
                continue
            if destructive and project_id is not None:
                endpoint = f"{packages_endpoint(project_id)}/{decision.record.id}"
                try:
                    self.gateway.delete(endpoint)
                except PackageRegistryError as exc:
                    summary.error = f"can't delete {_describe(decision)}: {exc}"
                    LOGGER.error(summary.error, extra={"stage": "prune", "package": name})
                    break
                summary.deleted_count += 1
                LOGGER.info("deleted version: %s", _describe(decision), extra={"stage": "prune"})
            else:
                summary.deleted_count += 1
                LOGGER.info(
                    "%s deleted version: %s", DRY_RUN_MARKER, _describe(decision),
                    extra={"stage": "prune", "dry_run": True},
                )
        LOGGER.info(
            "[%s]: deleted %d/%d packages",
            name,
            summary.deleted_count,
            summary.evaluated_count,
            extra={"stage": "prune", "package": name},
        )
        return summary
