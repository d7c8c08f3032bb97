# === NAVMAP v1 ===
# {
#   "module": "RegistryOps.PackageRegistry.cli",
#   "purpose": "Typer command-line interface for the package registry client",
#   "sections": [
#     {"id": "context", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "dispatch", "name": "Command dispatch table", "anchor": "DSP", "kind": "helpers"},
#     {"id": "callback", "name": "Global options", "anchor": "function-root", "kind": "function"},
#     {"id": "commands", "name": "Commands", "anchor": "CMD", "kind": "api"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Typer CLI for the package registry client.

Provides ``pkgregistry`` with:
- Global options layered over :class:`RegistrySettings` (environment defaults)
- One subcommand per :class:`Command` member, checked at import time
- ``FATAL: <message>`` on stderr and exit status 1 for every client error
- Temporary file cleanup when the command finishes, successful or not

Example:
    $ pkgregistry versions my-group/my-repo tool --max-versions 3
    $ pkgregistry -y -O 14 prune my-group/my-repo
"""

from __future__ import annotations

import functools
import json
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

import typer
from rich.console import Console

from . import __version__
from .archives import archive_timestamp, create_archive, set_tree_mtime
from .catalog import PackageCatalog
from .cleanup import CleanupRegistry
from .errors import PackageNotFoundError, PackageRegistryError
from .formatters import FILE_COLUMNS, PACKAGE_COLUMNS, file_rows, format_table, package_rows
from .install import install_package
from .logging_utils import setup_logging
from .net import RegistryGateway
from .projects import ProjectIdCache, ProjectResolver
from .records import PackageRecord
from .retention import RetentionEngine, RetentionPolicy
from .settings import RegistrySettings, load_settings
from .transfer import default_package_name, fetch_package, upload_files

__all__ = ["Command", "CliContext", "app", "main"]

PROG_NAME = "pkgregistry"
VERSIONS_MAX_PAGES = 100

_err_console = Console(stderr=True, highlight=False)


# ============================================================================
# CONTEXT
# ============================================================================


class CliContext:
    """Shared state for one CLI invocation.

    The gateway, project id cache and catalog are built on first use so that
    commands which never talk to the registry (``archive``) do not require a
    token.
    """

    def __init__(self, settings: RegistrySettings, extra_patterns: List[str]) -> None:
        self.settings = settings
        self.extra_patterns = list(extra_patterns)
        self.cleanup = CleanupRegistry(enabled=settings.cleanup)
        self._gateway: Optional[RegistryGateway] = None
        self._catalog: Optional[PackageCatalog] = None

    @property
    def gateway(self) -> RegistryGateway:
        if self._gateway is None:
            self._gateway = RegistryGateway(self.settings)
        return self._gateway

    @property
    def catalog(self) -> PackageCatalog:
        if self._catalog is None:
            resolver = ProjectResolver(self.gateway, ProjectIdCache.from_settings(self.settings))
            self._catalog = PackageCatalog(self.gateway, resolver)
        return self._catalog

    @property
    def resolver(self) -> ProjectResolver:
        return self.catalog.resolver

    def echo_table(self, lines: List[str]) -> None:
        for line in lines:
            typer.echo(line)

    def close(self) -> None:
        try:
            self.cleanup.perform()
        finally:
            if self._gateway is not None:
                self._gateway.close()
                self._gateway = None


# ============================================================================
# DISPATCH TABLE (DSP)
# ============================================================================


class Command(str, Enum):
    PROJECT_ID = "project_id"
    PACKAGES = "packages"
    VERSIONS = "versions"
    LATEST = "latest"
    INFO = "info"
    FETCH = "fetch"
    INSTALL = "install"
    ARCHIVE = "archive"
    UPLOAD = "upload"
    PRUNE = "prune"


COMMANDS: Dict[Command, Callable[..., None]] = {}

app = typer.Typer(
    name=PROG_NAME,
    help="Operate a GitLab generic package registry: list, fetch, install, upload, prune.",
    no_args_is_help=True,
    add_completion=False,
    pretty_exceptions_enable=False,
)


def _fatal(message: object) -> typer.Exit:
    _err_console.print(f"FATAL: {message}", markup=False, soft_wrap=True)
    return typer.Exit(1)


def _command(command: Command) -> Callable[[Callable[..., None]], Callable[..., None]]:
    """Register ``func`` as the handler of ``command``; client and OS errors exit 1."""

    def decorator(func: Callable[..., None]) -> Callable[..., None]:
        @functools.wraps(func)
        def wrapper(*args: object, **kwargs: object) -> None:
            try:
                func(*args, **kwargs)
            except PackageRegistryError as exc:
                raise _fatal(exc) from exc
            except OSError as exc:
                raise _fatal(exc) from exc

        COMMANDS[command] = wrapper
        app.command(name=command.value)(wrapper)
        return wrapper

    return decorator


def _validate_dispatch_table() -> None:
    registered = {info.name for info in app.registered_commands}
    expected = {command.value for command in Command}
    missing = expected - registered
    unknown = registered - expected
    if missing or unknown or set(COMMANDS) != set(Command):
        raise RuntimeError(
            f"command table mismatch: missing={sorted(missing)} unknown={sorted(unknown)}"
        )


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"{PROG_NAME} {__version__}")
        raise typer.Exit(0)


# ============================================================================
# GLOBAL OPTIONS
# ============================================================================


@app.callback()
def root(
    ctx: typer.Context,
    gitlab_api: Optional[str] = typer.Option(
        None, "--gitlab-api", "-A", help="Registry API base URL [$CI_API_V4_URL]"
    ),
    gitlab_token: Optional[str] = typer.Option(
        None, "--gitlab-token", "-T", help="Personal access token [$GITLAB_TOKEN]"
    ),
    job_token: Optional[str] = typer.Option(
        None, "--job-token", "-J", help="CI job token [$CI_JOB_TOKEN]"
    ),
    dst_dir: Optional[Path] = typer.Option(
        None, "--dst-dir", "-d", help="Fetch/install destination directory [$DOWNLOAD_DIR]"
    ),
    older_than: Optional[int] = typer.Option(
        None, "--older-than", "-O", help="prune: remove versions older than DAYS [$PRUNE_OLDER_THAN_DAYS]"
    ),
    protect_version: Optional[List[str]] = typer.Option(
        None, "--protect-version", "-P", help="prune: never remove versions matching this regex"
    ),
    no_retain_latest: bool = typer.Option(
        False, "--no-retain-latest", "-X", help="prune: also remove the latest version"
    ),
    do_it: bool = typer.Option(
        False, "--do-it", "-y", help="Really delete/upload; without it those commands only log"
    ),
    no_cleanup: bool = typer.Option(False, "--no-cleanup", help="Keep temporary files"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    debug: bool = typer.Option(False, "--debug", "-D", help="Debug output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Warnings only, no table headers"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
) -> None:
    """Package registry client.

    Defaults come from the environment (CI variables are honoured); options
    given here take precedence.
    """

    log_level = None
    if quiet:
        log_level = "WARNING"
    if verbose:
        log_level = "VERBOSE"
    if debug:
        log_level = "DEBUG"
    try:
        settings = load_settings(
            api_url=gitlab_api,
            private_token=gitlab_token,
            job_token=job_token,
            download_dir=dst_dir,
            prune_older_than_days=older_than,
            prune_retain_latest=False if no_retain_latest else None,
            destructive=True if do_it else None,
            cleanup=False if no_cleanup else None,
            print_headers=False if quiet else None,
            log_level=log_level,
        )
    except PackageRegistryError as exc:
        raise _fatal(exc) from exc

    setup_logging(level=settings.log_level_int(), log_dir=settings.log_dir)
    state = CliContext(settings, protect_version or [])
    ctx.obj = state
    ctx.call_on_close(state.close)


def _state(ctx: typer.Context) -> CliContext:
    return ctx.find_root().obj


def _package_names(state: CliContext, project: str, package: Optional[str]) -> List[str]:
    if package:
        return [package]
    names = state.catalog.list_names(project)
    if not names:
        raise PackageNotFoundError(f"no packages found for: {project}")
    return names


# ============================================================================
# COMMANDS (CMD)
# ============================================================================


@_command(Command.PROJECT_ID)
def project_id(ctx: typer.Context, gwr: str = typer.Argument(..., help="group/repo")) -> None:
    """Print the numeric id of a project."""

    typer.echo(_state(ctx).resolver.resolve(gwr))


@_command(Command.PACKAGES)
def packages(ctx: typer.Context, gwr: str = typer.Argument(..., help="group/repo")) -> None:
    """List distinct package names."""

    for name in _state(ctx).catalog.list_names(gwr):
        typer.echo(name)


@_command(Command.VERSIONS)
def versions(
    ctx: typer.Context,
    gwr: str = typer.Argument(..., help="group/repo"),
    package: Optional[str] = typer.Argument(None, help="Package name (all packages if omitted)"),
    max_versions: int = typer.Option(5, "--max-versions", "-n", min=1, help="Versions per package"),
) -> None:
    """List the newest versions of one or all packages."""

    state = _state(ctx)
    rows: List[PackageRecord] = []
    for name in _package_names(state, gwr, package):
        records = [
            record
            for record in state.catalog.list_versions(gwr, name, max_pages=VERSIONS_MAX_PAGES)
            if record.name == name
        ][:max_versions]
        if not records:
            raise PackageNotFoundError(f"no packages found for gwr={gwr}, package={name}")
        rows.extend(records)
    state.echo_table(
        format_table(PACKAGE_COLUMNS, package_rows(rows), headers=state.settings.print_headers)
    )


@_command(Command.LATEST)
def latest(
    ctx: typer.Context,
    gwr: str = typer.Argument(..., help="group/repo"),
    package: Optional[str] = typer.Argument(None, help="Package name (all packages if omitted)"),
) -> None:
    """Show the newest version of one or all packages."""

    state = _state(ctx)
    rows = []
    for name in _package_names(state, gwr, package):
        record = state.catalog.latest(gwr, name)
        if record is not None:
            rows.append(record)
    state.echo_table(
        format_table(PACKAGE_COLUMNS, package_rows(rows), headers=state.settings.print_headers)
    )


@_command(Command.INFO)
def info(
    ctx: typer.Context,
    gwr: str = typer.Argument(..., help="group/repo"),
    package: Optional[str] = typer.Argument(None, help="Package name (defaults to the repo name)"),
    version: Optional[str] = typer.Argument(None, help="Version (defaults to the newest)"),
) -> None:
    """Show the files of a package version."""

    state = _state(ctx)
    details = state.catalog.info(gwr, package or default_package_name(gwr), version)
    state.echo_table(
        format_table(FILE_COLUMNS, file_rows(details.files), headers=state.settings.print_headers)
    )


@_command(Command.FETCH)
def fetch(
    ctx: typer.Context,
    gwr: str = typer.Argument(..., help="group/repo"),
    package: Optional[str] = typer.Argument(None, help="Package name (defaults to the repo name)"),
    version: Optional[str] = typer.Argument(None, help="Version (defaults to the newest)"),
) -> None:
    """Download and verify the files of a package version into --dst-dir."""

    state = _state(ctx)
    for path in fetch_package(
        state.gateway, state.catalog, gwr, package, version, state.settings.download_dir
    ):
        typer.echo(path)


@_command(Command.INSTALL)
def install(
    ctx: typer.Context,
    gwr: str = typer.Argument(..., help="group/repo"),
    package: Optional[str] = typer.Argument(None, help="Package name (defaults to the repo name)"),
    version: Optional[str] = typer.Argument(None, help="Version (defaults to the newest)"),
) -> None:
    """Fetch a package version and unpack it into --dst-dir."""

    state = _state(ctx)
    for path in install_package(
        state.gateway,
        state.catalog,
        gwr,
        package,
        version,
        state.settings.download_dir,
        state.cleanup,
        max_compression_ratio=state.settings.max_compression_ratio,
    ):
        typer.echo(path)


@_command(Command.ARCHIVE)
def archive(
    ctx: typer.Context,
    archive_file: Path = typer.Argument(..., metavar="ARCHIVE", help="Archive to create"),
    src_dir: Path = typer.Argument(..., help="Directory the patterns are relative to"),
    patterns: List[str] = typer.Argument(..., help="Glob patterns of files to include"),
) -> None:
    """Create a reproducible archive (.zip, .tar, .tar.gz, .tar.bz2, .tar.xz)."""

    state = _state(ctx)
    timestamp = archive_timestamp(state.settings)
    set_tree_mtime(src_dir, timestamp)
    create_archive(archive_file, src_dir, patterns, timestamp=timestamp)
    typer.echo(archive_file)


@_command(Command.UPLOAD)
def upload(
    ctx: typer.Context,
    gwr: str = typer.Argument(..., help="group/repo"),
    package: str = typer.Argument(..., help="Package name"),
    version: str = typer.Argument(..., help="Package version"),
    files: List[Path] = typer.Argument(..., help="Files to upload"),
) -> None:
    """Upload files as a generic package version (requires --do-it)."""

    state = _state(ctx)
    answers = upload_files(
        state.gateway,
        state.resolver,
        gwr,
        package,
        version,
        files,
        destructive=state.settings.destructive,
    )
    for answer in answers:
        typer.echo(json.dumps(answer, indent=2, sort_keys=True))


@_command(Command.PRUNE)
def prune(
    ctx: typer.Context,
    gwr: str = typer.Argument(..., help="group/repo"),
    package: Optional[str] = typer.Argument(None, help="Package name (all packages if omitted)"),
) -> None:
    """Remove old package versions according to the retention policy (requires --do-it)."""

    state = _state(ctx)
    policy = RetentionPolicy.from_settings(state.settings, state.extra_patterns)
    engine = RetentionEngine(state.gateway, state.catalog, policy)
    summaries = engine.prune(gwr, package, destructive=state.settings.destructive)
    failed = [summary.name for summary in summaries if summary.failed]
    if failed:
        raise _fatal(f"prune failed for package(s): {', '.join(failed)}")


_validate_dispatch_table()


def main() -> None:
    """Console script entry point."""

    app(prog_name=PROG_NAME)


if __name__ == "__main__":
    main()
