"""Formatting helpers for turning package records into fixed-width tables.

Each table is described by a tuple of :class:`Column` entries.  A column pads
its cell to ``width`` and, when ``truncate`` is set, cuts longer values so the
following columns stay aligned; the last column is left unpadded.  The layout
is stable so that shell pipelines consuming the output keep working.
"""

from __future__ import annotations

from typing import Iterable, List, NamedTuple, Sequence, Tuple

from .records import PackageFileRecord, PackageRecord

__all__ = [
    "Column",
    "PACKAGE_COLUMNS",
    "FILE_COLUMNS",
    "format_row",
    "format_table",
    "package_rows",
    "file_rows",
]


class Column(NamedTuple):
    header: str
    width: int = 0
    truncate: bool = False


PACKAGE_COLUMNS: Tuple[Column, ...] = (
    Column("ID", 10, True),
    Column("CREATED", 24, True),
    Column("PACKAGE", 45),
    Column("VERSION"),
)

FILE_COLUMNS: Tuple[Column, ...] = (
    Column("ID", 10, True),
    Column("CREATED", 24, True),
    Column("SIZE", 10, True),
    Column("VERSION", 50),
    Column("FILENAME", 50),
    Column("CHECKSUM"),
)


def format_row(columns: Sequence[Column], values: Sequence[object]) -> str:
    cells: List[str] = []
    last = len(columns) - 1
    for index, (column, value) in enumerate(zip(columns, values)):
        text = str(value)
        if column.truncate and column.width:
            text = text[: column.width]
        if index < last:
            text = text.ljust(column.width)
        cells.append(text)
    return " ".join(cells)


def format_table(
    columns: Sequence[Column], rows: Iterable[Sequence[object]], *, headers: bool = True
) -> List[str]:
    """Render ``rows`` as lines, with a header line first when ``headers`` is set."""

    lines: List[str] = []
    if headers:
        lines.append(format_row(columns, [column.header for column in columns]))
    lines.extend(format_row(columns, row) for row in rows)
    return lines


def package_rows(records: Iterable[PackageRecord]) -> List[Tuple[object, ...]]:
    return [(r.id, r.created_at, r.name, r.version) for r in records]


def file_rows(records: Iterable[PackageFileRecord]) -> List[Tuple[object, ...]]:
    return [(r.id, r.created_at, r.size, r.version, r.file_name, r.file_sha256) for r in records]
