"""Lazy walker over page-numbered registry listings."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .errors import ArgumentError, MalformedResponseError
from .net import RegistryGateway

__all__ = ["DEFAULT_PAGE_SIZE", "walk_pages"]

LOGGER = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


def walk_pages(
    gateway: RegistryGateway,
    endpoint: str,
    params: Optional[Mapping[str, Any]] = None,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_pages: int = 1,
) -> Iterator[List[Any]]:
    """Yield decoded JSON arrays from ``endpoint`` one page at a time.

    Pages are numbered from 1 and every request carries ``per_page`` and
    ``page``.  Walking stops on an empty page, after a page shorter than
    ``page_size``, or once ``max_pages`` pages were fetched.  A server that
    returns a short page and then more data is therefore truncated.

    A failing request raises :class:`HttpError` from the iterator; pages that
    were already yielded stay with the consumer.

    Raises:
        ArgumentError: If ``page_size`` or ``max_pages`` is smaller than 1.
        MalformedResponseError: If a page is not a JSON array.
    """

    if page_size < 1:
        raise ArgumentError(f"page_size must be at least 1, got {page_size}")
    if max_pages < 1:
        raise ArgumentError(f"max_pages must be at least 1, got {max_pages}")
    return _walk(gateway, endpoint, dict(params or {}), page_size, max_pages)


def _walk(
    gateway: RegistryGateway,
    endpoint: str,
    params: Dict[str, Any],
    page_size: int,
    max_pages: int,
) -> Iterator[List[Any]]:
    for page in range(1, max_pages + 1):
        query = {**params, "per_page": page_size, "page": page}
        payload = gateway.get_json(endpoint, params=query)
        if not isinstance(payload, list):
            raise MalformedResponseError(f"page {page} of {endpoint} is not a JSON array")
        if not payload:
            return
        yield payload
        if len(payload) < page_size:
            LOGGER.debug(
                "short page %d of %s (%d < %d); stopping",
                page,
                endpoint,
                len(payload),
                page_size,
                extra={"stage": "paginate"},
            )
            return
