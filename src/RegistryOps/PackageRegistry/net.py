# === NAVMAP v1 ===
# {
#   "module": "RegistryOps.PackageRegistry.net",
#   "purpose": "Authenticated HTTPX gateway for the package registry REST API",
#   "sections": [
#     {"id": "helpers", "name": "Client construction helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "gateway", "name": "RegistryGateway", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Authenticated HTTPX gateway used by every registry-facing component.

All calls go through :class:`RegistryGateway`, which owns one ``httpx.Client``
configured with the certifi trust store, redirect following and a single
authentication header.  A response in the 2xx/3xx range is a success; any
other status, a timeout, or a transport failure raises :class:`HttpError`.
Nothing is retried.
"""

from __future__ import annotations

import logging
import ssl
import time
from pathlib import Path
from typing import Any, Iterator, Mapping, MutableMapping, Optional
from urllib.parse import quote

import certifi
import httpx

from . import __version__
from .errors import HttpError, MalformedResponseError
from .settings import RegistrySettings

__all__ = ["RegistryGateway", "configure_transport", "reset_transport", "quote_segment"]

LOGGER = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 20
_BODY_SNIPPET = 200
_TRANSPORT_OVERRIDE: Optional[httpx.BaseTransport] = None

# --- Client construction helpers ----------------------------------------------


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def _request_hook(request: httpx.Request) -> None:
    meta: MutableMapping[str, object] = request.extensions.setdefault("pkgregistry_meta", {})  # type: ignore[assignment]
    meta["start_time"] = time.perf_counter()
    LOGGER.debug(
        "%s %s",
        request.method,
        request.url,
        extra={"stage": "http", "method": request.method, "url": str(request.url)},
    )


def _response_hook(response: httpx.Response) -> None:
    meta = response.request.extensions.get("pkgregistry_meta", {})
    start = meta.get("start_time") if isinstance(meta, Mapping) else None
    elapsed = time.perf_counter() - start if isinstance(start, (int, float)) else None
    LOGGER.debug(
        "%s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
        extra={
            "stage": "http",
            "url": str(response.request.url),
            "status": response.status_code,
            "elapsed_sec": elapsed,
        },
    )


def _iter_file(path: Path, chunk_size: int = _CHUNK_SIZE) -> Iterator[bytes]:
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk


def quote_segment(value: str) -> str:
    """Percent-encode ``value`` for use as a single URL path segment."""

    return quote(str(value), safe="")


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 400


def configure_transport(transport: httpx.BaseTransport) -> None:
    """Route gateways built without an explicit transport through ``transport`` (test helper)."""

    global _TRANSPORT_OVERRIDE
    _TRANSPORT_OVERRIDE = transport


def reset_transport() -> None:
    global _TRANSPORT_OVERRIDE
    _TRANSPORT_OVERRIDE = None


# --- RegistryGateway -----------------------------------------------------------


class RegistryGateway:
    """Single point of contact with the registry REST API.

    Args:
        settings: Resolved configuration; supplies the API base URL, the
            authentication header and both timeouts.
        transport: Optional HTTPX transport replacing the network, used by
            :mod:`RegistryOps.PackageRegistry.testing`.

    Raises:
        ArgumentError: If neither a job token nor a private token is configured.
    """

    def __init__(
        self,
        settings: RegistrySettings,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        header, token = settings.auth_header()
        self.settings = settings
        self.base_url = settings.api_url
        self._api_timeout = httpx.Timeout(settings.api_timeout)
        self._transfer_timeout = httpx.Timeout(settings.transfer_timeout)
        if transport is None:
            transport = _TRANSPORT_OVERRIDE
        # proxy variables would mount real transports over an injected one
        trust_env = transport is None
        if transport is None:
            transport = httpx.HTTPTransport(verify=_build_ssl_context(), retries=0)
        self._client = httpx.Client(
            transport=transport,
            headers={header: token, "User-Agent": f"pkgregistry/{__version__}"},
            timeout=self._api_timeout,
            trust_env=trust_env,
            follow_redirects=True,
            event_hooks={"request": [_request_hook], "response": [_response_hook]},
        )

    def __enter__(self) -> "RegistryGateway":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def url_for(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    # -- core ---------------------------------------------------------------

    def _raise_for_status(self, response: httpx.Response) -> None:
        if _is_success(response.status_code):
            return
        try:
            body = response.text
        except httpx.ResponseNotRead:
            body = response.read().decode("utf-8", errors="replace")
        raise HttpError(
            f"{response.request.method} {response.request.url} failed: "
            f"HTTP {response.status_code} {body[:_BODY_SNIPPET]}".rstrip(),
            status_code=response.status_code,
            url=str(response.request.url),
            body=body,
        )

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        transfer: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one request and return the response if its status is 2xx/3xx."""

        url = self.url_for(endpoint)
        timeout = self._transfer_timeout if transfer else self._api_timeout
        try:
            response = self._client.request(method, url, params=params, timeout=timeout, **kwargs)
        except httpx.HTTPError as exc:
            raise HttpError(f"{method} {url} failed: {exc}", url=url) from exc
        self._raise_for_status(response)
        return response

    def get_json(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """GET ``endpoint`` and decode the body as JSON."""

        response = self.request("GET", endpoint, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"GET {response.request.url} returned a body that is not JSON"
            ) from exc

    def download(self, endpoint: str, destination: Path) -> int:
        """Stream ``endpoint`` into ``destination`` and return the number of bytes written.

        Whatever was written before a failure stays on disk.
        """

        url = self.url_for(endpoint)
        written = 0
        try:
            with self._client.stream("GET", url, timeout=self._transfer_timeout) as response:
                self._raise_for_status(response)
                with destination.open("wb") as handle:
                    for chunk in response.iter_bytes(chunk_size=_CHUNK_SIZE):
                        handle.write(chunk)
                        written += len(chunk)
        except httpx.HTTPError as exc:
            raise HttpError(f"GET {url} failed: {exc}", url=url) from exc
        return written

    def upload(
        self,
        endpoint: str,
        source: Path,
        *,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """PUT the bytes of ``source`` to ``endpoint`` and return the decoded answer."""

        response = self.request(
            "PUT",
            endpoint,
            params=params,
            transfer=True,
            content=_iter_file(source),
            headers={"Content-Length": str(source.stat().st_size)},
        )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def delete(self, endpoint: str) -> httpx.Response:
        return self.request("DELETE", endpoint)
