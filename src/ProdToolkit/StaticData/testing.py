"""Helpers for exercising static data sync without network access."""

from __future__ import annotations

import contextlib
import io
import json
import tarfile
import time
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union

import httpx

from .net import configure_http_client, reset_http_client

Route = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]

__all__ = [
    "MockRoutes",
    "build_tarball",
    "use_mock_http_client",
]


@contextlib.contextmanager
def use_mock_http_client(transport: httpx.BaseTransport, **client_kwargs) -> Iterator[httpx.Client]:
    """Temporarily install an HTTPX client backed by ``transport``."""

    client = httpx.Client(transport=transport, **client_kwargs)
    configure_http_client(client)
    try:
        yield client
    finally:
        reset_http_client()
        client.close()


class MockRoutes:
    """URL-keyed responses served through :class:`httpx.MockTransport`.

    Unknown URLs answer ``404``.  Every request is recorded in ``requests``.
    """

    def __init__(self) -> None:
        self._routes: Dict[str, Route] = {}
        self.requests: List[httpx.Request] = []

    def add(self, url: str, route: Route) -> None:
        self._routes[url] = route

    def add_json(self, url: str, payload: Any, *, status: int = 200) -> None:
        self.add(url, httpx.Response(status, content=json.dumps(payload).encode("utf-8")))

    def add_bytes(self, url: str, content: bytes, *, status: int = 200) -> None:
        self.add(url, httpx.Response(status, content=content))

    def add_status(self, url: str, status: int) -> None:
        self.add(url, httpx.Response(status))

    def urls(self) -> List[str]:
        return [str(request.url) for request in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, request=request)
        if callable(route):
            return route(request)
        return httpx.Response(
            route.status_code,
            headers=route.headers,
            content=route.content,
            request=request,
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def build_tarball(members: Mapping[str, bytes], *, mtime: Optional[float] = None) -> bytes:
    """Return a gzip tarball holding ``members`` (path to content)."""

    stamp = int(mtime if mtime is not None else time.time())
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mtime = stamp
            archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()
