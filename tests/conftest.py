"""Shared fixtures: fake HTTP endpoints standing in for the consensus chain and tracker."""

from __future__ import annotations

import json
import socket
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer


class FakeEndpoint:
    """A running fake server and the calls it has received."""

    def __init__(self, server: TestServer) -> None:
        self.server = server
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.bodies: list[Any] = []

    @property
    def address(self) -> str:
        return f"{self.server.host}:{self.server.port}"


@asynccontextmanager
async def serve(routes: dict[tuple[str, str], Any]) -> AsyncIterator[FakeEndpoint]:
    """Serve canned responses.

    ``routes`` maps (method, path) to a body: a dict or list is returned
    as JSON, a str verbatim, an int as an empty response with that status.
    """
    app = web.Application()
    server = TestServer(app)
    endpoint = FakeEndpoint(server)

    def make_handler(body: Any):
        async def handler(request: web.Request) -> web.Response:
            endpoint.calls.append((request.path, dict(request.query)))
            if request.can_read_body:
                endpoint.bodies.append(await request.json())
            if isinstance(body, int):
                return web.Response(status=body)
            text = body if isinstance(body, str) else json.dumps(body)
            return web.Response(text=text, content_type="application/json")
        return handler

    for (method, path), body in routes.items():
        app.router.add_route(method, path, make_handler(body))

    await server.start_server()
    try:
        yield endpoint
    finally:
        await server.close()


@pytest.fixture
def fake_server():
    return serve


@pytest.fixture
def free_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
