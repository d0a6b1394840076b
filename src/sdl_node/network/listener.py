"""Connection listener — accepts transactions from peers over HTTP.

Each node runs a small aiohttp server on its node port. Peers POST
JSON-serialized transactions to ``/message``; what happens to them is
up to the connection handler installed by the application.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from aiohttp import web

from sdl_node.models import Transaction

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Transaction, str], Awaitable[None]]


class ConnectionListener:
    """HTTP server accepting peer connections between node start and kill."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 40000,
        handler: MessageHandler | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self._handler = handler
        self._app = web.Application()
        self._runner: web.AppRunner | None = None
        self.received = 0

        self._app.router.add_post("/message", self._handle_message)
        self._app.router.add_get("/health", self._handle_health)

    @property
    def running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Bind the port and start accepting connections.

        Raises:
            OSError: If the port cannot be bound.
        """
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        if self.port == 0:
            self.port = runner.addresses[0][1]
        logger.info("Listening for connections on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Stop accepting connections and release the port. Idempotent."""
        runner, self._runner = self._runner, None
        if runner is None:
            return
        await runner.cleanup()
        logger.info("Listener on port %d stopped", self.port)

    async def _handle_message(self, request: web.Request) -> web.Response:
        try:
            tx = Transaction.model_validate(await request.json())
        except ValueError:
            logger.debug("Rejected invalid message from %s", request.remote, exc_info=True)
            return web.json_response(
                {"status": "error", "detail": "invalid message"},
                status=400,
            )

        self.received += 1
        if self._handler:
            try:
                await self._handler(tx, request.remote or "unknown")
            except Exception:
                logger.exception("Error handling transaction %d", tx.number)
                return web.json_response({"status": "error"}, status=500)
        return web.json_response({"status": "ok"})

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy", "port": self.port})
