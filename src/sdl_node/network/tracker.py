"""Tracker client — reports this node's running state to the shared registry."""

from __future__ import annotations

import asyncio
import logging

from aiohttp import ClientError, ClientSession, ClientTimeout

from sdl_node.errors import RegistryError

logger = logging.getLogger(__name__)

TRACKER_SERVER_ADDRESS = "localhost"
TRACKER_SERVER_PORT = 3000
TRACKER_TIMEOUT = ClientTimeout(total=5)


class TrackerClient:
    """Client for the tracker server.

    Updates are last-writer-wins; the tracker does no arbitration.
    """

    def __init__(
        self,
        address: str = f"{TRACKER_SERVER_ADDRESS}:{TRACKER_SERVER_PORT}",
        timeout: ClientTimeout = TRACKER_TIMEOUT,
    ) -> None:
        self.address = address
        self._timeout = timeout

    async def set_running(self, node_id: int, running: bool) -> None:
        """Mark a node as running or stopped.

        Raises:
            RegistryError: If the tracker cannot be reached or refuses the update.
        """
        url = f"http://{self.address}/set-node-status"
        payload = {"id": node_id, "running": running}
        try:
            async with ClientSession(timeout=self._timeout) as session:
                async with session.post(url, json=payload) as resp:
                    if resp.status != 200:
                        raise RegistryError(
                            f"Tracker refused status update for node {node_id}: HTTP {resp.status}"
                        )
        except (ClientError, asyncio.TimeoutError) as e:
            raise RegistryError(f"Cannot reach tracker at {self.address}: {e}") from e
        logger.debug("Node %d marked %s on tracker", node_id, "running" if running else "stopped")
