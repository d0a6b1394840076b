"""MainChain — this node's connection to the consensus chain.

Wraps an :class:`ABCIClient` with a local cache of abstracts this node
has anchored, and a stop switch used during shutdown.
"""

from __future__ import annotations

import logging
import threading

from sdl_node.mainchain.abci_client import ABCIClient, bytes_to_hex
from sdl_node.mainchain.results import CommitResult, CommitStatus

logger = logging.getLogger(__name__)


class MainChain:
    """Anchors abstracts on the consensus chain and checks their presence."""

    def __init__(self, client: ABCIClient) -> None:
        self.client = client
        self._lock = threading.Lock()
        self._anchored: set[bytes] = set()
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def anchored_count(self) -> int:
        """Number of abstracts this node anchored successfully."""
        with self._lock:
            return len(self._anchored)

    async def commit_abstract(self, abstract: bytes) -> CommitResult:
        """Commit an abstract and remember its anchor hash on success."""
        if self._stopped:
            logger.info("Main chain stopped, not committing abstract")
            return CommitResult.failure(CommitStatus.TRANSPORT_FAILURE, "main chain stopped")

        result = await self.client.commit(abstract)
        if result.ok:
            with self._lock:
                self._anchored.add(result.anchor_hash)
            logger.debug("Abstract anchored: %s", bytes_to_hex(result.anchor_hash))
        return result

    async def is_present(self, anchor_hash: bytes) -> bool:
        """Check whether an anchor hash is on the chain.

        Hashes anchored by this node are answered from the local cache.
        """
        with self._lock:
            if anchor_hash in self._anchored:
                return True
        if self._stopped:
            return False
        return await self.client.query(anchor_hash)

    def stop(self) -> None:
        """Refuse further chain calls. Calls already in flight complete."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Main chain connection to %s stopped", self.client.address)
