"""Transaction sender — delivers transactions produced by patterns.

Transactions are queued from any thread (pattern executors run on their
own threads) and delivered one at a time by a worker task on the node's
event loop. Shutdown either drains the queue (:meth:`wait_until_done`)
or drops what is left (:meth:`shutdown_now`).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from sdl_node.errors import SenderInterruptedError
from sdl_node.models import Transaction

logger = logging.getLogger(__name__)

SendFunction = Callable[[Transaction], Awaitable[bool]]


class TransactionSender:
    """Queue and worker delivering transactions to their receivers."""

    def __init__(self, send: SendFunction) -> None:
        self._send = send
        self._queue: asyncio.Queue[Transaction] = asyncio.Queue()
        self._shutdown = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._worker: asyncio.Task[None] | None = None
        self._closed = False
        self.sent = 0
        self.failed = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Start the worker on the running event loop."""
        if self._worker is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._worker = self._loop.create_task(self._run(), name="transaction-sender")

    def schedule(self, tx: Transaction) -> bool:
        """Queue a transaction for sending. Safe to call from any thread.

        Returns:
            False if the sender is not running and the transaction was dropped.
        """
        if self._closed or self._loop is None:
            logger.debug("Sender not running, dropping transaction %d", tx.number)
            return False
        try:
            self._loop.call_soon_threadsafe(self._enqueue, tx)
        except RuntimeError:
            # Event loop already closed.
            logger.debug("Event loop closed, dropping transaction %d", tx.number)
            return False
        return True

    async def wait_until_done(self, timeout: float | None = None) -> None:
        """Wait until every queued transaction has been sent.

        Args:
            timeout: Maximum seconds to wait, or None to wait indefinitely.

        Raises:
            SenderInterruptedError: If the sender is shut down while waiting,
                or the timeout expires first.
        """
        # Let transactions handed over from other threads land in the queue.
        await asyncio.sleep(0)
        if self._closed:
            raise SenderInterruptedError("Transaction sender was shut down")

        join = asyncio.ensure_future(self._queue.join())
        stop = asyncio.ensure_future(self._shutdown.wait())
        try:
            done, _ = await asyncio.wait(
                {join, stop},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            join.cancel()
            stop.cancel()

        if self._shutdown.is_set():
            raise SenderInterruptedError("Transaction sender was shut down")
        if join not in done:
            raise SenderInterruptedError(
                f"Transaction sender did not finish within {timeout}s "
                f"({self._queue.qsize()} still queued)"
            )

    def shutdown_now(self) -> list[Transaction]:
        """Stop the worker without waiting and drop queued transactions.

        Must be called on the event loop thread. Idempotent.

        Returns:
            The transactions that were never sent.
        """
        if self._closed:
            return []
        self._closed = True
        self._shutdown.set()

        dropped: list[Transaction] = []
        while True:
            try:
                dropped.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()

        if self._worker is not None:
            self._worker.cancel()
        logger.info("Transaction sender shut down, %d transactions dropped", len(dropped))
        return dropped

    def _enqueue(self, tx: Transaction) -> None:
        if self._closed:
            return
        self._queue.put_nowait(tx)

    async def _run(self) -> None:
        while True:
            tx = await self._queue.get()
            try:
                if await self._send(tx):
                    self.sent += 1
                else:
                    self.failed += 1
            except Exception:
                logger.warning("Sending transaction %d failed", tx.number, exc_info=True)
                self.failed += 1
            finally:
                self._queue.task_done()
