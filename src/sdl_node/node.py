"""Application — runs a ledger node and coordinates its lifecycle.

A node:
1. Accepts transactions from peers through its connection listener
2. Registers itself as running on the tracker
3. Runs at most one transaction pattern at a time on its own thread
4. Delivers the pattern's transactions through the transaction sender
5. Anchors abstracts on the consensus chain through its main chain

Shutdown runs in reverse: stop transacting, drain the sender, mark the
node stopped on the tracker, then kill the listener and chain connection.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from enum import Enum
from typing import Any, Awaitable, Callable

from aiohttp import ClientError, ClientSession, ClientTimeout

from sdl_node.errors import (
    IllegalStateError,
    PatternActiveError,
    RegistryError,
    SenderInterruptedError,
)
from sdl_node.mainchain.abci_client import DEFAULT_TIMEOUT, ABCIClient
from sdl_node.mainchain.chain import MainChain
from sdl_node.models import OwnNode, Transaction
from sdl_node.network.listener import ConnectionListener
from sdl_node.network.tracker import TRACKER_SERVER_ADDRESS, TRACKER_SERVER_PORT, TrackerClient
from sdl_node.patterns.base import TransactionPattern
from sdl_node.patterns.runnable import CancellableRunnable
from sdl_node.sending import TransactionSender

logger = logging.getLogger(__name__)

NODE_PORT = 40000
# Tendermint uses node port + 1 (p2p), + 2 (rpc) and + 3 (ABCI server).
CONSENSUS_RPC_PORT_OFFSET = 2
SEND_TIMEOUT = ClientTimeout(total=10)


class NodeConfig:
    """Configuration for a ledger node."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = NODE_PORT,
        tracker_address: str = f"{TRACKER_SERVER_ADDRESS}:{TRACKER_SERVER_PORT}",
        consensus_address: str | None = None,
        consensus_timeout: float = DEFAULT_TIMEOUT,
        drain_timeout: float | None = None,
        hash_width: int | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.tracker_address = tracker_address
        self.consensus_address = consensus_address
        self.consensus_timeout = consensus_timeout
        self.drain_timeout = drain_timeout
        self.hash_width = hash_width

    def consensus_address_for(self, node_port: int) -> str:
        """Consensus RPC address, defaulting to the local Tendermint RPC port."""
        if self.consensus_address:
            return self.consensus_address
        return f"localhost:{node_port + CONSENSUS_RPC_PORT_OFFSET}"


class NodeRunState(str, Enum):
    """Lifecycle state of an application."""

    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    TRANSACTING = "transacting"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class LocalStore:
    """Node-local state shared with transaction patterns."""

    def __init__(
        self,
        own_node: OwnNode,
        application: Application,
        genesis_block: Any,
        main_chain: MainChain,
    ) -> None:
        self.own_node = own_node
        self.application = application
        self.genesis_block = genesis_block
        self.main_chain = main_chain
        self.nodes: dict[int, str] = {own_node.id: own_node.endpoint}
        self.received: list[Transaction] = []
        self._numbers = itertools.count()
        self._lock = threading.Lock()

    def add_node(self, node_id: int, endpoint: str) -> None:
        """Register the endpoint (host:port) of a peer node."""
        with self._lock:
            self.nodes = {**self.nodes, node_id: endpoint}

    def next_transaction_number(self) -> int:
        with self._lock:
            return next(self._numbers)


class Application:
    """Runs a node: listener, transaction sender, pattern executor, main chain.

    The run state, the pattern executor and the sender handle are guarded
    by one lock, so that checking for an active pattern and installing or
    starting one cannot interleave with another caller doing the same.
    The lock is a ``threading.RLock``: patterns run on their own threads
    while lifecycle calls come from the event loop or the CLI.
    """

    def __init__(
        self,
        config: NodeConfig | None = None,
        *,
        tracker: TrackerClient | None = None,
        consensus_client: ABCIClient | None = None,
        message_handler: Callable[[Transaction, str], Awaitable[None]] | None = None,
    ) -> None:
        self.config = config or NodeConfig()
        self.tracker = tracker or TrackerClient(self.config.tracker_address)
        self._consensus_client = consensus_client
        self._message_handler = message_handler

        self._lock = threading.RLock()
        self._state = NodeRunState.UNINITIALIZED
        self._init_started = False
        self._pattern: TransactionPattern | None = None
        self._runnable: CancellableRunnable[LocalStore] | None = None
        self._executor: threading.Thread | None = None
        self._sender: TransactionSender | None = None
        self._session: ClientSession | None = None

        self.local_store: LocalStore | None = None
        self.listener: ConnectionListener | None = None

    # ── Properties ───────────────────────────────────────────────

    @property
    def state(self) -> NodeRunState:
        with self._lock:
            if self._state is NodeRunState.RUNNING and self.is_transacting():
                return NodeRunState.TRANSACTING
            return self._state

    @property
    def transaction_sender(self) -> TransactionSender | None:
        with self._lock:
            return self._sender

    @property
    def main_chain(self) -> MainChain | None:
        return self.local_store.main_chain if self.local_store else None

    @property
    def node_id(self) -> int | None:
        return self.local_store.own_node.id if self.local_store else None

    # ── Startup ──────────────────────────────────────────────────

    async def init(
        self,
        node_port: int,
        genesis_block: Any,
        key: bytes,
        own_node: OwnNode,
    ) -> None:
        """Initialize the node and register it as running on the tracker.

        Args:
            node_port: Port on which the node accepts connections.
            genesis_block: The genesis block of the whole system.
            key: This node's private key.
            own_node: This node's identity.

        Raises:
            IllegalStateError: If the node was already initialized, or was
                killed before init completed.
            OSError: If the listener cannot bind ``node_port``.
            RegistryError: If the tracker cannot be updated.
        """
        with self._lock:
            if self._init_started:
                raise IllegalStateError(f"Node cannot be initialized twice (state: {self._state.value})")
            self._init_started = True

        own_node.genesis_block = genesis_block
        own_node.private_key = key

        client = self._consensus_client or ABCIClient(
            self.config.consensus_address_for(node_port),
            timeout=self.config.consensus_timeout,
            hash_width=self.config.hash_width,
        )
        self.local_store = LocalStore(own_node, self, genesis_block, MainChain(client))

        self.listener = ConnectionListener(self.config.host, node_port, self._handle_transaction)
        await self.listener.start()
        await self._abort_init_if_killed(own_node.id, registered=False)
        own_node.port = self.listener.port
        self.local_store.add_node(own_node.id, own_node.endpoint)

        self._session = ClientSession(timeout=SEND_TIMEOUT)
        sender = TransactionSender(self._send_transaction)
        sender.start()
        with self._lock:
            self._sender = sender

        await self.tracker.set_running(own_node.id, True)
        await self._abort_init_if_killed(own_node.id, registered=True)

        with self._lock:
            if self._state is NodeRunState.UNINITIALIZED:
                self._state = NodeRunState.RUNNING
        logger.info("Node %d: Initialized on port %d", own_node.id, own_node.port)

    async def _abort_init_if_killed(self, node_id: int, registered: bool) -> None:
        """Undo a partial init when :meth:`kill` ran while init was suspended.

        Raises:
            IllegalStateError: If the node was killed.
        """
        with self._lock:
            if self._state is not NodeRunState.STOPPED:
                return
            sender = self._sender

        logger.info("Node %d: Killed during init, releasing resources", node_id)
        await self.listener.stop()
        if sender is not None:
            sender.shutdown_now()
        session, self._session = self._session, None
        if session is not None:
            await session.close()
        if registered:
            try:
                await self.tracker.set_running(node_id, False)
            except RegistryError:
                logger.error("Cannot update running status to stopped for node %d", node_id, exc_info=True)
        raise IllegalStateError("Node was killed during init")

    # ── Transacting ──────────────────────────────────────────────

    def set_transaction_pattern(self, pattern: TransactionPattern) -> None:
        """Install the pattern that :meth:`start_transacting` will run.

        Raises:
            PatternActiveError: If a pattern is currently running.
            IllegalStateError: If the node is not running.
        """
        with self._lock:
            self._require_running("set a transaction pattern")
            if self.is_transacting():
                raise PatternActiveError()
            self._pattern = pattern
        logger.debug("Node %d: Set transaction pattern %s", self.node_id, pattern.name)

    def start_transacting(self) -> None:
        """Run the installed pattern on a new executor thread.

        Raises:
            PatternActiveError: If a pattern is currently running.
            IllegalStateError: If the node is not running or no pattern is set.
        """
        with self._lock:
            self._require_running("start transacting")
            if self.is_transacting():
                raise PatternActiveError()
            if self._pattern is None:
                raise IllegalStateError("No transaction pattern has been set")

            runnable = self._pattern.get_runnable(self.local_store)
            executor = threading.Thread(
                target=self._execute,
                args=(runnable,),
                name=f"pattern-executor-{self.node_id}",
                daemon=True,
            )
            self._runnable = runnable
            self._executor = executor
            executor.start()
        logger.info("Node %d: Started transacting with pattern %s", self.node_id, self._pattern.name)

    def stop_transacting(self) -> None:
        """Ask the running pattern to stop. Does not wait for it to exit."""
        with self._lock:
            if not self.is_transacting():
                return
            self._runnable.cancel()
        logger.info("Node %d: Stopped transacting", self.node_id)

    def is_transacting(self) -> bool:
        with self._lock:
            return self._executor is not None and self._executor.is_alive()

    def join_transacting(self, timeout: float | None = None) -> bool:
        """Block until the pattern executor exits.

        Blocks the calling thread; do not call from the event loop while
        the pattern is still sending.

        Returns:
            True if no pattern is running anymore.
        """
        with self._lock:
            executor = self._executor
        if executor is None:
            return True
        executor.join(timeout)
        return not executor.is_alive()

    def _execute(self, runnable: CancellableRunnable[LocalStore]) -> None:
        try:
            runnable.run()
        except Exception:
            logger.exception("Node %d: Uncaught exception in transaction pattern executor", self.node_id)
        else:
            logger.info("Node %d: Transaction pattern finished", self.node_id)

    def _require_running(self, action: str) -> None:
        if self._state is not NodeRunState.RUNNING:
            raise IllegalStateError(f"Cannot {action} while the node is {self._state.value}")

    # ── Shutdown ─────────────────────────────────────────────────

    async def finish_transaction_sending(self) -> None:
        """Stop transacting, wait until everything is sent, mark the node stopped.

        Failures to drain or to update the tracker are logged; the call
        still returns so that shutdown can proceed.

        Raises:
            IllegalStateError: If the node was never initialized.
        """
        with self._lock:
            sender = self._sender
            if sender is None or self.local_store is None:
                raise IllegalStateError("Node has not been initialized")
            if self._state is NodeRunState.RUNNING:
                self._state = NodeRunState.SHUTTING_DOWN
            if self._runnable is not None:
                self._runnable.cancel()

        node_id = self.local_store.own_node.id
        try:
            await sender.wait_until_done(self.config.drain_timeout)
            await self.tracker.set_running(node_id, False)
        except RegistryError:
            logger.error("Cannot update running status to stopped for node %d", node_id, exc_info=True)
        except SenderInterruptedError:
            logger.error("Sending interrupted, node %d is not marked stopped", node_id, exc_info=True)
        else:
            logger.info("Node %d: Finished sending, marked stopped", node_id)

    async def kill(self) -> None:
        """Stop accepting connections and release the node's resources.

        Outstanding transactions are dropped. Safe to call in any state,
        including after a failed :meth:`init`, and more than once.
        """
        with self._lock:
            if self._state is NodeRunState.STOPPED:
                logger.debug("Node %s: Already stopped", self.node_id)
                return
            self._state = NodeRunState.STOPPED
            runnable = self._runnable
            sender = self._sender

        if runnable is not None:
            runnable.cancel()

        if self.listener is not None:
            try:
                await self.listener.stop()
            except Exception:
                logger.exception("Node %s: Failed to stop listener", self.node_id)

        if sender is not None:
            sender.shutdown_now()

        session, self._session = self._session, None
        if session is not None:
            await session.close()

        if self.local_store is not None:
            self.local_store.main_chain.stop()
        logger.info("Node %s: Killed", self.node_id)

    # ── Network callbacks ────────────────────────────────────────

    async def _send_transaction(self, tx: Transaction) -> bool:
        """Deliver a transaction to the listener of its receiver."""
        endpoint = self.local_store.nodes.get(tx.receiver_id) if self.local_store else None
        if endpoint is None:
            logger.warning("No endpoint known for node %d, dropping transaction %d", tx.receiver_id, tx.number)
            return False
        if self._session is None:
            return False

        url = f"http://{endpoint}/message"
        try:
            async with self._session.post(url, json=tx.model_dump(mode="json")) as resp:
                return resp.status == 200
        except (ClientError, asyncio.TimeoutError):
            logger.debug("Failed to send transaction %d to %s", tx.number, endpoint, exc_info=True)
            return False

    async def _handle_transaction(self, tx: Transaction, sender: str) -> None:
        if self.local_store is not None:
            self.local_store.received.append(tx)
        logger.debug("Received transaction %d from %s", tx.number, sender)
        if self._message_handler is not None:
            await self._message_handler(tx, sender)
