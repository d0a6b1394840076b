"""Transaction patterns — pluggable strategies that generate transactions."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from sdl_node.models import Transaction
from sdl_node.patterns.runnable import CancellableRunnable

if TYPE_CHECKING:
    from sdl_node.node import LocalStore


class TransactionPattern(ABC):
    """A strategy for making transactions.

    The application runs at most one pattern at a time, on its own
    thread, through the runnable returned by :meth:`get_runnable`.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable pattern name, used in logs."""

    @abstractmethod
    def sleep_time(self) -> float:
        """Seconds to wait between two actions."""

    @abstractmethod
    def do_action(self, store: LocalStore) -> bool:
        """Perform one step of the pattern.

        Returns:
            False once the pattern has nothing more to do.
        """

    def setup(self, store: LocalStore) -> None:
        """Called once on the executor thread before the first action."""

    def get_runnable(self, store: LocalStore) -> CancellableRunnable[LocalStore]:
        return CancellableRunnable(store, self.do_action, self.sleep_time, self.setup)


class UniformRandomPattern(TransactionPattern):
    """Sends a random amount to a uniformly chosen peer at a fixed interval."""

    def __init__(
        self,
        interval: float = 1.0,
        min_amount: int = 1,
        max_amount: int = 100,
        limit: int | None = None,
        seed: int | None = None,
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be non-negative")
        if not 0 < min_amount <= max_amount:
            raise ValueError("amounts must satisfy 0 < min_amount <= max_amount")
        self.interval = interval
        self.min_amount = min_amount
        self.max_amount = max_amount
        self.limit = limit
        self._rng = random.Random(seed)
        self.made = 0

    @property
    def name(self) -> str:
        return f"Uniform random (every {self.interval}s)"

    def sleep_time(self) -> float:
        return self.interval

    def setup(self, store: LocalStore) -> None:
        self.made = 0

    def do_action(self, store: LocalStore) -> bool:
        if self.limit is not None and self.made >= self.limit:
            return False

        receivers = [node_id for node_id in store.nodes if node_id != store.own_node.id]
        if not receivers:
            return True

        tx = Transaction(
            number=store.next_transaction_number(),
            sender_id=store.own_node.id,
            receiver_id=self._rng.choice(sorted(receivers)),
            amount=self._rng.randint(self.min_amount, self.max_amount),
        )
        store.application.transaction_sender.schedule(tx)
        self.made += 1
        return self.limit is None or self.made < self.limit
