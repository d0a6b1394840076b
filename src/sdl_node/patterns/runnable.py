"""Cooperatively cancellable loop run by a transaction pattern executor."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellableRunnable(Generic[T]):
    """Repeats an action until it reports completion or is cancelled.

    ``action(state)`` returns False when there is nothing left to do.
    Between iterations the loop sleeps ``sleep_time()`` seconds; the
    sleep ends early when :meth:`cancel` is called. Cancellation is a
    signal only: an action that is already running finishes first.
    """

    def __init__(
        self,
        state: T,
        action: Callable[[T], bool],
        sleep_time: Callable[[], float],
        setup: Callable[[T], None] | None = None,
    ) -> None:
        self.state = state
        self._action = action
        self._sleep_time = sleep_time
        self._setup = setup
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def run(self) -> None:
        if self._setup is not None:
            self._setup(self.state)
        while not self._cancelled.is_set():
            if not self._action(self.state):
                break
            if self._cancelled.wait(self._sleep_time()):
                break
        logger.debug("Runnable finished (cancelled=%s)", self.cancelled)
