"""Exception types raised by the node.

Consensus-layer faults are never raised; they are reported as
:class:`~sdl_node.mainchain.results.CommitResult` values. The exceptions
here cover caller bugs and I/O failures at the process boundary.
"""

from __future__ import annotations


class NodeError(Exception):
    """Base class for node errors."""


class IllegalStateError(NodeError, RuntimeError):
    """An operation was invoked in a lifecycle state that does not allow it."""


class PatternActiveError(IllegalStateError):
    """A transaction pattern is already installed and running."""

    def __init__(self, message: str = "There is already a transaction pattern running") -> None:
        super().__init__(message)


class RegistryError(NodeError, OSError):
    """The tracker could not be updated."""


class SenderInterruptedError(NodeError):
    """Waiting for the transaction sender was interrupted before it drained."""
