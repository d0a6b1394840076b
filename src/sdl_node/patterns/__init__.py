"""Transaction patterns and the cancellable loop that runs them."""

from sdl_node.patterns.base import TransactionPattern, UniformRandomPattern
from sdl_node.patterns.runnable import CancellableRunnable

__all__ = ["CancellableRunnable", "TransactionPattern", "UniformRandomPattern"]
