"""Networking layer — peer connection listener and tracker client."""

from sdl_node.network.listener import ConnectionListener
from sdl_node.network.tracker import TrackerClient

__all__ = ["ConnectionListener", "TrackerClient"]
