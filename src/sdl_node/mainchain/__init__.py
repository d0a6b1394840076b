"""Main chain layer — anchoring abstracts on the consensus chain."""

from sdl_node.mainchain.abci_client import ABCIClient
from sdl_node.mainchain.chain import MainChain
from sdl_node.mainchain.results import CommitResult, CommitStatus

__all__ = ["ABCIClient", "MainChain", "CommitResult", "CommitStatus"]
