"""sdl-node — scale-out distributed ledger node: main-chain anchoring and lifecycle."""

__version__ = "0.1.0"
