"""Node and transaction models shared between the lifecycle and network layers."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OwnNode(BaseModel):
    """The identity of the node this process runs."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: int
    address: str = "localhost"
    port: int = 40000
    private_key: bytes | None = Field(default=None, repr=False)
    genesis_block: Any = None

    @property
    def endpoint(self) -> str:
        return f"{self.address}:{self.port}"


class Transaction(BaseModel):
    """A transfer produced by a transaction pattern.

    The ledger layer owns validation and signing; this is the wire form
    exchanged between listeners.
    """

    number: int
    sender_id: int
    receiver_id: int
    amount: int = Field(gt=0)
    created_at: float = Field(default_factory=time.time)
