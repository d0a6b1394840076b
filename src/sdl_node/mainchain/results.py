"""Outcome types for consensus-chain calls."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CommitStatus(str, Enum):
    """Classification of a commit attempt."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"                    # error object or non-zero code
    TRANSPORT_FAILURE = "transport_failure"  # network error or unparseable body
    MALFORMED = "malformed"                  # JSON that does not match the schema


@dataclass(frozen=True)
class CommitResult:
    """Result of committing an abstract to the main chain.

    Exactly one of two shapes: ``ACCEPTED`` with an ``anchor_hash``, or
    any failure status without one. Evaluates truthy only on success.
    """

    status: CommitStatus
    anchor_hash: bytes | None = None
    detail: str | None = None

    def __post_init__(self) -> None:
        accepted = self.status is CommitStatus.ACCEPTED
        if accepted and not self.anchor_hash:
            raise ValueError("Accepted commit requires an anchor hash")
        if not accepted and self.anchor_hash is not None:
            raise ValueError(f"{self.status.value} commit cannot carry an anchor hash")

    @classmethod
    def accepted(cls, anchor_hash: bytes) -> CommitResult:
        return cls(CommitStatus.ACCEPTED, anchor_hash=bytes(anchor_hash))

    @classmethod
    def failure(cls, status: CommitStatus, detail: str | None = None) -> CommitResult:
        return cls(status, detail=detail)

    @property
    def ok(self) -> bool:
        return self.status is CommitStatus.ACCEPTED

    def __bool__(self) -> bool:
        return self.ok
