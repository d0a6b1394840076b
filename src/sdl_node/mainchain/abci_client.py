"""RPC client for the Tendermint consensus chain.

Abstracts are anchored with ``broadcast_tx_sync`` and looked up again with
``tx``. Both calls are plain HTTP GETs with hex-encoded query parameters
and JSON responses. Every fault (network, parse, protocol) is turned into
a value here so that callers never see an exception from the chain.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping
from urllib.parse import urlencode

from aiohttp import ClientError, ClientSession, ClientTimeout

from sdl_node.mainchain.results import CommitResult, CommitStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
HEX_PREFIX = "0x"

COMMIT_ENDPOINT = "broadcast_tx_sync"
QUERY_ENDPOINT = "tx"


def bytes_to_hex(data: bytes) -> str:
    """Encode bytes the way the chain expects them in query parameters."""
    return HEX_PREFIX + data.hex()


def hex_to_bytes(value: str) -> bytes:
    """Decode a hex string, with or without the ``0x`` prefix.

    Raises:
        ValueError: If ``value`` is not an even-length hex string.
    """
    if value[:2].lower() == HEX_PREFIX:
        value = value[2:]
    return bytes.fromhex(value)


def build_url(address: str, endpoint: str, params: Mapping[str, str]) -> str:
    """Build ``http://address/endpoint?k1=v1&k2=v2`` in parameter order."""
    url = f"http://{address}/{endpoint}"
    if params:
        url += "?" + urlencode(list(params.items()))
    return url


class ABCIClient:
    """Client for the consensus chain's RPC endpoint.

    The client holds no mutable state beyond its target address, so a
    single instance can be shared between threads and event loops. Each
    call opens its own session and completes before returning. There is
    no retry: resubmitting an accepted abstract is not guaranteed to be
    harmless.
    """

    def __init__(
        self,
        address: str,
        timeout: float = DEFAULT_TIMEOUT,
        hash_width: int | None = None,
    ) -> None:
        """
        Args:
            address: ``host:port`` of the Tendermint RPC server.
            timeout: Total time budget for one call, in seconds.
            hash_width: Byte width of anchor hashes, if the chain fixes one.
        """
        self.address = address
        self.hash_width = hash_width
        self._timeout = ClientTimeout(total=timeout)

    # ── Public API ───────────────────────────────────────────────

    async def commit(self, payload: bytes) -> CommitResult:
        """Commit an abstract to the chain.

        Args:
            payload: Serialized block abstract.

        Returns:
            ``ACCEPTED`` with the anchor hash, or a failure result.

        Raises:
            ValueError: If ``payload`` is empty.
        """
        if not payload:
            raise ValueError("Cannot commit an empty abstract")

        response = await self._send_request(COMMIT_ENDPOINT, {"tx": bytes_to_hex(payload)})
        if response is None:
            return CommitResult.failure(CommitStatus.TRANSPORT_FAILURE, "no valid response")

        error = response.get("error")
        if isinstance(error, dict):
            detail = _error_detail(error)
            logger.info("Could not commit the abstract because: %s", detail)
            logger.debug("Commit response: %s", response)
            return CommitResult.failure(CommitStatus.REJECTED, detail)

        try:
            result = response["result"]
            code = _parse_code(result["code"])
            if code != 0:
                detail = result.get("log") or f"code {code}"
                logger.info("Commit rejected by the chain: %s", detail)
                return CommitResult.failure(CommitStatus.REJECTED, detail)
            anchor_hash = hex_to_bytes(result["hash"])
            if not anchor_hash:
                raise ValueError("empty hash")
            self._check_width(anchor_hash)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Result parsing failed, result of sending was: %s", response, exc_info=True)
            return CommitResult.failure(CommitStatus.MALFORMED, str(e))

        return CommitResult.accepted(anchor_hash)

    async def query(self, anchor_hash: bytes) -> bool:
        """Check whether a transaction is present on the chain.

        Only the presence of a ``result`` field is checked; the returned
        transaction is not compared against ``anchor_hash``.

        Raises:
            ValueError: If ``anchor_hash`` is empty or has the wrong width.
        """
        if not anchor_hash:
            raise ValueError("Cannot query an empty hash")
        self._check_width(anchor_hash)

        response = await self._send_request(QUERY_ENDPOINT, {"hash": bytes_to_hex(anchor_hash)})
        return response is not None and "result" in response

    # ── Internals ────────────────────────────────────────────────

    def _check_width(self, anchor_hash: bytes) -> None:
        if self.hash_width is not None and len(anchor_hash) != self.hash_width:
            raise ValueError(
                f"Hash is {len(anchor_hash)} bytes, expected {self.hash_width}"
            )

    async def _send_request(
        self,
        endpoint: str,
        params: Mapping[str, str],
    ) -> dict[str, Any] | None:
        """GET an endpoint and parse the JSON object it returns.

        Returns:
            The decoded object, or None on transport or parse failure.
        """
        url = build_url(self.address, endpoint, params)
        try:
            async with ClientSession(timeout=self._timeout) as session:
                async with session.get(url) as resp:
                    body = await resp.text()
            data = json.loads(body)
        except (ClientError, asyncio.TimeoutError, ValueError):
            logger.info("Failed executing request %s", url, exc_info=True)
            return None

        if not isinstance(data, dict):
            logger.info("Response of %s is not a JSON object", url)
            return None
        return data


def _error_detail(error: dict[str, Any]) -> str:
    detail = error.get("data") or error.get("message")
    return str(detail) if detail else str(error)


def _parse_code(code: Any) -> int:
    """Read a result code given as a JSON integer or an integer string."""
    if isinstance(code, bool):
        raise TypeError("code is bool, expected int")
    if isinstance(code, int):
        return code
    if isinstance(code, str):
        return int(code.strip())
    raise TypeError(f"code is {type(code).__name__}, expected int")
