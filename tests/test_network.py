"""Tests for the connection listener and the tracker client."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from aiohttp import ClientSession

from sdl_node.errors import RegistryError
from sdl_node.models import Transaction
from sdl_node.network.listener import ConnectionListener
from sdl_node.network.tracker import TrackerClient

TX = {"number": 3, "sender_id": 1, "receiver_id": 2, "amount": 25}
STATUS = ("POST", "/set-node-status")


# ── ConnectionListener ───────────────────────────────────────────

class TestConnectionListener:
    @pytest.mark.asyncio
    async def test_accepts_transaction(self):
        handler = AsyncMock()
        listener = ConnectionListener("127.0.0.1", 0, handler)
        await listener.start()
        try:
            async with ClientSession() as session:
                async with session.post(f"http://127.0.0.1:{listener.port}/message", json=TX) as resp:
                    assert resp.status == 200
        finally:
            await listener.stop()

        tx, sender = handler.await_args.args
        assert isinstance(tx, Transaction)
        assert tx.number == 3
        assert sender == "127.0.0.1"
        assert listener.received == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"number": 1}, {**TX, "amount": 0}, ["x"]])
    async def test_rejects_invalid_message(self, body):
        handler = AsyncMock()
        listener = ConnectionListener("127.0.0.1", 0, handler)
        await listener.start()
        try:
            async with ClientSession() as session:
                async with session.post(f"http://127.0.0.1:{listener.port}/message", json=body) as resp:
                    assert resp.status == 400
        finally:
            await listener.stop()
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handler_failure(self):
        listener = ConnectionListener("127.0.0.1", 0, AsyncMock(side_effect=RuntimeError("boom")))
        await listener.start()
        try:
            async with ClientSession() as session:
                async with session.post(f"http://127.0.0.1:{listener.port}/message", json=TX) as resp:
                    assert resp.status == 500
        finally:
            await listener.stop()

    @pytest.mark.asyncio
    async def test_health(self):
        listener = ConnectionListener("127.0.0.1", 0)
        await listener.start()
        try:
            async with ClientSession() as session:
                async with session.get(f"http://127.0.0.1:{listener.port}/health") as resp:
                    data = await resp.json()
        finally:
            await listener.stop()
        assert data == {"status": "healthy", "port": listener.port}

    @pytest.mark.asyncio
    async def test_bind_conflict(self):
        first = ConnectionListener("127.0.0.1", 0)
        await first.start()
        try:
            second = ConnectionListener("127.0.0.1", first.port)
            with pytest.raises(OSError):
                await second.start()
            assert not second.running
        finally:
            await first.stop()

    @pytest.mark.asyncio
    async def test_stop_idempotent(self):
        listener = ConnectionListener("127.0.0.1", 0)
        await listener.start()
        assert listener.running
        await listener.stop()
        await listener.stop()
        assert not listener.running


# ── TrackerClient ────────────────────────────────────────────────

class TestTrackerClient:
    @pytest.mark.asyncio
    async def test_set_running(self, fake_server):
        async with fake_server({STATUS: {"success": True}}) as tracker:
            client = TrackerClient(tracker.address)
            await client.set_running(4, True)
            await client.set_running(4, False)

        assert tracker.bodies == [{"id": 4, "running": True}, {"id": 4, "running": False}]

    @pytest.mark.asyncio
    async def test_refused_update(self, fake_server):
        async with fake_server({STATUS: 500}) as tracker:
            with pytest.raises(RegistryError):
                await TrackerClient(tracker.address).set_running(4, True)

    @pytest.mark.asyncio
    async def test_unreachable(self, free_port):
        with pytest.raises(RegistryError) as exc_info:
            await TrackerClient(f"127.0.0.1:{free_port}").set_running(4, True)
        assert isinstance(exc_info.value, OSError)
