"""Tests for transaction patterns and the cancellable runnable."""

from __future__ import annotations

import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from sdl_node.models import OwnNode
from sdl_node.patterns import CancellableRunnable, UniformRandomPattern


def make_store(node_ids=(1, 2, 3), own_id: int = 1):
    numbers = iter(range(1000))
    sender = MagicMock()
    return SimpleNamespace(
        own_node=OwnNode(id=own_id),
        nodes={i: f"127.0.0.1:{40000 + i}" for i in node_ids},
        next_transaction_number=lambda: next(numbers),
        application=SimpleNamespace(transaction_sender=sender),
    )


def scheduled(store) -> list:
    return [c.args[0] for c in store.application.transaction_sender.schedule.call_args_list]


# ── CancellableRunnable ──────────────────────────────────────────

class TestCancellableRunnable:
    def test_runs_until_action_done(self):
        calls = []

        def action(state):
            calls.append(state)
            return len(calls) < 3

        CancellableRunnable("s", action, lambda: 0).run()
        assert calls == ["s", "s", "s"]

    def test_setup_runs_first(self):
        order = []
        runnable = CancellableRunnable(
            None,
            lambda s: order.append("action") and False,
            lambda: 0,
            setup=lambda s: order.append("setup"),
        )
        runnable.run()
        assert order == ["setup", "action"]

    def test_cancel_interrupts_sleep(self):
        runnable = CancellableRunnable(None, lambda s: True, lambda: 60.0)
        thread = threading.Thread(target=runnable.run)
        thread.start()
        time.sleep(0.05)

        runnable.cancel()
        thread.join(timeout=2)
        assert not thread.is_alive()
        assert runnable.cancelled

    def test_cancel_before_run(self):
        calls = []
        runnable = CancellableRunnable(None, lambda s: calls.append(1) or True, lambda: 0)
        runnable.cancel()
        runnable.run()
        assert calls == []

    def test_action_exception_propagates(self):
        def boom(state):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            CancellableRunnable(None, boom, lambda: 0).run()


# ── UniformRandomPattern ─────────────────────────────────────────

class TestUniformRandomPattern:
    def test_limit(self):
        store = make_store()
        pattern = UniformRandomPattern(interval=0, limit=4, seed=1)
        pattern.get_runnable(store).run()

        txs = scheduled(store)
        assert len(txs) == 4
        assert [tx.number for tx in txs] == [0, 1, 2, 3]

    def test_restart_after_limit(self):
        store = make_store()
        pattern = UniformRandomPattern(interval=0, limit=3, seed=5)
        pattern.get_runnable(store).run()
        pattern.get_runnable(store).run()

        assert len(scheduled(store)) == 6

    def test_never_sends_to_self(self):
        store = make_store(node_ids=(1, 2, 3), own_id=2)
        UniformRandomPattern(interval=0, limit=50, seed=7).get_runnable(store).run()

        txs = scheduled(store)
        assert all(tx.receiver_id in (1, 3) for tx in txs)
        assert all(tx.sender_id == 2 for tx in txs)

    def test_amount_range(self):
        store = make_store()
        UniformRandomPattern(interval=0, min_amount=5, max_amount=6, limit=30, seed=3).get_runnable(store).run()
        assert {tx.amount for tx in scheduled(store)} <= {5, 6}

    def test_seed_is_deterministic(self):
        a, b = make_store(), make_store()
        UniformRandomPattern(interval=0, limit=10, seed=42).get_runnable(a).run()
        UniformRandomPattern(interval=0, limit=10, seed=42).get_runnable(b).run()
        key = lambda txs: [(tx.receiver_id, tx.amount) for tx in txs]
        assert key(scheduled(a)) == key(scheduled(b))

    def test_no_peers_keeps_waiting(self):
        store = make_store(node_ids=(1,))
        pattern = UniformRandomPattern(interval=0, limit=1)
        assert pattern.do_action(store) is True
        assert scheduled(store) == []

    def test_name_and_sleep(self):
        pattern = UniformRandomPattern(interval=0.5)
        assert "0.5" in pattern.name
        assert pattern.sleep_time() == 0.5

    @pytest.mark.parametrize("kwargs", [
        {"interval": -1},
        {"min_amount": 0},
        {"min_amount": 10, "max_amount": 5},
    ])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            UniformRandomPattern(**kwargs)
