"""Tests for KeyedLocks — per-key isolation."""

from __future__ import annotations

import asyncio

from bellwether.core.locks import KeyedLocks


class TestKeyedLocks:
    def test_same_key_same_lock(self) -> None:
        locks = KeyedLocks()
        assert locks.get("a") is locks.get("a")
        assert locks.get("a") is not locks.get("b")
        assert len(locks) == 2

    async def test_different_keys_do_not_block(self) -> None:
        locks = KeyedLocks()
        async with locks.hold("a"):
            # Would deadlock if "b" shared "a"'s lock.
            await asyncio.wait_for(locks.get("b").acquire(), timeout=0.1)
            locks.get("b").release()

    async def test_same_key_serializes(self) -> None:
        locks = KeyedLocks()
        order: list[str] = []

        async def worker(name: str, delay: float) -> None:
            async with locks.hold("k"):
                order.append(f"{name}-in")
                await asyncio.sleep(delay)
                order.append(f"{name}-out")

        await asyncio.gather(worker("first", 0.02), worker("second", 0.0))
        assert order == ["first-in", "first-out", "second-in", "second-out"]

    async def test_discard_skips_held_lock(self) -> None:
        locks = KeyedLocks()
        async with locks.hold("k"):
            locks.discard("k")
            assert len(locks) == 1
        locks.discard("k")
        assert len(locks) == 0
