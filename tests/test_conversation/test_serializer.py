"""Tests for per-user event ordering."""

from __future__ import annotations

import asyncio

import pytest

from src.conversation.serializer import KeyedSerializer


@pytest.mark.asyncio
async def test_same_key_runs_in_arrival_order():
    serializer = KeyedSerializer()
    order: list[str] = []

    async def job(name: str, delay: float) -> None:
        async with serializer.hold("u1"):
            order.append(f"{name}:start")
            await asyncio.sleep(delay)
            order.append(f"{name}:end")

    first = asyncio.create_task(job("a", 0.05))
    await asyncio.sleep(0)
    second = asyncio.create_task(job("b", 0))
    await asyncio.gather(first, second)

    assert order == ["a:start", "a:end", "b:start", "b:end"]


@pytest.mark.asyncio
async def test_different_keys_do_not_wait():
    serializer = KeyedSerializer()
    release = asyncio.Event()

    async def blocker() -> None:
        async with serializer.hold("u1"):
            await release.wait()

    task = asyncio.create_task(blocker())
    await asyncio.sleep(0)

    async with serializer.hold("u2"):
        assert serializer.busy("u1")

    release.set()
    await task


@pytest.mark.asyncio
async def test_locks_are_dropped_when_idle():
    serializer = KeyedSerializer()

    async with serializer.hold("u1"):
        assert len(serializer) == 1
        assert serializer.busy("u1")

    assert len(serializer) == 0
    assert not serializer.busy("u1")


@pytest.mark.asyncio
async def test_lock_released_when_body_raises():
    serializer = KeyedSerializer()

    with pytest.raises(RuntimeError):
        async with serializer.hold("u1"):
            raise RuntimeError("boom")

    assert not serializer.busy("u1")
    async with serializer.hold("u1"):
        pass
