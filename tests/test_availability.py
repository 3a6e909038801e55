"""Test suite for the backend availability gate."""

import asyncio

import pytest

from ai_chat_client.core.availability import AvailabilityGate


@pytest.mark.asyncio
async def test_gate_reflects_latest_probe(gateway):
    gate = AvailabilityGate(gateway)
    assert not gate.available

    assert await gate.check()
    assert gate.last_error is None

    gateway.online = False
    assert not await gate.check()
    assert gate.last_error
    assert gate.last_checked is not None

    gateway.online = True
    assert await gate.check()


@pytest.mark.asyncio
async def test_gate_reports_changes_only(gateway):
    """Listeners hear about the first probe and every flip afterwards."""
    gate = AvailabilityGate(gateway)
    changes = []
    gate.on_change = lambda available, error: changes.append(available)

    await gate.check()
    await gate.check()
    gateway.online = False
    await gate.check()
    await gate.check()

    assert changes == [True, False]


@pytest.mark.asyncio
async def test_polling_follows_backend(gateway):
    """Background polling keeps the gate current until stopped."""
    gate = AvailabilityGate(gateway, poll_interval=0.01)
    await gate.start()
    try:
        await asyncio.sleep(0.05)
        assert gate.available
        gateway.online = False
        await asyncio.sleep(0.05)
        assert not gate.available
    finally:
        await gate.stop()

    probes = gateway.calls.count("health")
    await asyncio.sleep(0.03)
    assert gateway.calls.count("health") == probes


@pytest.mark.asyncio
async def test_zero_interval_disables_polling(gateway):
    gate = AvailabilityGate(gateway, poll_interval=0)
    await gate.start()
    await asyncio.sleep(0.01)
    assert "health" not in gateway.calls
    await gate.stop()
