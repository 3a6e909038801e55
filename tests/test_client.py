"""End-to-end scenarios through the chat client."""

import asyncio

import pytest

from ai_chat_client.domain.errors import BackendUnavailableError, NetworkError, NotFoundError
from ai_chat_client.domain.models import EngineState

from conftest import settle


def snapshot(client):
    return [(m.role.value, m.content, m.pending) for m in client.engine.timeline]


@pytest.mark.asyncio
async def test_login_create_send_reconcile(client, gateway):
    """Walk a full session from login to a reconciled exchange."""
    assert await client.check_health()

    await client.login("alice", "pw")
    assert len(client.registry) == 0

    conversation = await client.create_conversation("New Conversation")
    assert [c.id for c in client.registry.conversations] == [conversation.id]
    assert client.registry.active_id == conversation.id

    release = gateway.hold("send_message")
    task = asyncio.create_task(client.send("hi"))
    await settle()
    assert snapshot(client) == [("user", "hi", True)]

    release.set()
    await task
    assert [(role, content) for role, content, _ in snapshot(client)] == [
        ("user", "hi"),
        ("assistant", "You said: hi"),
    ]

    await client.engine.wait_reconciled()
    assert client.engine.state == EngineState.READY
    assert all(m.confirmed and m.timestamp is not None for m in client.engine.timeline)
    assert client.registry.active_id == conversation.id
    assert len(client.registry) == 1


@pytest.mark.asyncio
async def test_offline_send_changes_nothing(client, gateway):
    """With the gate closed the send never leaves the client."""
    await client.login("alice", "pw")
    gateway.online = False
    assert not await client.check_health()

    with pytest.raises(BackendUnavailableError):
        await client.send("hi")

    assert client.engine.timeline == ()
    assert "send_message" not in gateway.calls
    notices = client.drain_notices()
    assert "Backend is not running. Please start the server." in notices
    assert "Backend is not available. Please start the server." in notices


@pytest.mark.asyncio
async def test_offline_keeps_history_browsable(client, gateway):
    """A failed probe flips the gate but keeps what is on screen."""
    await client.check_health()
    await client.login("alice", "pw")
    await client.send("hi")
    await client.engine.wait_reconciled()
    timeline = client.engine.timeline
    conversations = client.registry.conversations

    gateway.online = False
    await client.check_health()

    assert not client.gate.available
    assert client.engine.timeline == timeline
    assert client.registry.conversations == conversations
    assert not client.engine.can_send


@pytest.mark.asyncio
async def test_failed_send_notice(client, gateway):
    """Send failures become notices as well as inline messages."""
    await client.check_health()
    await client.login("alice", "pw")
    gateway.fail_next("send_message", NetworkError("Unable to connect to server. Is the backend running?"))

    with pytest.raises(NetworkError):
        await client.send("hi")

    assert client.drain_notices() == ["Unable to connect to server. Is the backend running?"]
    assert len(client.engine.timeline) == 2


@pytest.mark.asyncio
async def test_failed_history_notice(client, gateway):
    """Selecting a vanished conversation reports a history failure."""
    await client.login("alice", "pw")
    client.drain_notices()

    with pytest.raises(NotFoundError):
        await client.select("999")

    assert client.drain_notices() == ["Failed to load conversation history"]
    assert client.engine.state == EngineState.READY


@pytest.mark.asyncio
async def test_offline_create_changes_nothing(client, gateway):
    """With the gate closed no conversation is created and the cursor stays put."""
    await client.login("alice", "pw")
    gateway.online = False
    assert not await client.check_health()
    client.drain_notices()
    calls_before = list(gateway.calls)

    with pytest.raises(BackendUnavailableError):
        await client.create_conversation("x")

    assert gateway.calls == calls_before
    assert len(client.registry) == 0
    assert client.registry.active_id is None
    assert client.drain_notices() == ["Backend is not available. Please start the server."]
