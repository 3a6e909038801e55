"""Test suite for the session store and its lifecycle effects."""

import asyncio

import pytest

from ai_chat_client.core.client import ChatClient
from ai_chat_client.core.session import SessionStore
from ai_chat_client.domain.errors import AuthError, NotAuthenticatedError
from ai_chat_client.domain.models import EngineState, SessionStatus

from conftest import seed_conversation, settle


@pytest.mark.asyncio
async def test_login_persists_identity(client, storage):
    """A successful login stores the identity under the fixed key."""
    session = await client.login("alice", "pw")

    assert session.status == SessionStatus.AUTHENTICATED
    assert session.identity.username == "alice"
    assert session.identity.email == "alice@example.com"
    assert storage.load() == session.identity


@pytest.mark.asyncio
async def test_restore_trusts_storage_without_backend(gateway, storage):
    """A reload restores the session from storage alone."""
    await SessionStore(gateway, storage).login("alice", "pw")
    calls_before = list(gateway.calls)

    restored = SessionStore(gateway, storage).restore()

    assert restored is not None
    assert restored.authenticated
    assert restored.identity.username == "alice"
    assert gateway.calls == calls_before


def test_restore_without_record_returns_none(gateway, storage):
    assert SessionStore(gateway, storage).restore() is None


@pytest.mark.asyncio
async def test_bad_credentials_raise_auth_error(client, storage):
    """The failure is surfaced verbatim and nothing is stored."""
    with pytest.raises(AuthError) as excinfo:
        await client.login("alice", "wrong")

    assert excinfo.value.message == "Invalid username or password"
    assert storage.load() is None
    assert not client.sessions.authenticated
    assert "Invalid username or password" in client.drain_notices()


@pytest.mark.asyncio
async def test_login_loads_conversations(client, gateway):
    """Logging in triggers the first registry refresh."""
    conversation_id = await seed_conversation(gateway, "earlier")

    await client.login("alice", "pw")

    assert conversation_id in client.registry


@pytest.mark.asyncio
async def test_logout_clears_everything(online_client, gateway, storage):
    """Logout drops the identity, the registry, the timeline and the cursor."""
    client = online_client
    await client.login("alice", "pw")
    await client.send("hi")
    await client.engine.wait_reconciled()
    assert len(client.registry) == 1

    await client.logout()

    assert storage.load() is None
    assert client.sessions.session.status == SessionStatus.ANONYMOUS
    assert len(client.registry) == 0
    assert client.registry.active_id is None
    assert client.engine.active_id is None
    assert client.engine.timeline == ()
    assert client.engine.state == EngineState.EMPTY


@pytest.mark.asyncio
async def test_register_does_not_log_in(client):
    """Registration only creates the account."""
    summary = await client.register("bob", "bob@example.com", "secret1")

    assert summary.username == "bob"
    assert not client.sessions.authenticated
    assert client.drain_notices() == ["Registration successful! Please login."]

    session = await client.login("bob", "secret1")
    assert session.identity.id == summary.user_id


@pytest.mark.asyncio
async def test_register_validation_message(client):
    """Field errors are joined into one notice."""
    with pytest.raises(AuthError) as excinfo:
        await client.register("bo", "nope", "123")

    assert excinfo.value.message == (
        "Username must be between 3 and 50 characters. "
        "Email should be valid. "
        "Password must be at least 6 characters"
    )


@pytest.mark.asyncio
async def test_gestures_require_session(online_client):
    """Conversation gestures are refused while anonymous."""
    with pytest.raises(NotAuthenticatedError):
        await online_client.send("hi")
    with pytest.raises(NotAuthenticatedError):
        await online_client.create_conversation()
    assert online_client.engine.timeline == ()


@pytest.mark.asyncio
async def test_initialize_restores_and_loads(gateway, storage):
    """Startup restores the identity, probes the backend and lists conversations."""
    conversation_id = await seed_conversation(gateway, "earlier")
    await SessionStore(gateway, storage).login("alice", "pw")

    client = ChatClient(gateway, storage, reconcile_delay=0)
    session = await client.initialize()

    assert session is not None and session.authenticated
    assert client.gate.available
    assert conversation_id in client.registry
    await client.aclose()


def assert_logged_out(client):
    assert not client.sessions.authenticated
    assert len(client.registry) == 0
    assert client.registry.active_id is None
    assert client.engine.active_id is None
    assert client.engine.timeline == ()
    assert client.engine.state == EngineState.EMPTY


@pytest.mark.asyncio
async def test_logout_cancels_pending_history_load(online_client, gateway):
    """A history load that finishes after logout is discarded."""
    client = online_client
    conversation_id = await seed_conversation(gateway, "earlier")
    await client.login("alice", "pw")
    release = gateway.hold("get_history")
    task = asyncio.create_task(client.select(conversation_id))
    await settle()
    assert client.engine.state == EngineState.LOADING

    await client.logout()
    release.set()
    await task

    assert_logged_out(client)


@pytest.mark.asyncio
async def test_logout_cancels_pending_reconciliation(online_client, gateway):
    """The post-send reload is discarded once the user logged out."""
    client = online_client
    await client.login("alice", "pw")
    release = gateway.hold("get_history")
    await client.send("hi")
    await settle()
    assert client.engine.state == EngineState.RECONCILING

    await client.logout()
    release.set()
    await client.engine.wait_reconciled()

    assert_logged_out(client)


@pytest.mark.asyncio
async def test_logout_during_first_send_keeps_registry_empty(online_client, gateway):
    """A reply that creates a conversation after logout lists nothing."""
    client = online_client
    await client.login("alice", "pw")
    release = gateway.hold("send_message")
    task = asyncio.create_task(client.send("hi"))
    await settle()
    lists_before = gateway.calls.count("list_conversations")

    await client.logout()
    release.set()
    assert await task is None

    assert_logged_out(client)
    assert gateway.calls.count("list_conversations") == lists_before
