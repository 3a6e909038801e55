"""Shared fixtures for the chat client tests."""

import asyncio
from typing import Dict, List, Optional

import pytest

from ai_chat_client.core.client import ChatClient
from ai_chat_client.domain.models import ChatReply, Conversation, Message
from ai_chat_client.gateway.memory import InMemoryGateway
from ai_chat_client.storage import MemoryStorage


class GatedGateway(InMemoryGateway):
    """In-memory backend whose calls can be held until a test releases them."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._holds: Dict[str, List[asyncio.Event]] = {}

    def hold(self, operation: str) -> asyncio.Event:
        """Hold the next not-yet-held call of ``operation`` until the event is set."""
        event = asyncio.Event()
        self._holds.setdefault(operation, []).append(event)
        return event

    async def _gate(self, operation: str) -> None:
        pending = self._holds.get(operation)
        if pending:
            await pending.pop(0).wait()

    async def get_history(self, conversation_id: str) -> List[Message]:
        await self._gate("get_history")
        return await super().get_history(conversation_id)

    async def send_message(self, message: str, conversation_id: Optional[str] = None) -> ChatReply:
        await self._gate("send_message")
        return await super().send_message(message, conversation_id)

    async def list_conversations(self) -> List[Conversation]:
        await self._gate("list_conversations")
        return await super().list_conversations()


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run up to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def seed_conversation(gateway: InMemoryGateway, *texts: str) -> str:
    """Create a conversation on the backend holding one exchange per text."""
    conversation_id = None
    for text in texts:
        reply = await gateway.send_message(text, conversation_id)
        conversation_id = reply.conversation_id
    return conversation_id


@pytest.fixture
def gateway() -> GatedGateway:
    gateway = GatedGateway()
    gateway.add_user("alice", "pw", "alice@example.com")
    return gateway


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def client(gateway, storage) -> ChatClient:
    return ChatClient(gateway, storage, reconcile_delay=0)


@pytest.fixture
def online_client(client) -> ChatClient:
    """Client whose availability gate is already open."""
    client.gate.available = True
    return client
