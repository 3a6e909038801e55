"""Conversation registry: the session's conversations and the active cursor."""

from typing import Iterable, Optional, Tuple

import structlog

from ..domain.models import DEFAULT_TITLE, Conversation
from ..gateway.base import Gateway
from .engine import ChatSessionEngine

logger = structlog.get_logger()


class ConversationRegistry:
    """Ordered conversations in server order plus the active conversation id.

    Every mutation is followed by a full refresh from the backend; the list is
    never predicted locally.
    """

    def __init__(self, gateway: Gateway, engine: ChatSessionEngine) -> None:
        self._gateway = gateway
        self._engine = engine
        self._conversations: Tuple[Conversation, ...] = ()
        self._active_id: Optional[str] = None
        self._refresh_seq = 0

    @property
    def conversations(self) -> Tuple[Conversation, ...]:
        return self._conversations

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    @property
    def active(self) -> Optional[Conversation]:
        return self.get(self._active_id) if self._active_id is not None else None

    def get(self, conversation_id: str) -> Optional[Conversation]:
        return next((c for c in self._conversations if c.id == conversation_id), None)

    def __contains__(self, conversation_id: object) -> bool:
        return any(c.id == conversation_id for c in self._conversations)

    def __len__(self) -> int:
        return len(self._conversations)

    async def refresh(self) -> Tuple[Conversation, ...]:
        """Replace the local list with the backend's; the latest request wins."""
        self._refresh_seq += 1
        seq = self._refresh_seq
        conversations = await self._gateway.list_conversations()
        if seq != self._refresh_seq:
            logger.info("stale_registry_refresh_dropped", seq=seq)
            return self._conversations
        self._conversations = _unique(conversations)
        logger.info("registry_refreshed", conversations=len(self._conversations))
        return self._conversations

    async def select(self, conversation_id: Optional[str]) -> None:
        """Move the active cursor and let the engine load (or clear) the timeline."""
        if conversation_id is not None:
            conversation_id = str(conversation_id)
        self._active_id = conversation_id
        await self._engine.activate(conversation_id)

    async def create(self, title: str = DEFAULT_TITLE) -> Conversation:
        """Create a conversation on the backend, refresh, then select it."""
        conversation = await self._gateway.create_conversation(title)
        logger.info("conversation_created", conversation_id=conversation.id)
        await self.refresh()
        await self.select(conversation.id)
        return conversation

    async def delete(self, conversation_id: str) -> None:
        """Delete on the backend, then refresh.

        Deleting the active conversation clears the cursor; nothing else is
        selected in its place.
        """
        conversation_id = str(conversation_id)
        await self._gateway.delete_conversation(conversation_id)
        logger.info("conversation_deleted", conversation_id=conversation_id)
        if conversation_id == self._active_id:
            await self.select(None)
        await self.refresh()

    async def adopt(self, conversation_id: str) -> None:
        """Point the cursor at a conversation the backend created during a send."""
        self._active_id = conversation_id
        await self.refresh()

    def follow_clear(self) -> None:
        self._active_id = None

    def reset(self) -> None:
        self._refresh_seq += 1
        self._conversations = ()
        self._active_id = None


def _unique(conversations: Iterable[Conversation]) -> Tuple[Conversation, ...]:
    seen = set()
    unique = []
    for conversation in conversations:
        if conversation.id in seen:
            logger.warning("duplicate_conversation_dropped", conversation_id=conversation.id)
            continue
        seen.add(conversation.id)
        unique.append(conversation)
    return tuple(unique)
