"""Chat client: wires the session store, registry, engine and gate together.

Gesture methods record a transient notice for every failure before
re-raising it, so a presentation layer only has to render `notices`.
"""

from collections import deque
from contextlib import contextmanager
from typing import Deque, Iterator, List, Optional

import structlog

from ..config import Settings
from ..domain.errors import ChatClientError
from ..domain.models import DEFAULT_TITLE, Conversation, Message, Session, UserSummary
from ..gateway.base import Gateway
from ..gateway.http import HttpGateway
from ..storage import JsonFileStorage, SessionStorage
from .availability import OFFLINE_NOTICE, AvailabilityGate
from .engine import ChatSessionEngine
from .registry import ConversationRegistry
from .session import SessionStore

logger = structlog.get_logger()


class ChatClient:
    """Entry point of the client core."""

    def __init__(
        self,
        gateway: Gateway,
        storage: SessionStorage,
        reconcile_delay: float = 0.5,
        poll_interval: float = 0.0,
        max_notices: int = 20,
    ) -> None:
        self.gateway = gateway
        self.gate = AvailabilityGate(gateway, poll_interval)
        self.engine = ChatSessionEngine(gateway, self.gate, reconcile_delay)
        self.registry = ConversationRegistry(gateway, self.engine)
        self.sessions = SessionStore(gateway, storage)
        self.notices: Deque[str] = deque(maxlen=max_notices)

        self.engine.on_conversation_created = self._conversation_created
        self.engine.on_cleared = self.registry.follow_clear
        self.sessions.on_login = self._after_login
        self.sessions.on_logout = self._after_logout
        self.gate.on_change = self._availability_changed

    @classmethod
    def from_settings(cls, settings: Settings, gateway: Optional[Gateway] = None) -> "ChatClient":
        if gateway is None:
            gateway = HttpGateway(settings.api_base_url, timeout=settings.request_timeout)
        storage = JsonFileStorage(settings.storage_file, key=settings.storage_key)
        return cls(
            gateway,
            storage,
            reconcile_delay=settings.reconcile_delay,
            poll_interval=settings.health_poll_interval,
            max_notices=settings.max_notices,
        )

    def notify(self, notice: str) -> None:
        self.notices.append(notice)

    def drain_notices(self) -> List[str]:
        notices = list(self.notices)
        self.notices.clear()
        return notices

    @contextmanager
    def _surfacing(self, notice: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except ChatClientError as e:
            self.notify(notice or e.message)
            raise

    async def initialize(self) -> Optional[Session]:
        """Restore the persisted identity and probe the backend once."""
        session = self.sessions.restore()
        await self.gate.check()
        if session is not None:
            await self._load_conversations()
        await self.gate.start()
        return session

    async def aclose(self) -> None:
        await self.gate.stop()
        await self.engine.aclose()
        await self.gateway.aclose()

    async def _load_conversations(self) -> None:
        try:
            await self.registry.refresh()
        except ChatClientError as e:
            logger.warning("conversation_load_failed", error=e.message)
            self.notify("Failed to load conversations")

    async def _after_login(self, session: Session) -> None:
        await self._load_conversations()

    async def _after_logout(self) -> None:
        self.registry.reset()
        self.engine.reset()

    async def _conversation_created(self, conversation_id: str, adopt: bool) -> None:
        if not self.sessions.authenticated:
            # The send outlived the session that started it.
            logger.info("created_conversation_ignored", conversation_id=conversation_id)
            return
        try:
            if adopt:
                await self.registry.adopt(conversation_id)
            else:
                await self.registry.refresh()
        except ChatClientError as e:
            logger.warning("conversation_refresh_failed", conversation_id=conversation_id, error=e.message)
            self.notify("Failed to load conversations")

    def _availability_changed(self, available: bool, error: Optional[str]) -> None:
        if not available:
            self.notify(OFFLINE_NOTICE)

    # Gestures

    async def register(self, username: str, email: str, password: str) -> UserSummary:
        with self._surfacing():
            summary = await self.sessions.register(username, email, password)
        self.notify("Registration successful! Please login.")
        return summary

    async def login(self, username: str, password: str) -> Session:
        with self._surfacing():
            return await self.sessions.login(username, password)

    async def logout(self) -> None:
        await self.sessions.logout()

    async def create_conversation(self, title: str = DEFAULT_TITLE) -> Conversation:
        self.sessions.require()
        with self._surfacing():
            self.gate.require()
        with self._surfacing("Failed to create conversation"):
            return await self.registry.create(title)

    async def delete_conversation(self, conversation_id: str) -> None:
        self.sessions.require()
        with self._surfacing("Failed to delete conversation"):
            await self.registry.delete(conversation_id)

    async def select(self, conversation_id: Optional[str]) -> None:
        self.sessions.require()
        with self._surfacing("Failed to load conversation history"):
            await self.registry.select(conversation_id)

    async def reload(self) -> None:
        self.sessions.require()
        with self._surfacing("Failed to load conversation history"):
            await self.engine.load_history()

    async def send(self, text: str) -> Optional[Message]:
        self.sessions.require()
        with self._surfacing():
            return await self.engine.send(text)

    def clear(self) -> None:
        self.sessions.require()
        self.engine.clear()
        self.notify("Chat cleared")

    async def check_health(self) -> bool:
        return await self.gate.check()
