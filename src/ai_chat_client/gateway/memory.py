"""In-memory gateway simulating the backend REST contract."""

import asyncio
import itertools
from typing import Callable, Dict, List, Optional

import structlog

from ..domain.errors import (
    AuthError,
    ChatClientError,
    NetworkError,
    NotFoundError,
    ServerError,
    extract_error_message,
)
from ..domain.models import (
    DEFAULT_TITLE,
    ChatReply,
    Conversation,
    Message,
    MessageRole,
    UserSummary,
    utcnow,
)
from .base import Gateway

logger = structlog.get_logger()

TITLE_MAX_LENGTH = 50
TITLE_AFTER_MESSAGES = 4


def echo_responder(message: str, history: List[Message]) -> str:
    """Default assistant: repeat the user's message."""
    return f"You said: {message}"


class InMemoryGateway(Gateway):
    """Backend simulation used for tests and offline runs.

    Conversations are listed newest first and histories oldest first, the
    same ordering the real backend uses.
    """

    def __init__(
        self,
        responder: Callable[[str, List[Message]], str] = echo_responder,
        clock: Callable = utcnow,
    ) -> None:
        self.online = True
        self._responder = responder
        self._clock = clock
        self._users: Dict[str, dict] = {}
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._ids = itertools.count(1)
        self._user_ids = itertools.count(1)
        self._faults: Dict[str, ChatClientError] = {}
        self._lock = asyncio.Lock()
        self.calls: List[str] = []
        logger.info("in_memory_gateway_initialized")

    def add_user(self, username: str, password: str, email: Optional[str] = None) -> UserSummary:
        """Seed an account without going through registration checks."""
        user = {
            "id": str(next(self._user_ids)),
            "username": username,
            "email": email or f"{username}@example.com",
            "password": password,
        }
        self._users[username] = user
        return UserSummary(user_id=user["id"], username=username, email=user["email"])

    def fail_next(self, operation: str, error: ChatClientError) -> None:
        """Make the next call of ``operation`` raise ``error``."""
        self._faults[operation] = error

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if not self.online:
            raise NetworkError("Unable to connect to server. Is the backend running?")
        fault = self._faults.pop(operation, None)
        if fault is not None:
            logger.warning("injected_fault", operation=operation, error=fault.message)
            raise fault

    async def health(self) -> None:
        self._enter("health")

    async def register(self, username: str, email: str, password: str) -> UserSummary:
        self._enter("register")
        errors = {}
        if not username or not 3 <= len(username) <= 50:
            errors["username"] = "Username must be between 3 and 50 characters"
        if not email or "@" not in email:
            errors["email"] = "Email should be valid"
        if not password or len(password) < 6:
            errors["password"] = "Password must be at least 6 characters"
        if errors:
            body = {"status": "error", "message": " ".join(errors.values()), "errors": errors}
            raise AuthError(extract_error_message(body), 400, body)

        async with self._lock:
            if username in self._users:
                raise AuthError("Username already exists", 400, {"message": "Username already exists"})
            user = {
                "id": str(next(self._user_ids)),
                "username": username,
                "email": email,
                "password": password,
            }
            self._users[username] = user
            logger.info("user_registered", username=username)
        return UserSummary(user_id=user["id"], username=username, email=email,
                           message="User registered successfully")

    async def login(self, username: str, password: str) -> UserSummary:
        self._enter("login")
        async with self._lock:
            user = self._users.get(username)
            if user is None or user["password"] != password:
                logger.warning("login_rejected", username=username)
                raise AuthError("Invalid username or password", 401,
                                {"status": "error", "message": "Invalid username or password"})
        return UserSummary(user_id=user["id"], username=user["username"], email=user["email"])

    async def list_conversations(self) -> List[Conversation]:
        self._enter("list_conversations")
        async with self._lock:
            return sorted(
                self._conversations.values(),
                key=lambda c: (c.created_at, int(c.id)),
                reverse=True,
            )

    async def create_conversation(self, title: Optional[str] = None) -> Conversation:
        self._enter("create_conversation")
        async with self._lock:
            return self._create_locked(title)

    def _create_locked(self, title: Optional[str]) -> Conversation:
        conversation = Conversation(id=str(next(self._ids)), title=title, created_at=self._clock())
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []
        logger.info("conversation_created", conversation_id=conversation.id)
        return conversation

    async def delete_conversation(self, conversation_id: str) -> None:
        self._enter("delete_conversation")
        async with self._lock:
            if conversation_id not in self._conversations:
                raise NotFoundError("Conversation not found", 404)
            del self._conversations[conversation_id]
            del self._messages[conversation_id]
            logger.info("conversation_deleted", conversation_id=conversation_id)

    async def send_message(self, message: str, conversation_id: Optional[str] = None) -> ChatReply:
        self._enter("send_message")
        if not message or not message.strip():
            raise ServerError("Message cannot be empty", 400)

        async with self._lock:
            if conversation_id is None:
                conversation = self._create_locked(DEFAULT_TITLE)
            else:
                conversation = self._conversations.get(conversation_id)
                if conversation is None:
                    raise ServerError("An error occurred: Conversation not found", 500)

            history = list(self._messages[conversation.id])
            self._messages[conversation.id].append(
                Message(role=MessageRole.USER, content=message, timestamp=self._clock())
            )
            response = self._responder(message, history)
            self._messages[conversation.id].append(
                Message(role=MessageRole.ASSISTANT, content=response, timestamp=self._clock())
            )
            self._retitle_locked(conversation)
            logger.info(
                "message_processed",
                conversation_id=conversation.id,
                user_message_length=len(message),
                ai_response_length=len(response),
            )
        return ChatReply(status="success", response=response, conversation_id=conversation.id)

    def _retitle_locked(self, conversation: Conversation) -> None:
        messages = self._messages[conversation.id]
        if conversation.title != DEFAULT_TITLE or len(messages) < TITLE_AFTER_MESSAGES:
            return
        title = next(m.content for m in messages if m.role == MessageRole.USER)
        if len(title) > TITLE_MAX_LENGTH:
            title = title[:TITLE_MAX_LENGTH] + "..."
        self._conversations[conversation.id] = conversation.model_copy(update={"title": title})

    async def get_history(self, conversation_id: str) -> List[Message]:
        self._enter("get_history")
        async with self._lock:
            if conversation_id not in self._messages:
                logger.warning("conversation_not_found_for_history", conversation_id=conversation_id)
                raise NotFoundError("Conversation not found", 404)
            return list(self._messages[conversation_id])
