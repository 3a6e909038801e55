"""Base gateway interface."""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..domain.models import ChatReply, Conversation, Message, UserSummary


class Gateway(ABC):
    """Abstract base class for the backend REST contract."""

    @abstractmethod
    async def health(self) -> None:
        """Probe the backend; raise if it is not reachable."""
        pass

    @abstractmethod
    async def register(self, username: str, email: str, password: str) -> UserSummary:
        """Create a user account."""
        pass

    @abstractmethod
    async def login(self, username: str, password: str) -> UserSummary:
        """Submit credentials."""
        pass

    @abstractmethod
    async def list_conversations(self) -> List[Conversation]:
        """List conversations in server-defined order."""
        pass

    @abstractmethod
    async def create_conversation(self, title: Optional[str] = None) -> Conversation:
        """Create a new conversation."""
        pass

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation and its messages."""
        pass

    @abstractmethod
    async def send_message(self, message: str, conversation_id: Optional[str] = None) -> ChatReply:
        """Send a user message; a null id asks the backend to create a conversation."""
        pass

    @abstractmethod
    async def get_history(self, conversation_id: str) -> List[Message]:
        """Get the confirmed timeline of a conversation."""
        pass

    async def aclose(self) -> None:
        """Release transport resources."""
        return None
