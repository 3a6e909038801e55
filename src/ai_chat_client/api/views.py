"""View models rendered by the presentation shell."""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel

from ..core.client import ChatClient
from ..domain.models import Conversation, EngineState, Message, MessageRole, utcnow
from .sidebar import SidebarState


class SessionView(BaseModel):
    authenticated: bool
    username: Optional[str] = None
    email: Optional[str] = None


class ConversationView(BaseModel):
    id: str
    title: str
    created_at: Optional[datetime] = None
    age: str = ""
    active: bool = False


class MessageView(BaseModel):
    role: MessageRole
    content: str
    timestamp: Optional[datetime] = None
    pending: bool
    optimistic: bool


class ShellView(BaseModel):
    """Everything a page needs to render the chat client."""

    session: SessionView
    conversations: List[ConversationView]
    active_conversation_id: Optional[str] = None
    state: EngineState
    messages: List[MessageView]
    empty_hint: Optional[str] = None
    backend_online: bool
    busy: bool
    can_send: bool
    can_create: bool
    sidebar_collapsed: bool
    notices: List[str] = []


def format_age(created_at: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Relative age of a conversation: 'Just now', '3h ago', '2d ago', else the date."""
    if created_at is None:
        return ""
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    now = now or utcnow()
    hours = int((now - created_at).total_seconds() // 3600)
    days = hours // 24
    if hours < 1:
        return "Just now"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return created_at.date().isoformat()


def _conversation_view(conversation: Conversation, active_id: Optional[str], now: datetime) -> ConversationView:
    return ConversationView(
        id=conversation.id,
        title=conversation.title,
        created_at=conversation.created_at,
        age=format_age(conversation.created_at, now),
        active=conversation.id == active_id,
    )


def _message_view(message: Message) -> MessageView:
    return MessageView(
        role=message.role,
        content=message.content,
        timestamp=message.timestamp,
        pending=message.pending,
        optimistic=not message.confirmed,
    )


def build_view(client: ChatClient, sidebar: SidebarState, now: Optional[datetime] = None) -> ShellView:
    """Render the client state; transient notices are drained into the view."""
    now = now or utcnow()
    session = client.sessions.session
    identity = session.identity if session.authenticated else None
    active_id = client.registry.active_id
    messages = [_message_view(m) for m in client.engine.timeline]

    empty_hint = None
    if not messages and client.engine.state != EngineState.LOADING:
        empty_hint = (
            "No messages in this conversation yet"
            if active_id
            else "Start a conversation with the AI assistant!"
        )

    return ShellView(
        session=SessionView(
            authenticated=session.authenticated,
            username=identity.username if identity else None,
            email=identity.email if identity else None,
        ),
        conversations=[_conversation_view(c, active_id, now) for c in client.registry.conversations],
        active_conversation_id=active_id,
        state=client.engine.state,
        messages=messages,
        empty_hint=empty_hint,
        backend_online=client.gate.available,
        busy=client.engine.busy,
        can_send=session.authenticated and client.engine.can_send,
        can_create=session.authenticated and client.gate.available,
        sidebar_collapsed=sidebar.collapsed,
        notices=client.drain_notices(),
    )
