"""Chat session engine.

Owns the message timeline of the active conversation and the optimistic
send / reconcile-with-history protocol. Every result that arrives after the
active conversation changed is dropped instead of applied: the engine keeps
an epoch that moves whenever the active context changes and a sequence
number for history requests, and compares both at resolution time.
"""

import asyncio
from typing import Awaitable, Callable, Dict, FrozenSet, Optional, Sequence, Tuple

import structlog

from ..domain.errors import (
    ChatClientError,
    EmptyMessageError,
    EngineBusyError,
    InvalidTransitionError,
    NetworkError,
    ServerError,
)
from ..domain.models import EngineState, Message, MessageRole, utcnow
from ..gateway.base import Gateway
from .availability import AvailabilityGate

logger = structlog.get_logger()

NETWORK_FAILURE_TEXT = (
    "Sorry, I couldn't process your message. Please check your connection and try again."
)
BACKEND_FAILURE_TEXT = "Sorry, I encountered an error. Please try again."

_TRANSITIONS: Dict[EngineState, FrozenSet[EngineState]] = {
    EngineState.EMPTY: frozenset({EngineState.EMPTY, EngineState.LOADING, EngineState.SENDING}),
    EngineState.LOADING: frozenset({EngineState.EMPTY, EngineState.LOADING, EngineState.READY}),
    EngineState.READY: frozenset({EngineState.EMPTY, EngineState.LOADING, EngineState.SENDING}),
    EngineState.SENDING: frozenset(
        {EngineState.EMPTY, EngineState.LOADING, EngineState.READY, EngineState.RECONCILING}
    ),
    EngineState.RECONCILING: frozenset({EngineState.EMPTY, EngineState.LOADING, EngineState.READY}),
}

# States that only make sense while a durable conversation is active.
_NEEDS_ID = frozenset({EngineState.LOADING, EngineState.RECONCILING})

Timeline = Tuple[Message, ...]


class ChatSessionEngine:
    """Timeline state machine for the active conversation."""

    def __init__(
        self,
        gateway: Gateway,
        gate: AvailabilityGate,
        reconcile_delay: float = 0.5,
    ) -> None:
        self._gateway = gateway
        self._gate = gate
        self.reconcile_delay = reconcile_delay
        self._state = EngineState.EMPTY
        self._active_id: Optional[str] = None
        self._timeline: Timeline = ()
        self._epoch = 0
        self._load_seq = 0
        self._last_requested_id: Optional[str] = None
        self._reconcile_task: Optional[asyncio.Task] = None
        self.last_error: Optional[ChatClientError] = None

        # Called with (conversation_id, adopt) when the backend created a conversation
        # during a send; adopt is False when the send no longer belongs to the active context.
        self.on_conversation_created: Optional[Callable[[str, bool], Awaitable[None]]] = None
        # Called when clear() drops the active id.
        self.on_cleared: Optional[Callable[[], None]] = None

    @property
    def state(self) -> EngineState:
        """Current engine state."""
        return self._state

    @property
    def active_id(self) -> Optional[str]:
        """Conversation the timeline belongs to; None before the first send."""
        return self._active_id

    @property
    def timeline(self) -> Timeline:
        """Immutable snapshot; replaced, never mutated, on every update."""
        return self._timeline

    @property
    def busy(self) -> bool:
        """True while the engine waits on the backend."""
        return self._state in (EngineState.LOADING, EngineState.SENDING, EngineState.RECONCILING)

    @property
    def can_send(self) -> bool:
        """Whether a send would be accepted right now."""
        return self._gate.available and self._state in (EngineState.EMPTY, EngineState.READY)

    def _transition(self, new_state: EngineState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(
                f"Cannot move from {self._state.value} to {new_state.value}"
            )
        if new_state in _NEEDS_ID and self._active_id is None:
            raise InvalidTransitionError(f"{new_state.value} requires an active conversation")
        if new_state != self._state:
            logger.debug(
                "engine_transition",
                conversation_id=self._active_id,
                from_state=self._state.value,
                to_state=new_state.value,
            )
        self._state = new_state

    def _replace(self, messages: Sequence[Message]) -> None:
        self._timeline = tuple(messages)

    def _append(self, message: Message) -> None:
        self._timeline = self._timeline + (message,)

    def _switch(self, conversation_id: Optional[str]) -> None:
        self._epoch += 1
        self._active_id = conversation_id
        if conversation_id is None:
            self._last_requested_id = None
            self._replace(())
            self._transition(EngineState.EMPTY)

    def _is_current(self, seq: int, epoch: int, conversation_id: str) -> bool:
        return (
            seq == self._load_seq
            and epoch == self._epoch
            and conversation_id == self._active_id
        )

    async def activate(self, conversation_id: Optional[str]) -> Optional[Timeline]:
        """Make ``conversation_id`` active and load its history; ``None`` empties the engine."""
        if conversation_id is None:
            self._switch(None)
            return self._timeline

        if conversation_id == self._active_id and (
            self._last_requested_id == conversation_id
            or self._state in (EngineState.SENDING, EngineState.RECONCILING)
        ):
            logger.debug("activate_skipped", conversation_id=conversation_id)
            return self._timeline

        return await self.load_history(conversation_id)

    async def load_history(self, conversation_id: Optional[str] = None) -> Optional[Timeline]:
        """Fetch the confirmed timeline and swap it in.

        Returns the applied timeline, or ``None`` when the result was stale and
        dropped. On failure the previous timeline stays visible and the error is
        re-raised.
        """
        if conversation_id is None:
            conversation_id = self._active_id
        if conversation_id is None:
            raise InvalidTransitionError("No conversation to load")
        if conversation_id != self._active_id:
            self._switch(conversation_id)
        elif self._state == EngineState.SENDING:
            raise EngineBusyError("Wait for the current message to finish sending.")

        self._load_seq += 1
        seq, epoch = self._load_seq, self._epoch
        self._last_requested_id = conversation_id
        self._transition(EngineState.LOADING)
        return await self._fetch(conversation_id, seq, epoch)

    async def _fetch(self, conversation_id: str, seq: int, epoch: int) -> Optional[Timeline]:
        try:
            history = await self._gateway.get_history(conversation_id)
        except ChatClientError as e:
            if not self._is_current(seq, epoch, conversation_id):
                logger.info("stale_history_error_dropped", conversation_id=conversation_id)
                return None
            self.last_error = e
            self._transition(EngineState.READY)
            logger.warning("history_load_failed", conversation_id=conversation_id, error=e.message)
            raise

        if not self._is_current(seq, epoch, conversation_id):
            logger.info("stale_history_dropped", conversation_id=conversation_id, seq=seq)
            return None

        self._replace(history)
        self._transition(EngineState.READY)
        logger.info("history_loaded", conversation_id=conversation_id, messages=len(history))
        return self._timeline

    async def send(self, text: str) -> Optional[Message]:
        """Send a message optimistically.

        The user message is on the timeline before any network call. Returns the
        provisional assistant message, or ``None`` if the reply arrived for a
        conversation that is no longer active.
        """
        content = (text or "").strip()
        if not content:
            raise EmptyMessageError("Please enter a message")
        self._gate.require()
        if self._state not in (EngineState.EMPTY, EngineState.READY):
            raise EngineBusyError("Wait for the current conversation to finish updating.")

        epoch = self._epoch
        target = self._active_id
        self._append(Message.optimistic(MessageRole.USER, content))
        self._transition(EngineState.SENDING)
        logger.info("message_sending", conversation_id=target, length=len(content))

        try:
            reply = await self._gateway.send_message(content, target)
        except NetworkError as e:
            return self._send_failed(epoch, e, NETWORK_FAILURE_TEXT)
        except ChatClientError as e:
            return self._send_failed(epoch, e, BACKEND_FAILURE_TEXT)

        resolved = reply.conversation_id or target
        created = resolved is not None and resolved != target

        if epoch != self._epoch:
            logger.info("stale_send_result_dropped", conversation_id=resolved)
            if created and self.on_conversation_created is not None:
                await self.on_conversation_created(resolved, False)
            return None

        if created:
            self._active_id = resolved
            logger.info("conversation_resolved", conversation_id=resolved, previous=target)
            if self.on_conversation_created is not None:
                await self.on_conversation_created(resolved, True)
            if epoch != self._epoch:
                logger.info("stale_send_result_dropped", conversation_id=resolved)
                return None

        if not reply.succeeded:
            error = ServerError(reply.error or "Failed to get response from AI")
            return self._send_failed(epoch, error, BACKEND_FAILURE_TEXT)

        assistant = Message.optimistic(MessageRole.ASSISTANT, reply.response, timestamp=utcnow())
        self._append(assistant)

        if resolved is None:
            self._transition(EngineState.READY)
        else:
            self._transition(EngineState.RECONCILING)
            self._reconcile_task = asyncio.create_task(self._reconcile(resolved, epoch))
        return assistant

    def _send_failed(self, epoch: int, error: ChatClientError, text: str) -> None:
        if epoch != self._epoch:
            logger.info("stale_send_error_dropped", error=error.message)
            return None
        self.last_error = error
        self._append(Message.optimistic(MessageRole.ASSISTANT, text, timestamp=utcnow()))
        self._transition(EngineState.READY)
        logger.warning("message_send_failed", conversation_id=self._active_id, error=error.message)
        raise error

    async def _reconcile(self, conversation_id: str, epoch: int) -> None:
        await asyncio.sleep(self.reconcile_delay)
        if epoch != self._epoch or conversation_id != self._active_id:
            logger.info("reconcile_abandoned", conversation_id=conversation_id)
            return
        if self._state != EngineState.RECONCILING:
            # A newer history request already superseded this one.
            return

        self._load_seq += 1
        self._last_requested_id = conversation_id
        try:
            await self._fetch(conversation_id, self._load_seq, epoch)
        except ChatClientError as e:
            logger.warning("reconcile_failed", conversation_id=conversation_id, error=e.message)

    async def wait_reconciled(self) -> None:
        """Wait for the scheduled post-send reload, if any."""
        task = self._reconcile_task
        if task is not None and not task.done():
            await task

    def clear(self) -> None:
        """Back to an empty timeline without deleting anything server-side."""
        self._switch(None)
        logger.info("chat_cleared")
        if self.on_cleared is not None:
            self.on_cleared()

    def reset(self) -> None:
        """Drop all state; in-flight results are discarded when they arrive."""
        self._switch(None)
        self.last_error = None

    async def aclose(self) -> None:
        task = self._reconcile_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reconcile_task = None
