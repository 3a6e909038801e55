"""Error taxonomy for the chat client."""

import json
from typing import Any, Optional

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."


class ChatClientError(Exception):
    """Base class for every recoverable client failure."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class AuthError(ChatClientError):
    """Bad credentials or rejected registration data."""


class NetworkError(ChatClientError):
    """No response reached the client (connection failure or timeout)."""


class ServerError(ChatClientError):
    """The backend answered with a non-success status."""


class NotFoundError(ChatClientError):
    """The referenced conversation no longer exists on the backend."""


class NotAuthenticatedError(ChatClientError):
    """An operation that needs a session was attempted while anonymous."""


class BackendUnavailableError(ChatClientError):
    """The availability gate is closed; outbound mutations are disabled."""


class EmptyMessageError(ChatClientError):
    """The message text is empty after trimming."""


class EngineBusyError(ChatClientError):
    """A send or history load is already in flight for the active conversation."""


class InvalidTransitionError(ChatClientError):
    """The chat session engine was asked to enter an impossible state."""


def extract_error_message(body: Any, fallback: str = GENERIC_ERROR_MESSAGE) -> str:
    """Turn an error body into a human readable string.

    Precedence: the values of an ``errors`` map joined together, else a flat
    ``message``, else ``fallback``.
    """
    if isinstance(body, str):
        return body.strip() or fallback
    if not isinstance(body, dict):
        return fallback

    errors = body.get("errors")
    if isinstance(errors, dict):
        parts = [value.strip() for value in errors.values() if isinstance(value, str)]
        parts = [part for part in parts if part]
        if parts:
            return ". ".join(parts)

    message = body.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    if message is not None and not isinstance(message, str):
        return json.dumps(message)
    return fallback
