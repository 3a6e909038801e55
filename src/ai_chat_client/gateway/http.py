"""HTTP gateway speaking the backend REST contract over httpx."""

from typing import Any, List, Optional, Type, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from ..domain.errors import (
    AuthError,
    ChatClientError,
    NetworkError,
    NotFoundError,
    ServerError,
    extract_error_message,
)
from ..domain.models import ChatReply, Conversation, Message, UserSummary
from .base import Gateway

logger = structlog.get_logger()

CONNECT_ERROR_MESSAGE = "Unable to connect to server. Is the backend running?"
INVALID_RESPONSE_MESSAGE = "The server sent an unexpected response."
AUTH_STATUSES = {400, 401, 403}

ModelT = TypeVar("ModelT", bound=BaseModel)


class HttpGateway(Gateway):
    """Gateway implementation backed by an `httpx.AsyncClient`."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )
        logger.info("http_gateway_initialized", base_url=self.base_url, timeout=timeout)

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            logger.error("gateway_timeout", method=method, path=path, error=str(e))
            raise NetworkError("The server took too long to respond.") from e
        except httpx.RequestError as e:
            logger.error("gateway_unreachable", method=method, path=path, error=str(e))
            raise NetworkError(CONNECT_ERROR_MESSAGE) from e

        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                return response.text

        body = _safe_body(response)
        error = self._classify(path, response.status_code, body)
        logger.warning(
            "gateway_error_response",
            method=method,
            path=path,
            status_code=response.status_code,
            error=error.message,
        )
        raise error

    @staticmethod
    def _classify(path: str, status_code: int, body: Any) -> ChatClientError:
        message = extract_error_message(body)
        if path.startswith("/auth/") and status_code in AUTH_STATUSES:
            return AuthError(message, status_code, body)
        if status_code == 404:
            return NotFoundError(message, status_code, body)
        return ServerError(message, status_code, body)

    async def health(self) -> None:
        await self._request("GET", "/health")

    async def register(self, username: str, email: str, password: str) -> UserSummary:
        data = await self._request(
            "POST", "/auth/register", {"username": username, "email": email, "password": password}
        )
        payload = {"username": username, "email": email}
        if isinstance(data, dict):
            payload.update(data)
        return _parse(UserSummary, payload)

    async def login(self, username: str, password: str) -> UserSummary:
        data = await self._request("POST", "/auth/login", {"username": username, "password": password})
        return _parse(UserSummary, data)

    async def list_conversations(self) -> List[Conversation]:
        data = await self._request("GET", "/conversations")
        return _parse_list(Conversation, data)

    async def create_conversation(self, title: Optional[str] = None) -> Conversation:
        data = await self._request("POST", "/conversations", {"title": title})
        conversation = _parse(Conversation, data)
        if not conversation.durable:
            raise _invalid_response(data)
        return conversation

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._request("DELETE", f"/conversations/{conversation_id}")

    async def send_message(self, message: str, conversation_id: Optional[str] = None) -> ChatReply:
        try:
            data = await self._request(
                "POST", "/chat", {"message": message, "conversationId": conversation_id}
            )
        except ServerError as e:
            # The chat endpoint reports failures as a reply body with an ``error`` field.
            reply = _chat_error_reply(e)
            if reply is not None and reply.error:
                raise ServerError(reply.error, e.status_code, e.body) from e
            raise
        return _parse(ChatReply, data)

    async def get_history(self, conversation_id: str) -> List[Message]:
        data = await self._request("GET", f"/history/{conversation_id}")
        return _parse_list(Message, data)

    async def aclose(self) -> None:
        await self._client.aclose()


def _safe_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _invalid_response(body: Any, error: Optional[Exception] = None) -> ServerError:
    logger.warning("gateway_invalid_response", error=str(error) if error else None)
    return ServerError(INVALID_RESPONSE_MESSAGE, body=body)


def _parse(model: Type[ModelT], data: Any) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise _invalid_response(data, e) from e


def _parse_list(model: Type[ModelT], data: Any) -> List[ModelT]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise _invalid_response(data)
    return [_parse(model, item) for item in data]


def _chat_error_reply(error: ServerError) -> Optional[ChatReply]:
    if not isinstance(error.body, dict):
        return None
    try:
        return ChatReply.model_validate(error.body)
    except ValidationError:
        # Not a chat reply, e.g. the framework's default error page.
        return None
