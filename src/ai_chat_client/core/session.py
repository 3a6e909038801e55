"""Session store: the authenticated identity and its lifecycle."""

from typing import Awaitable, Callable, Optional

import structlog

from ..domain.errors import NotAuthenticatedError
from ..domain.models import Identity, Session, SessionStatus, UserSummary
from ..gateway.base import Gateway
from ..storage import SessionStorage

logger = structlog.get_logger()


class SessionStore:
    """Single writer of the persisted identity.

    A restored identity is trusted as-is; nothing is re-verified with the
    backend.
    """

    def __init__(self, gateway: Gateway, storage: SessionStorage) -> None:
        self._gateway = gateway
        self._storage = storage
        self._session = Session()
        self.on_login: Optional[Callable[[Session], Awaitable[None]]] = None
        self.on_logout: Optional[Callable[[], Awaitable[None]]] = None

    @property
    def session(self) -> Session:
        return self._session

    @property
    def authenticated(self) -> bool:
        return self._session.authenticated

    def require(self) -> Identity:
        if not self._session.authenticated:
            raise NotAuthenticatedError("Please log in first.")
        return self._session.identity

    def restore(self) -> Optional[Session]:
        identity = self._storage.load()
        if identity is None:
            return None
        self._session = Session(identity=identity, status=SessionStatus.AUTHENTICATED)
        logger.info("session_restored", username=identity.username)
        return self._session

    async def login(self, username: str, password: str) -> Session:
        summary = await self._gateway.login(username, password)
        identity = summary.to_identity()
        self._storage.save(identity)
        self._session = Session(identity=identity, status=SessionStatus.AUTHENTICATED)
        logger.info("login_succeeded", username=identity.username)
        if self.on_login is not None:
            await self.on_login(self._session)
        return self._session

    async def register(self, username: str, email: str, password: str) -> UserSummary:
        """Create an account. The caller still has to log in afterwards."""
        summary = await self._gateway.register(username, email, password)
        logger.info("registration_succeeded", username=summary.username)
        return summary

    async def logout(self) -> None:
        username = self._session.identity.username if self._session.identity else None
        self._storage.clear()
        self._session = Session()
        logger.info("logged_out", username=username)
        if self.on_logout is not None:
            await self.on_logout()
