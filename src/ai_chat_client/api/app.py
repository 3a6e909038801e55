"""
FastAPI Application Module

The presentation shell of the chat client. A browser page polls the shell
for a JSON view of the client state and posts user gestures back; the shell
turns each gesture into one call on the client core and answers with the
refreshed view.

Key Features:
- Session, conversation and chat gestures over a small JSON API
- Transient notices for every recoverable failure
- Sidebar state kept apart from conversation state
- Structured logging, Prometheus counters and OpenTelemetry tracing
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CollectorRegistry, Counter, generate_latest
from pydantic import BaseModel, Field
from structlog import get_logger

from ..config import Settings, get_settings
from ..core.client import ChatClient
from ..domain.errors import (
    AuthError,
    BackendUnavailableError,
    ChatClientError,
    EmptyMessageError,
    EngineBusyError,
    InvalidTransitionError,
    NetworkError,
    NotAuthenticatedError,
    NotFoundError,
    ServerError,
)
from ..domain.models import DEFAULT_TITLE
from .sidebar import SidebarState
from .views import ShellView, build_view

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

GESTURES = Counter("gestures_total", "Total gestures by name", ["gesture"], registry=CUSTOM_REGISTRY)
ERRORS = Counter("errors_total", "Total failed gestures by error kind", ["kind"], registry=CUSTOM_REGISTRY)

ERROR_STATUS = {
    AuthError: 401,
    NotAuthenticatedError: 401,
    NotFoundError: 404,
    EngineBusyError: 409,
    InvalidTransitionError: 409,
    EmptyMessageError: 422,
    NetworkError: 502,
    ServerError: 502,
    BackendUnavailableError: 503,
}

logger = get_logger()


class LoginRequest(BaseModel):
    username: str
    password: str


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str


class CreateConversationRequest(BaseModel):
    title: str = DEFAULT_TITLE


class SendRequest(BaseModel):
    message: str = ""


class ViewportRequest(BaseModel):
    width: int = Field(gt=0)


def get_client(request: Request) -> ChatClient:
    """Returns the client core behind this shell"""
    return request.app.state.client


def get_sidebar(request: Request) -> SidebarState:
    """Returns the sidebar state"""
    return request.app.state.sidebar


def require_session(client: ChatClient = Depends(get_client)) -> ChatClient:
    """Rejects gestures that need a logged-in user"""
    client.sessions.require()
    return client


def status_for(error: ChatClientError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def create_app(client: Optional[ChatClient] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Builds the shell around ``client`` (or one configured from settings)."""
    settings = settings or get_settings()
    client = client or ChatClient.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Restores the session on startup and releases resources on shutdown"""
        await client.initialize()
        logger.info("application_startup_complete")

        yield

        await client.aclose()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="AI Chat Client",
        description="Conversation shell for an AI chat backend",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.client = client
    app.state.sidebar = SidebarState(breakpoint=settings.sidebar_breakpoint)

    # Enable cross-origin requests
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Set up request tracing
    FastAPIInstrumentor.instrument_app(app)

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Logs every request"""
        logger.info("request_started", method=request.method, path=request.url.path)
        try:
            return await call_next(request)
        except Exception as e:
            logger.error("request_failed", path=request.url.path, error=str(e))
            raise

    @app.exception_handler(ChatClientError)
    async def chat_client_error_handler(request: Request, exc: ChatClientError):
        """Maps client failures onto HTTP statuses"""
        ERRORS.labels(kind=type(exc).__name__).inc()
        logger.warning(
            "gesture_failed",
            path=request.url.path,
            kind=type(exc).__name__,
            error=exc.message,
        )
        return JSONResponse(
            status_code=status_for(exc),
            content={"message": exc.message, "kind": type(exc).__name__},
        )

    def render(request: Request) -> ShellView:
        return build_view(request.app.state.client, request.app.state.sidebar)

    @app.get("/state", response_model=ShellView)
    async def get_state(request: Request) -> ShellView:
        """Current view of the client"""
        return render(request)

    @app.post("/auth/register", response_model=ShellView)
    async def register(
        body: RegisterRequest, request: Request, client: ChatClient = Depends(get_client)
    ) -> ShellView:
        """Creates an account; the user logs in separately"""
        GESTURES.labels(gesture="register").inc()
        await client.register(body.username, body.email, body.password)
        return render(request)

    @app.post("/auth/login", response_model=ShellView)
    async def login(
        body: LoginRequest, request: Request, client: ChatClient = Depends(get_client)
    ) -> ShellView:
        """Submits credentials and loads the user's conversations"""
        GESTURES.labels(gesture="login").inc()
        await client.login(body.username, body.password)
        return render(request)

    @app.post("/auth/logout", response_model=ShellView)
    async def logout(request: Request, client: ChatClient = Depends(get_client)) -> ShellView:
        """Forgets the identity and every piece of dependent state"""
        GESTURES.labels(gesture="logout").inc()
        await client.logout()
        return render(request)

    @app.post("/conversations", response_model=ShellView)
    async def create_conversation(
        request: Request,
        body: Optional[CreateConversationRequest] = None,
        client: ChatClient = Depends(require_session),
    ) -> ShellView:
        """Starts a new conversation and makes it active"""
        GESTURES.labels(gesture="create_conversation").inc()
        await client.create_conversation((body or CreateConversationRequest()).title)
        return render(request)

    @app.delete("/conversations/{conversation_id}", response_model=ShellView)
    async def delete_conversation(
        conversation_id: str, request: Request, client: ChatClient = Depends(require_session)
    ) -> ShellView:
        """Deletes a conversation"""
        GESTURES.labels(gesture="delete_conversation").inc()
        await client.delete_conversation(conversation_id)
        return render(request)

    @app.post("/conversations/{conversation_id}/select", response_model=ShellView)
    async def select_conversation(
        conversation_id: str,
        request: Request,
        client: ChatClient = Depends(require_session),
        sidebar: SidebarState = Depends(get_sidebar),
    ) -> ShellView:
        """Makes a conversation active and shows its history"""
        GESTURES.labels(gesture="select_conversation").inc()
        sidebar.after_select()
        await client.select(conversation_id)
        return render(request)

    @app.post("/chat/send", response_model=ShellView)
    async def send_message(
        body: SendRequest, request: Request, client: ChatClient = Depends(require_session)
    ) -> ShellView:
        """Sends a message to the active (or a brand new) conversation"""
        GESTURES.labels(gesture="send").inc()
        await client.send(body.message)
        return render(request)

    @app.post("/chat/reload", response_model=ShellView)
    async def reload_history(request: Request, client: ChatClient = Depends(require_session)) -> ShellView:
        """Reloads the active conversation from the backend"""
        GESTURES.labels(gesture="reload").inc()
        await client.reload()
        return render(request)

    @app.post("/chat/clear", response_model=ShellView)
    async def clear_chat(request: Request, client: ChatClient = Depends(require_session)) -> ShellView:
        """Empties the chat without deleting anything server-side"""
        GESTURES.labels(gesture="clear").inc()
        client.clear()
        return render(request)

    @app.post("/health/check", response_model=ShellView)
    async def check_health(request: Request, client: ChatClient = Depends(get_client)) -> ShellView:
        """Probes the backend now"""
        GESTURES.labels(gesture="health_check").inc()
        await client.check_health()
        return render(request)

    @app.post("/sidebar/toggle", response_model=ShellView)
    async def toggle_sidebar(request: Request, sidebar: SidebarState = Depends(get_sidebar)) -> ShellView:
        """Collapses or expands the sidebar"""
        sidebar.toggle()
        return render(request)

    @app.post("/sidebar/viewport", response_model=ShellView)
    async def resize_viewport(
        body: ViewportRequest, request: Request, sidebar: SidebarState = Depends(get_sidebar)
    ) -> ShellView:
        """Reports the browser viewport width"""
        sidebar.resize(body.width)
        return render(request)

    @app.get("/metrics")
    async def metrics():
        """Provides Prometheus metrics for system monitoring"""
        return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")

    return app
