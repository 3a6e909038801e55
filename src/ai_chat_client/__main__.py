"""Launch the chat client shell."""

import argparse
import os

import uvicorn

from .api.app import create_app
from .config import get_settings
from .core.client import ChatClient
from .gateway.memory import InMemoryGateway
from .logging_config import configure_logging


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run the AI chat client shell.")
    parser.add_argument(
        "--host",
        type=str,
        default=os.environ.get("HOST", "127.0.0.1"),
        help="Host to bind the shell to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", "3000")),
        help="Port to bind the shell to (default: 3000)",
    )
    parser.add_argument(
        "--api-url",
        type=str,
        default=None,
        help=f"Backend base URL (default: {settings.api_base_url})",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Talk to a simulated in-process backend instead of --api-url",
    )
    args = parser.parse_args()

    if args.api_url:
        settings = settings.model_copy(update={"api_base_url": args.api_url})

    configure_logging(settings.log_level, settings.log_json)
    client = None
    if args.offline:
        client = ChatClient.from_settings(settings, gateway=InMemoryGateway())
    app = create_app(client, settings=settings)

    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
