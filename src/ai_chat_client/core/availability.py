"""Backend availability gate driven by health probes."""

import asyncio
from datetime import datetime
from typing import Callable, Optional

import structlog

from ..domain.errors import BackendUnavailableError, ChatClientError
from ..domain.models import utcnow
from ..gateway.base import Gateway

logger = structlog.get_logger()

OFFLINE_NOTICE = "Backend is not running. Please start the server."
UNAVAILABLE_MESSAGE = "Backend is not available. Please start the server."


class AvailabilityGate:
    """Boolean gate reflecting the most recent health probe.

    Closed until the first successful probe. A failed probe only flips the
    gate; it never touches conversation or timeline state.
    """

    def __init__(self, gateway: Gateway, poll_interval: float = 0.0):
        self._gateway = gateway
        self.poll_interval = poll_interval
        self.available = False
        self.last_checked: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self.on_change: Optional[Callable[[bool, Optional[str]], None]] = None

    async def check(self) -> bool:
        """Probe the backend now and update the gate."""
        try:
            await self._gateway.health()
        except ChatClientError as e:
            self._record(False, e.message)
        else:
            self._record(True, None)
        return self.available

    def require(self) -> None:
        """Raise unless the last probe succeeded; outbound mutations call this first."""
        if not self.available:
            raise BackendUnavailableError(UNAVAILABLE_MESSAGE)

    def _record(self, available: bool, error: Optional[str]) -> None:
        changed = available != self.available or self.last_checked is None
        self.available = available
        self.last_error = error
        self.last_checked = utcnow()
        if available:
            logger.debug("health_probe_ok")
        else:
            logger.warning("health_probe_failed", error=error)
        if changed:
            logger.info("availability_changed", available=available)
            if self.on_change is not None:
                self.on_change(available, error)

    async def start(self) -> None:
        """Start background polling when a poll interval is configured."""
        if self.poll_interval > 0 and self._task is None:
            self._task = asyncio.create_task(self._poll())

    async def stop(self) -> None:
        """Stop background polling."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _poll(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.poll_interval)
                await self.check()
            except asyncio.CancelledError:
                break
