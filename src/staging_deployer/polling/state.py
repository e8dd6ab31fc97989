"""
Poll state, deploy status and the per-attempt polling context.

All mutable polling state lives in these objects and is passed explicitly to
the poller instead of living at module level.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import structlog

from ..exceptions import DeploymentCancelledError

logger = structlog.get_logger(__name__)


class DeployStatus(str, Enum):
    """Status of a deploy attempt."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self is not DeployStatus.PENDING


class PollOutcome(str, Enum):
    """Result of a single successful status query."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TimeoutReason(str, Enum):
    """Which limit ended a phase with TIMED_OUT."""

    WALL_CLOCK = "wall_clock"
    FAILURE_CEILING = "failure_ceiling"


@dataclass
class PollState:
    """Consecutive failure counter and status for one polling phase."""

    attempts_failed_consecutively: int = 0
    status: DeployStatus = DeployStatus.PENDING

    def record_success(self) -> None:
        """A query answered; the failure streak is over."""
        self._ensure_pending()
        self.attempts_failed_consecutively = 0

    def record_failure(self) -> int:
        """Count a transient failure and return the current streak."""
        self._ensure_pending()
        self.attempts_failed_consecutively += 1
        return self.attempts_failed_consecutively

    def finish(self, status: DeployStatus) -> None:
        """Move to a terminal status. Terminal states are final."""
        self._ensure_pending()
        if not status.is_terminal:
            raise ValueError("Cannot finish polling with a pending status")
        self.status = status

    def _ensure_pending(self) -> None:
        if self.status.is_terminal:
            raise RuntimeError(f"Poll state already terminal: {self.status.value}")


class CancellationToken:
    """Cooperative cancellation signal checked between polls."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self, timeout: float) -> bool:
        """
        Wait up to ``timeout`` seconds for cancellation.

        Returns:
            True if the token was cancelled during the wait
        """
        if timeout <= 0:
            return self.is_cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait_cancelled(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()


@dataclass
class PollContext:
    """
    Shared state for one deploy attempt.

    The wall-clock budget starts when the context is created and spans every
    polling phase. ``clock`` and ``sleep`` are injectable so the loop can be
    driven without real time passing.
    """

    max_consecutive_failures: int = 15
    timeout_seconds: float = 300.0
    interval_seconds: float = 5.0
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] | None = None
    started_at: float = field(default=-1.0)

    def __post_init__(self) -> None:
        if self.max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be >= 1")
        if self.started_at < 0:
            self.started_at = self.clock()

    @property
    def elapsed(self) -> float:
        return self.clock() - self.started_at

    @property
    def remaining(self) -> float:
        return max(0.0, self.timeout_seconds - self.elapsed)

    def is_expired(self) -> bool:
        return self.elapsed >= self.timeout_seconds

    def raise_if_cancelled(self) -> None:
        if self.cancel_token.is_cancelled:
            raise DeploymentCancelledError(
                f"Deploy cancelled: {self.cancel_token.reason}",
                context={"elapsed_seconds": round(self.elapsed, 3)},
            )

    async def wait_interval(self) -> None:
        """Sleep until the next poll, waking early on cancellation."""
        delay = min(self.interval_seconds, self.remaining)
        if self.sleep is not None:
            await self.sleep(delay)
        else:
            await self.cancel_token.wait(delay)
        self.raise_if_cancelled()
