"""
Deploy poller for the staging deployer.

This module drives a single polling phase: it queries a status check on a
fixed interval until the platform reports a terminal status, the consecutive
failure ceiling is reached, or the deploy's wall-clock budget runs out.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from ..exceptions import PlatformAPIError, PlatformUnavailableError
from .metrics import DeployMetrics
from .state import (
    DeployStatus,
    PollContext,
    PollOutcome,
    PollState,
    TimeoutReason,
)

logger = structlog.get_logger(__name__)

StatusCheck = Callable[[], Awaitable[PollOutcome]]

_OUTCOME_STATUS = {
    PollOutcome.SUCCEEDED: DeployStatus.SUCCEEDED,
    PollOutcome.FAILED: DeployStatus.FAILED,
}


class DeployPoller:
    """
    Polls status checks for one deploy attempt.

    Each call to ``poll_until_terminal`` is a phase with its own failure
    counter; all phases share the context's wall-clock budget.
    """

    def __init__(self, context: PollContext, metrics: DeployMetrics | None = None):
        """
        Initialize the poller.

        Args:
            context: Polling limits, clock and cancellation token
            metrics: Collector for per-phase metrics
        """
        self.context = context
        self.metrics = metrics or DeployMetrics()

    async def poll_until_terminal(
        self,
        check: StatusCheck,
        phase: str = "release",
        max_consecutive_failures: int | None = None,
    ) -> DeployStatus:
        """
        Query ``check`` until it reports a terminal status.

        Args:
            check: Coroutine function returning the current PollOutcome. It
                raises PlatformUnavailableError on transient failures and
                InvalidArtifactError when the artifact is rejected.
            phase: Name used in logs and metrics
            max_consecutive_failures: Overrides the context's ceiling

        Returns:
            SUCCEEDED, FAILED or TIMED_OUT

        Raises:
            InvalidArtifactError: Propagated from ``check`` without retrying
            DeploymentCancelledError: If the cancellation token is set
        """
        ceiling = max_consecutive_failures or self.context.max_consecutive_failures
        state = PollState()
        phase_metrics = self.metrics.start_phase(phase, self.context.clock())

        logger.info(
            "Polling phase started",
            phase=phase,
            max_consecutive_failures=ceiling,
            remaining_seconds=round(self.context.remaining, 3),
        )

        try:
            while not state.status.is_terminal:
                self.context.raise_if_cancelled()

                if self.context.is_expired():
                    logger.warning(
                        "Deploy wall-clock budget exhausted",
                        phase=phase,
                        timeout_seconds=self.context.timeout_seconds,
                    )
                    state.finish(DeployStatus.TIMED_OUT)
                    phase_metrics.timeout_reason = TimeoutReason.WALL_CLOCK.value
                    break

                phase_metrics.record_poll()
                try:
                    outcome = await self._query(check)
                except (PlatformUnavailableError, PlatformAPIError) as e:
                    streak = state.record_failure()
                    phase_metrics.record_failure(streak, str(e))
                    logger.warning(
                        "Status query failed",
                        phase=phase,
                        consecutive_failures=streak,
                        max_consecutive_failures=ceiling,
                        error=str(e),
                    )
                    if streak >= ceiling:
                        logger.error(
                            "Too many consecutive polling failures",
                            phase=phase,
                            consecutive_failures=streak,
                        )
                        state.finish(DeployStatus.TIMED_OUT)
                        phase_metrics.timeout_reason = (
                            TimeoutReason.FAILURE_CEILING.value
                        )
                        break
                else:
                    state.record_success()
                    terminal = _OUTCOME_STATUS.get(outcome)
                    if terminal is not None:
                        state.finish(terminal)
                        break
                    logger.debug("Still in progress", phase=phase)

                await self.context.wait_interval()
        finally:
            self.metrics.finish_phase(phase_metrics, state.status, self.context.clock())

        return state.status

    async def _query(self, check: StatusCheck) -> PollOutcome:
        """Run one status query, abandoning it as soon as the token is set."""
        query = asyncio.ensure_future(check())
        cancelled = asyncio.ensure_future(self.context.cancel_token.wait_cancelled())
        try:
            done, _ = await asyncio.wait(
                {query, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            pending = [task for task in (query, cancelled) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if cancelled in done:
            logger.warning("Status query abandoned on cancellation")
            self.context.raise_if_cancelled()
        return query.result()
