"""
Staging deploy orchestration.

This module drives one deploy attempt from trigger to terminal status:
trigger the release, poll the build (or app setup), the release and the web
dynos, then report the outcome to the pull request and telemetry.
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from .config import Settings
from .exceptions import DeploymentCancelledError, InvalidArtifactError
from .heroku_client import HerokuClient
from .hydro import HydroClient
from .models import DeployResult, ReleaseAttempt
from .polling import (
    DeployMetrics,
    DeployPoller,
    DeployStatus,
    PollContext,
    PollOutcome,
    TimeoutReason,
)
from .reporter import StatusReporter
from .telemetry import DeployerMetrics, get_tracer

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

_REMOTE_STATUS = {
    "pending": PollOutcome.PENDING,
    "succeeded": PollOutcome.SUCCEEDED,
    "failed": PollOutcome.FAILED,
    "expired": PollOutcome.FAILED,
}


def remote_outcome(status: str | None) -> PollOutcome:
    """Map a Platform API build/release/app-setup status to a poll outcome."""
    return _REMOTE_STATUS.get(status or "pending", PollOutcome.PENDING)


def dyno_outcome(dynos: list[dict[str, Any]]) -> PollOutcome:
    """All web dynos up is success; any crashed web dyno is a failure."""
    web = [d for d in dynos if d.get("type") == "web"]
    if any(d.get("state") == "crashed" for d in web):
        return PollOutcome.FAILED
    if web and all(d.get("state") == "up" for d in web):
        return PollOutcome.SUCCEEDED
    return PollOutcome.PENDING


@dataclass
class TriggeredRelease:
    """Identifies the remote object created by ``trigger_release``."""

    app_name: str
    kind: str  # "app_setup" or "build"
    id: str


class StagingDeployer:
    """
    Runs a single staging deploy attempt.

    All polling state for the attempt lives in the PollContext, so a deployer
    instance is good for one attempt only.
    """

    def __init__(
        self,
        heroku: HerokuClient,
        reporter: StatusReporter,
        settings: Settings,
        hydro: HydroClient | None = None,
        context: PollContext | None = None,
    ):
        """
        Initialize the deployer.

        Args:
            heroku: Platform API client
            reporter: Pull request status reporter
            settings: Application settings
            hydro: Optional telemetry event client
            context: Polling context; created from settings when omitted
        """
        self.heroku = heroku
        self.reporter = reporter
        self.settings = settings
        self.hydro = hydro
        config = settings.polling_config
        self.context = context or PollContext(
            max_consecutive_failures=config.max_consecutive_failures,
            timeout_seconds=config.timeout_seconds,
            interval_seconds=config.interval_seconds,
        )
        self.metrics = DeployMetrics()
        self.poller = DeployPoller(self.context, self.metrics)

        self._build_id: str | None = None
        self._release_id: str | None = None

    async def trigger_release(
        self, source_blob_url: str, app_id: str
    ) -> TriggeredRelease:
        """
        Start a release of an uploaded artifact.

        New staging apps are created and built with an app setup; existing
        apps get a new build.

        Raises:
            PlatformUnavailableError: On network errors or 5xx
            InvalidArtifactError: If the source blob is rejected
        """
        app = await self.heroku.get_app(app_id)
        if app is None:
            setup = await self.heroku.create_app_setup(
                app_id, source_blob_url, env={"RUN_ID": self.settings.run_id}
            )
            triggered = TriggeredRelease(
                app_name=app_id, kind="app_setup", id=setup["id"]
            )
        else:
            build = await self.heroku.create_build(app_id, source_blob_url)
            self._build_id = build["id"]
            triggered = TriggeredRelease(app_name=app_id, kind="build", id=build["id"])

        logger.info(
            "Release triggered",
            app=app_id,
            kind=triggered.kind,
            id=triggered.id,
        )
        return triggered

    async def poll_until_terminal(
        self,
        check: Callable[[], Awaitable[PollOutcome]],
        phase: str,
    ) -> DeployStatus:
        """Poll one phase under a tracing span."""
        with tracer.start_as_current_span(f"poll.{phase}") as span:
            status = await self.poller.poll_until_terminal(check, phase=phase)
            span.set_attribute("deploy.phase.status", status.value)
            return status

    async def deploy(self, attempt: ReleaseAttempt) -> DeployResult:
        """
        Run the deploy attempt to a terminal status and report it.

        Returns:
            DeployResult with SUCCEEDED, FAILED or TIMED_OUT

        Raises:
            InvalidArtifactError: The artifact was rejected; reported as failure
            DeploymentCancelledError: A newer deploy superseded this one
            Exception: Any unexpected error, after reporting a failure
        """
        app_name = attempt.app_id
        logger.info(
            "Starting staging deploy",
            app=app_name,
            pr_url=attempt.pr_url,
            run_id=attempt.run_id,
            max_consecutive_failures=self.context.max_consecutive_failures,
            timeout_seconds=self.context.timeout_seconds,
        )

        await self.reporter.report_status(attempt.pr_url, DeployStatus.PENDING)
        await self.reporter.start_deployment(attempt.pr_url, app_name)

        with tracer.start_as_current_span("staging_deploy") as span:
            span.set_attribute("deploy.app", app_name)
            try:
                status, phase = await self._run_phases(attempt)
            except InvalidArtifactError as e:
                result = DeployResult(
                    status=DeployStatus.FAILED,
                    app_name=app_name,
                    message=f"Artifact rejected by the platform: {e}",
                    failed_phase="trigger",
                )
                await self._finish(attempt, result)
                raise
            except DeploymentCancelledError:
                raise
            except Exception as e:
                phase = self._current_phase()
                logger.exception("Deploy aborted by unexpected error", phase=phase)
                result = DeployResult(
                    status=DeployStatus.FAILED,
                    app_name=app_name,
                    message=f"Deploy aborted during {phase}: unexpected error: {e}",
                    failed_phase=phase,
                )
                await self._finish(attempt, result)
                raise
            span.set_attribute("deploy.status", status.value)

        result = await self._build_result(app_name, status, phase)
        await self._finish(attempt, result)
        return result

    async def _run_phases(self, attempt: ReleaseAttempt) -> tuple[DeployStatus, str]:
        """Run every phase in order; stop at the first non-success."""
        triggered: list[TriggeredRelease] = []

        async def trigger() -> PollOutcome:
            triggered.append(
                await self.trigger_release(attempt.source_blob_url, attempt.app_id)
            )
            return PollOutcome.SUCCEEDED

        status = await self.poll_until_terminal(trigger, "trigger")
        if status is not DeployStatus.SUCCEEDED:
            return status, "trigger"

        release = triggered[-1]
        phases: list[tuple[str, Callable[[], Awaitable[PollOutcome]]]] = [
            (release.kind, self._build_check(release)),
            ("release", self._release_check(release.app_name)),
            ("dynos", self._dyno_check(release.app_name)),
        ]
        for phase, check in phases:
            status = await self.poll_until_terminal(check, phase)
            if status is not DeployStatus.SUCCEEDED:
                return status, phase
        return DeployStatus.SUCCEEDED, "dynos"

    def _build_check(
        self, release: TriggeredRelease
    ) -> Callable[[], Awaitable[PollOutcome]]:
        async def check_app_setup() -> PollOutcome:
            setup = await self.heroku.get_app_setup(release.id)
            build = setup.get("build") or {}
            if build.get("id"):
                self._build_id = build["id"]
            outcome = remote_outcome(setup.get("status"))
            if outcome is PollOutcome.FAILED:
                logger.error(
                    "App setup failed",
                    app=release.app_name,
                    failure_message=setup.get("failure_message"),
                )
            return outcome

        async def check_build() -> PollOutcome:
            build = await self.heroku.get_build(release.app_name, release.id)
            if build.get("release"):
                self._release_id = build["release"].get("id")
            outcome = remote_outcome(build.get("status"))
            if outcome is PollOutcome.FAILED:
                logger.error("Build failed", app=release.app_name, build_id=release.id)
            return outcome

        return check_app_setup if release.kind == "app_setup" else check_build

    def _release_check(self, app_name: str) -> Callable[[], Awaitable[PollOutcome]]:
        async def check_release() -> PollOutcome:
            if self._release_id is None:
                if self._build_id is None:
                    return PollOutcome.PENDING
                build = await self.heroku.get_build(app_name, self._build_id)
                self._release_id = (build.get("release") or {}).get("id")
                if self._release_id is None:
                    return PollOutcome.PENDING

            release = await self.heroku.get_release(app_name, self._release_id)
            return remote_outcome(release.get("status"))

        return check_release

    def _dyno_check(self, app_name: str) -> Callable[[], Awaitable[PollOutcome]]:
        async def check_dynos() -> PollOutcome:
            return dyno_outcome(await self.heroku.get_dynos(app_name))

        return check_dynos

    async def _build_result(
        self, app_name: str, status: DeployStatus, phase: str
    ) -> DeployResult:
        if status is DeployStatus.SUCCEEDED:
            app_url = await self._app_url(app_name)
            return DeployResult(
                status=status,
                app_name=app_name,
                app_url=app_url,
                message=f"Deployed {app_name} to {app_url}",
            )

        if status is DeployStatus.FAILED:
            message = (
                f"Deploy failed during {phase}: the platform reported a "
                "build, release or application failure"
            )
        elif self._current_timeout_reason() == TimeoutReason.WALL_CLOCK.value:
            message = (
                f"Deploy timed out during {phase}: exceeded "
                f"{self.context.timeout_seconds:g}s without a final status"
            )
        else:
            message = (
                f"Deploy timed out during {phase}: "
                f"{self.context.max_consecutive_failures} consecutive polling "
                "failures (platform unavailable, not an application failure)"
            )
        return DeployResult(
            status=status, app_name=app_name, message=message, failed_phase=phase
        )

    def _current_phase(self) -> str:
        return self.metrics.phases[-1].phase if self.metrics.phases else "trigger"

    def _current_timeout_reason(self) -> str | None:
        return self.metrics.phases[-1].timeout_reason if self.metrics.phases else None

    async def _app_url(self, app_name: str) -> str:
        fallback = f"https://{app_name}.herokuapp.com/"
        try:
            app = await self.heroku.get_app(app_name)
        except Exception as e:
            logger.warning("Could not look up app url", app=app_name, error=str(e))
            return fallback
        return (app or {}).get("web_url") or fallback

    async def _finish(self, attempt: ReleaseAttempt, result: DeployResult) -> None:
        """Report the final status everywhere; never raises."""
        result.elapsed_seconds = round(self.context.elapsed, 3)
        result.metrics = self.metrics.summary()

        log = logger.info if result.succeeded else logger.error
        log(
            "Staging deploy finished",
            app=result.app_name,
            status=result.status.value,
            message=result.message,
            elapsed_seconds=result.elapsed_seconds,
            total_polls=self.metrics.total_polls,
            transient_failures=self.metrics.total_failures,
        )

        await self.reporter.report_status(
            attempt.pr_url,
            result.status,
            description=result.message,
            target_url=result.app_url,
        )
        await self.reporter.finish_deployment(
            attempt.pr_url,
            result.status,
            description=result.message,
            environment_url=result.app_url,
        )

        try:
            DeployerMetrics().record_deploy(
                result.elapsed_seconds,
                result.status.value,
                self.metrics.total_polls,
                self.metrics.total_failures,
            )
        except Exception as e:
            logger.warning("Failed to record deploy metrics", error=str(e))

        if self.hydro is not None:
            await self.hydro.publish(
                {
                    "run_id": attempt.run_id,
                    "pr_url": attempt.pr_url,
                    "app_name": result.app_name,
                    "status": result.status.value,
                    "message": result.message,
                    "failed_phase": result.failed_phase,
                    "elapsed_seconds": result.elapsed_seconds,
                    "timestamp": time.time(),
                    **result.metrics,
                }
            )
