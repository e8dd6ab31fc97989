"""
Data model for build sources, release attempts and deploy results.
"""

from dataclasses import dataclass, field
from typing import Any

from .exceptions import BuildFailedError, PollTimeoutError
from .polling.state import DeployStatus


@dataclass(frozen=True)
class BuildSource:
    """Platform-issued URL pair used to transfer a packaged artifact."""

    upload_url: str
    download_url: str


@dataclass(frozen=True)
class ReleaseAttempt:
    """Inputs of one deploy; immutable while polling."""

    source_blob_url: str
    app_id: str
    pr_url: str = ""
    run_id: str = ""


@dataclass
class DeployResult:
    """Final outcome of a deploy attempt."""

    status: DeployStatus
    app_name: str
    message: str
    app_url: str | None = None
    failed_phase: str | None = None
    elapsed_seconds: float = 0.0
    metrics: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status is DeployStatus.SUCCEEDED

    def raise_for_status(self) -> None:
        """
        Raise if the deploy did not succeed.

        Raises:
            BuildFailedError: The platform reported a build, release or app failure
            PollTimeoutError: No terminal status within the polling limits
        """
        if self.status is DeployStatus.FAILED:
            raise BuildFailedError(
                self.message,
                phase=self.failed_phase,
                context={"app_name": self.app_name},
            )
        if self.status is DeployStatus.TIMED_OUT:
            raise PollTimeoutError(
                self.message,
                phase=self.failed_phase,
                context={
                    "app_name": self.app_name,
                    "elapsed_seconds": self.elapsed_seconds,
                },
            )
