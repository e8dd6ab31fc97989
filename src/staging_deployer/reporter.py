"""
Best-effort deploy status reporting to the originating pull request.

Every public method here swallows and logs its failures as ReportingError:
a broken status update must never change the outcome of a deploy.
"""

from typing import Any

import structlog
from github.Deployment import Deployment

from .exceptions import ReportingError
from .github_client import GitHubClient
from .polling.state import DeployStatus
from .pull_request import PullRequestRef, parse_pr_url

logger = structlog.get_logger(__name__)

COMMIT_STATES = {
    DeployStatus.PENDING: "pending",
    DeployStatus.SUCCEEDED: "success",
    DeployStatus.FAILED: "failure",
    DeployStatus.TIMED_OUT: "error",
}

DEPLOYMENT_STATES = {
    DeployStatus.PENDING: "in_progress",
    DeployStatus.SUCCEEDED: "success",
    DeployStatus.FAILED: "failure",
    DeployStatus.TIMED_OUT: "error",
}

DEFAULT_DESCRIPTIONS = {
    DeployStatus.PENDING: "Staging deploy in progress",
    DeployStatus.SUCCEEDED: "Staging deploy succeeded",
    DeployStatus.FAILED: "Staging deploy failed",
    DeployStatus.TIMED_OUT: "Staging deploy timed out",
}


class StatusReporter:
    """Reports deploy state on a pull request's head commit and deployment."""

    def __init__(
        self,
        github_client: GitHubClient | None,
        context: str = "staging-deploy",
        run_id: str = "",
    ):
        """
        Initialize the reporter.

        Args:
            github_client: GitHub client, or None to disable reporting
            context: Commit status context name
            run_id: CI run id used to link statuses to the run log
        """
        self.github_client = github_client
        self.context = context
        self.run_id = run_id
        self._pr_cache: dict[str, tuple[Any, Any]] = {}
        self._deployment: Deployment | None = None

    @property
    def enabled(self) -> bool:
        return self.github_client is not None

    async def _resolve(self, client: GitHubClient, pr_url: str) -> tuple[Any, Any]:
        """Get (repository, pull request) for a PR url, cached."""
        if pr_url not in self._pr_cache:
            ref = parse_pr_url(pr_url)
            repo = await client.get_repo(ref.full_name)
            pr = await client.get_pr(repo, ref.number)
            self._pr_cache[pr_url] = (repo, pr)
        return self._pr_cache[pr_url]

    def run_url(self, pr_url: str) -> str | None:
        """Link to the CI run that is deploying the PR."""
        if not self.run_id:
            return None
        ref: PullRequestRef = parse_pr_url(pr_url)
        host = pr_url.split("/" + ref.owner + "/", 1)[0]
        return f"{host}/{ref.full_name}/actions/runs/{self.run_id}"

    async def report_status(
        self,
        pr_url: str,
        status: DeployStatus,
        description: str | None = None,
        target_url: str | None = None,
    ) -> bool:
        """
        Post a commit status for the PR head commit.

        Returns:
            True if the status was posted
        """
        client = self.github_client
        if client is None or not pr_url:
            logger.debug("Status reporting disabled", status=status.value)
            return False

        try:
            repo, pr = await self._resolve(client, pr_url)
            await client.create_commit_status(
                repo,
                pr.head.sha,
                state=COMMIT_STATES[status],
                description=description or DEFAULT_DESCRIPTIONS[status],
                context=self.context,
                target_url=target_url or self.run_url(pr_url),
            )
            return True
        except Exception as e:
            _log_reporting_failure(
                "commit_status", e, pr_url=pr_url, status=status.value
            )
            return False

    async def start_deployment(self, pr_url: str, app_name: str) -> bool:
        """Create a GitHub deployment for the PR head and mark it in progress."""
        client = self.github_client
        if client is None or not pr_url:
            return False

        try:
            repo, pr = await self._resolve(client, pr_url)
            self._deployment = await client.create_deployment(
                repo,
                ref=pr.head.ref,
                environment=f"staging-{app_name}",
                description=f"Staging deploy of PR #{pr.number} to {app_name}",
            )
            await client.create_deployment_status(
                self._deployment,
                state=DEPLOYMENT_STATES[DeployStatus.PENDING],
                description=DEFAULT_DESCRIPTIONS[DeployStatus.PENDING],
                log_url=self.run_url(pr_url),
            )
            return True
        except Exception as e:
            _log_reporting_failure("deployment", e, pr_url=pr_url)
            return False

    async def finish_deployment(
        self,
        pr_url: str,
        status: DeployStatus,
        description: str | None = None,
        environment_url: str | None = None,
    ) -> bool:
        """Post the final deployment status, if a deployment was started."""
        client = self.github_client
        if client is None or self._deployment is None:
            return False

        try:
            await client.create_deployment_status(
                self._deployment,
                state=DEPLOYMENT_STATES[status],
                description=description or DEFAULT_DESCRIPTIONS[status],
                environment_url=(
                    environment_url if status is DeployStatus.SUCCEEDED else None
                ),
                log_url=self.run_url(pr_url),
            )
            return True
        except Exception as e:
            _log_reporting_failure(
                "deployment_status", e, pr_url=pr_url, status=status.value
            )
            return False


def _log_reporting_failure(target: str, exc: Exception, **fields: Any) -> None:
    error = ReportingError(f"Failed to report {target}: {exc}", target=target)
    logger.warning(
        "Status reporting failed",
        target=target,
        code=error.code,
        error=str(error),
        **fields,
    )
