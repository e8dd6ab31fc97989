"""
GitHub API client for the staging deployer.

This module provides the GitHub calls used to report deploy progress on a
pull request: commit statuses and deployments with deployment statuses.
"""

from typing import Any

import structlog
from github import Auth, Github, GithubException
from github.Commit import Commit
from github.CommitStatus import CommitStatus
from github.Deployment import Deployment
from github.DeploymentStatus import DeploymentStatus
from github.PullRequest import PullRequest
from github.Repository import Repository

from .exceptions import AuthenticationError, GitHubAPIError

logger = structlog.get_logger(__name__)


class GitHubClient:
    """
    GitHub API client authenticated with a token.

    The workflow token is enough for statuses and deployments, so there is no
    GitHub App flow here.
    """

    def __init__(self, token: str, api_url: str = "https://api.github.com") -> None:
        """
        Initialize the GitHub client.

        Args:
            token: GitHub token
            api_url: GitHub API base URL
        """
        self.token = token
        self.api_url = api_url
        self._github: Github | None = None

    def _get_github_instance(self) -> Github:
        """Get authenticated GitHub instance."""
        if self._github is None:
            if not self.token:
                raise AuthenticationError("No GitHub token configured")
            self._github = Github(auth=Auth.Token(self.token), base_url=self.api_url)
        return self._github

    async def get_repo(self, full_name: str) -> Repository:
        """
        Get repository by full name.

        Args:
            full_name: Repository full name (owner/repo)

        Returns:
            Repository object
        """
        try:
            return self._get_github_instance().get_repo(full_name)
        except GithubException as e:
            logger.error("Failed to get repository", repo=full_name, error=str(e))
            raise GitHubAPIError(
                f"Failed to get repository {full_name}: {e}", status_code=e.status
            ) from e

    async def get_pr(self, repo: Repository, pr_number: int) -> PullRequest:
        """
        Get pull request by number.

        Args:
            repo: Repository object
            pr_number: Pull request number

        Returns:
            PullRequest object
        """
        try:
            return repo.get_pull(pr_number)
        except GithubException as e:
            logger.error(
                "Failed to get pull request",
                repo=repo.full_name,
                pr_number=pr_number,
                error=str(e),
            )
            raise GitHubAPIError(
                f"Failed to get PR {pr_number}: {e}", status_code=e.status
            ) from e

    async def create_commit_status(
        self,
        repo: Repository,
        sha: str,
        state: str,
        description: str,
        context: str,
        target_url: str | None = None,
    ) -> CommitStatus:
        """
        Create a commit status on a commit.

        Args:
            repo: Repository object
            sha: Commit SHA
            state: One of pending, success, failure, error
            description: Short description shown in the PR
            context: Status context name
            target_url: Optional link for the status

        Returns:
            CommitStatus object
        """
        try:
            commit: Commit = repo.get_commit(sha)
            kwargs: dict[str, Any] = {
                "state": state,
                "description": description[:140],
                "context": context,
            }
            if target_url:
                kwargs["target_url"] = target_url
            status = commit.create_status(**kwargs)

            logger.info(
                "Commit status created",
                repo=repo.full_name,
                sha=sha,
                state=state,
                context=context,
            )
            return status
        except GithubException as e:
            logger.error(
                "Failed to create commit status",
                repo=repo.full_name,
                sha=sha,
                error=str(e),
            )
            raise GitHubAPIError(
                f"Failed to create commit status: {e}", status_code=e.status
            ) from e

    async def create_deployment(
        self,
        repo: Repository,
        ref: str,
        environment: str,
        description: str,
    ) -> Deployment:
        """
        Create a transient, non-production deployment for a ref.

        Args:
            repo: Repository object
            ref: Branch or SHA being deployed
            environment: Deployment environment name
            description: Deployment description

        Returns:
            Deployment object
        """
        try:
            deployment = repo.create_deployment(
                ref=ref,
                environment=environment,
                description=description,
                auto_merge=False,
                required_contexts=[],
                transient_environment=True,
                production_environment=False,
            )
            logger.info(
                "Deployment created",
                repo=repo.full_name,
                deployment_id=deployment.id,
                environment=environment,
            )
            return deployment
        except GithubException as e:
            logger.error(
                "Failed to create deployment",
                repo=repo.full_name,
                ref=ref,
                error=str(e),
            )
            raise GitHubAPIError(
                f"Failed to create deployment: {e}", status_code=e.status
            ) from e

    async def create_deployment_status(
        self,
        deployment: Deployment,
        state: str,
        description: str,
        environment_url: str | None = None,
        log_url: str | None = None,
    ) -> DeploymentStatus:
        """
        Add a status to a deployment.

        Args:
            deployment: Deployment object
            state: One of in_progress, success, failure, error, inactive
            description: Status description
            environment_url: URL of the deployed environment
            log_url: URL of the CI run

        Returns:
            DeploymentStatus object
        """
        try:
            kwargs: dict[str, Any] = {
                "state": state,
                "description": description[:140],
            }
            if environment_url:
                kwargs["environment_url"] = environment_url
            if log_url:
                kwargs["target_url"] = log_url
            status = deployment.create_status(**kwargs)

            logger.info(
                "Deployment status created",
                deployment_id=deployment.id,
                state=state,
            )
            return status
        except GithubException as e:
            logger.error(
                "Failed to create deployment status",
                deployment_id=deployment.id,
                error=str(e),
            )
            raise GitHubAPIError(
                f"Failed to create deployment status: {e}", status_code=e.status
            ) from e
