"""
Custom exceptions for the staging deployer.

This module defines the error taxonomy used across the deploy flow. Only
InvalidArtifactError aborts polling immediately; PlatformUnavailableError is
absorbed by the polling loop until the failure ceiling is reached.
"""

from typing import Any


class StagingDeployerError(Exception):
    """Base exception for staging deployer errors."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code or "STAGING_DEPLOYER_ERROR"
        self.context = context or {}


class PlatformUnavailableError(StagingDeployerError):
    """Transient platform failure (network error or 5xx)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "PLATFORM_UNAVAILABLE", context)
        self.status_code = status_code


class InvalidArtifactError(StagingDeployerError):
    """The platform rejected the build source reference."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "INVALID_ARTIFACT", context)
        self.status_code = status_code


class PlatformAPIError(StagingDeployerError):
    """Non-transient platform API error that is not about the artifact."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "PLATFORM_API_ERROR", context)
        self.status_code = status_code


class BuildFailedError(StagingDeployerError):
    """The remote build, release or application start failed."""

    def __init__(
        self,
        message: str,
        phase: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "BUILD_FAILED", context)
        self.phase = phase


class PollTimeoutError(StagingDeployerError):
    """Failure ceiling or wall-clock budget exhausted before a terminal status."""

    def __init__(
        self,
        message: str,
        phase: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "POLL_TIMEOUT", context)
        self.phase = phase


class DeploymentCancelledError(StagingDeployerError):
    """Polling was interrupted by the cancellation token."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "DEPLOYMENT_CANCELLED", context)


class ReportingError(StagingDeployerError):
    """Status or telemetry reporting failed. Never escalated."""

    def __init__(
        self,
        message: str,
        target: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "REPORTING_ERROR", context)
        self.target = target


class GitHubAPIError(StagingDeployerError):
    """Exception for GitHub API related errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "GITHUB_API_ERROR", context)
        self.status_code = status_code


class AuthenticationError(StagingDeployerError):
    """Exception for authentication related errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "AUTHENTICATION_ERROR", context)


class ConfigurationError(StagingDeployerError):
    """Exception for configuration related errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "CONFIGURATION_ERROR", context)
