"""
Configuration management for the staging deployer.

This module reads the deploy environment (tokens, PR url, build source url,
polling limits) using Pydantic Settings for type safety and validation.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .pull_request import parse_pr_url


class PollingConfig(BaseModel):
    """Polling configuration settings."""

    max_consecutive_failures: int = Field(
        default=15, description="Consecutive failed polls allowed per phase"
    )
    timeout_seconds: float = Field(
        default=300.0, description="Wall-clock budget for the whole deploy"
    )
    interval_seconds: float = Field(
        default=5.0, description="Fixed delay between status queries"
    )


class HerokuConfig(BaseModel):
    """Platform API configuration settings."""

    api_token: str = Field(..., description="Heroku API token")
    api_url: str = Field(default="https://api.heroku.com")
    team: str = Field(default="", description="Team that owns staging apps")
    region: str = Field(default="us")
    stack: str = Field(default="")
    http_timeout: float = Field(default=30.0)


class HydroConfig(BaseModel):
    """Telemetry event configuration settings."""

    endpoint: str = Field(default="")
    secret: str = Field(default="")
    schema_name: str = Field(default="docs.v0.StagingDeploymentEvent")
    app: str = Field(default="docs-staging")

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint and self.secret)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Platform configuration
    heroku_api_token: str = Field(..., description="Heroku API token")
    heroku_api_url: str = Field(
        default="https://api.heroku.com", description="Heroku API URL"
    )
    heroku_team: str = Field(default="", description="Team for new staging apps")
    heroku_region: str = Field(default="us", description="Region for new apps")
    heroku_stack: str = Field(default="", description="Stack for new apps")

    # GitHub configuration
    github_token: str = Field(
        default="", description="GitHub token for status reporting"
    )
    github_api_url: str = Field(
        default="https://api.github.com", description="GitHub API URL"
    )
    status_context: str = Field(
        default="staging-deploy", description="Commit status context"
    )

    # Deploy inputs
    pr_url: str = Field(default="", description="Pull request html url")
    source_blob_url: str = Field(default="", description="Build source download url")
    run_id: str = Field(default="", description="CI run identifier")
    app_name: str = Field(
        default="", description="Staging app name; derived from the PR when empty"
    )
    github_head_ref: str = Field(
        default="", description="PR head branch, set by GitHub Actions"
    )
    artifact_path: str = Field(
        default="app.tar.gz", description="Tarball uploaded to the build source"
    )
    block_deploy_label: str = Field(
        default="automated-block-deploy",
        description="PR label that prevents staging deploys; empty disables the check",
    )

    # Polling configuration
    allowed_polling_failures_per_phase: int = Field(
        default=15, description="Consecutive failed polls allowed per phase"
    )
    deploy_timeout_seconds: float = Field(
        default=300.0, description="Wall-clock budget for the deploy"
    )
    poll_interval_seconds: float = Field(
        default=5.0, description="Delay between status queries"
    )
    http_timeout_seconds: float = Field(
        default=30.0, description="Timeout for a single HTTP request"
    )

    # Telemetry
    hydro_endpoint: str = Field(default="", description="Telemetry endpoint")
    hydro_secret: str = Field(default="", description="Telemetry signing secret")
    hydro_schema: str = Field(default="docs.v0.StagingDeploymentEvent")
    hydro_app: str = Field(default="docs-staging")

    # Logging configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="json", description="Log format")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("allowed_polling_failures_per_phase")
    @classmethod
    def validate_failure_ceiling(cls, v: int) -> int:
        """The ceiling must allow at least one failed poll."""
        if v < 1:
            raise ValueError(f"Polling failure ceiling must be >= 1, got {v}")
        return v

    @field_validator(
        "deploy_timeout_seconds", "poll_interval_seconds", "http_timeout_seconds"
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Duration must be positive, got {v}")
        return v

    @field_validator("pr_url")
    @classmethod
    def validate_pr_url(cls, v: str) -> str:
        """Validate the PR url when one is provided."""
        if v:
            try:
                parse_pr_url(v)
            except Exception as e:
                raise ValueError(str(e)) from e
        return v

    @property
    def polling_config(self) -> PollingConfig:
        """Get polling configuration."""
        return PollingConfig(
            max_consecutive_failures=self.allowed_polling_failures_per_phase,
            timeout_seconds=self.deploy_timeout_seconds,
            interval_seconds=self.poll_interval_seconds,
        )

    @property
    def heroku_config(self) -> HerokuConfig:
        """Get platform API configuration."""
        return HerokuConfig(
            api_token=self.heroku_api_token,
            api_url=self.heroku_api_url,
            team=self.heroku_team,
            region=self.heroku_region,
            stack=self.heroku_stack,
            http_timeout=self.http_timeout_seconds,
        )

    @property
    def hydro_config(self) -> HydroConfig:
        """Get telemetry event configuration."""
        return HydroConfig(
            endpoint=self.hydro_endpoint,
            secret=self.hydro_secret,
            schema_name=self.hydro_schema,
            app=self.hydro_app,
        )

    @property
    def reporting_enabled(self) -> bool:
        """Check if GitHub status reporting is possible."""
        return bool(self.github_token and self.pr_url)


# Global settings instance - initialized lazily to avoid import-time errors
_settings_instance = None


def get_settings() -> Settings:
    """Get the global settings instance, creating it if necessary."""
    global _settings_instance
    if _settings_instance is None:
        try:
            _settings_instance = Settings()  # type: ignore[call-arg,unused-ignore]
        except ValueError as e:
            if "heroku_api_token" in str(e):
                raise ValueError(
                    "HEROKU_API_TOKEN environment variable is required. "
                    "Please set it to a Heroku API token."
                ) from e
            raise
    return _settings_instance


def __getattr__(name: str) -> Any:
    """Allow module-level access to settings attributes."""
    if name == "settings":
        return get_settings()
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
