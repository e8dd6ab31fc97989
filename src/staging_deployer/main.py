"""
Command-line entry points for the staging deployer.

``staging-deploy`` runs a full deploy from environment configuration and exits
with a status code that tells a failed application deploy apart from an
operational timeout. ``staging-build-source`` creates a build source and
uploads the packaged tarball to it.
"""

import asyncio
import logging
import os
import signal
import sys

import structlog

from .config import Settings, get_settings
from .deployer import StagingDeployer
from .exceptions import (
    BuildFailedError,
    ConfigurationError,
    DeploymentCancelledError,
    GitHubAPIError,
    InvalidArtifactError,
    PollTimeoutError,
    StagingDeployerError,
)
from .github_client import GitHubClient
from .heroku_client import HerokuClient
from .hydro import HydroClient
from .models import ReleaseAttempt
from .polling import CancellationToken, PollContext
from .pull_request import parse_pr_url, staging_app_name
from .reporter import StatusReporter
from .telemetry import get_telemetry_manager, initialize_telemetry

EXIT_SUCCEEDED = 0
EXIT_FAILED = 1
EXIT_TIMED_OUT = 2
EXIT_INVALID = 3
EXIT_BLOCKED = 4
EXIT_CANCELLED = 130

logger = structlog.get_logger(__name__)


def setup_logging(settings: Settings) -> None:
    """Configure structured logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(message)s",
        stream=sys.stderr,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            (
                structlog.processors.JSONRenderer()
                if settings.log_format == "json"
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def setup_signal_handlers(token: CancellationToken) -> None:
    """Cancel the deploy on SIGINT/SIGTERM, e.g. when a newer run supersedes it."""
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, token.cancel, signal.Signals(signum).name)
        except NotImplementedError:
            logger.debug("Signal handlers not supported", signal=signum)


async def resolve_app_name(
    settings: Settings, github_client: GitHubClient | None
) -> str:
    """
    Work out the staging app name.

    An explicit APP_NAME wins. Otherwise the name is derived from the PR
    number and head branch, asking GitHub for the branch when the CI
    environment does not provide it.
    """
    if settings.app_name:
        return settings.app_name
    if not settings.pr_url:
        raise ConfigurationError("Either APP_NAME or PR_URL must be set")

    ref = parse_pr_url(settings.pr_url)
    branch = settings.github_head_ref
    if not branch:
        if github_client is None:
            raise ConfigurationError(
                "GITHUB_HEAD_REF or GITHUB_TOKEN is needed to name the staging app"
            )
        repo = await github_client.get_repo(ref.full_name)
        pr = await github_client.get_pr(repo, ref.number)
        branch = pr.head.ref

    return staging_app_name(ref.repo, ref.number, branch)


async def is_deploy_blocked(
    settings: Settings, github_client: GitHubClient | None
) -> bool:
    """Check whether the PR carries the label that blocks staging deploys."""
    label = settings.block_deploy_label
    if github_client is None or not settings.pr_url or not label:
        return False

    ref = parse_pr_url(settings.pr_url)
    repo = await github_client.get_repo(ref.full_name)
    pr = await github_client.get_pr(repo, ref.number)
    return any(pr_label.name == label for pr_label in pr.labels)


async def run_deploy(
    settings: Settings,
    context: PollContext | None = None,
    heroku: HerokuClient | None = None,
    github_client: GitHubClient | None = None,
) -> int:
    """
    Run one deploy and return the process exit code.

    Args:
        settings: Application settings
        context: Polling context; created from settings when omitted
        heroku: Platform client; created from settings when omitted
        github_client: GitHub client; created from settings when omitted
    """
    if not settings.source_blob_url:
        logger.error("SOURCE_BLOB_URL is required")
        return EXIT_INVALID

    if github_client is None and settings.reporting_enabled:
        github_client = GitHubClient(settings.github_token, settings.github_api_url)

    try:
        blocked = await is_deploy_blocked(settings, github_client)
    except GitHubAPIError as e:
        logger.warning("Could not read pull request labels", error=str(e), code=e.code)
        blocked = False
    if blocked:
        logger.error("Deploys blocked by label", label=settings.block_deploy_label)
        print(
            f"The PR has the label '{settings.block_deploy_label}'. "
            "Will not deploy it.",
            file=sys.stderr,
        )
        return EXIT_BLOCKED

    polling = settings.polling_config
    context = context or PollContext(
        max_consecutive_failures=polling.max_consecutive_failures,
        timeout_seconds=polling.timeout_seconds,
        interval_seconds=polling.interval_seconds,
    )
    setup_signal_handlers(context.cancel_token)

    try:
        app_name = await resolve_app_name(settings, github_client)
    except StagingDeployerError as e:
        logger.error("Cannot determine staging app name", error=str(e), code=e.code)
        return EXIT_INVALID

    attempt = ReleaseAttempt(
        source_blob_url=settings.source_blob_url,
        app_id=app_name,
        pr_url=settings.pr_url,
        run_id=settings.run_id,
    )
    reporter = StatusReporter(
        github_client, context=settings.status_context, run_id=settings.run_id
    )
    hydro = None
    if settings.hydro_config.enabled:
        hydro = HydroClient(settings.hydro_config)

    async with heroku or HerokuClient(settings.heroku_config) as client:
        deployer = StagingDeployer(client, reporter, settings, hydro, context)
        try:
            result = await deployer.deploy(attempt)
        except InvalidArtifactError as e:
            logger.error("Invalid artifact, not retrying", error=str(e), code=e.code)
            print(
                f"Deploy failed: artifact rejected by the platform: {e}",
                file=sys.stderr,
            )
            return EXIT_INVALID
        except DeploymentCancelledError as e:
            logger.warning("Deploy cancelled", reason=str(e))
            print(f"Deploy cancelled: {e}", file=sys.stderr)
            return EXIT_CANCELLED

    try:
        result.raise_for_status()
    except BuildFailedError as e:
        print(e, file=sys.stderr)
        return EXIT_FAILED
    except PollTimeoutError as e:
        print(e, file=sys.stderr)
        return EXIT_TIMED_OUT

    print(result.message)
    return EXIT_SUCCEEDED


async def run_build_source(
    settings: Settings, heroku: HerokuClient | None = None
) -> int:
    """Create a build source, upload the artifact and publish its URLs."""
    async with heroku or HerokuClient(settings.heroku_config) as client:
        build_source = await client.create_source()
        await client.upload_source(build_source, settings.artifact_path)

    lines = [
        f"upload_url={build_source.upload_url}",
        f"download_url={build_source.download_url}",
    ]
    output_path = os.getenv("GITHUB_OUTPUT")
    if output_path:
        with open(output_path, "a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
    print("\n".join(lines))
    return EXIT_SUCCEEDED


def _load_settings() -> Settings:
    try:
        return get_settings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(EXIT_INVALID)


def main() -> None:
    """Entry point for ``staging-deploy``."""
    settings = _load_settings()
    setup_logging(settings)
    initialize_telemetry()

    try:
        exit_code = asyncio.run(run_deploy(settings))
    except Exception as e:
        logger.exception("Staging deploy crashed", error=str(e))
        print(f"Deploy failed: unexpected error: {e}", file=sys.stderr)
        exit_code = EXIT_FAILED
    finally:
        get_telemetry_manager().shutdown()
    sys.exit(exit_code)


def build_source_main() -> None:
    """Entry point for ``staging-build-source``."""
    settings = _load_settings()
    setup_logging(settings)

    try:
        exit_code = asyncio.run(run_build_source(settings))
    except StagingDeployerError as e:
        logger.error("Failed to prepare build source", error=str(e), code=e.code)
        exit_code = EXIT_FAILED
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
