"""
Pytest configuration and fixtures for staging deployer tests.
"""

from collections.abc import Awaitable, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from staging_deployer.config import Settings
from staging_deployer.heroku_client import HerokuClient
from staging_deployer.polling import PollContext, PollOutcome
from staging_deployer.reporter import StatusReporter

PR_URL = "https://github.com/octo-org/docs/pull/123"
SOURCE_BLOB_URL = "https://s3.example.com/sources/abc.tar.gz?sig=1"


class FakeClock:
    """Monotonic clock that only moves when the poller sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


def sequence_check(
    outcomes: list[PollOutcome | Exception],
) -> Callable[[], Awaitable[PollOutcome]]:
    """Build a status check that replays outcomes, raising any exceptions."""
    remaining = list(outcomes)

    async def check() -> PollOutcome:
        check.calls += 1  # type: ignore[attr-defined]
        item = remaining.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    check.calls = 0  # type: ignore[attr-defined]
    return check


@pytest.fixture
def mock_settings() -> Settings:
    """Settings for testing."""
    return Settings(
        heroku_api_token="test-heroku-token",
        github_token="test-github-token",
        pr_url=PR_URL,
        source_blob_url=SOURCE_BLOB_URL,
        run_id="4242",
        app_name="",
        github_head_ref="",
        hydro_endpoint="",
        allowed_polling_failures_per_phase=15,
        deploy_timeout_seconds=300,
        poll_interval_seconds=5,
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def poll_context(fake_clock: FakeClock) -> PollContext:
    """Polling context driven by the fake clock."""
    return PollContext(
        max_consecutive_failures=15,
        timeout_seconds=300,
        interval_seconds=5,
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )


@pytest.fixture
def mock_heroku() -> AsyncMock:
    """Platform client for a new app whose deploy goes straight through."""
    heroku = AsyncMock(spec=HerokuClient)
    heroku.get_app.side_effect = [
        None,
        {"name": "gha-docs-123-fix-typo", "web_url": "https://staging.example.com/"},
    ]
    heroku.create_app_setup.return_value = {"id": "setup-1", "status": "pending"}
    heroku.get_app_setup.return_value = {
        "id": "setup-1",
        "status": "succeeded",
        "build": {"id": "build-1"},
    }
    heroku.get_build.return_value = {
        "id": "build-1",
        "status": "succeeded",
        "release": {"id": "release-1"},
    }
    heroku.get_release.return_value = {"id": "release-1", "status": "succeeded"}
    heroku.get_dynos.return_value = [{"type": "web", "state": "up"}]
    return heroku


@pytest.fixture
def mock_reporter() -> AsyncMock:
    """Status reporter that records calls."""
    reporter = AsyncMock(spec=StatusReporter)
    reporter.report_status.return_value = True
    reporter.start_deployment.return_value = True
    reporter.finish_deployment.return_value = True
    return reporter


@pytest.fixture
def mock_pr() -> MagicMock:
    """Pull request object as returned by PyGithub."""
    pr = MagicMock()
    pr.number = 123
    pr.head.sha = "abc123"
    pr.head.ref = "fix-typo"
    pr.labels = []
    return pr
