"""
Tests for the command-line entry points and exit codes.
"""

from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from staging_deployer.exceptions import (
    ConfigurationError,
    GitHubAPIError,
    InvalidArtifactError,
    PlatformUnavailableError,
)
from staging_deployer.github_client import GitHubClient
from staging_deployer.main import (
    EXIT_BLOCKED,
    EXIT_CANCELLED,
    EXIT_FAILED,
    EXIT_INVALID,
    EXIT_SUCCEEDED,
    EXIT_TIMED_OUT,
    main,
    resolve_app_name,
    run_build_source,
    run_deploy,
)
from staging_deployer.models import BuildSource


@pytest.fixture
def github_client(mock_pr) -> AsyncMock:
    client = AsyncMock(spec=GitHubClient)
    client.get_repo.return_value = MagicMock(full_name="octo-org/docs")
    client.get_pr.return_value = mock_pr
    return client


@pytest.fixture
def heroku(mock_heroku) -> AsyncMock:
    mock_heroku.__aenter__.return_value = mock_heroku
    return mock_heroku


@pytest.fixture(autouse=True)
def no_signal_handlers():
    with patch("staging_deployer.main.setup_signal_handlers"):
        yield


class TestRunDeploy:
    """Test run_deploy exit codes."""

    @pytest.mark.asyncio
    async def test_success(
        self, mock_settings, poll_context, heroku, github_client, capsys
    ):
        code = await run_deploy(mock_settings, poll_context, heroku, github_client)

        assert code == EXIT_SUCCEEDED
        heroku.get_app.assert_any_await("gha-docs-123-fix-typo")
        assert "Deployed gha-docs-123-fix-typo" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_failed(
        self, mock_settings, poll_context, heroku, github_client, capsys
    ):
        heroku.get_app_setup.return_value = {"id": "setup-1", "status": "failed"}

        code = await run_deploy(mock_settings, poll_context, heroku, github_client)

        assert code == EXIT_FAILED
        assert "Deploy failed" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_timed_out(
        self, mock_settings, poll_context, heroku, github_client, capsys
    ):
        heroku.get_release.side_effect = PlatformUnavailableError("bad gateway")

        code = await run_deploy(mock_settings, poll_context, heroku, github_client)

        assert code == EXIT_TIMED_OUT
        assert "Deploy timed out" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_invalid_artifact(
        self, mock_settings, poll_context, heroku, github_client
    ):
        heroku.create_app_setup.side_effect = InvalidArtifactError("blob expired")

        code = await run_deploy(mock_settings, poll_context, heroku, github_client)

        assert code == EXIT_INVALID

    @pytest.mark.asyncio
    async def test_cancelled(self, mock_settings, poll_context, heroku, github_client):
        poll_context.cancel_token.cancel("SIGTERM")

        code = await run_deploy(mock_settings, poll_context, heroku, github_client)

        assert code == EXIT_CANCELLED
        heroku.get_app.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_source_blob(self, mock_settings, poll_context, heroku):
        mock_settings.source_blob_url = ""

        code = await run_deploy(mock_settings, poll_context, heroku)

        assert code == EXIT_INVALID
        heroku.get_app.assert_not_called()

    @pytest.mark.asyncio
    async def test_blocked_by_label(
        self, mock_settings, poll_context, heroku, github_client, mock_pr, capsys
    ):
        label = MagicMock()
        label.name = "automated-block-deploy"
        mock_pr.labels = [label]

        code = await run_deploy(mock_settings, poll_context, heroku, github_client)

        assert code == EXIT_BLOCKED
        heroku.get_app.assert_not_called()
        github_client.create_commit_status.assert_not_called()
        assert "automated-block-deploy" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_other_labels_do_not_block(
        self, mock_settings, poll_context, heroku, github_client, mock_pr
    ):
        label = MagicMock()
        label.name = "docs"
        mock_pr.labels = [label]

        code = await run_deploy(mock_settings, poll_context, heroku, github_client)

        assert code == EXIT_SUCCEEDED

    @pytest.mark.asyncio
    async def test_label_lookup_failure_does_not_block(
        self, mock_settings, poll_context, heroku, github_client
    ):
        repo = MagicMock(full_name="octo-org/docs")
        github_client.get_repo.side_effect = [GitHubAPIError("boom"), repo, repo]

        code = await run_deploy(mock_settings, poll_context, heroku, github_client)

        assert code == EXIT_SUCCEEDED
        heroku.create_app_setup.assert_awaited_once()


class TestResolveAppName:
    """Test resolve_app_name."""

    @pytest.mark.asyncio
    async def test_explicit_name_wins(self, mock_settings, github_client):
        mock_settings.app_name = "custom-app"

        assert await resolve_app_name(mock_settings, github_client) == "custom-app"
        github_client.get_repo.assert_not_called()

    @pytest.mark.asyncio
    async def test_head_ref_from_environment(self, mock_settings):
        mock_settings.github_head_ref = "Add/Search"

        name = await resolve_app_name(mock_settings, None)

        assert name == "gha-docs-123-add-search"

    @pytest.mark.asyncio
    async def test_head_ref_from_github(self, mock_settings, github_client):
        name = await resolve_app_name(mock_settings, github_client)

        assert name == "gha-docs-123-fix-typo"
        github_client.get_repo.assert_awaited_once_with("octo-org/docs")

    @pytest.mark.asyncio
    async def test_no_way_to_name_app(self, mock_settings):
        with pytest.raises(ConfigurationError):
            await resolve_app_name(mock_settings, None)

        mock_settings.pr_url = ""
        with pytest.raises(ConfigurationError, match="APP_NAME or PR_URL"):
            await resolve_app_name(mock_settings, None)


class TestRunBuildSource:
    """Test run_build_source."""

    @pytest.mark.asyncio
    async def test_writes_github_output(
        self, mock_settings, heroku, tmp_path, monkeypatch, capsys
    ):
        output = tmp_path / "github_output"
        monkeypatch.setenv("GITHUB_OUTPUT", str(output))
        heroku.create_source.return_value = BuildSource(
            upload_url="https://s3.example.com/put",
            download_url="https://s3.example.com/get",
        )
        heroku.upload_source.return_value = 13

        code = await run_build_source(mock_settings, heroku)

        assert code == EXIT_SUCCEEDED
        heroku.upload_source.assert_awaited_once_with(
            heroku.create_source.return_value, "app.tar.gz"
        )
        assert output.read_text() == (
            "upload_url=https://s3.example.com/put\n"
            "download_url=https://s3.example.com/get\n"
        )
        assert "download_url=https://s3.example.com/get" in capsys.readouterr().out


class TestMain:
    """Test the staging-deploy entry point."""

    def test_unexpected_error_exits_failed(self, mock_settings, capsys):
        manager = Mock()

        with patch.multiple(
            "staging_deployer.main",
            _load_settings=Mock(return_value=mock_settings),
            setup_logging=Mock(),
            initialize_telemetry=Mock(),
            get_telemetry_manager=manager,
            run_deploy=AsyncMock(side_effect=RuntimeError("boom")),
        ):
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == EXIT_FAILED
        manager.return_value.shutdown.assert_called_once()
        assert "unexpected error: boom" in capsys.readouterr().err
