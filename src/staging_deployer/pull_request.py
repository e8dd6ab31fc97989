"""
Pull request references and staging app naming.
"""

import re
from dataclasses import dataclass
from urllib.parse import urlparse

from .exceptions import ConfigurationError

# Heroku app names are limited to 30 characters
APP_NAME_MAX_LENGTH = 30

_PR_PATH_RE = re.compile(r"^/(?P<owner>[^/]+)/(?P<repo>[^/]+)/pull/(?P<number>\d+)/?$")
_INVALID_APP_CHARS_RE = re.compile(r"[^a-z0-9-]+")


@dataclass(frozen=True)
class PullRequestRef:
    """Owner, repository and number of a pull request."""

    owner: str
    repo: str
    number: int

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_pr_url(pr_url: str) -> PullRequestRef:
    """
    Parse a pull request html url such as
    ``https://github.com/octo/docs/pull/123``.

    Raises:
        ConfigurationError: If the url is not a pull request url
    """
    parsed = urlparse(pr_url.strip())
    match = _PR_PATH_RE.match(parsed.path)
    if not parsed.netloc or not match:
        raise ConfigurationError(
            f"Not a pull request URL: {pr_url!r}", context={"pr_url": pr_url}
        )

    return PullRequestRef(
        owner=match.group("owner"),
        repo=match.group("repo"),
        number=int(match.group("number")),
    )


def staging_app_name(repo: str, pr_number: int, branch: str) -> str:
    """Build the staging app name for a pull request branch."""
    raw = f"gha-{repo}-{pr_number}-{branch}".lower()
    name = _INVALID_APP_CHARS_RE.sub("-", raw)
    name = re.sub(r"-{2,}", "-", name)
    return name[:APP_NAME_MAX_LENGTH].strip("-")
