"""
Staging Deployer

Deploys pull request builds to per-PR staging apps on Heroku, polls the
deploy to completion and reports the outcome back to the pull request.
"""

__version__ = "0.1.0"
__author__ = "Docs Engineering"
__email__ = "support@example.com"

from .config import Settings
from .deployer import StagingDeployer
from .exceptions import StagingDeployerError
from .heroku_client import HerokuClient
from .polling import DeployPoller, DeployStatus, PollContext
from .reporter import StatusReporter

__all__ = [
    "Settings",
    "StagingDeployer",
    "StagingDeployerError",
    "HerokuClient",
    "DeployPoller",
    "DeployStatus",
    "PollContext",
    "StatusReporter",
]
