"""
Polling system for the staging deployer.

This package contains the poll loop, its explicit state and context objects,
and per-phase metrics.
"""

from .metrics import DeployMetrics, PhaseMetrics
from .poller import DeployPoller
from .state import (
    CancellationToken,
    DeployStatus,
    PollContext,
    PollOutcome,
    PollState,
    TimeoutReason,
)

__all__ = [
    "CancellationToken",
    "DeployMetrics",
    "DeployPoller",
    "DeployStatus",
    "PhaseMetrics",
    "PollContext",
    "PollOutcome",
    "PollState",
    "TimeoutReason",
]
