"""
Metrics collection for deploy polling phases.

Tracks how many queries each phase made, how many of them failed and how long
the phase took, for the completion log line and the telemetry event.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

import structlog

from .state import DeployStatus

logger = structlog.get_logger(__name__)


@dataclass
class PhaseMetrics:
    """Metrics for a single polling phase."""

    phase: str
    started_at: float
    ended_at: float | None = None
    polls: int = 0
    transient_failures: int = 0
    max_consecutive_failures: int = 0
    status: str = DeployStatus.PENDING.value
    timeout_reason: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        """Get phase duration in seconds."""
        if self.ended_at is not None:
            return self.ended_at - self.started_at
        return 0.0

    @property
    def failure_rate(self) -> float:
        """Get failed polls as a fraction of all polls."""
        return self.transient_failures / self.polls if self.polls else 0.0

    def record_poll(self) -> None:
        self.polls += 1

    def record_failure(self, streak: int, error: str) -> None:
        self.transient_failures += 1
        self.max_consecutive_failures = max(self.max_consecutive_failures, streak)
        # Keep the tail only; a flapping API can fail many times
        self.errors = (self.errors + [error])[-5:]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["duration_seconds"] = round(self.duration_seconds, 3)
        return data


class DeployMetrics:
    """Collects phase metrics for one deploy attempt."""

    def __init__(self) -> None:
        self.phases: list[PhaseMetrics] = []

    def start_phase(self, phase: str, now: float) -> PhaseMetrics:
        metrics = PhaseMetrics(phase=phase, started_at=now)
        self.phases.append(metrics)
        return metrics

    def finish_phase(
        self, metrics: PhaseMetrics, status: DeployStatus, now: float
    ) -> None:
        metrics.ended_at = now
        metrics.status = status.value

        logger.info(
            "Polling phase finished",
            phase=metrics.phase,
            status=metrics.status,
            polls=metrics.polls,
            transient_failures=metrics.transient_failures,
            duration_seconds=round(metrics.duration_seconds, 3),
            timeout_reason=metrics.timeout_reason,
        )

    @property
    def total_polls(self) -> int:
        return sum(p.polls for p in self.phases)

    @property
    def total_failures(self) -> int:
        return sum(p.transient_failures for p in self.phases)

    def summary(self) -> dict[str, Any]:
        """Get a summary of all phases for logging and telemetry."""
        return {
            "total_polls": self.total_polls,
            "total_transient_failures": self.total_failures,
            "phases": [p.to_dict() for p in self.phases],
        }
