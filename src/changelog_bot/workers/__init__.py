"""Notification pass orchestration and its runtime context."""

from .context import AppContext
from .orchestrator import (
    NotificationOrchestrator,
    OrchestratorConfig,
    RetryReport,
    RunOutcome,
    RunPhase,
    RunReport,
)

__all__ = [
    "AppContext",
    "NotificationOrchestrator",
    "OrchestratorConfig",
    "RetryReport",
    "RunOutcome",
    "RunPhase",
    "RunReport",
]
