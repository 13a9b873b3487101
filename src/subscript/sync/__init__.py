"""Sync module: the end-to-end ingestion run."""

from .orchestrator import (
    FailureStage,
    MessageOutcome,
    SyncOrchestrator,
    SyncSummary,
    build_orchestrator,
    run_sync,
)

__all__ = [
    "FailureStage",
    "MessageOutcome",
    "SyncOrchestrator",
    "SyncSummary",
    "build_orchestrator",
    "run_sync",
]
