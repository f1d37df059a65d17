"""Run provenance for audit.

Every run emits one structured record answering:
- "What did the run change, and what did it find?"
- "Which backup covers the state before the run?"
- "What version of the operator and alias declarations was running?"
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .orchestrator import RunSummary

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
OPERATOR_VERSION = os.environ.get("OPERATOR_VERSION", "dev")


@dataclass
class RunProvenance:
    """Provenance record for one reconciliation run."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    operator_version: str = OPERATOR_VERSION
    operator_host: str = ""
    git_commit_sha: str = ""

    # Outcome
    status: str = ""
    dry_run: bool = False
    backup_file: str = ""
    created_count: int = 0
    updated_count: int = 0
    failed_count: int = 0
    planned_count: int = 0
    drift_count: int = 0
    drift_checked: bool = False
    reload_ok: bool | None = None

    duration_seconds: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Builds and logs provenance records from run summaries."""

    def __init__(self) -> None:
        self._git_commit_sha = os.environ.get("GIT_COMMIT_SHA", "")
        self._host = os.environ.get("OPERATOR_HOST") or socket.gethostname()

    def create_provenance(self, summary: RunSummary) -> RunProvenance:
        return RunProvenance(
            operator_host=self._host,
            git_commit_sha=self._git_commit_sha,
            status=summary.status.value,
            dry_run=summary.dry_run,
            backup_file=str(summary.backup.path) if summary.backup else "",
            created_count=len(summary.created),
            updated_count=len(summary.updated),
            failed_count=len(summary.failed),
            planned_count=len(summary.planned),
            drift_count=len(summary.drifted),
            drift_checked=summary.drift is not None and summary.drift.compared,
            reload_ok=summary.reload_ok,
            duration_seconds=summary.duration_seconds,
            error=summary.abort_reason or summary.reload_error,
        )

    def log_run(self, summary: RunSummary) -> RunProvenance:
        """Log the provenance record for a finished run."""
        provenance = self.create_provenance(summary)

        log_level = logging.INFO
        if provenance.status == "aborted":
            log_level = logging.ERROR
        elif provenance.failed_count or provenance.reload_ok is False:
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Reconciliation provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "status": provenance.status,
                "failed_count": provenance.failed_count,
                "drift_count": provenance.drift_count,
                "operator_version": provenance.operator_version,
            },
        )
        return provenance


# Global singleton for provenance logging
_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
