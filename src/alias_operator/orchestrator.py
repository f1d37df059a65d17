"""Run sequencing for one reconciliation pass.

    Init -> Backing Up -> Approval -> Drift Detection -> Reconciling -> Reload -> Done

Terminal states before any mutation:
- ABORTED: the backup could not be taken
- CANCELLED: the approver declined

Once reconciliation starts the run always reaches the end of the declared
set, whatever individual aliases do, and then sends the reload signal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .approval import ApprovalGate
from .backup import BackupArtifact, BackupError, BackupManager, BackupStore
from .client import AliasStoreClient
from .config import Config
from .drift import DriftDetector, DriftReport
from .models import AliasSet
from .provenance import get_provenance_logger
from .reconciler import AliasReconciler, OutcomeKind, ReconcileOutcome
from .reload import Reloader, create_reloader, send_reload

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


@dataclass
class RunSummary:
    """Aggregated result of one run."""

    status: RunStatus = RunStatus.COMPLETED
    dry_run: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    backup: BackupArtifact | None = None
    drift: DriftReport | None = None
    outcomes: list[ReconcileOutcome] = field(default_factory=list)
    reload_ok: bool | None = None
    reload_error: str | None = None
    abort_reason: str | None = None

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def _names(self, *kinds: OutcomeKind) -> list[str]:
        return [o.name for o in self.outcomes if o.kind in kinds]

    @property
    def created(self) -> list[str]:
        return self._names(OutcomeKind.CREATED)

    @property
    def updated(self) -> list[str]:
        return self._names(OutcomeKind.UPDATED)

    @property
    def failed(self) -> list[str]:
        return self._names(OutcomeKind.FAILED)

    @property
    def failure_reasons(self) -> dict[str, str]:
        """Failed alias names mapped to why they failed."""
        return {o.name: o.reason for o in self.outcomes if o.failed}

    @property
    def planned(self) -> list[str]:
        return self._names(OutcomeKind.PLANNED_CREATE, OutcomeKind.PLANNED_UPDATE)

    @property
    def drifted(self) -> list[str]:
        return list(self.drift.drifted) if self.drift else []


class Orchestrator:
    """Sequences backup, approval, drift detection, reconciliation and reload."""

    def __init__(
        self,
        backup_manager: BackupManager,
        drift_detector: DriftDetector,
        reconciler: AliasReconciler,
        reloader: Reloader,
        approval: ApprovalGate,
        *,
        dry_run: bool = False,
    ) -> None:
        self._backup_manager = backup_manager
        self._drift_detector = drift_detector
        self._reconciler = reconciler
        self._reloader = reloader
        self._approval = approval
        self._dry_run = dry_run

    @classmethod
    def from_config(
        cls, config: Config, client: AliasStoreClient, approval: ApprovalGate
    ) -> Orchestrator:
        """Wire the default collaborators for a configured appliance."""
        return cls(
            backup_manager=BackupManager(
                client, BackupStore(config.backup_dir), retention=config.backup_retention
            ),
            drift_detector=DriftDetector(client),
            reconciler=AliasReconciler(client, dry_run=config.dry_run),
            reloader=create_reloader(config, client),
            approval=approval,
            dry_run=config.dry_run,
        )

    def run(self, aliases: AliasSet) -> RunSummary:
        """Execute one run over the full declared set."""
        summary = RunSummary(dry_run=self._dry_run)
        logger.info(
            "Starting alias reconciliation run",
            extra={"alias_count": len(aliases.aliases), "dry_run": self._dry_run},
        )

        try:
            summary.backup = self._backup_manager.snapshot()
        except BackupError as e:
            return self._finish(summary, RunStatus.ABORTED, reason=str(e))

        if not self._approval(summary.backup):
            logger.warning("Operation cancelled by approver, no alias was changed")
            return self._finish(summary, RunStatus.CANCELLED, reason="approval declined")

        summary.drift = self._drift_detector.detect(aliases.names)

        for spec in aliases.aliases:
            summary.outcomes.append(self._reconciler.reconcile(spec))

        if self._dry_run:
            logger.info("Dry run: reload signal not sent")
        else:
            reload_result = send_reload(self._reloader)
            summary.reload_ok = reload_result.success
            summary.reload_error = reload_result.error

        return self._finish(summary, RunStatus.COMPLETED)

    def _finish(
        self, summary: RunSummary, status: RunStatus, reason: str | None = None
    ) -> RunSummary:
        summary.status = status
        summary.abort_reason = reason
        summary.end_time = datetime.now(UTC)
        log_summary(summary)
        get_provenance_logger().log_run(summary)
        return summary


def log_summary(summary: RunSummary) -> None:
    """Log the final run summary: created, updated, failed, drifted."""
    extra = {
        "status": summary.status.value,
        "created_aliases": summary.created,
        "updated_aliases": summary.updated,
        "failed_aliases": summary.failure_reasons,
        "planned_aliases": summary.planned,
        "drifted_aliases": summary.drifted,
        "drift_error": summary.drift.error if summary.drift else None,
        "reload_ok": summary.reload_ok,
        "reload_error": summary.reload_error,
        "backup_file": str(summary.backup.path) if summary.backup else None,
        "duration_seconds": summary.duration_seconds,
    }
    match summary.status:
        case RunStatus.ABORTED:
            logger.error(
                "Run aborted before any change",
                extra={**extra, "reason": summary.abort_reason},
            )
        case RunStatus.CANCELLED:
            logger.warning("Run cancelled before any change", extra=extra)
        case RunStatus.COMPLETED if summary.failed or summary.reload_ok is False:
            logger.warning("Run completed with failures", extra=extra)
        case _:
            logger.info("Run completed", extra=extra)

