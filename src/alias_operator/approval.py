"""Approval gate between the backup and the first mutation.

The gate is the only cancellation point of a run: once it approves, every
declared alias is reconciled. Gates are plain callables taking the backup
artifact and returning True to proceed, so the orchestrator can be driven
without a terminal.
"""

from __future__ import annotations

import logging
from typing import Protocol

import click

from .backup import BackupArtifact

logger = logging.getLogger(__name__)


class ApprovalGate(Protocol):
    """Decides whether a run may proceed to mutation."""

    def __call__(self, artifact: BackupArtifact) -> bool: ...


class InteractiveApproval:
    """Asks the operator on the terminal before any alias is changed."""

    def __init__(self, prompt: str = "Backup completed. Continue with alias updates?") -> None:
        self._prompt = prompt

    def __call__(self, artifact: BackupArtifact) -> bool:
        count = "unknown" if artifact.alias_count is None else str(artifact.alias_count)
        click.echo(f"Backup saved: {artifact.path} ({count} aliases)")
        try:
            approved = click.confirm(self._prompt, default=False)
        except click.Abort:
            # EOF or Ctrl-C at the prompt
            click.echo()
            approved = False
        logger.info(
            "Approval decision recorded",
            extra={
                "approved": approved,
                "approver": "interactive",
                "backup_file": str(artifact.path),
            },
        )
        return approved


class AutoApproval:
    """Approves every run; used for unattended runs (--yes)."""

    def __call__(self, artifact: BackupArtifact) -> bool:
        logger.info(
            "Approval decision recorded",
            extra={"approved": True, "approver": "auto", "backup_file": str(artifact.path)},
        )
        return True
