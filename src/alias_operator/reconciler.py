"""Per-alias reconciliation: decide create vs. update and apply it.

For each declared alias:
1. Look it up on the appliance
2. Confirmed absent: create it
3. Present: update the managed fields; the appliance keeps the fields it owns
4. Lookup failed: report a failure, never fall back to create

Aliases are reconciled independently. A failure is recorded as an outcome
and never stops the aliases after it. There is no retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .client import AliasLookupError, AliasStoreClient, AliasStoreError, MutationResult
from .models import AliasSpec
from .security import log_security_audit_event

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    """Result of reconciling one alias."""

    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"
    # Dry run: the change that would have been made
    PLANNED_CREATE = "planned_create"
    PLANNED_UPDATE = "planned_update"


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass(frozen=True)
class ReconcileOutcome:
    """Outcome of reconciling a single declared alias."""

    name: str
    kind: OutcomeKind
    reason: str = ""
    action: Action | None = None

    @property
    def failed(self) -> bool:
        return self.kind == OutcomeKind.FAILED


class AliasReconciler:
    """Makes one remote alias match its declared state."""

    def __init__(self, client: AliasStoreClient, *, dry_run: bool = False) -> None:
        self._client = client
        self._dry_run = dry_run

    def reconcile(self, spec: AliasSpec) -> ReconcileOutcome:
        """Reconcile one alias. Never raises for remote failures."""
        try:
            existing = self._client.get(spec.name)
        except AliasLookupError as e:
            logger.error(
                "Alias lookup failed, skipping alias",
                extra={"alias": spec.name, "error": str(e)},
            )
            return ReconcileOutcome(
                name=spec.name, kind=OutcomeKind.FAILED, reason=f"lookup failed: {e}"
            )

        if existing is None:
            action = Action.CREATE
        else:
            action = Action.UPDATE
            logger.debug(
                "Existing alias found",
                extra={
                    "alias": spec.name,
                    "in_sync": existing.matches(spec),
                    "preserved_fields": sorted(existing.unmanaged_fields),
                },
            )

        if self._dry_run:
            kind = (
                OutcomeKind.PLANNED_CREATE
                if action == Action.CREATE
                else OutcomeKind.PLANNED_UPDATE
            )
            logger.info(
                "Dry run: alias change planned, not applied",
                extra={"alias": spec.name, "action": action.value},
            )
            return ReconcileOutcome(name=spec.name, kind=kind, action=action)

        return self._apply(spec, action)

    def _apply(self, spec: AliasSpec, action: Action) -> ReconcileOutcome:
        logger.info(
            "Adding new alias" if action == Action.CREATE else "Updating alias",
            extra={"alias": spec.name, "content": spec.content},
        )

        try:
            if action == Action.CREATE:
                result: MutationResult = self._client.create(spec)
            else:
                result = self._client.update(spec.name, spec)
        except AliasStoreError as e:
            log_security_audit_event(
                "alias_mutation", target_resource=spec.name, action=action.value, result="error"
            )
            logger.error(
                "Alias mutation failed",
                extra={"alias": spec.name, "action": action.value, "error": str(e)},
            )
            return ReconcileOutcome(
                name=spec.name,
                kind=OutcomeKind.FAILED,
                reason=f"{action.value} failed: {e}",
                action=action,
            )

        log_security_audit_event(
            "alias_mutation",
            target_resource=spec.name,
            action=action.value,
            result="success" if result.success else "failure",
        )

        if not result.success:
            logger.error(
                "Appliance rejected alias change",
                extra={
                    "alias": spec.name,
                    "action": action.value,
                    "result": result.result,
                    "validations": result.validations,
                },
            )
            return ReconcileOutcome(
                name=spec.name,
                kind=OutcomeKind.FAILED,
                reason=f"{action.value} rejected: {result.reason}",
                action=action,
            )

        kind = OutcomeKind.CREATED if action == Action.CREATE else OutcomeKind.UPDATED
        logger.info(
            "Successfully added alias" if action == Action.CREATE else "Successfully updated alias",
            extra={"alias": spec.name},
        )
        return ReconcileOutcome(name=spec.name, kind=kind, action=action)
