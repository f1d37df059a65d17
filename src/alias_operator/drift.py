"""Drift detection between the declared alias set and the appliance.

Drift here means an alias that exists on the appliance but is not declared.
Detection is read-only: drifted aliases are reported for human review and
never modified or deleted.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from .client import AliasStoreClient, AliasStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriftReport:
    """Aliases present remotely but absent from the declared set.

    ``drifted`` follows the appliance's listing order. ``error`` is set when
    the listing could not be fetched, in which case nothing was compared.
    """

    drifted: list[str] = field(default_factory=list)
    remote_count: int = 0
    error: str | None = None

    @property
    def has_drift(self) -> bool:
        return bool(self.drifted)

    @property
    def compared(self) -> bool:
        """True if the remote listing was available for comparison."""
        return self.error is None


def find_drift(remote_names: Iterable[str], declared_names: Iterable[str]) -> list[str]:
    """Return remote names not in the declared set, preserving remote order."""
    declared = frozenset(declared_names)
    drifted: list[str] = []
    seen: set[str] = set()
    for name in remote_names:
        if name in declared or name in seen:
            continue
        seen.add(name)
        drifted.append(name)
    return drifted


class DriftDetector:
    """Compares remote alias names against the declared names."""

    def __init__(self, client: AliasStoreClient) -> None:
        self._client = client

    def detect(self, declared_names: Iterable[str]) -> DriftReport:
        """Report aliases that exist on the appliance but are not declared.

        A failed listing degrades to an empty report carrying the error, so
        the caller can log it without treating it as drift.
        """
        logger.info("Running firewall alias drift detection")

        try:
            records = self._client.search()
        except AliasStoreError as e:
            logger.error(
                "Drift detection skipped: alias listing unavailable",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            return DriftReport(error=str(e))

        drifted = find_drift((record.name for record in records), declared_names)
        for name in drifted:
            logger.warning(
                "Drift detected: alias exists in production but is not declared",
                extra={"alias": name},
            )

        logger.info(
            "Drift detection complete",
            extra={"remote_count": len(records), "drift_count": len(drifted)},
        )
        return DriftReport(drifted=drifted, remote_count=len(records))
