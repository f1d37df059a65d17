"""Pre-mutation snapshots of the appliance alias store.

A backup is a precondition for every reconciliation run, not a best-effort
extra: if the listing cannot be fetched or the artifact cannot be written,
the run stops before any alias is touched.

Artifacts are write-once JSON files named after their capture time
(``port_alias_backup_YYYYMMDD_HHMMSS.json``). Only the most recent
``retention`` artifacts are kept.
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .client import AliasStoreClient, AliasStoreError
from .config import DEFAULT_BACKUP_RETENTION

logger = logging.getLogger(__name__)

BACKUP_FILE_PREFIX = "port_alias_backup_"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

_BACKUP_NAME_PATTERN = re.compile(
    rf"^{BACKUP_FILE_PREFIX}(\d{{8}}_\d{{6}})(?:_(\d+))?\.json$"
)


class BackupError(Exception):
    """Raised when a backup cannot be taken. The run must not continue."""

    pass


@dataclass(frozen=True)
class BackupArtifact:
    """An immutable snapshot of the remote alias listing."""

    path: Path
    captured_at: datetime
    alias_count: int | None = None

    @property
    def name(self) -> str:
        return self.path.name


def _parse_artifact_name(name: str) -> tuple[datetime, int] | None:
    match = _BACKUP_NAME_PATTERN.match(name)
    if not match:
        return None
    stamp, sequence = match.groups()
    captured_at = datetime.strptime(stamp, BACKUP_TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    return captured_at, int(sequence or 0)


class BackupStore:
    """Directory of backup artifacts: write-new, list-by-time, delete-by-name."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def write(self, data: dict[str, Any], captured_at: datetime) -> Path:
        """Write a new artifact and return its path.

        The content goes to a temporary file first and is renamed into place,
        so a failed write never leaves a partial artifact behind.

        Raises:
            OSError: If the directory or file cannot be written.
        """
        self.directory.mkdir(parents=True, exist_ok=True)

        stamp = captured_at.strftime(BACKUP_TIMESTAMP_FORMAT)
        path = self.directory / f"{BACKUP_FILE_PREFIX}{stamp}.json"
        sequence = 1
        while path.exists():
            # Two runs inside the same second
            path = self.directory / f"{BACKUP_FILE_PREFIX}{stamp}_{sequence}.json"
            sequence += 1

        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            tmp_path.rename(path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        return path

    def artifacts(self) -> list[BackupArtifact]:
        """List artifacts, newest first by the timestamp in their name."""
        if not self.directory.is_dir():
            return []

        entries: list[tuple[datetime, int, Path]] = []
        for path in self.directory.iterdir():
            parsed = _parse_artifact_name(path.name)
            if parsed is None or not path.is_file():
                continue
            captured_at, sequence = parsed
            entries.append((captured_at, sequence, path))

        entries.sort(key=lambda e: (e[0], e[1]), reverse=True)
        return [
            BackupArtifact(path=path, captured_at=captured_at) for captured_at, _, path in entries
        ]

    def delete(self, name: str) -> None:
        if _parse_artifact_name(name) is None:
            raise ValueError(f"Not a backup artifact name: {name}")
        (self.directory / name).unlink(missing_ok=True)

    def load(self, path: Path) -> dict[str, Any]:
        """Read an artifact back for manual recovery."""
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Backup artifact is not a JSON object: {path}")
        return data


class BackupManager:
    """Takes a snapshot before mutation and enforces the retention bound."""

    def __init__(
        self,
        client: AliasStoreClient,
        store: BackupStore,
        retention: int = DEFAULT_BACKUP_RETENTION,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._retention = retention
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def store(self) -> BackupStore:
        return self._store

    def snapshot(self) -> BackupArtifact:
        """Fetch the full alias listing and persist it as a new artifact.

        Raises:
            BackupError: If the listing cannot be fetched or written.
        """
        try:
            listing = self._client.search_raw()
        except AliasStoreError as e:
            logger.error("Backup failed: alias listing unavailable", extra={"error": str(e)})
            raise BackupError(f"Could not fetch alias listing for backup: {e}") from e

        rows = listing.get("rows")
        alias_count = len(rows) if isinstance(rows, list) else None
        captured_at = self._clock().replace(microsecond=0)

        try:
            path = self._store.write(listing, captured_at)
        except OSError as e:
            logger.error(
                "Backup failed: artifact not written",
                extra={"backup_dir": str(self._store.directory), "error": str(e)},
            )
            raise BackupError(f"Could not write backup to {self._store.directory}: {e}") from e

        artifact = BackupArtifact(path=path, captured_at=captured_at, alias_count=alias_count)
        logger.info(
            "Backup saved",
            extra={"backup_file": str(path), "alias_count": alias_count},
        )

        self.prune()
        return artifact

    def prune(self) -> list[str]:
        """Delete every artifact older than the newest `retention` ones.

        Returns:
            Names of deleted artifacts.
        """
        deleted: list[str] = []
        for artifact in self._store.artifacts()[self._retention :]:
            try:
                self._store.delete(artifact.name)
            except OSError as e:
                logger.warning(
                    "Could not delete expired backup",
                    extra={"backup_file": str(artifact.path), "error": str(e)},
                )
                continue
            deleted.append(artifact.name)

        if deleted:
            logger.info(
                "Expired backups removed",
                extra={"deleted_count": len(deleted), "retention": self._retention},
            )
        return deleted
