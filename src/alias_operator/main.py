"""Entry points for the OPNsense port-alias operator.

A run is a single pass: back up the alias store, ask for approval, report
drift, reconcile every declared alias, then reload the firewall.

Exit codes:
    0  run completed (individual alias failures are reported, not fatal)
    1  aborted before any change (configuration, credentials, aliases file, backup)
    2  drift found with --fail-on-drift
    3  cancelled by the approver
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

import httpx

from .approval import ApprovalGate
from .client import AliasStoreClient
from .config import Config
from .drift import DriftDetector
from .orchestrator import Orchestrator, RunStatus
from .spec_loader import SpecLoadError, load_alias_set

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_DRIFT = 2
EXIT_CANCELLED = 3

# LogRecord attributes that are not user-supplied extras
_RESERVED_LOG_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_file: Path | None = None, level: int = logging.INFO) -> None:
    """Configure structured JSON logging to stdout and optionally a file."""
    formatter = JsonFormatter()
    root_logger = logging.getLogger()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(level)

    # Reduce noise from the HTTP stack
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def run_reconciliation(
    config: Config,
    approval: ApprovalGate,
    transport: httpx.BaseTransport | None = None,
) -> int:
    """Run one full reconciliation pass and return the process exit code."""
    logger = logging.getLogger(__name__)

    try:
        aliases = load_alias_set(config.aliases_file)
    except SpecLoadError as e:
        logger.error(
            "Failed to load declared aliases",
            extra={"error": str(e), "aliases_file": str(config.aliases_file)},
        )
        return EXIT_ERROR

    logger.info(
        "Starting OPNsense alias operator",
        extra={
            "api_url": config.api_url,
            "api_key": config.credentials.masked_key,
            "alias_count": len(aliases.aliases),
            "backup_dir": str(config.backup_dir),
            "dry_run": config.dry_run,
        },
    )

    with AliasStoreClient.from_config(config, transport=transport) as client:
        orchestrator = Orchestrator.from_config(config, client, approval)
        summary = orchestrator.run(aliases)

    match summary.status:
        case RunStatus.ABORTED:
            return EXIT_ERROR
        case RunStatus.CANCELLED:
            return EXIT_CANCELLED
        case _:
            return EXIT_OK


def run_drift_check(
    config: Config,
    *,
    fail_on_drift: bool = False,
    transport: httpx.BaseTransport | None = None,
) -> tuple[int, list[str]]:
    """Read-only drift check: no backup, no approval, no mutation.

    Returns:
        Tuple of (exit code, drifted alias names).
    """
    logger = logging.getLogger(__name__)

    try:
        aliases = load_alias_set(config.aliases_file)
    except SpecLoadError as e:
        logger.error(
            "Failed to load declared aliases",
            extra={"error": str(e), "aliases_file": str(config.aliases_file)},
        )
        return EXIT_ERROR, []

    with AliasStoreClient.from_config(config, transport=transport) as client:
        report = DriftDetector(client).detect(aliases.names)

    if not report.compared:
        return EXIT_ERROR, []
    if report.has_drift and fail_on_drift:
        return EXIT_DRIFT, report.drifted
    return EXIT_OK, report.drifted
