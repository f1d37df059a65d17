"""Reload signal telling the appliance to apply committed alias changes.

Two mechanisms are supported:
- the alias API ``reconfigure`` endpoint (default, works remotely)
- a local command such as ``configctl firewall reload`` when the operator
  runs on the appliance itself

The reload is fire-and-forget from the run's point of view: a failure is
reported but committed alias changes stay in place.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol

from .client import AliasStoreClient, AliasStoreError
from .config import RELOAD_COMMAND_TIMEOUT_SECONDS, Config
from .security import log_security_audit_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReloadResult:
    success: bool
    error: str | None = None


class Reloader(Protocol):
    def reload(self) -> ReloadResult: ...


class ApiReloader:
    """Applies pending configuration through the alias API."""

    def __init__(self, client: AliasStoreClient) -> None:
        self._client = client

    def reload(self) -> ReloadResult:
        try:
            result = self._client.reconfigure()
        except AliasStoreError as e:
            return ReloadResult(success=False, error=str(e))
        if not result.success:
            return ReloadResult(success=False, error=f"reconfigure {result.reason}")
        return ReloadResult(success=True)


class CommandReloader:
    """Applies pending configuration with a local command."""

    def __init__(self, command: str, timeout: int = RELOAD_COMMAND_TIMEOUT_SECONDS) -> None:
        self._argv = shlex.split(command)
        self._timeout = timeout

    def reload(self) -> ReloadResult:
        try:
            completed = subprocess.run(
                self._argv,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return ReloadResult(success=False, error=f"timed out after {self._timeout}s")
        except OSError as e:
            return ReloadResult(success=False, error=f"could not run {self._argv[0]}: {e}")

        if completed.returncode != 0:
            detail = completed.stderr.strip() or completed.stdout.strip()
            return ReloadResult(
                success=False, error=f"exit code {completed.returncode}: {detail}".rstrip(": ")
            )
        return ReloadResult(success=True)


def create_reloader(config: Config, client: AliasStoreClient) -> Reloader:
    """Pick the reload mechanism the configuration asks for."""
    if config.reload_command:
        return CommandReloader(config.reload_command)
    return ApiReloader(client)


def send_reload(reloader: Reloader) -> ReloadResult:
    """Send the reload signal and log the outcome."""
    logger.info("Applying firewall configuration")
    result = reloader.reload()
    log_security_audit_event(
        "firewall_reload",
        action="reload",
        result="success" if result.success else "failure",
    )
    if result.success:
        logger.info("Firewall configuration applied")
    else:
        logger.error(
            "Firewall reload failed; committed alias changes are kept",
            extra={"error": result.error},
        )
    return result
