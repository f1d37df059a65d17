"""Configuration management with validation.

All process-wide settings (appliance endpoint, credentials, backup and log
paths) live in a single frozen Config passed to the orchestrator, so a run
never reads global state after startup.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .security import ApiCredentials, CredentialError, load_credentials_from_env


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_API_URL = "https://127.0.0.1"
ALIAS_API_PATH = "/api/firewall/alias"

DEFAULT_BACKUP_RETENTION = 20
MIN_BACKUP_RETENTION = 1
MAX_BACKUP_RETENTION = 1000

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MIN_REQUEST_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 300

RELOAD_COMMAND_TIMEOUT_SECONDS = 120

# Declared alias files are small; anything larger is a mistake
MAX_ALIASES_FILE_SIZE_BYTES = 1024 * 1024

DEFAULT_ALIASES_FILE = "/etc/alias-operator/aliases.yaml"
DEFAULT_BACKUP_DIR = "/var/backups/opnsense_aliases"

VALID_API_URL_PATTERN = r"^https?://[A-Za-z0-9.\-\[\]:]+(:\d{1,5})?/?$"


@dataclass(frozen=True)
class Config:
    """Operator configuration for a single reconciliation run.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    credentials: ApiCredentials

    # Appliance
    api_url: str = DEFAULT_API_URL
    verify_tls: bool = True
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # Paths
    aliases_file: Path = field(default_factory=lambda: Path(DEFAULT_ALIASES_FILE))
    backup_dir: Path = field(default_factory=lambda: Path(DEFAULT_BACKUP_DIR))
    log_file: Path | None = None

    # Backups
    backup_retention: int = DEFAULT_BACKUP_RETENTION

    # Reload: None means use the API reconfigure endpoint
    reload_command: str | None = None

    # Behavior
    dry_run: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.api_url:
            errors.append("OPNSENSE_URL is required")
        elif not re.match(VALID_API_URL_PATTERN, self.api_url):
            errors.append(f"OPNSENSE_URL must be a scheme and host only: {self.api_url}")

        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if not (MIN_BACKUP_RETENTION <= self.backup_retention <= MAX_BACKUP_RETENTION):
            errors.append(
                f"BACKUP_RETENTION must be between {MIN_BACKUP_RETENTION} "
                f"and {MAX_BACKUP_RETENTION}"
            )

        if self.backup_dir.exists() and not self.backup_dir.is_dir():
            errors.append(f"BACKUP_DIR is not a directory: {self.backup_dir}")

        if self.reload_command is not None and not self.reload_command.strip():
            errors.append("RELOAD_COMMAND must not be blank when set")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def alias_api_url(self) -> str:
        """Base URL of the firewall alias API."""
        return self.api_url.rstrip("/") + ALIAS_API_PATH

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            OPNSENSE_URL: Appliance base URL (default: https://127.0.0.1)
            OPNSENSE_API_KEY / OPNSENSE_API_SECRET: API credential pair
            OPNSENSE_API_KEY_FILE: Alternative to the pair, an OPNsense
                apikey file containing key= and secret= lines
            VERIFY_TLS: Verify the appliance certificate (default: true)
            REQUEST_TIMEOUT: Per-request timeout in seconds (default: 30)
            ALIASES_FILE: Declared alias set (default: /etc/alias-operator/aliases.yaml)
            BACKUP_DIR: Backup directory (default: /var/backups/opnsense_aliases)
            BACKUP_RETENTION: Number of backups kept (default: 20)
            RELOAD_COMMAND: Local reload command, e.g. "configctl firewall reload"
            DRY_RUN: If "true", plan changes without applying them (default: false)
            LOG_FILE: Optional file that receives a copy of the JSON log
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        try:
            credentials = load_credentials_from_env()
        except CredentialError as e:
            raise ConfigurationError(str(e)) from e

        log_file = os.environ.get("LOG_FILE")

        return cls(
            credentials=credentials,
            api_url=os.environ.get("OPNSENSE_URL", DEFAULT_API_URL),
            verify_tls=get_bool("VERIFY_TLS", True),
            request_timeout_seconds=get_int("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            aliases_file=Path(os.environ.get("ALIASES_FILE", DEFAULT_ALIASES_FILE)),
            backup_dir=Path(os.environ.get("BACKUP_DIR", DEFAULT_BACKUP_DIR)),
            log_file=Path(log_file) if log_file else None,
            backup_retention=get_int("BACKUP_RETENTION", DEFAULT_BACKUP_RETENTION),
            reload_command=os.environ.get("RELOAD_COMMAND") or None,
            dry_run=get_bool("DRY_RUN", False),
        )
