"""API credential loading and security audit logging.

The appliance authenticates API calls with a key/secret pair (HTTP basic
auth). Credentials come either from environment variables or from the
apikey file OPNsense generates for a user.

SECURITY INVARIANTS:
1. The secret is never logged or included in repr()
2. Placeholder values from example configs are rejected
3. An apikey file readable by group or others is rejected
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

API_KEY_ENV_VAR = "OPNSENSE_API_KEY"
API_SECRET_ENV_VAR = "OPNSENSE_API_SECRET"
API_KEY_FILE_ENV_VAR = "OPNSENSE_API_KEY_FILE"

# Values shipped in sample configs that must never reach the appliance
PLACEHOLDER_VALUES: frozenset[str] = frozenset(
    {
        "your_api_key",
        "your_api_secret",
        "changeme",
        "change-me",
        "xxx",
    }
)


class CredentialError(Exception):
    """Raised when API credentials are missing, malformed, or insecurely stored."""

    pass


@dataclass(frozen=True)
class ApiCredentials:
    """API key/secret pair for HTTP basic auth against the appliance."""

    key: str
    secret: str = field(repr=False)

    def __post_init__(self) -> None:
        if not self.key or not self.secret:
            raise CredentialError("API key and secret must both be set")
        for label, value in (("key", self.key), ("secret", self.secret)):
            if value.strip().lower() in PLACEHOLDER_VALUES:
                raise CredentialError(
                    f"API {label} is a placeholder value, configure real credentials"
                )

    @property
    def masked_key(self) -> str:
        """Key prefix safe for logs."""
        return self.key[:8] + "..." if len(self.key) > 8 else self.key

    def as_auth(self) -> tuple[str, str]:
        """Return the (username, password) tuple used for basic auth."""
        return (self.key, self.secret)


def load_credentials_file(path: Path) -> ApiCredentials:
    """Load credentials from an OPNsense apikey file.

    The file format is the one the web UI offers for download::

        key=...
        secret=...

    Raises:
        CredentialError: If the file is missing, too permissive, or incomplete.
    """
    try:
        mode = path.stat().st_mode
    except OSError as e:
        raise CredentialError(f"Cannot read API key file {path}: {e}") from e

    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.critical(
            "API key file has insecure permissions",
            extra={
                "security_event": "insecure_credential_file",
                "path": str(path),
                "mode": oct(stat.S_IMODE(mode)),
            },
        )
        raise CredentialError(
            f"API key file {path} must not be accessible by group or others "
            f"(mode {oct(stat.S_IMODE(mode))}); run chmod 600"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise CredentialError(f"Cannot read API key file {path}: {e}") from e

    values: dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        name, _, value = line.partition("=")
        values[name.strip().lower()] = value.strip()

    if "key" not in values or "secret" not in values:
        raise CredentialError(f"API key file {path} must contain key= and secret= lines")

    return ApiCredentials(key=values["key"], secret=values["secret"])


def load_credentials_from_env() -> ApiCredentials:
    """Load credentials from the environment.

    OPNSENSE_API_KEY_FILE takes precedence over the key/secret variables.

    Raises:
        CredentialError: If no usable credentials are configured.
    """
    key_file = os.environ.get(API_KEY_FILE_ENV_VAR)
    if key_file:
        credentials = load_credentials_file(Path(key_file))
        source = "file"
    else:
        key = os.environ.get(API_KEY_ENV_VAR, "")
        secret = os.environ.get(API_SECRET_ENV_VAR, "")
        if not key or not secret:
            raise CredentialError(
                f"{API_KEY_ENV_VAR} and {API_SECRET_ENV_VAR} are required "
                f"(or set {API_KEY_FILE_ENV_VAR})"
            )
        credentials = ApiCredentials(key=key, secret=secret)
        source = "environment"

    logger.info(
        "API credentials loaded",
        extra={
            "security_event": "credentials_loaded",
            "source": source,
            "key": credentials.masked_key,
        },
    )
    return credentials


def log_security_audit_event(
    event_type: str,
    target_resource: str | None = None,
    action: str | None = None,
    result: str | None = None,
) -> None:
    """Log a security-relevant audit event.

    All appliance mutations are logged with structured data for SIEM ingestion.

    Args:
        event_type: Type of security event (mutation, reload, ...).
        target_resource: Alias name or appliance endpoint being changed.
        action: Action being performed.
        result: Result of the action (success, failure).
    """
    logger.info(
        f"Security audit: {event_type}",
        extra={
            "security_audit": True,
            "event_type": event_type,
            "target_resource": target_resource,
            "action": action,
            "result": result,
        },
    )
