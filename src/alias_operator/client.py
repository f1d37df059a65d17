"""OPNsense firewall alias API client.

Thin synchronous wrapper over the appliance's alias endpoints:

    GET  searchAlias        list all aliases
    GET  getAlias/{name}    fetch one alias, "result" flag signals existence
    POST addAlias           create an alias
    POST setAlias           update an alias, the appliance merges unsent fields
    POST reconfigure        apply pending alias configuration

Design principles:
- HTTP and transport errors map to typed exceptions
- "confirmed absent" and "lookup failed" are never conflated
- No retries: every call is a single request/response
- Credentials are never logged
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from .config import Config
from .models import AliasRecord, AliasSpec

logger = logging.getLogger(__name__)

# Result tokens the appliance uses to acknowledge a successful call
SUCCESS_TOKENS: frozenset[str] = frozenset({"ok", "saved", "deleted"})


# =============================================================================
# Exceptions
# =============================================================================


class AliasStoreError(Exception):
    """Base exception for all alias API client errors."""

    pass


class AliasStoreConnectionError(AliasStoreError):
    """Raised on timeouts and network failures."""

    pass


class AliasStoreHTTPError(AliasStoreError):
    """Raised when the appliance answers with a non-2xx status.

    Attributes:
        status_code: HTTP status code
        response_body: Raw response body (if available)
    """

    def __init__(self, message: str, status_code: int, response_body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class AliasStoreAuthError(AliasStoreHTTPError):
    """Raised on 401/403: bad credentials or missing API privileges."""

    pass


class AliasStoreResponseError(AliasStoreError):
    """Raised when a 2xx response body is not the JSON shape expected."""

    pass


class AliasLookupError(AliasStoreError):
    """Raised when an alias lookup fails and existence is unknown."""

    pass


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class MutationResult:
    """Outcome of a mutating call as acknowledged by the appliance."""

    result: str
    validations: dict[str, Any] = field(default_factory=dict)
    uuid: str | None = None

    @property
    def success(self) -> bool:
        return self.result.lower() in SUCCESS_TOKENS

    @property
    def reason(self) -> str:
        """Human-readable failure reason."""
        if self.success:
            return ""
        if self.validations:
            details = "; ".join(f"{k}: {v}" for k, v in sorted(self.validations.items()))
            return f"result '{self.result}' ({details})"
        return f"result '{self.result}'"

    @classmethod
    def from_response(cls, data: dict[str, Any], token_key: str = "result") -> MutationResult:
        validations = data.get("validations")
        uuid = data.get("uuid")
        return cls(
            result=str(data.get(token_key, "")),
            validations=validations if isinstance(validations, dict) else {},
            uuid=uuid if isinstance(uuid, str) else None,
        )


# =============================================================================
# Client
# =============================================================================


class AliasStoreClient:
    """Synchronous client for the appliance's firewall alias API.

    Example:
        with AliasStoreClient.from_config(config) as client:
            for record in client.search():
                print(record.name, record.content)
    """

    def __init__(
        self,
        base_url: str,
        auth: tuple[str, str],
        *,
        timeout_seconds: float = 30.0,
        verify_tls: bool = True,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Alias API base URL, e.g. https://fw/api/firewall/alias
            auth: (api_key, api_secret) for basic auth
            timeout_seconds: Per-request timeout
            verify_tls: Verify the appliance certificate (False for self-signed)
            transport: Optional transport override (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            auth=auth,
            timeout=httpx.Timeout(timeout_seconds),
            verify=verify_tls,
            follow_redirects=False,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_config(
        cls, config: Config, transport: httpx.BaseTransport | None = None
    ) -> AliasStoreClient:
        return cls(
            config.alias_api_url,
            config.credentials.as_auth(),
            timeout_seconds=config.request_timeout_seconds,
            verify_tls=config.verify_tls,
            transport=transport,
        )

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._client.close()

    def __enter__(self) -> AliasStoreClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Execute one request and return the decoded JSON object.

        Raises:
            AliasStoreConnectionError: On timeout or network failure
            AliasStoreAuthError: On 401/403
            AliasStoreHTTPError: On any other non-2xx status
            AliasStoreResponseError: If the body is not a JSON object
        """
        try:
            response = self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise AliasStoreConnectionError(f"Request timeout: {method} {path}") from e
        except httpx.TransportError as e:
            raise AliasStoreConnectionError(
                f"Network error: {method} {path}: {type(e).__name__}"
            ) from e

        if response.status_code >= 400:
            self._handle_error_response(method, path, response)

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise AliasStoreResponseError(f"Invalid JSON from {method} {path}") from e
        if not isinstance(data, dict):
            raise AliasStoreResponseError(f"Expected a JSON object from {method} {path}")
        return data

    def _handle_error_response(self, method: str, path: str, response: httpx.Response) -> None:
        status_code = response.status_code
        body = response.text

        if status_code in (401, 403):
            raise AliasStoreAuthError(
                f"Authentication failed ({status_code}) for {method} {path}", status_code, body
            )
        raise AliasStoreHTTPError(
            f"HTTP {status_code} from {method} {path}", status_code, body
        )

    def search_raw(self) -> dict[str, Any]:
        """Return the alias listing exactly as the appliance sent it."""
        return self._request("GET", "/searchAlias")

    def search(self) -> list[AliasRecord]:
        """List all aliases in the order the appliance returns them."""
        data = self.search_raw()
        rows = data.get("rows", [])
        if not isinstance(rows, list):
            raise AliasStoreResponseError("searchAlias response 'rows' is not a list")
        try:
            return [AliasRecord.model_validate(row) for row in rows if isinstance(row, dict)]
        except ValidationError as e:
            raise AliasStoreResponseError(f"searchAlias returned a malformed row: {e}") from e

    def get(self, name: str) -> AliasRecord | None:
        """Fetch one alias by name.

        Returns:
            The record, or None if the appliance confirms the alias does not exist.

        Raises:
            AliasLookupError: If the lookup itself failed; existence is unknown.
        """
        try:
            data = self._request("GET", f"/getAlias/{name}")
        except AliasStoreError as e:
            raise AliasLookupError(f"Lookup of alias '{name}' failed: {e}") from e

        if str(data.get("result", "")).lower() != "ok":
            logger.debug("Alias not found", extra={"alias": name, "result": data.get("result")})
            return None

        payload = data.get("alias", data)
        if not isinstance(payload, dict):
            raise AliasLookupError(f"Lookup of alias '{name}' returned a malformed body")
        payload = {k: v for k, v in payload.items() if k != "result"}
        payload.setdefault("name", name)
        try:
            return AliasRecord.model_validate(payload)
        except ValidationError as e:
            raise AliasLookupError(
                f"Lookup of alias '{name}' returned a malformed record: {e}"
            ) from e

    def create(self, spec: AliasSpec) -> MutationResult:
        """Create an alias from its declared state."""
        return MutationResult.from_response(self._request("POST", "/addAlias", spec.to_payload()))

    def update(self, name: str, spec: AliasSpec) -> MutationResult:
        """Update an existing alias, sending managed fields only."""
        payload = spec.to_payload()
        payload["name"] = name
        return MutationResult.from_response(self._request("POST", "/setAlias", payload))

    def reconfigure(self) -> MutationResult:
        """Ask the appliance to apply pending alias configuration."""
        return MutationResult.from_response(
            self._request("POST", "/reconfigure", {}), token_key="status"
        )
