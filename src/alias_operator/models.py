"""Pydantic models for declared and remote alias state.

These models provide:
1. Type-safe parsing of the declared alias set (YAML) and API responses
2. Validation at the boundary (fail fast, fail loudly)
3. Clean transformation to the alias API wire payload
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# Constants
# =============================================================================

MIN_PORT = 0
MAX_PORT = 65535

# OPNsense alias names: letters, digits and underscore, at most 32 characters
VALID_ALIAS_NAME_PATTERN = r"^[A-Za-z0-9_]{1,32}$"

# A port token that is not numeric refers to another alias or a service name
_NAMED_PORT_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")
_PORT_RANGE_PATTERN = re.compile(r"^(\d+)[:\-](\d+)$")

ALIAS_TYPE_PORT = "port"


def _split_content(value: str) -> list[str]:
    """Split alias content on commas or newlines, dropping empty tokens."""
    return [token.strip() for token in re.split(r"[,\n]", value) if token.strip()]


def _validate_port_number(token: str, value: str) -> None:
    port = int(value)
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValueError(f"port {port} in '{token}' is outside {MIN_PORT}-{MAX_PORT}")


def validate_port_token(token: str) -> str:
    """Validate one port token: a number, a range, or a named reference."""
    token = token.strip()
    if not token:
        raise ValueError("port tokens must not be empty")

    if token.isdigit():
        _validate_port_number(token, token)
        return token

    range_match = _PORT_RANGE_PATTERN.match(token)
    if range_match:
        low, high = range_match.groups()
        _validate_port_number(token, low)
        _validate_port_number(token, high)
        if int(low) > int(high):
            raise ValueError(f"port range '{token}' has its bounds reversed")
        return token

    if _NAMED_PORT_PATTERN.match(token):
        return token

    raise ValueError(f"invalid port token '{token}'")


def _selected_option(value: dict[str, Any]) -> list[str]:
    """Extract selected keys from an OPNsense option map.

    Single-item GET endpoints return choice fields as
    ``{"80": {"value": "80", "selected": 1}, ...}``.
    """
    selected = []
    for key, option in value.items():
        if isinstance(option, dict) and not option.get("selected"):
            continue
        selected.append(str(key))
    return selected


# =============================================================================
# Declared State
# =============================================================================


class AliasSpec(BaseModel):
    """Desired state of one port alias."""

    model_config = {"extra": "forbid", "frozen": True}

    name: Annotated[str, Field(pattern=VALID_ALIAS_NAME_PATTERN)]
    ports: Annotated[list[str], Field(min_length=1)]
    description: str = ""
    enabled: bool = True
    type: Literal["port"] = ALIAS_TYPE_PORT

    @field_validator("ports", mode="before")
    @classmethod
    def normalize_ports(cls, v: Any) -> Any:
        """Accept a comma-joined string or a list of numbers and strings."""
        if isinstance(v, str):
            return _split_content(v)
        if isinstance(v, (list, tuple)):
            return [str(item) for item in v]
        return v

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: list[str]) -> list[str]:
        return [validate_port_token(token) for token in v]

    @property
    def content(self) -> str:
        """Ports serialized the way the alias API expects them."""
        return ",".join(self.ports)

    def to_payload(self) -> dict[str, str]:
        """Convert to the alias API request body.

        Only managed fields are included so the appliance keeps the values
        it owns (color, categories, ...) on update.
        """
        return {
            "enabled": "1" if self.enabled else "0",
            "name": self.name,
            "type": self.type,
            "content": self.content,
            "description": self.description,
        }


class AliasSet(BaseModel):
    """The declared alias set this operator is authoritative over."""

    model_config = {"extra": "ignore"}

    aliases: Annotated[list[AliasSpec], Field(min_length=1)]

    @field_validator("aliases")
    @classmethod
    def validate_unique_names(cls, v: list[AliasSpec]) -> list[AliasSpec]:
        seen: set[str] = set()
        duplicates: list[str] = []
        for alias in v:
            if alias.name in seen and alias.name not in duplicates:
                duplicates.append(alias.name)
            seen.add(alias.name)
        if duplicates:
            raise ValueError(f"alias names must be unique, duplicated: {duplicates}")
        return v

    @property
    def names(self) -> frozenset[str]:
        """Declared alias names for drift comparison."""
        return frozenset(alias.name for alias in self.aliases)


# =============================================================================
# Remote State
# =============================================================================


class AliasRecord(BaseModel):
    """An alias as the appliance reports it.

    Fields the operator does not manage are kept as extras and never sent
    back to the appliance.
    """

    model_config = {"extra": "allow"}

    name: str
    uuid: str | None = None
    type: str = ALIAS_TYPE_PORT
    content: str = ""
    description: str = ""
    enabled: bool = True

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        if isinstance(v, dict):
            selected = _selected_option(v)
            return selected[0] if selected else ""
        return v

    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, dict):
            return ",".join(_selected_option(v))
        if isinstance(v, (list, tuple)):
            return ",".join(str(item) for item in v)
        if isinstance(v, str):
            return ",".join(_split_content(v))
        return v

    @field_validator("enabled", mode="before")
    @classmethod
    def normalize_enabled(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip() in ("1", "true", "yes")
        return v

    @property
    def ports(self) -> list[str]:
        return _split_content(self.content)

    @property
    def unmanaged_fields(self) -> dict[str, Any]:
        """Appliance-owned fields, passed through untouched."""
        extra = dict(self.model_extra or {})
        if self.uuid is not None:
            extra["uuid"] = self.uuid
        return extra

    def matches(self, spec: AliasSpec) -> bool:
        """Check whether the managed fields already equal the declared ones."""
        return (
            self.type == spec.type
            and self.ports == spec.ports
            and self.description == spec.description
            and self.enabled == spec.enabled
        )
