"""Declared alias set loading with validation.

SECURITY: File size is bounded before reading. Input validation is performed
at the boundary, including uniqueness of alias names.

Accepted layouts::

    aliases:
      - name: MS_AD_DS_Server_Master
        ports: [389, 636, "1024:65535"]
        description: ...

or the same content under a Kubernetes-style wrapper
(``apiVersion``/``kind``/``spec``).
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_ALIASES_FILE_SIZE_BYTES
from .models import AliasSet

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when the declared alias set cannot be loaded or fails validation."""

    pass


def read_aliases_file(path: Path) -> str:
    """Read the aliases file after checking it exists and is not oversized."""
    if not path.exists():
        raise SpecLoadError(f"Aliases file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat aliases file {path}: {e}") from e

    if file_size > MAX_ALIASES_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Aliases file exceeds maximum size of {MAX_ALIASES_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SpecLoadError(f"Failed to read aliases file {path}: {e}") from e


def parse_alias_set(content: str, source: str = "<string>") -> AliasSet:
    """Parse and validate a declared alias set from YAML text."""
    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {source}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Aliases file must contain a YAML mapping: {source}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {source}")
    else:
        spec_data = raw_data

    try:
        return AliasSet.model_validate(spec_data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {source}:\n{error_list}") from e


def load_alias_set(path: Path) -> AliasSet:
    """Load the declared alias set from a YAML file.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    content = read_aliases_file(path)
    alias_set = parse_alias_set(content, source=str(path))
    logger.info(
        "Loaded declared alias set",
        extra={
            "aliases_file": str(path),
            "alias_count": len(alias_set.aliases),
            "sha256": hashlib.sha256(content.encode("utf-8")).hexdigest(),
        },
    )
    return alias_set

