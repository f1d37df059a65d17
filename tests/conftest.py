"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for opnsense_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from alias_operator.config import Config  # noqa: E402
from alias_operator.security import ApiCredentials  # noqa: E402
from opnsense_mock import TEST_API_KEY, TEST_API_SECRET, TEST_API_URL  # noqa: E402

ALIASES_YAML = """\
aliases:
  - name: MS_AD_DS_Client_Only_Master
    ports: [53, 853, 5353, 67, 68, 547, 546, 664]
    description: Allows AD clients to communicate without an AD server
  - name: MS_AD_DS_Server_Master
    ports: "389,636,3268,3269,88,445,135,138,139,464,123"
    description: Allows AD DS servers to communicate, includes client rules
"""


@pytest.fixture
def credentials() -> ApiCredentials:
    return ApiCredentials(key=TEST_API_KEY, secret=TEST_API_SECRET)


@pytest.fixture
def aliases_file(tmp_path: Path) -> Path:
    path = tmp_path / "aliases.yaml"
    path.write_text(ALIASES_YAML, encoding="utf-8")
    return path


@pytest.fixture
def config(tmp_path: Path, credentials: ApiCredentials, aliases_file: Path) -> Config:
    return Config(
        credentials=credentials,
        api_url=TEST_API_URL,
        aliases_file=aliases_file,
        backup_dir=tmp_path / "backups",
    )
