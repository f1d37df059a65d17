"""Tests for the alias-operator command line."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from alias_operator import cli as cli_module
from alias_operator.approval import AutoApproval, InteractiveApproval
from alias_operator.backup import BackupStore
from alias_operator.cli import cli
from alias_operator.config import Config
from opnsense_mock import TEST_API_KEY, TEST_API_SECRET, TEST_API_URL


@pytest.fixture
def env(tmp_path: Path, aliases_file: Path) -> dict[str, str | None]:
    return {
        "OPNSENSE_URL": TEST_API_URL,
        "OPNSENSE_API_KEY": TEST_API_KEY,
        "OPNSENSE_API_SECRET": TEST_API_SECRET,
        "OPNSENSE_API_KEY_FILE": None,
        "ALIASES_FILE": str(aliases_file),
        "BACKUP_DIR": str(tmp_path / "backups"),
        "LOG_FILE": None,
        "DRY_RUN": None,
        "RELOAD_COMMAND": None,
    }


@pytest.fixture(autouse=True)
def no_logging_setup(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep CLI invocations from attaching handlers to the root logger."""
    monkeypatch.setattr(cli_module, "setup_logging", lambda *args, **kwargs: None)


class RecordedRun:
    def __init__(self, exit_code: int = 0) -> None:
        self.exit_code = exit_code
        self.config: Config | None = None
        self.approval: Any = None

    def __call__(self, config: Config, approval: Any) -> int:
        self.config = config
        self.approval = approval
        return self.exit_code


class TestRunCommand:
    """Tests for `alias-operator run`."""

    def test_interactive_by_default(
        self, env: dict[str, str | None], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        recorded = RecordedRun()
        monkeypatch.setattr(cli_module, "run_reconciliation", recorded)

        result = CliRunner().invoke(cli, ["run"], env=env)

        assert result.exit_code == 0, result.output
        assert isinstance(recorded.approval, InteractiveApproval)
        assert recorded.config is not None
        assert recorded.config.dry_run is False

    def test_yes_skips_prompt(
        self, env: dict[str, str | None], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        recorded = RecordedRun()
        monkeypatch.setattr(cli_module, "run_reconciliation", recorded)

        result = CliRunner().invoke(cli, ["run", "--yes"], env=env)

        assert result.exit_code == 0, result.output
        assert isinstance(recorded.approval, AutoApproval)

    def test_overrides(
        self,
        env: dict[str, str | None],
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        other = tmp_path / "other.yaml"
        other.write_text("aliases: []\n")
        recorded = RecordedRun()
        monkeypatch.setattr(cli_module, "run_reconciliation", recorded)

        result = CliRunner().invoke(
            cli, ["run", "--dry-run", "--aliases", str(other)], env=env
        )

        assert result.exit_code == 0, result.output
        assert recorded.config is not None
        assert recorded.config.dry_run is True
        assert recorded.config.aliases_file == other

    def test_exit_code_propagates(
        self, env: dict[str, str | None], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(cli_module, "run_reconciliation", RecordedRun(exit_code=3))

        result = CliRunner().invoke(cli, ["run"], env=env)

        assert result.exit_code == 3

    def test_missing_credentials(self, env: dict[str, str | None]) -> None:
        env["OPNSENSE_API_SECRET"] = None

        result = CliRunner().invoke(cli, ["run", "--yes"], env=env)

        assert result.exit_code == 1
        assert "OPNSENSE_API_SECRET" in result.output


class TestDriftCommand:
    """Tests for `alias-operator drift`."""

    def test_reports_names(
        self, env: dict[str, str | None], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(
            cli_module, "run_drift_check", lambda config, fail_on_drift: (2, ["Orphan1"])
        )

        result = CliRunner().invoke(cli, ["drift", "--fail-on-drift"], env=env)

        assert result.exit_code == 2
        assert "1 undeclared alias(es)" in result.output
        assert "Orphan1" in result.output

    def test_no_drift(self, env: dict[str, str | None], monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cli_module, "run_drift_check", lambda config, fail_on_drift: (0, []))

        result = CliRunner().invoke(cli, ["drift"], env=env)

        assert result.exit_code == 0
        assert "No drift" in result.output


class TestBackupsCommand:
    """Tests for `alias-operator backups list`."""

    def test_empty(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            cli, ["backups", "list", "--backup-dir", str(tmp_path / "none")]
        )

        assert result.exit_code == 0
        assert "No backups in" in result.output

    def test_lists_newest_first(self, tmp_path: Path) -> None:
        store = BackupStore(tmp_path)
        store.write({"rows": [{"name": "A"}]}, datetime(2024, 1, 1, 9, 0, 0, tzinfo=UTC))
        store.write({"rows": [{"name": "A"}, {"name": "B"}]}, datetime(2024, 1, 2, tzinfo=UTC))

        result = CliRunner().invoke(cli, ["backups", "list", "--backup-dir", str(tmp_path)])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines == [
            "2024-01-02 00:00:00  port_alias_backup_20240102_000000.json  aliases=2",
            "2024-01-01 09:00:00  port_alias_backup_20240101_090000.json  aliases=1",
        ]


def test_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output
