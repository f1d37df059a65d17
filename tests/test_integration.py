"""Integration tests for a full reconciliation run.

These tests use MockApplianceContext to drive the real client, backup,
drift detection, reconciliation and reload against an in-memory alias
store, without an OPNsense appliance.
"""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

from alias_operator.approval import AutoApproval
from alias_operator.backup import BackupArtifact
from alias_operator.config import Config
from alias_operator.main import (
    EXIT_CANCELLED,
    EXIT_DRIFT,
    EXIT_ERROR,
    EXIT_OK,
    run_drift_check,
    run_reconciliation,
)
from alias_operator.models import AliasSet, AliasSpec
from alias_operator.orchestrator import Orchestrator, RunStatus, RunSummary
from alias_operator.reconciler import OutcomeKind
from alias_operator.spec_loader import load_alias_set
from opnsense_mock import MockApplianceContext

CLIENT_ALIAS = "MS_AD_DS_Client_Only_Master"
SERVER_ALIAS = "MS_AD_DS_Server_Master"


class RecordingApproval:
    """Approval gate that answers a fixed decision and records what it saw."""

    def __init__(self, decision: bool) -> None:
        self.decision = decision
        self.seen: list[BackupArtifact] = []
        self.backup_existed: list[bool] = []

    def __call__(self, artifact: BackupArtifact) -> bool:
        self.seen.append(artifact)
        self.backup_existed.append(artifact.path.exists())
        return self.decision


def run_once(
    config: Config,
    appliance: MockApplianceContext,
    aliases: AliasSet,
    approval: Any = None,
) -> RunSummary:
    with appliance.client() as client:
        orchestrator = Orchestrator.from_config(config, client, approval or AutoApproval())
        return orchestrator.run(aliases)


@pytest.fixture
def aliases(aliases_file: Path) -> AliasSet:
    return load_alias_set(aliases_file)


@pytest.fixture(autouse=True)
def log_at_info(caplog: pytest.LogCaptureFixture) -> None:
    """Run every scenario with the INFO logging the CLI installs."""
    caplog.set_level(logging.INFO)


class TestOrchestratorRun:
    """End-to-end runs through the orchestrator."""

    def test_full_run_creates_missing_aliases(self, config: Config, aliases: AliasSet) -> None:
        appliance = MockApplianceContext()

        summary = run_once(config, appliance, aliases)

        assert summary.status == RunStatus.COMPLETED
        assert summary.created == [CLIENT_ALIAS, SERVER_ALIAS]
        assert summary.failed == []
        assert summary.reload_ok is True
        assert appliance.state.get(SERVER_ALIAS)["content"] == (
            "389,636,3268,3269,88,445,135,138,139,464,123"
        )
        assert appliance.state.reconfigure_count == 1

    def test_call_sequence(self, config: Config, aliases: AliasSet) -> None:
        """Test backup, drift, reconcile in declaration order, then reload."""
        appliance = MockApplianceContext()

        run_once(config, appliance, aliases)

        assert [c.endpoint for c in appliance.state.calls] == [
            "searchAlias",
            "searchAlias",
            "getAlias",
            "addAlias",
            "getAlias",
            "addAlias",
            "reconfigure",
        ]

    def test_backup_exists_before_approval(self, config: Config, aliases: AliasSet) -> None:
        appliance = MockApplianceContext([{"name": CLIENT_ALIAS, "content": "53"}])
        approval = RecordingApproval(decision=True)

        summary = run_once(config, appliance, aliases, approval)

        assert approval.backup_existed == [True]
        assert summary.backup is not None
        snapshot = json.loads(summary.backup.path.read_text())
        assert [row["name"] for row in snapshot["rows"]] == [CLIENT_ALIAS]
        assert snapshot["rows"][0]["content"] == "53"

    def test_second_run_is_idempotent(self, config: Config, aliases: AliasSet) -> None:
        appliance = MockApplianceContext()

        run_once(config, appliance, aliases)
        after_first = appliance.state.snapshot()
        summary = run_once(config, appliance, aliases)

        assert summary.updated == [CLIENT_ALIAS, SERVER_ALIAS]
        assert summary.created == []
        assert appliance.state.snapshot() == after_first

    def test_update_preserves_appliance_owned_fields(
        self, config: Config, aliases: AliasSet
    ) -> None:
        appliance = MockApplianceContext(
            [{"name": SERVER_ALIAS, "content": "389", "color": "0000ff", "categories": "ad"}]
        )
        uuid_before = appliance.state.get(SERVER_ALIAS)["uuid"]

        summary = run_once(config, appliance, aliases)

        assert summary.updated == [SERVER_ALIAS]
        record = appliance.state.get(SERVER_ALIAS)
        assert record["color"] == "0000ff"
        assert record["categories"] == "ad"
        assert record["uuid"] == uuid_before

    def test_decline_changes_nothing(self, config: Config, aliases: AliasSet) -> None:
        appliance = MockApplianceContext([{"name": "Orphan1", "content": "8080"}])
        before = appliance.state.snapshot()

        summary = run_once(config, appliance, aliases, RecordingApproval(decision=False))

        assert summary.status == RunStatus.CANCELLED
        assert summary.abort_reason == "approval declined"
        assert summary.backup is not None and summary.backup.path.exists()
        assert summary.drift is None
        assert appliance.state.mutation_calls == []
        assert appliance.state.reconfigure_count == 0
        assert appliance.state.snapshot() == before

    def test_backup_failure_aborts_before_lookup(
        self, config: Config, aliases: AliasSet
    ) -> None:
        appliance = MockApplianceContext()
        appliance.state.fail_search = True
        approval = RecordingApproval(decision=True)

        summary = run_once(config, appliance, aliases, approval)

        assert summary.status == RunStatus.ABORTED
        assert summary.abort_reason is not None
        assert approval.seen == []
        assert [c.endpoint for c in appliance.state.calls] == ["searchAlias"]

    def test_drift_reported_and_untouched(self, config: Config, aliases: AliasSet) -> None:
        appliance = MockApplianceContext(
            [{"name": "Orphan1", "content": "8080", "description": "manual rule"}]
        )
        orphan_before = appliance.state.get("Orphan1")

        summary = run_once(config, appliance, aliases)

        assert summary.drifted == ["Orphan1"]
        assert appliance.state.get("Orphan1") == orphan_before
        assert all(c.payload.get("name") != "Orphan1" for c in appliance.state.mutation_calls)

    def test_failure_is_isolated(self, config: Config) -> None:
        """Test that a failing alias neither stops later aliases nor the reload."""
        aliases = AliasSet(
            aliases=[
                AliasSpec(name="A", ports=[1]),
                AliasSpec(name="B", ports=[2]),
                AliasSpec(name="C", ports=[3]),
            ]
        )
        appliance = MockApplianceContext()
        appliance.state.reject_mutations.add("B")

        summary = run_once(config, appliance, aliases)

        assert [o.kind for o in summary.outcomes] == [
            OutcomeKind.CREATED,
            OutcomeKind.FAILED,
            OutcomeKind.CREATED,
        ]
        assert summary.failed == ["B"]
        assert appliance.state.names == ["A", "C"]
        assert summary.reload_ok is True

    def test_lookup_failure_is_isolated(self, config: Config, aliases: AliasSet) -> None:
        appliance = MockApplianceContext()
        appliance.state.fail_get.add(CLIENT_ALIAS)

        summary = run_once(config, appliance, aliases)

        assert summary.failed == [CLIENT_ALIAS]
        assert summary.created == [SERVER_ALIAS]
        assert CLIENT_ALIAS not in appliance.state.names

    def test_reload_failure_recorded(self, config: Config, aliases: AliasSet) -> None:
        appliance = MockApplianceContext()
        appliance.state.fail_reconfigure = True

        summary = run_once(config, appliance, aliases)

        assert summary.status == RunStatus.COMPLETED
        assert summary.reload_ok is False
        assert summary.reload_error is not None
        assert summary.created == [CLIENT_ALIAS, SERVER_ALIAS]

    def test_drift_listing_failure_does_not_stop_run(
        self, config: Config, aliases: AliasSet
    ) -> None:
        """Test that an unavailable drift listing is reported and reconciliation goes on."""
        appliance = MockApplianceContext([{"name": "Orphan1", "content": "8080"}])
        appliance.state.fail_search_after = 1

        summary = run_once(config, appliance, aliases)

        assert summary.status == RunStatus.COMPLETED
        assert summary.backup is not None
        assert summary.drift is not None
        assert summary.drift.error is not None
        assert summary.drifted == []
        assert summary.created == [CLIENT_ALIAS, SERVER_ALIAS]
        assert summary.reload_ok is True

    def test_dry_run(self, config: Config, aliases: AliasSet) -> None:
        appliance = MockApplianceContext([{"name": SERVER_ALIAS, "content": "389"}])
        before = appliance.state.snapshot()

        summary = run_once(replace(config, dry_run=True), appliance, aliases)

        assert summary.dry_run
        assert summary.planned == [CLIENT_ALIAS, SERVER_ALIAS]
        assert summary.reload_ok is None
        assert summary.backup is not None
        assert appliance.state.mutation_calls == []
        assert appliance.state.reconfigure_count == 0
        assert appliance.state.snapshot() == before

    def test_command_reload(
        self, config: Config, aliases: AliasSet, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        commands: list[list[str]] = []

        def fake_run(argv: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            commands.append(argv)
            return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)
        appliance = MockApplianceContext()

        summary = run_once(
            replace(config, reload_command="configctl firewall reload"), appliance, aliases
        )

        assert summary.reload_ok is True
        assert commands == [["configctl", "firewall", "reload"]]
        assert appliance.state.reconfigure_count == 0

    def test_retention_across_runs(self, config: Config, aliases: AliasSet) -> None:
        appliance = MockApplianceContext()
        config = replace(config, backup_retention=2)

        for _ in range(4):
            run_once(config, appliance, aliases)

        assert len(list(config.backup_dir.glob("port_alias_backup_*.json"))) == 2


class TestEntryPoints:
    """Tests for exit codes returned by the entry points."""

    def test_run_ok(self, config: Config) -> None:
        appliance = MockApplianceContext()

        exit_code = run_reconciliation(config, AutoApproval(), transport=appliance.transport)

        assert exit_code == EXIT_OK
        assert len(appliance.state.names) == 2

    def test_run_cancelled(self, config: Config) -> None:
        appliance = MockApplianceContext()

        exit_code = run_reconciliation(
            config, RecordingApproval(decision=False), transport=appliance.transport
        )

        assert exit_code == EXIT_CANCELLED
        assert appliance.state.names == []

    def test_run_aborted(self, config: Config) -> None:
        appliance = MockApplianceContext()
        appliance.state.fail_search = True

        exit_code = run_reconciliation(config, AutoApproval(), transport=appliance.transport)

        assert exit_code == EXIT_ERROR

    def test_invalid_aliases_file(self, config: Config, tmp_path: Path) -> None:
        bad = tmp_path / "bad.yaml"
        bad.write_text("aliases:\n  - name: bad name\n    ports: [80]\n")
        appliance = MockApplianceContext()

        exit_code = run_reconciliation(
            replace(config, aliases_file=bad), AutoApproval(), transport=appliance.transport
        )

        assert exit_code == EXIT_ERROR
        assert appliance.state.calls == []

    def test_drift_check(self, config: Config) -> None:
        appliance = MockApplianceContext([{"name": "Orphan1", "content": "8080"}])

        assert run_drift_check(config, transport=appliance.transport) == (EXIT_OK, ["Orphan1"])
        assert run_drift_check(config, fail_on_drift=True, transport=appliance.transport) == (
            EXIT_DRIFT,
            ["Orphan1"],
        )
        assert appliance.state.mutation_calls == []

    def test_drift_check_listing_failure(self, config: Config) -> None:
        appliance = MockApplianceContext()
        appliance.state.fail_search = True

        assert run_drift_check(config, transport=appliance.transport) == (EXIT_ERROR, [])


class TestRunSummaryLog:
    """Tests for the final summary log line."""

    @staticmethod
    def summary_record(caplog: pytest.LogCaptureFixture) -> logging.LogRecord:
        records = [
            r
            for r in caplog.records
            if r.name == "alias_operator.orchestrator" and r.msg.startswith("Run ")
        ]
        assert len(records) == 1
        return records[0]

    def test_completed_run_is_summarized(
        self, config: Config, aliases: AliasSet, caplog: pytest.LogCaptureFixture
    ) -> None:
        appliance = MockApplianceContext([{"name": "Orphan1", "content": "8080"}])

        run_once(config, appliance, aliases)

        record = self.summary_record(caplog)
        assert record.getMessage() == "Run completed"
        assert record.created_aliases == [CLIENT_ALIAS, SERVER_ALIAS]
        assert record.failed_aliases == {}
        assert record.drifted_aliases == ["Orphan1"]
        assert record.reload_ok is True

    def test_failures_carry_reasons(
        self, config: Config, caplog: pytest.LogCaptureFixture
    ) -> None:
        aliases = AliasSet(
            aliases=[AliasSpec(name="A", ports=[1]), AliasSpec(name="B", ports=[2])]
        )
        appliance = MockApplianceContext()
        appliance.state.reject_mutations.add("B")
        appliance.state.fail_search_after = 1

        run_once(config, appliance, aliases)

        record = self.summary_record(caplog)
        assert record.levelno == logging.WARNING
        assert list(record.failed_aliases) == ["B"]
        assert "create rejected" in record.failed_aliases["B"]
        assert "500" in record.drift_error

    @pytest.mark.parametrize(
        ("decision", "fail_search", "message"),
        [
            (False, False, "Run cancelled before any change"),
            (True, True, "Run aborted before any change"),
        ],
    )
    def test_early_exit_is_summarized(
        self,
        config: Config,
        aliases: AliasSet,
        caplog: pytest.LogCaptureFixture,
        decision: bool,
        fail_search: bool,
        message: str,
    ) -> None:
        appliance = MockApplianceContext()
        appliance.state.fail_search = fail_search

        run_once(config, appliance, aliases, RecordingApproval(decision))

        record = self.summary_record(caplog)
        assert record.getMessage() == message
        assert record.created_aliases == []
