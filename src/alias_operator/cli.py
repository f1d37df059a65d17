"""OPNsense port-alias operator CLI (alias-operator).

Usage:
    alias-operator run                 # Back up, confirm, reconcile, reload
    alias-operator run --yes           # Unattended run
    alias-operator run --dry-run       # Plan changes without applying them
    alias-operator drift               # Read-only drift report
    alias-operator backups list        # Show retained backups
"""

from __future__ import annotations

import dataclasses
import logging
import sys
from pathlib import Path

import click

from .approval import ApprovalGate, AutoApproval, InteractiveApproval
from .backup import BackupStore
from .config import DEFAULT_BACKUP_DIR, Config, ConfigurationError
from .main import EXIT_ERROR, EXIT_OK, run_drift_check, run_reconciliation, setup_logging


def load_config(aliases: Path | None = None, dry_run: bool = False) -> Config:
    """Load configuration from the environment and apply CLI overrides.

    Raises:
        click.ClickException: If the configuration is invalid.
    """
    try:
        config = Config.from_env()
        overrides: dict[str, object] = {}
        if aliases is not None:
            overrides["aliases_file"] = aliases
        if dry_run:
            overrides["dry_run"] = True
        if overrides:
            config = dataclasses.replace(config, **overrides)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    return config


aliases_option = click.option(
    "--aliases",
    "-a",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Declared alias set (YAML). Overrides ALIASES_FILE.",
)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="alias-operator")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """OPNsense port-alias operator.

    Reconciles declared firewall port aliases against an OPNsense appliance,
    preserving appliance-owned metadata and reporting undeclared aliases.

    \b
    Quick Start:
        export OPNSENSE_URL=https://fw.example.net
        export OPNSENSE_API_KEY_FILE=/root/apikey.txt
        alias-operator run --aliases aliases.yaml
    """
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = logging.DEBUG if verbose else logging.INFO


@cli.command()
@aliases_option
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.option("--dry-run", is_flag=True, help="Plan changes without applying them")
@click.pass_context
def run(ctx: click.Context, aliases: Path | None, yes: bool, dry_run: bool) -> None:
    """Back up, confirm, report drift, reconcile aliases and reload."""
    config = load_config(aliases, dry_run)
    setup_logging(config.log_file, ctx.obj["log_level"])

    approval: ApprovalGate = AutoApproval() if yes else InteractiveApproval()
    sys.exit(run_reconciliation(config, approval))


@cli.command()
@aliases_option
@click.option("--fail-on-drift", is_flag=True, help="Exit with status 2 if drift is found")
@click.pass_context
def drift(ctx: click.Context, aliases: Path | None, fail_on_drift: bool) -> None:
    """Report aliases on the appliance that are not declared (read-only)."""
    config = load_config(aliases)
    setup_logging(config.log_file, ctx.obj["log_level"])

    exit_code, drifted = run_drift_check(config, fail_on_drift=fail_on_drift)
    if exit_code == EXIT_ERROR:
        click.secho("Drift check failed: alias listing unavailable", fg="red", err=True)
    elif drifted:
        click.secho(f"{len(drifted)} undeclared alias(es):", fg="yellow")
        for name in drifted:
            click.echo(f"  {name}")
    else:
        click.secho("No drift: every alias on the appliance is declared", fg="green")
    sys.exit(exit_code)


# =============================================================================
# Backup Commands
# =============================================================================


@cli.group()
def backups() -> None:
    """Backup commands: list retained alias snapshots."""
    pass


@backups.command("list")
@click.option(
    "--backup-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="BACKUP_DIR",
    default=DEFAULT_BACKUP_DIR,
    show_default=True,
    help="Backup directory",
)
def list_backups(backup_dir: Path) -> None:
    """List retained backups, newest first."""
    store = BackupStore(backup_dir)
    artifacts = store.artifacts()
    if not artifacts:
        click.echo(f"No backups in {backup_dir}")
        sys.exit(EXIT_OK)

    for artifact in artifacts:
        try:
            rows = store.load(artifact.path).get("rows")
            count = str(len(rows)) if isinstance(rows, list) else "?"
        except (OSError, ValueError) as e:
            count = f"unreadable ({e})"
        click.echo(f"{artifact.captured_at:%Y-%m-%d %H:%M:%S}  {artifact.name}  aliases={count}")


def main() -> None:
    """Entry point for the alias-operator console script."""
    cli(obj={})


if __name__ == "__main__":
    main()
