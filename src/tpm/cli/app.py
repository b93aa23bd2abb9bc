# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/cli/app.py
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import List, Optional

import typer
import yaml

from tpm.backup.agent import BackupAgent, BackupError
from tpm.commands.base import RunOptions
from tpm.commands.cluster import create_command
from tpm.commands.registry import COMMANDS
from tpm.commands.single_host import run_deploy_config, run_load_config, run_validate_config
from tpm.config.keys import DEFAULTS, HOSTS, USERID
from tpm.config.loader import load_config
from tpm.logging.log import init_logging
from tpm.messages.errors import CommandError
from tpm.messages.result import RemoteResult, encode_result
from tpm.observers.console import ConsoleObserver
from tpm.observers.dispatcher import EventBus
from tpm.observers.jsonfile import JsonFileObserver
from tpm.observers.logger import LoggerObserver
from tpm.remote.transport import SSHTransport
from tpm.utils.helpers import as_list


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Install and manage replication and cluster services")


def _confirm(message: str) -> Optional[str]:
    if not sys.stdin.isatty():
        return None
    return typer.prompt(f"{message}\nDo you want to continue? (y/N)", default="n", show_default=False)


def _split(values: Optional[List[str]]) -> tuple:
    out: List[str] = []
    for value in values or []:
        out.extend(as_list(value))
    return tuple(out)


def run_configure(
    name: str,
    *,
    config: Path,
    force: bool = False,
    hosts: Optional[List[str]] = None,
    dataservices: Optional[List[str]] = None,
    skip_checks: Optional[List[str]] = None,
    enable_checks: Optional[List[str]] = None,
    skip_warnings: Optional[List[str]] = None,
    no_connectors: bool = False,
    ssh_key: Optional[Path] = None,
    verbose: bool = False,
    events: bool = False,
    max_workers: Optional[int] = None,
    from_event: Optional[str] = None,
    from_master_backup_event: Optional[str] = None,
    confirmed: bool = False,
) -> bool:
    logger, run_id, log_path = init_logging(verbose=verbose)

    observers = [
        LoggerObserver(logger),
        JsonFileObserver(log_path.with_suffix(".jsonl")),
    ]
    bus = EventBus(observers=observers)
    if events:
        bus.subscribe(ConsoleObserver())

    typer.secho(f"tpm {name}", bold=True, err=True)
    typer.echo(f"  Run ID   : {run_id}", err=True)
    typer.echo(f"  Logs     : {log_path}", err=True)

    try:
        cfg = load_config(config)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.error(f"Unable to load {config}: {exc}")
        return False

    ssh_user = os.environ.get("TPM_SSH_USER")
    if ssh_user:
        cfg.set_default([HOSTS, DEFAULTS, USERID], ssh_user)

    options = RunOptions(
        forced=force,
        command_hosts=_split(hosts),
        command_dataservices=_split(dataservices),
        skip_checks=_split(skip_checks),
        enable_checks=_split(enable_checks),
        skip_warnings=_split(skip_warnings),
        no_connectors=no_connectors,
        max_workers=max_workers,
        from_event=from_event,
        from_master_backup_event=from_master_backup_event,
        confirmed=confirmed,
    )

    transport = SSHTransport(key_filename=str(ssh_key) if ssh_key else None)
    try:
        command = create_command(
            name,
            cfg,
            options,
            transport=transport,
            bus=bus,
            run_id=run_id,
            confirmer=_confirm,
        )
        return command.run()
    finally:
        transport.close()


def _register(name: str, help_text: str) -> None:
    @app.command(name, help=help_text)
    def command(
        config: Path = typer.Option(..., "--config", "-c", help="Deployment description (YAML or JSON)"),
        force: bool = typer.Option(False, "--force", "-f", help="Continue past errors and confirmations"),
        hosts: Optional[List[str]] = typer.Option(None, "--hosts", help="Limit the command to these hosts"),
        dataservices: Optional[List[str]] = typer.Option(
            None, "--dataservice", help="Limit the command to these data services"
        ),
        skip_checks: Optional[List[str]] = typer.Option(None, "--skip-validation-check"),
        enable_checks: Optional[List[str]] = typer.Option(None, "--enable-validation-check"),
        skip_warnings: Optional[List[str]] = typer.Option(None, "--skip-validation-warnings"),
        no_connectors: bool = typer.Option(False, "--no-connectors", help="Do not restart running connectors"),
        ssh_key: Optional[Path] = typer.Option(None, "--ssh-key"),
        max_workers: Optional[int] = typer.Option(None, "--max-workers"),
        verbose: bool = typer.Option(False, "--verbose", "-v"),
        events: bool = typer.Option(False, "--events", help="Print lifecycle events"),
    ):
        ok = run_configure(
            name,
            config=config,
            force=force,
            hosts=hosts,
            dataservices=dataservices,
            skip_checks=skip_checks,
            enable_checks=enable_checks,
            skip_warnings=skip_warnings,
            no_connectors=no_connectors,
            ssh_key=ssh_key,
            verbose=verbose,
            events=events,
            max_workers=max_workers,
        )
        if not ok:
            raise typer.Exit(code=1)


SERVICE_COMMANDS = ("start", "uninstall")

for _descriptor in COMMANDS.values():
    if _descriptor.name not in SERVICE_COMMANDS:
        _register(_descriptor.name, _descriptor.help)


@app.command("start", help=COMMANDS["start"].help)
def start(
    config: Path = typer.Option(..., "--config", "-c", help="Deployment description (YAML or JSON)"),
    force: bool = typer.Option(False, "--force", "-f", help="Continue past errors and confirmations"),
    hosts: Optional[List[str]] = typer.Option(None, "--hosts", help="Limit the command to these hosts"),
    dataservices: Optional[List[str]] = typer.Option(
        None, "--dataservice", help="Limit the command to these data services"
    ),
    from_event: Optional[str] = typer.Option(
        None, "--from-event", help="Bring the replicator online at this event"
    ),
    from_master_backup_event: Optional[str] = typer.Option(
        None,
        "--from-master-backup-event",
        help="Bring the replicator online at the position of a mysqldump, xtrabackup or snapshot backup",
    ),
    skip_checks: Optional[List[str]] = typer.Option(None, "--skip-validation-check"),
    ssh_key: Optional[Path] = typer.Option(None, "--ssh-key"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    events: bool = typer.Option(False, "--events", help="Print lifecycle events"),
):
    ok = run_configure(
        "start",
        config=config,
        force=force,
        hosts=hosts,
        dataservices=dataservices,
        skip_checks=skip_checks,
        ssh_key=ssh_key,
        verbose=verbose,
        events=events,
        from_event=from_event,
        from_master_backup_event=from_master_backup_event,
    )
    if not ok:
        raise typer.Exit(code=1)


@app.command("uninstall", help=COMMANDS["uninstall"].help)
def uninstall(
    config: Path = typer.Option(..., "--config", "-c", help="Deployment description (YAML or JSON)"),
    i_am_sure: bool = typer.Option(False, "--i-am-sure", help="Confirm the services and releases may be removed"),
    force: bool = typer.Option(False, "--force", "-f", help="Continue past errors and confirmations"),
    hosts: Optional[List[str]] = typer.Option(None, "--hosts", help="Limit the command to these hosts"),
    dataservices: Optional[List[str]] = typer.Option(
        None, "--dataservice", help="Limit the command to these data services"
    ),
    ssh_key: Optional[Path] = typer.Option(None, "--ssh-key"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    events: bool = typer.Option(False, "--events", help="Print lifecycle events"),
):
    ok = run_configure(
        "uninstall",
        config=config,
        force=force,
        hosts=hosts,
        dataservices=dataservices,
        ssh_key=ssh_key,
        verbose=verbose,
        events=events,
        confirmed=i_am_sure,
    )
    if not ok:
        raise typer.Exit(code=1)


# ------------------------------------------------------------------------------
# Single-host sub-commands (invoked by tpm over SSH)
# ------------------------------------------------------------------------------

def _emit(result: RemoteResult) -> None:
    typer.echo(encode_result(result), nl=False)


@app.command("load-config", hidden=True)
def load_config_command(
    profile: str = typer.Option(..., "--profile"),
    command: str = typer.Option(..., "--command"),
    skip_checks: Optional[List[str]] = typer.Option(None, "--skip-validation-check"),
    enable_checks: Optional[List[str]] = typer.Option(None, "--enable-validation-check"),
):
    init_logging(quiet=True)
    _emit(run_load_config(profile, command))


@app.command("validate-single-config", hidden=True)
def validate_single_config(
    profile: str = typer.Option(..., "--profile"),
    command: str = typer.Option(..., "--command"),
    skip_checks: Optional[List[str]] = typer.Option(None, "--skip-validation-check"),
    enable_checks: Optional[List[str]] = typer.Option(None, "--enable-validation-check"),
    skip_warnings: Optional[List[str]] = typer.Option(None, "--skip-validation-warnings"),
):
    init_logging(quiet=True)
    _emit(
        run_validate_config(
            profile,
            command,
            skip_checks=_split(skip_checks),
            enable_checks=_split(enable_checks),
            skip_warnings=_split(skip_warnings),
        )
    )


@app.command("validate-commit-config", hidden=True)
def validate_commit_config(
    profile: str = typer.Option(..., "--profile"),
    command: str = typer.Option(..., "--command"),
    skip_checks: Optional[List[str]] = typer.Option(None, "--skip-validation-check"),
    enable_checks: Optional[List[str]] = typer.Option(None, "--enable-validation-check"),
    skip_warnings: Optional[List[str]] = typer.Option(None, "--skip-validation-warnings"),
):
    init_logging(quiet=True)
    _emit(
        run_validate_config(
            profile,
            command,
            commit=True,
            skip_checks=_split(skip_checks),
            enable_checks=_split(enable_checks),
            skip_warnings=_split(skip_warnings),
        )
    )


@app.command("deploy-single-config", hidden=True)
def deploy_single_config(
    profile: str = typer.Option(..., "--profile"),
    command: str = typer.Option(..., "--command"),
    kind: str = typer.Option("deployment", "--kind"),
    group_id: Optional[int] = typer.Option(None, "--group-id"),
    additional_properties: Optional[str] = typer.Option(None, "--additional-properties"),
    skip_checks: Optional[List[str]] = typer.Option(None, "--skip-validation-check"),
    enable_checks: Optional[List[str]] = typer.Option(None, "--enable-validation-check"),
):
    init_logging(quiet=True)
    _emit(run_deploy_config(profile, command, kind, group_id, additional_properties))


# ------------------------------------------------------------------------------
# Backup / restore
# ------------------------------------------------------------------------------

@app.command()
def backup(
    script: str = typer.Option(..., "--script", help="Backup script to run"),
    service: Optional[str] = typer.Option(None, "--service"),
    options: Optional[str] = typer.Option(None, "--options", help="Passed to the script as --options"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    logger, _, _ = init_logging(verbose=verbose)
    agent = BackupAgent(script, service=service, options=options)
    try:
        result = agent.backup()
    except (BackupError, CommandError) as exc:
        logger.error(str(exc))
        raise typer.Exit(code=1)
    typer.echo(result.file)
    if result.master_position:
        typer.echo(f"seqno={result.master_position.get('seqno')} eventId={result.master_position.get('eventId')}")


@app.command()
def restore(
    script: str = typer.Option(..., "--script", help="Restore script to run"),
    file: str = typer.Option(..., "--file", help="Backup file to restore"),
    options: Optional[str] = typer.Option(None, "--options", help="Passed to the script as --options"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    logger, _, _ = init_logging(verbose=verbose)
    try:
        BackupAgent(script, options=options).restore(file)
    except (BackupError, CommandError) as exc:
        logger.error(str(exc))
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
