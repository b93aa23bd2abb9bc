import logging

import pytest
from typer.testing import CliRunner

import tpm.cli.app as cli
from tpm.backup.agent import BackupError, BackupResult
from tpm.config.keys import DEPLOYMENT_CONFIGURATION_KEY, DEPLOYMENT_HOST
from tpm.config.properties import Properties
from tpm.messages.result import decode_result

runner = CliRunner()


@pytest.fixture(autouse=True)
def _log_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("TPM_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("TPM_SSH_USER", raising=False)
    yield
    logger = logging.getLogger("tpm")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


def test_help_lists_public_commands_only():
    result = runner.invoke(cli.app, ["--help"])
    assert result.exit_code == 0
    for name in ("install", "update", "validate", "validate-update", "start", "uninstall", "backup", "restore"):
        assert name in result.stdout
    assert "deploy-single-config" not in result.stdout


def test_install_with_missing_config_fails(tmp_path):
    result = runner.invoke(cli.app, ["install", "--config", str(tmp_path / "missing.yaml")])
    assert result.exit_code == 1


def test_run_configure_builds_options(tmp_path, monkeypatch):
    cfg = tmp_path / "deploy.yaml"
    cfg.write_text("hosts:\n  db1: {}\ndataservices:\n  alpha: {members: db1, master: db1}\n")
    monkeypatch.setenv("TPM_SSH_USER", "tungsten")
    seen = {}

    class FakeCommand:
        def run(self):
            return True

    def fake_create(name, config, options, **kwargs):
        seen.update(name=name, config=config, options=options, kwargs=kwargs)
        return FakeCommand()

    monkeypatch.setattr(cli, "create_command", fake_create)
    ok = cli.run_configure(
        "update",
        config=cfg,
        force=True,
        hosts=["db1,db2", "db3"],
        skip_checks=["HostnameCheck"],
        max_workers=4,
    )

    assert ok is True
    assert seen["name"] == "update"
    assert seen["options"].forced is True
    assert seen["options"].command_hosts == ("db1", "db2", "db3")
    assert seen["options"].skip_checks == ("HostnameCheck",)
    assert seen["options"].max_workers == 4
    assert seen["config"].get_nested(["hosts", "defaults", "user"]) == "tungsten"
    assert seen["kwargs"]["run_id"]


def test_load_config_prints_an_encoded_result(tmp_path):
    profile = Properties({
        DEPLOYMENT_HOST: "db1",
        DEPLOYMENT_CONFIGURATION_KEY: "db1_key",
        "hosts": {"db1": {"home_directory": str(tmp_path / "home")}},
    }).store(tmp_path / "tpm.cfg")

    result = runner.invoke(cli.app, ["load-config", "--profile", str(profile), "--command", "install"])

    assert result.exit_code == 0
    decoded = decode_result(result.stdout_bytes)
    assert decoded.errors == []
    assert decoded.properties["db1_key"]["props"][DEPLOYMENT_HOST] == "db1"


def test_validate_single_config_reports_bad_profile(tmp_path):
    result = runner.invoke(
        cli.app,
        ["validate-single-config", "--profile", str(tmp_path / "nope.cfg"), "--command", "install"],
    )
    assert result.exit_code == 0
    decoded = decode_result(result.stdout_bytes)
    assert decoded.errors[0].message.startswith("Unable to load the host configuration")


def test_backup_command(monkeypatch):
    class FakeAgent:
        def __init__(self, script, service=None, options=None):
            assert (script, service) == ("/opt/backup.sh", "alpha")

        def backup(self):
            return BackupResult("/backups/db1.gz", {"seqno": 11, "eventId": "mysql-bin.000003:1234"})

    monkeypatch.setattr(cli, "BackupAgent", FakeAgent)
    result = runner.invoke(cli.app, ["backup", "--script", "/opt/backup.sh", "--service", "alpha"])
    assert result.exit_code == 0
    assert "/backups/db1.gz" in result.stdout
    assert "seqno=11" in result.stdout


def test_restore_failure_exits_non_zero(monkeypatch):
    class FailingAgent:
        def __init__(self, script, service=None, options=None):
            pass

        def restore(self, file):
            raise BackupError("restore script failed")

    monkeypatch.setattr(cli, "BackupAgent", FailingAgent)
    result = runner.invoke(cli.app, ["restore", "--script", "restore.sh", "--file", "/backups/db1.gz"])
    assert result.exit_code == 1


def test_start_and_uninstall_pass_their_options(tmp_path, monkeypatch):
    seen = []

    def fake_run(name, **kwargs):
        seen.append((name, kwargs))
        return True

    monkeypatch.setattr(cli, "run_configure", fake_run)
    cfg = str(tmp_path / "deploy.yaml")

    assert runner.invoke(cli.app, ["start", "-c", cfg, "--from-master-backup-event", "xtrabackup"]).exit_code == 0
    assert runner.invoke(cli.app, ["uninstall", "-c", cfg, "--i-am-sure"]).exit_code == 0

    (start_name, start), (uninstall_name, uninstall) = seen
    assert start_name == "start"
    assert start["from_master_backup_event"] == "xtrabackup"
    assert start["from_event"] is None
    assert uninstall_name == "uninstall"
    assert uninstall["confirmed"] is True
