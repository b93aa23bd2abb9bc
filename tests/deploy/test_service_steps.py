from pathlib import Path

from tpm.config.keys import (
    CONNECTORS,
    DEPLOYMENT_CONFIGURATION_KEY,
    DEPLOYMENT_DATASERVICE,
    DEPLOYMENT_HOST,
    IS_COMMAND_COORDINATOR,
    MANAGER_IS_RUNNING,
    MANAGER_POLICY,
    MANAGERS,
    RELEASE_NAME,
    REPL_MASTERHOST,
    REPL_SERVICES,
    RESTART_CONNECTORS,
)
from tpm.config.properties import Properties
from tpm.deploy.core import DeploymentObject
from tpm.deploy.providers.connector import ConnectorSteps
from tpm.deploy.providers.release import ReleaseSteps
from tpm.deploy.providers.services import ServiceSteps


class FakeRunner:
    def __init__(self, answers=None):
        self.answers = answers or {}
        self.commands = []

    def cmd_result(self, command, *, ignore_fail=False, timeout=None):
        self.commands.append(command)
        for needle, answer in self.answers.items():
            if needle in command:
                return answer
        return ""


def _deployment(tmp_path, runner, providers=(ServiceSteps,), **extra):
    props = {
        DEPLOYMENT_HOST: "db1",
        DEPLOYMENT_CONFIGURATION_KEY: "db1_key",
        DEPLOYMENT_DATASERVICE: "alpha",
        RELEASE_NAME: "tpm-test",
        "hosts": {"db1": {"host": "db1", "home_directory": str(tmp_path)}},
        "dataservices": {"alpha": {"dataservice_hosts": ["db1", "db2"]}},
        MANAGERS: {"alpha_db1": {DEPLOYMENT_HOST: "db1"}},
        CONNECTORS: {"db1": {DEPLOYMENT_HOST: "db1", DEPLOYMENT_DATASERVICE: "alpha"}},
        REPL_SERVICES: {
            "alpha_db1": {
                DEPLOYMENT_HOST: "db1",
                DEPLOYMENT_DATASERVICE: "alpha",
                REPL_MASTERHOST: "db2",
                "repl_role": "slave",
            }
        },
    }
    props.update(extra)
    obj = DeploymentObject(Properties(props), list(providers), runner=runner)
    return obj


def _with_properties(obj, **values):
    obj.additional_properties = Properties({"db1_key": values})
    return obj


def test_connector_restarts_when_running(tmp_path):
    runner = FakeRunner({"tconnector.pid": "yes"})
    steps = _with_properties(_deployment(tmp_path, runner), **{RESTART_CONNECTORS: True}).providers[0]
    steps.start_connector()
    assert runner.commands[-1].endswith("connector restart")


def test_connector_left_alone_when_restart_declined(tmp_path):
    runner = FakeRunner({"tconnector.pid": "yes"})
    obj = _with_properties(_deployment(tmp_path, runner), **{RESTART_CONNECTORS: False})
    obj.providers[0].start_connector()
    assert not any("restart" in c for c in runner.commands)
    assert [e.message for e in obj.messages.warnings()] == ["The connector was not restarted"]


def test_connector_started_when_stopped(tmp_path):
    runner = FakeRunner({"tconnector.pid": "no"})
    _deployment(tmp_path, runner).providers[0].start_connector()
    assert runner.commands[-1].endswith("connector start")


def test_policy_is_only_changed_by_the_coordinator(tmp_path):
    runner = FakeRunner()
    obj = _with_properties(_deployment(tmp_path, runner), **{MANAGER_IS_RUNNING: True})
    obj.providers[0].set_maintenance_policy()
    assert runner.commands == []

    obj = _with_properties(
        _deployment(tmp_path, runner),
        **{MANAGER_IS_RUNNING: True, IS_COMMAND_COORDINATOR: True, MANAGER_POLICY: "automatic"},
    )
    obj.providers[0].set_maintenance_policy()
    obj.providers[0].set_original_policy()
    assert "set policy maintenance" in runner.commands[0]
    assert "set policy automatic" in runner.commands[1]


def test_apply_config_services_writes_static_properties(tmp_path):
    obj = _deployment(tmp_path, FakeRunner())
    obj.providers[0].apply_config_services()
    static = tmp_path / "releases" / "tpm-test" / "conf" / "static-alpha.properties"
    assert "repl_master_host=db2" in static.read_text().splitlines()


def test_replicator_waits_for_provisioning(tmp_path):
    runner = FakeRunner()
    _deployment(tmp_path, runner, provision_source="db2").providers[0].start_replication_services_unless_provisioning()
    assert runner.commands == []

    _deployment(tmp_path, runner).providers[0].start_replication_services_unless_provisioning()
    assert runner.commands[-1].endswith("replicator start")


def test_wait_for_manager_sees_the_host(tmp_path):
    runner = FakeRunner({"tmanager.pid": "no", "members": "db1\ndb2"})
    _deployment(tmp_path, runner).providers[0].wait_for_manager()
    assert any(c.endswith("manager start") for c in runner.commands)


def test_check_ping_warns_about_unreachable_upstream(tmp_path):
    obj = _deployment(tmp_path, FakeRunner({"ping": "fail"}))
    obj.providers[0].check_ping()
    assert [e.message for e in obj.messages.warnings()] == ["Unable to ping db2, the upstream of alpha_db1"]


def test_release_and_connector_files(tmp_path):
    runner = FakeRunner()
    obj = _deployment(tmp_path, runner, providers=(ReleaseSteps, ConnectorSteps))
    release, connector = obj.providers

    release.create_release()
    connector.deploy_connector()
    release.commit_release()

    conf = tmp_path / "releases" / "tpm-test" / "conf"
    assert Properties.load(conf / "tpm.cfg").get_nested([DEPLOYMENT_HOST]) == "db1"
    assert "dataservice.alpha.members=db1,db2" in (conf / "connector.properties").read_text()
    assert runner.commands == [f"ln -sfn {conf.parent} {Path(tmp_path) / 'tungsten'}"]
